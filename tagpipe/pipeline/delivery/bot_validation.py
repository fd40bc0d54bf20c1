"""Bot validation collaborators.

The pipeline only needs a verdict (boolean plus score). ``UserAgentBotValidator``
combines the ``crawlerdetect`` signature database with automation signals.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from crawlerdetect import CrawlerDetect

from ..models.delivery import BotVerdict

logger = logging.getLogger(__name__)


class BotValidator(ABC):
    """Interface for the pre-send bot check."""

    @abstractmethod
    async def validate(self, signals: Dict[str, Any]) -> BotVerdict:
        pass


class AllowAllValidator(BotValidator):
    """Validator that never flags traffic."""

    async def validate(self, signals: Dict[str, Any]) -> BotVerdict:
        return BotVerdict(is_bot=False, score=0.0)


class UserAgentBotValidator(BotValidator):
    """Scores a request from its user agent and automation flags.

    Each matching signal adds its weight to the score; traffic at or above
    ``threshold`` is a bot.
    """

    CRAWLER_WEIGHT = 1.0
    HEADLESS_WEIGHT = 0.6
    WEBDRIVER_WEIGHT = 0.6
    EMPTY_UA_WEIGHT = 0.4

    def __init__(self, threshold: float = 0.5):
        self.threshold = threshold
        self._crawler_detect = CrawlerDetect()

    async def validate(self, signals: Dict[str, Any]) -> BotVerdict:
        user_agent = str(signals.get("user_agent") or "")
        score = 0.0
        reasons = []

        if not user_agent:
            score += self.EMPTY_UA_WEIGHT
            reasons.append("empty_user_agent")
        elif self._crawler_detect.isCrawler(user_agent):
            score += self.CRAWLER_WEIGHT
            reasons.append(f"crawler:{self._crawler_detect.getMatches()}")

        if "headless" in user_agent.lower() or signals.get("is_headless"):
            score += self.HEADLESS_WEIGHT
            reasons.append("headless")

        if signals.get("webdriver"):
            score += self.WEBDRIVER_WEIGHT
            reasons.append("webdriver")

        score = min(score, 1.0)
        verdict = BotVerdict(is_bot=score >= self.threshold, score=round(score, 2), reasons=reasons)
        if verdict.is_bot:
            logger.debug(f"Bot signals detected: {reasons}")
        return verdict
