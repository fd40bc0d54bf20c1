"""GDPR anonymization of event records.

Rules are applied per consent category and are cumulative:

* analytics storage denied: personal identifiers, precise location and the
  real traffic source are removed.
* ad storage denied: advertising identifiers are removed and paid campaign
  details are replaced by sentinels.

The input record is never modified.
"""

import copy
import logging
import re
from typing import Dict

from ..models.attribution import (
    DENIED_CONSENT,
    NOT_PROVIDED,
    PAID_MEDIUMS,
    RESERVED_CAMPAIGNS,
)
from ..models.consent import ConsentRecord
from ..models.events import EventRecord
from ..models.location import PRECISE_GEO_FIELDS

logger = logging.getLogger(__name__)

USER_AGENT_MAX_LENGTH = 100

_VERSION_PATTERN = re.compile(r'\d+\.\d+[.\d]*')
_PARENTHETICAL_PATTERN = re.compile(r'\([^)]*\)')

AD_IDENTIFIER_FIELDS = ("gclid", "content", "term")


def anonymize_user_agent(user_agent: str) -> str:
    """Mask version numbers and system details in a user agent string.

    Example:
        >>> anonymize_user_agent("Mozilla/5.0 (X11; Linux x86_64) Firefox/118.0")
        "Mozilla/x.x (anonymous) Firefox/x.x"
    """
    if not user_agent:
        return ""
    masked = _VERSION_PATTERN.sub("x.x", user_agent)
    masked = _PARENTHETICAL_PATTERN.sub("(anonymous)", masked)
    return masked[:USER_AGENT_MAX_LENGTH]


class Anonymizer:
    """Applies consent-driven anonymization to event records."""

    def anonymize(self, record: EventRecord, consent: ConsentRecord) -> EventRecord:
        result = copy.deepcopy(record)

        if not consent.analytics_granted:
            result.pop("user_id", None)
            if result.get("user_agent"):
                result["user_agent"] = anonymize_user_agent(str(result["user_agent"]))
            for field_name in PRECISE_GEO_FIELDS:
                result.pop(field_name, None)
            result["source"] = DENIED_CONSENT
            result["medium"] = DENIED_CONSENT

        if not consent.ad_granted:
            for field_name in AD_IDENTIFIER_FIELDS:
                result.pop(field_name, None)

            campaign = result.get("campaign")
            if campaign and campaign not in RESERVED_CAMPAIGNS:
                result["campaign"] = NOT_PROVIDED

            medium = result.get("medium")
            if medium and str(medium).lower() in PAID_MEDIUMS:
                result["source"] = DENIED_CONSENT
                result["medium"] = DENIED_CONSENT

        return result

    def minimal_consent(self, consent: ConsentRecord) -> Dict[str, str]:
        """The only consent data that leaves the client."""
        return {
            "ad_user_data": consent.ad_user_data.value,
            "ad_personalization": consent.ad_personalization.value,
        }
