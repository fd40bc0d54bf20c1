"""Attribution data models and the sentinel values shared across the pipeline."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


NOT_SET = "(not set)"
NOT_PROVIDED = "(not provided)"
DENIED_CONSENT = "(denied consent)"

DIRECT_SOURCE = "(direct)"
DIRECT_MEDIUM = "(none)"
DIRECT_CAMPAIGN = "(direct)"

INTERNAL_SOURCE = "(internal)"
INTERNAL_MEDIUM = "internal"

ORGANIC_MEDIUM = "organic"
ORGANIC_CAMPAIGN = "(organic)"
REFERRAL_MEDIUM = "referral"
REFERRAL_CAMPAIGN = "(referral)"
SOCIAL_MEDIUM = "social"
SOCIAL_CAMPAIGN = "(social)"

PAID_SEARCH_SOURCE = "google"
PAID_SEARCH_MEDIUM = "cpc"
PAID_SEARCH_CAMPAIGN = "(cpc)"

# Campaign values that never identify a paid campaign
RESERVED_CAMPAIGNS = frozenset({ORGANIC_CAMPAIGN, DIRECT_CAMPAIGN, NOT_SET, REFERRAL_CAMPAIGN})

PAID_MEDIUMS = frozenset({"cpc", "ppc", "paidsearch", "paid-search", "display", "banner", "cpm"})


class UTMParameters(BaseModel):
    """Campaign parameters read from the landing page URL."""

    source: str = Field(default="", description="utm_source")
    medium: str = Field(default="", description="utm_medium")
    campaign: str = Field(default="", description="utm_campaign")
    content: str = Field(default="", description="utm_content")
    term: str = Field(default="", description="utm_term")

    @property
    def has_source_or_medium(self) -> bool:
        return bool(self.source or self.medium)

    @property
    def is_empty(self) -> bool:
        return not any([self.source, self.medium, self.campaign, self.content, self.term])


class AttributionRecord(BaseModel):
    """Resolved marketing attribution for one hit.

    A non-empty ``click_id`` is proof of a paid-search click; the resolver
    guarantees source/medium/campaign carry the paid-search triple whenever
    it is set.
    """

    model_config = {"frozen": True}

    source: str = ""
    medium: str = ""
    campaign: str = NOT_SET
    content: str = ""
    term: str = ""
    click_id: str = ""

    @property
    def is_direct(self) -> bool:
        return self.source == DIRECT_SOURCE

    @property
    def is_internal(self) -> bool:
        return self.source == INTERNAL_SOURCE

    def to_params(self) -> Dict[str, Any]:
        """Render as event parameters; optional fields are omitted when empty."""
        params: Dict[str, Any] = {
            "source": self.source,
            "medium": self.medium,
            "campaign": self.campaign,
        }
        if self.content:
            params["content"] = self.content
        if self.term:
            params["term"] = self.term
        if self.click_id:
            params["gclid"] = self.click_id
        return params

    @classmethod
    def from_storage(cls, data: Optional[Dict[str, Any]]) -> Optional["AttributionRecord"]:
        """Rebuild a persisted record, returning None for missing or empty data."""
        if not data or not data.get("source") or not data.get("medium"):
            return None
        return cls(
            source=str(data.get("source", "")),
            medium=str(data.get("medium", "")),
            campaign=str(data.get("campaign") or NOT_SET),
            content=str(data.get("content", "")),
            term=str(data.get("term", "")),
            click_id=str(data.get("click_id", "")),
        )
