"""Location enrichment for event records."""

import logging
from typing import Optional

from ..models.consent import ConsentState
from ..models.events import EventRecord
from .providers import GeolocationProvider, NoGeolocation
from .timezones import coarse_location

logger = logging.getLogger(__name__)


class LocationEnricher:
    """Adds coarse timezone fields always and precise IP fields when allowed.

    Precise lookup runs only when the kill switch is off and either consent is
    granted or the record is being queued before a decision. Lookup failures
    are never surfaced; the coarse fields stay in place.
    """

    def __init__(
        self,
        provider: Optional[GeolocationProvider] = None,
        disable_precise: bool = False,
        timezone: Optional[str] = None,
    ):
        self.provider = provider or NoGeolocation()
        self.disable_precise = disable_precise
        self.timezone = timezone

    def add_coarse(self, record: EventRecord, timezone: Optional[str] = None) -> EventRecord:
        """Return a copy of ``record`` carrying the timezone-derived fields."""
        tz = timezone or record.get("timezone") or self.timezone
        enriched = dict(record)
        enriched.update(coarse_location(tz).to_record_fields())
        return enriched

    def precise_allowed(self, consent_state: ConsentState, pre_consent: bool = False) -> bool:
        if self.disable_precise:
            return False
        return consent_state == ConsentState.GRANTED or pre_consent

    async def enrich(
        self,
        record: EventRecord,
        consent_state: ConsentState,
        pre_consent: bool = False,
    ) -> EventRecord:
        enriched = self.add_coarse(record)

        if not self.precise_allowed(consent_state, pre_consent):
            return enriched

        try:
            location = await self.provider.lookup()
        except Exception as e:
            logger.debug(f"Precise location lookup failed, keeping coarse fields: {e}")
            return enriched

        if location is None or not location.has_coordinates:
            logger.debug("Precise location unavailable, keeping coarse fields")
            return enriched

        enriched.update(location.to_record_fields())
        return enriched
