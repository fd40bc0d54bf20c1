"""Event orchestration: attribution, consent gating, enrichment and delivery.

``Tracker.track_event`` is the single entry point for raw interactions. It
never raises: any failure degrades to dropping the one event or sending it
with reduced fidelity.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .attribution.resolver import AttributionResolver
from .config import PipelineConfiguration, get_pipeline_config
from .consent.manager import ConsentManager, ReplayTarget
from .delivery.beacon import Beacon, HttpBeacon, NullBeacon
from .delivery.bot_validation import AllowAllValidator, BotValidator, UserAgentBotValidator
from .delivery.transport import DeliveryTransport
from .location.enricher import LocationEnricher
from .location.providers import GeolocationProvider, HttpGeolocationProvider, NoGeolocation
from .models.consent import ConsentRecord, ConsentState
from .models.delivery import DeliveryOutcome, EnvelopeEvent, EventEnvelope
from .models.events import (
    EventRecord,
    PageContext,
    QueuedEvent,
    SessionContext,
    is_conversion_event,
    is_critical_event,
)
from .privacy.anonymizer import Anonymizer
from .queue.event_queue import EventQueue
from .session import SessionStore
from .storage.backends import MemoryStorage, StorageBackend
from .storage.user_data import UserDataStore
from .utils.clock import Clock, now_ms
from .utils.url_tools import page_location_without_params

logger = logging.getLogger(__name__)


class Tracker(ReplayTarget):
    """Composes the pipeline components for one page session."""

    def __init__(
        self,
        config: PipelineConfiguration,
        page: PageContext,
        consent: ConsentManager,
        queue: EventQueue,
        transport: DeliveryTransport,
        enricher: LocationEnricher,
        session_store: SessionStore,
        user_data: UserDataStore,
        anonymizer: Optional[Anonymizer] = None,
        resolver: Optional[AttributionResolver] = None,
        clock: Clock = now_ms,
    ):
        self.config = config
        self.page = page
        self.consent = consent
        self.queue = queue
        self.transport = transport
        self.enricher = enricher
        self.session_store = session_store
        self.user_data = user_data
        self.anonymizer = anonymizer or Anonymizer()
        self.resolver = resolver or AttributionResolver()
        self.clock = clock

    async def start(self) -> ConsentState:
        """Restore consent and start the queue sweep."""
        await self.queue.start()
        state = await self.consent.start()
        return state

    async def close(self) -> None:
        self.consent.cancel_timeout()
        await self.queue.close()
        await self.transport.aclose()
        await self.enricher.provider.close()

    async def track_event(self, name: str, params: Optional[Dict[str, Any]] = None) -> Optional[DeliveryOutcome]:
        """Track one interaction.

        Returns the delivery outcome for immediate sends, or None when the
        event was queued or dropped.
        """
        try:
            return await self._track(name, dict(params or {}))
        except Exception:
            logger.exception(f"Dropping event {name} after pipeline failure")
            return None

    async def _track(self, name: str, params: Dict[str, Any]) -> Optional[DeliveryOutcome]:
        session = self.session_store.touch()
        conversion = is_conversion_event(name)
        stored = self.user_data.get_last_attribution()

        attribution = self.resolver.resolve_for_page(self.page, session, stored, conversion=conversion)
        if not conversion and self.resolver.should_persist(self.page, session, attribution):
            self.user_data.set_last_attribution(attribution)

        record = self._build_record(name, params, session)
        record.update(attribution.to_params())
        record = self.enricher.add_coarse(record, self.page.timezone or None)

        if self.consent.state is ConsentState.UNKNOWN:
            queued = await self.queue.prepare(name, record)
            # The decision may have landed (and the queue drained) during enrichment
            if self.consent.state is ConsentState.UNKNOWN:
                await self.queue.add(queued)
                logger.debug(f"Queued {name} until consent is decided")
                return None
            logger.debug(f"Consent decided while enriching {name}, sending directly")
            return await self._send_single(name, queued.payload, self.consent.record)

        enriched = await self.enricher.enrich(record, self.consent.state)
        return await self._send_single(name, enriched, self.consent.record)

    def _build_record(self, name: str, params: Dict[str, Any], session: SessionContext) -> EventRecord:
        page = self.page
        record: EventRecord = {
            "event_timestamp": self.clock(),
            "session_id": session.session_id,
            "session_count": session.session_count,
            "is_new_session": session.is_new_session,
            "is_first_visit": session.is_first_visit,
            "page_location": page_location_without_params(page.page_url),
            "page_referrer": page.referrer,
            "page_title": page.page_title,
            "language": page.language,
            "user_agent": page.user_agent,
            "screen_resolution": page.screen_resolution,
        }
        record.update(params)
        record["event_timestamp"] = record.get("event_timestamp") or self.clock()
        return record

    def _prepare(self, record: EventRecord, consent: ConsentRecord) -> EventRecord:
        with_identity = dict(record)
        with_identity["client_id"] = self.session_store.get_client_id(consent)
        with_identity["consent_mode"] = consent.consent_mode
        return self.anonymizer.anonymize(with_identity, consent)

    def _envelope_event(self, name: str, record: EventRecord, consent: ConsentRecord) -> EnvelopeEvent:
        params = self._prepare(record, consent)
        return EnvelopeEvent(
            name=name,
            params=params,
            isCompleteData=consent.analytics_granted,
            timestamp=int(record.get("event_timestamp") or self.clock()),
        )

    async def _send_single(self, name: str, record: EventRecord, consent: ConsentRecord) -> DeliveryOutcome:
        envelope = EventEnvelope(
            batch=False,
            events=[self._envelope_event(name, record, consent)],
            consent=self.anonymizer.minimal_consent(consent),
            timestamp=self.clock(),
        )
        return await self.transport.send(envelope, critical=is_critical_event(name), signals=self._bot_signals())

    async def replay_queued(self, events: List[QueuedEvent], record: ConsentRecord) -> None:
        """Send drained events one by one, in queue order."""
        for event in events:
            try:
                outcome = await self._send_single(event.name, event.payload, record)
            except Exception:
                logger.exception(f"Replay of queued event {event.name} failed")
                continue
            if not outcome.success:
                logger.warning(f"Replayed event {event.name} was not delivered")

    async def flush_queue(self, critical: bool = False) -> Optional[DeliveryOutcome]:
        """Drain the queue and send it as one batch.

        Before a decision the events are anonymized against the all-denied
        default record.
        """
        events = self.queue.drain_all()
        if not events:
            return None

        consent = self.consent.record or ConsentRecord.denied_all(self.clock())
        envelope = EventEnvelope(
            batch=True,
            events=[self._envelope_event(event.name, event.payload, consent) for event in events],
            consent=self.anonymizer.minimal_consent(consent),
            timestamp=self.clock(),
        )
        logger.info(f"Flushing {len(events)} queued events as a batch")
        try:
            return await self.transport.send(envelope, critical=critical, signals=self._bot_signals())
        except Exception:
            logger.exception("Queue flush failed")
            return None

    async def handle_page_unload(self) -> Dict[str, Any]:
        """Hand in-flight requests to the beacon and flush the queue reliably."""
        handed_off = self.transport.handle_page_unload()
        outcome = await self.flush_queue(critical=True)
        return {
            "handed_off": handed_off,
            "flushed": outcome.event_count if outcome is not None else 0,
            "flush_success": outcome.success if outcome is not None else None,
        }

    def _bot_signals(self) -> Dict[str, Any]:
        return {
            "user_agent": self.page.user_agent,
            "is_headless": self.page.is_headless,
            "webdriver": self.page.webdriver,
        }


def create_tracker(
    config: Optional[PipelineConfiguration] = None,
    storage: Optional[StorageBackend] = None,
    page: Optional[PageContext] = None,
    geolocation: Optional[GeolocationProvider] = None,
    beacon: Optional[Beacon] = None,
    bot_validator: Optional[BotValidator] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Clock = now_ms,
) -> Tracker:
    """Build a tracker and its consent manager for one page session.

    Capabilities not supplied get their default implementation here, once.
    """
    config = config or get_pipeline_config()
    storage = storage if storage is not None else MemoryStorage()
    page = page or PageContext()

    user_data = UserDataStore(storage, expiration_hours=config.session.user_data_expiration_hours, clock=clock)
    session_store = SessionStore(user_data, timeout_minutes=config.session.timeout_minutes, clock=clock)

    if geolocation is None:
        if config.location.disable_precise:
            geolocation = NoGeolocation()
        else:
            geolocation = HttpGeolocationProvider(
                urls=config.location.provider_urls,
                client=http_client,
                timeout_seconds=config.location.provider_timeout_seconds,
                cache=user_data,
                clock=clock,
            )
    enricher = LocationEnricher(
        provider=geolocation,
        disable_precise=config.location.disable_precise,
        timezone=page.timezone or None,
    )

    if beacon is None:
        if config.delivery.beacon_enabled:
            beacon = HttpBeacon(client=http_client, max_bytes=config.delivery.beacon_max_bytes)
        else:
            beacon = NullBeacon()
    if bot_validator is None:
        bot_validator = UserAgentBotValidator() if config.routing.bot_check_enabled else AllowAllValidator()

    transport = DeliveryTransport(config, client=http_client, beacon=beacon, bot_validator=bot_validator)
    queue = EventQueue.from_config(storage, config.queue, enricher=enricher, clock=clock)
    consent = ConsentManager(storage, config.consent, clock=clock)

    tracker = Tracker(
        config=config,
        page=page,
        consent=consent,
        queue=queue,
        transport=transport,
        enricher=enricher,
        session_store=session_store,
        user_data=user_data,
        clock=clock,
    )
    consent.attach(queue, tracker)
    queue.set_flush_handler(tracker.flush_queue)
    return tracker
