"""Delivery of event envelopes to the collection endpoint.

The transport walks an ordered list of routing strategies with a single
loop. Each strategy gets one attempt; failures are logged and the next
strategy is tried. Nothing is re-queued.

Reliable sends (critical events and anything sent while the page unloads)
try the beacon first and fall back to a standard request when the beacon is
unavailable or refuses the payload.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

import httpx

from ..errors import (
    ConfigurationError,
    DeliveryError,
    EncryptionError,
    SecurityValidationError,
)
from ..models.delivery import (
    BotVerdict,
    DeliveryAttempt,
    DeliveryMode,
    DeliveryOutcome,
    EventEnvelope,
    TransportKind,
)
from .beacon import Beacon, NullBeacon
from .bot_validation import AllowAllValidator, BotValidator
from .security import RequestGuard
from .strategies import PreparedRequest, RouteStrategy, build_strategies

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class InFlightRequest:
    """A standard request that may be handed over to the beacon on unload."""
    request: PreparedRequest
    task: asyncio.Task
    handed_off: bool = False


class DeliveryTransport:
    """Sends envelopes using the configured routing strategies."""

    def __init__(
        self,
        config,
        client: Optional[httpx.AsyncClient] = None,
        beacon: Optional[Beacon] = None,
        bot_validator: Optional[BotValidator] = None,
        guard: Optional[RequestGuard] = None,
        strategies: Optional[List[RouteStrategy]] = None,
    ):
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=config.delivery.request_timeout_seconds, connect=5.0)
        )
        self._owns_client = client is None
        self.beacon = beacon or NullBeacon()
        self.bot_validator = bot_validator or AllowAllValidator()
        self.guard = guard or RequestGuard.from_config(config)
        self.strategies = strategies if strategies is not None else build_strategies(config)
        self.bot_check_enabled = config.routing.bot_check_enabled
        self.beacon_enabled = config.delivery.beacon_enabled

        self._in_flight: Set[InFlightRequest] = set()
        self._unloading = False

    @property
    def unloading(self) -> bool:
        return self._unloading

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def send(
        self,
        envelope: EventEnvelope,
        critical: bool = False,
        signals: Optional[Dict[str, Any]] = None,
    ) -> DeliveryOutcome:
        """Deliver one envelope.

        Args:
            envelope: Batch envelope holding one or more events
            critical: Use the reliable path
            signals: Client signals for the bot pre-check

        Returns:
            Outcome describing the successful strategy or every failed attempt
        """
        mode = DeliveryMode.RELIABLE if critical or self._unloading else DeliveryMode.BEST_EFFORT
        event_count = len(envelope.events)
        outcome = DeliveryOutcome(success=False, event_count=event_count, mode=mode)
        payload = envelope.model_dump(mode="json")
        verdict: Optional[BotVerdict] = None

        if not self.strategies:
            logger.warning("No routing strategies configured, skipping send")
            outcome.skipped_reason = "no_strategies"
            return outcome

        for strategy in self.strategies:
            if strategy.requires_bot_check and self.bot_check_enabled and verdict is None:
                try:
                    verdict = await self.bot_validator.validate(signals or {})
                except Exception as e:
                    logger.warning(f"Bot validation failed, dropping send: {e}")
                    outcome.skipped_reason = "bot_check_failed"
                    return outcome
                if verdict.is_bot:
                    logger.info(f"Bot traffic detected (score {verdict.score}), dropping send")
                    outcome.skipped_reason = "bot_detected"
                    return outcome

            try:
                request = strategy.prepare(payload)
                self.guard.validate(request.url, payload, strategy.kind)
            except ConfigurationError as e:
                logger.warning(f"Skipping {strategy.kind.value}: {e}")
                outcome.attempts.append(self._failed(strategy, TransportKind.REQUEST, str(e)))
                continue
            except (SecurityValidationError, EncryptionError) as e:
                logger.warning(f"Request via {strategy.kind.value} blocked: {e}")
                outcome.attempts.append(self._failed(strategy, TransportKind.REQUEST, str(e)))
                continue

            if mode is DeliveryMode.RELIABLE and self._send_beacon(request):
                outcome.attempts.append(DeliveryAttempt(strategy.kind, TransportKind.BEACON, True))
                return self._succeeded(outcome, strategy, TransportKind.BEACON)

            try:
                transport_kind = await self._post(request)
            except DeliveryError as e:
                logger.error(f"Delivery via {strategy.kind.value} failed: {e}")
                outcome.attempts.append(
                    self._failed(strategy, TransportKind.REQUEST, str(e), e.status_code)
                )
                continue

            outcome.attempts.append(DeliveryAttempt(strategy.kind, transport_kind, True))
            return self._succeeded(outcome, strategy, transport_kind)

        logger.error(f"All routing strategies failed for {event_count} event(s)")
        return outcome

    def handle_page_unload(self) -> int:
        """Switch to the reliable path and hand in-flight requests to the beacon.

        Requests the beacon refuses keep running. Returns the number of
        requests handed over.
        """
        self._unloading = True
        handed_off = 0
        for in_flight in list(self._in_flight):
            if in_flight.handed_off or in_flight.task.done():
                continue
            if self._send_beacon(in_flight.request):
                in_flight.handed_off = True
                in_flight.task.cancel()
                handed_off += 1
        if handed_off:
            logger.info(f"Handed {handed_off} in-flight request(s) to the beacon")
        return handed_off

    def resume(self) -> None:
        """Leave the unloading state (page restored from cache)."""
        self._unloading = False

    async def aclose(self) -> None:
        await self.beacon.aclose()
        if self._owns_client:
            await self.client.aclose()

    def _send_beacon(self, request: PreparedRequest) -> bool:
        if not self.beacon_enabled or not self.beacon.available:
            return False
        accepted = self.beacon.send(request.beacon_url, request.beacon_body)
        if not accepted:
            logger.debug(f"Beacon refused payload for {request.beacon_url}, using standard request")
        return accepted

    async def _post(self, request: PreparedRequest) -> TransportKind:
        task = asyncio.ensure_future(
            self.client.post(request.url, content=request.body, headers=request.headers)
        )
        in_flight = InFlightRequest(request=request, task=task)
        self._in_flight.add(in_flight)
        try:
            response = await task
        except asyncio.CancelledError:
            if in_flight.handed_off:
                return TransportKind.BEACON
            raise
        except httpx.HTTPError as e:
            raise DeliveryError(f"Request error: {e}")
        finally:
            self._in_flight.discard(in_flight)

        if not 200 <= response.status_code < 300:
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.debug(f"Delivered to {request.url} (HTTP {response.status_code})")
        return TransportKind.REQUEST

    def _failed(self, strategy: RouteStrategy, kind: TransportKind, error: str, status_code: Optional[int] = None) -> DeliveryAttempt:
        return DeliveryAttempt(strategy.kind, kind, False, status_code=status_code, error=error)

    def _succeeded(self, outcome: DeliveryOutcome, strategy: RouteStrategy, kind: TransportKind) -> DeliveryOutcome:
        outcome.success = True
        outcome.strategy = strategy.kind
        outcome.transport = kind
        logger.debug(
            f"Sent {outcome.event_count} event(s) via {strategy.kind.value}/{kind.value} ({outcome.mode.value})"
        )
        return outcome
