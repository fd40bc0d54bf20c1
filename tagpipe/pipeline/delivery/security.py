"""Client-side request guard applied before any network send."""

import json
import logging
import time
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, Optional

from ..errors import SecurityValidationError
from ..models.delivery import RoutingStrategy
from ..utils.url_tools import is_https

logger = logging.getLogger(__name__)

SUSPICIOUS_MARKERS = ('<script', 'javascript:', 'onclick')


class ClientRateLimiter:
    """Sliding-window request counter per endpoint."""

    def __init__(self, max_requests: int = 100, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)

    def allow(self, endpoint: str) -> bool:
        """Record a request if the endpoint is within its limit."""
        now = self.clock()
        window = self._requests[endpoint]
        while window and now - window[0] >= self.window_seconds:
            window.popleft()
        if len(window) >= self.max_requests:
            return False
        window.append(now)
        return True

    def reset(self) -> None:
        self._requests.clear()


class RequestGuard:
    """Validates endpoint, credentials and payload before a request leaves.

    Violations raise ``SecurityValidationError`` with a short machine-readable
    reason such as ``payload_too_large`` or ``rate_limit_exceeded``.
    """

    def __init__(
        self,
        require_https: bool = True,
        max_payload_bytes: int = 50000,
        rate_limiter: Optional[ClientRateLimiter] = None,
        relay_nonce: str = "",
        api_key: str = "",
        require_api_key: bool = False,
        encryption_key: str = "",
    ):
        self.require_https = require_https
        self.max_payload_bytes = max_payload_bytes
        self.rate_limiter = rate_limiter or ClientRateLimiter()
        self.relay_nonce = relay_nonce
        self.api_key = api_key
        self.require_api_key = require_api_key
        self.encryption_key = encryption_key

    @classmethod
    def from_config(cls, config) -> "RequestGuard":
        return cls(
            require_https=config.endpoints.require_https,
            max_payload_bytes=config.delivery.max_payload_bytes,
            rate_limiter=ClientRateLimiter(
                max_requests=config.delivery.rate_limit_requests,
                window_seconds=config.delivery.rate_limit_window_seconds,
            ),
            relay_nonce=config.endpoints.relay_nonce,
            api_key=config.endpoints.api_key,
            require_api_key=config.endpoints.require_api_key,
            encryption_key=config.endpoints.encryption_key,
        )

    def validate(self, endpoint: str, payload: Dict[str, Any], strategy: RoutingStrategy) -> None:
        """Check a request; raises on the first failed check."""
        if not endpoint or not isinstance(endpoint, str):
            raise SecurityValidationError("invalid_endpoint")

        if self.require_https and not is_https(endpoint):
            raise SecurityValidationError("insecure_endpoint_protocol")

        if strategy.uses_relay:
            if not self.relay_nonce:
                raise SecurityValidationError("missing_relay_nonce")
            if self.require_api_key and not self.api_key:
                raise SecurityValidationError("missing_api_key")
            if strategy.encrypts and not self.encryption_key:
                raise SecurityValidationError("missing_encryption_key")

        if not isinstance(payload, dict) or not payload:
            raise SecurityValidationError("invalid_payload")

        try:
            serialized = json.dumps(payload, separators=(',', ':'))
        except (TypeError, ValueError):
            raise SecurityValidationError("payload_not_serializable")

        if len(serialized.encode('utf-8')) > self.max_payload_bytes:
            raise SecurityValidationError("payload_too_large")

        lowered = serialized.lower()
        if any(marker in lowered for marker in SUSPICIOUS_MARKERS):
            raise SecurityValidationError("suspicious_payload_content")

        if not self.rate_limiter.allow(endpoint):
            raise SecurityValidationError("rate_limit_exceeded")

        logger.debug(f"Security checks passed for {endpoint}")
