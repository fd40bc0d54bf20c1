"""Routing strategies: how one envelope is addressed, authenticated and encoded."""

import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..errors import ConfigurationError
from ..models.delivery import RoutingStrategy
from ..utils.url_tools import join_path
from .encryption import create_encrypted_request

logger = logging.getLogger(__name__)


@dataclass
class PreparedRequest:
    """A fully encoded request plus its beacon equivalent."""
    strategy: RoutingStrategy
    url: str
    body: str
    headers: Dict[str, str] = field(default_factory=dict)
    beacon_url: str = ""
    beacon_body: str = ""


def _dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(',', ':'))


class RouteStrategy(ABC):
    """Base class for routing strategies."""

    kind: RoutingStrategy
    requires_bot_check: bool = False

    def __init__(self, config):
        self.config = config

    @property
    def endpoint(self) -> str:
        return self.config.endpoint_for(self.kind)

    @abstractmethod
    def prepare(self, payload: Dict[str, Any]) -> PreparedRequest:
        """Encode ``payload`` for this route.

        Raises:
            ConfigurationError: If the route is not configured
            EncryptionError: If the payload cannot be encrypted
        """
        pass

    def _require_endpoint(self) -> str:
        if not self.endpoint:
            raise ConfigurationError(f"No endpoint configured for {self.kind.value}")
        return self.endpoint


class DirectStrategy(RouteStrategy):
    """Straight to the collection endpoint; no relay, bot check or encryption."""

    kind = RoutingStrategy.DIRECT

    def prepare(self, payload: Dict[str, Any]) -> PreparedRequest:
        url = self._require_endpoint()
        body = _dumps(payload)
        return PreparedRequest(
            strategy=self.kind,
            url=url,
            body=body,
            headers={"Content-Type": "application/json", "X-Simple-request": "true"},
            beacon_url=url,
            beacon_body=body,
        )


class RelayCheckedStrategy(RouteStrategy):
    """Through the first-party relay with a bot pre-check, unencrypted."""

    kind = RoutingStrategy.RELAY_CHECKED
    requires_bot_check = True

    def relay_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Relay-Nonce": self.config.endpoints.relay_nonce,
        }
        api_key = self.config.endpoints.api_key
        if api_key:
            headers["X-API-Key"] = base64.b64encode(api_key.encode('utf-8')).decode('ascii')
        return headers

    def prepare(self, payload: Dict[str, Any]) -> PreparedRequest:
        url = self._require_endpoint()
        body = _dumps(payload)
        return PreparedRequest(
            strategy=self.kind,
            url=url,
            body=body,
            headers=self.relay_headers(),
            beacon_url=url,
            beacon_body=body,
        )


class RelaySecureStrategy(RelayCheckedStrategy):
    """Relay route with an encrypted body.

    Beacons cannot set ``X-Encrypted``, so they post the same body to the
    relay's ``/encrypted`` path.
    """

    kind = RoutingStrategy.RELAY_SECURE

    def prepare(self, payload: Dict[str, Any]) -> PreparedRequest:
        url = self._require_endpoint()
        key = self.config.endpoints.encryption_key
        if not key:
            raise ConfigurationError("relay_secure requires an encryption key")

        body = _dumps(create_encrypted_request(payload, key, self.config.delivery.jwt_expiry_seconds))
        headers = self.relay_headers()
        headers["X-Encrypted"] = "true"
        return PreparedRequest(
            strategy=self.kind,
            url=url,
            body=body,
            headers=headers,
            beacon_url=join_path(url, "encrypted"),
            beacon_body=body,
        )


STRATEGY_TYPES = {
    RoutingStrategy.DIRECT: DirectStrategy,
    RoutingStrategy.RELAY_CHECKED: RelayCheckedStrategy,
    RoutingStrategy.RELAY_SECURE: RelaySecureStrategy,
}


def build_strategy(kind: RoutingStrategy, config) -> RouteStrategy:
    return STRATEGY_TYPES[RoutingStrategy(kind)](config)


def build_strategies(config) -> List[RouteStrategy]:
    """Configured strategy first, then the fallbacks in order."""
    return [build_strategy(kind, config) for kind in config.routing.ordered_strategies()]
