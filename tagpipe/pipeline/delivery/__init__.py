"""Delivery package: routing strategies, transports and send-time checks."""

from .beacon import Beacon, HttpBeacon, NullBeacon
from .bot_validation import AllowAllValidator, BotValidator, UserAgentBotValidator
from .encryption import decrypt_payload, encrypt_payload
from .security import ClientRateLimiter, RequestGuard
from .strategies import (
    DirectStrategy,
    PreparedRequest,
    RelayCheckedStrategy,
    RelaySecureStrategy,
    RouteStrategy,
    build_strategies,
)
from .transport import DeliveryTransport

__all__ = [
    'Beacon',
    'HttpBeacon',
    'NullBeacon',
    'AllowAllValidator',
    'BotValidator',
    'UserAgentBotValidator',
    'decrypt_payload',
    'encrypt_payload',
    'ClientRateLimiter',
    'RequestGuard',
    'DirectStrategy',
    'PreparedRequest',
    'RelayCheckedStrategy',
    'RelaySecureStrategy',
    'RouteStrategy',
    'build_strategies',
    'DeliveryTransport',
]
