"""Unit tests for payload encryption, the request guard and bot validation."""

import jwt
import pytest

from conftest import BROWSER_UA, ENCRYPTION_KEY
from tagpipe.pipeline.delivery import (
    AllowAllValidator,
    ClientRateLimiter,
    RequestGuard,
    UserAgentBotValidator,
    decrypt_payload,
    encrypt_payload,
)
from tagpipe.pipeline.delivery.encryption import (
    create_encrypted_request,
    parse_encrypted_request,
    validate_key,
)
from tagpipe.pipeline.errors import EncryptionError, SecurityValidationError
from tagpipe.pipeline.models.delivery import RoutingStrategy

OTHER_KEY = "ff" * 32
PAYLOAD = {"batch": False, "events": [{"name": "page_view", "params": {"page_title": "Home"}}]}


class TestEncryption:
    """Test cases for the encrypted relay payload."""

    def test_round_trip(self):
        token = encrypt_payload(PAYLOAD, ENCRYPTION_KEY)
        assert decrypt_payload(token, ENCRYPTION_KEY) == PAYLOAD

    def test_token_structure(self):
        token = encrypt_payload(PAYLOAD, ENCRYPTION_KEY, expiry_seconds=300)
        header = jwt.get_unverified_header(token)
        claims = jwt.decode(token, options={"verify_signature": False})

        assert header["alg"] == "HS256"
        assert header["enc"] == "A256GCM"
        assert set(claims) == {"enc_data", "iv", "tag", "iat", "exp"}
        assert claims["exp"] - claims["iat"] == 300
        assert "=" not in claims["iv"]
        assert "page_view" not in token

    def test_fresh_iv_per_token(self):
        first = jwt.decode(encrypt_payload(PAYLOAD, ENCRYPTION_KEY), options={"verify_signature": False})
        second = jwt.decode(encrypt_payload(PAYLOAD, ENCRYPTION_KEY), options={"verify_signature": False})
        assert first["iv"] != second["iv"]

    def test_expired_token_rejected(self):
        token = encrypt_payload(PAYLOAD, ENCRYPTION_KEY, expiry_seconds=-10)
        with pytest.raises(EncryptionError, match="expired"):
            decrypt_payload(token, ENCRYPTION_KEY)

    def test_wrong_key_rejected(self):
        token = encrypt_payload(PAYLOAD, ENCRYPTION_KEY)
        with pytest.raises(EncryptionError):
            decrypt_payload(token, OTHER_KEY)

    def test_tampered_ciphertext_rejected(self):
        token = encrypt_payload(PAYLOAD, ENCRYPTION_KEY)
        key = bytes.fromhex(ENCRYPTION_KEY)
        claims = jwt.decode(token, key, algorithms=["HS256"])
        claims["tag"] = "A" * 22
        forged = jwt.encode(claims, key, algorithm="HS256")
        with pytest.raises(EncryptionError):
            decrypt_payload(forged, ENCRYPTION_KEY)

    @pytest.mark.parametrize("key", ["", "abc", "g" * 64, "00" * 31])
    def test_invalid_key_format(self, key):
        with pytest.raises(EncryptionError):
            validate_key(key)

    def test_request_body_helpers(self):
        body = create_encrypted_request(PAYLOAD, ENCRYPTION_KEY)
        assert set(body) == {"jwt"}
        assert parse_encrypted_request(body, ENCRYPTION_KEY) == PAYLOAD
        with pytest.raises(EncryptionError):
            parse_encrypted_request({}, ENCRYPTION_KEY)


class TestClientRateLimiter:
    """Test cases for the sliding-window limiter."""

    def test_limit_per_endpoint(self):
        now = [0.0]
        limiter = ClientRateLimiter(max_requests=3, window_seconds=60, clock=lambda: now[0])
        assert all(limiter.allow("https://a.example") for _ in range(3))
        assert not limiter.allow("https://a.example")
        assert limiter.allow("https://b.example")

    def test_window_slides(self):
        now = [0.0]
        limiter = ClientRateLimiter(max_requests=1, window_seconds=60, clock=lambda: now[0])
        assert limiter.allow("https://a.example")
        now[0] = 59.0
        assert not limiter.allow("https://a.example")
        now[0] = 60.0
        assert limiter.allow("https://a.example")


def make_guard(**kwargs):
    params = dict(relay_nonce="nonce", encryption_key=ENCRYPTION_KEY)
    params.update(kwargs)
    return RequestGuard(**params)


class TestRequestGuard:
    """Test cases for pre-send security checks."""

    def reason(self, guard, endpoint="https://example.com/relay", payload=None, strategy=RoutingStrategy.RELAY_SECURE):
        with pytest.raises(SecurityValidationError) as exc_info:
            guard.validate(endpoint, PAYLOAD if payload is None else payload, strategy)
        return exc_info.value.reason

    def test_valid_request_passes(self):
        make_guard().validate("https://example.com/relay", PAYLOAD, RoutingStrategy.RELAY_SECURE)

    def test_https_required(self):
        assert self.reason(make_guard(), endpoint="http://example.com/relay") == "insecure_endpoint_protocol"
        make_guard(require_https=False).validate("http://localhost/relay", PAYLOAD, RoutingStrategy.DIRECT)

    def test_empty_endpoint(self):
        assert self.reason(make_guard(), endpoint="") == "invalid_endpoint"

    def test_relay_requirements(self):
        assert self.reason(make_guard(relay_nonce="")) == "missing_relay_nonce"
        assert self.reason(make_guard(require_api_key=True)) == "missing_api_key"
        assert self.reason(make_guard(encryption_key="")) == "missing_encryption_key"

    def test_direct_route_needs_no_relay_credentials(self):
        RequestGuard().validate("https://collect.example.com", PAYLOAD, RoutingStrategy.DIRECT)

    def test_relay_checked_needs_no_encryption_key(self):
        make_guard(encryption_key="").validate("https://example.com/relay", PAYLOAD, RoutingStrategy.RELAY_CHECKED)

    def test_payload_checks(self):
        guard = make_guard()
        assert self.reason(guard, payload={}) == "invalid_payload"
        assert self.reason(guard, payload={"x": object()}) == "payload_not_serializable"
        assert self.reason(make_guard(max_payload_bytes=10)) == "payload_too_large"

    @pytest.mark.parametrize("content", ["<script>alert(1)</script>", "javascript:void(0)", "<a onClick=x>"])
    def test_suspicious_content(self, content):
        assert self.reason(make_guard(), payload={"title": content}) == "suspicious_payload_content"

    def test_rate_limit(self):
        guard = make_guard(rate_limiter=ClientRateLimiter(max_requests=2, window_seconds=60))
        guard.validate("https://example.com/relay", PAYLOAD, RoutingStrategy.RELAY_SECURE)
        guard.validate("https://example.com/relay", PAYLOAD, RoutingStrategy.RELAY_SECURE)
        assert self.reason(guard) == "rate_limit_exceeded"

    def test_error_message(self):
        error = SecurityValidationError("payload_too_large")
        assert str(error) == "Security validation failed: payload_too_large"


class TestBotValidation:
    """Test cases for the bot pre-check."""

    @pytest.mark.asyncio
    async def test_allow_all(self):
        verdict = await AllowAllValidator().validate({"user_agent": "Googlebot/2.1"})
        assert not verdict.is_bot

    @pytest.mark.asyncio
    async def test_browser_is_human(self):
        verdict = await UserAgentBotValidator().validate({"user_agent": BROWSER_UA})
        assert not verdict.is_bot
        assert verdict.score == 0.0

    @pytest.mark.asyncio
    async def test_crawler_detected(self):
        ua = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
        verdict = await UserAgentBotValidator().validate({"user_agent": ua})
        assert verdict.is_bot
        assert verdict.score == 1.0

    @pytest.mark.asyncio
    async def test_automation_signals(self):
        verdict = await UserAgentBotValidator().validate({"user_agent": BROWSER_UA, "webdriver": True})
        assert verdict.is_bot
        assert "webdriver" in verdict.reasons

        headless = BROWSER_UA.replace("Chrome/", "HeadlessChrome/")
        assert (await UserAgentBotValidator().validate({"user_agent": headless})).is_bot

    @pytest.mark.asyncio
    async def test_empty_user_agent_alone_is_not_conclusive(self):
        verdict = await UserAgentBotValidator().validate({})
        assert not verdict.is_bot
        assert "empty_user_agent" in verdict.reasons
