"""Payload encryption for the secure relay route.

The request body becomes ``{"jwt": token}``. The token is an HS256-signed
JWT whose claims carry an AES-256-GCM ciphertext of the JSON payload
(``enc_data``, ``iv`` and ``tag``, base64url without padding) and a short
expiry. The same 256-bit key, given as 64 hex characters, signs and
encrypts.
"""

import base64
import json
import os
import re
import time
from typing import Any, Dict

import jwt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import EncryptionError


KEY_PATTERN = re.compile(r'^[0-9a-fA-F]{64}$')
IV_BYTES = 12
TAG_BYTES = 16
DEFAULT_EXPIRY_SECONDS = 300


def validate_key(key_hex: str) -> bytes:
    """Convert a 64 hex character key to raw bytes.

    Raises:
        EncryptionError: If the key is not 64 hex characters
    """
    if not key_hex or not KEY_PATTERN.match(key_hex):
        raise EncryptionError("Invalid encryption key format. Must be 64 hex characters.")
    return bytes.fromhex(key_hex)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def _b64url_decode(data: str) -> bytes:
    padding = '=' * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def encrypt_payload(payload: Dict[str, Any], key_hex: str, expiry_seconds: int = DEFAULT_EXPIRY_SECONDS) -> str:
    """Encrypt a JSON payload into a signed token."""
    key = validate_key(key_hex)
    plaintext = json.dumps(payload, separators=(',', ':')).encode('utf-8')

    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]

    now = int(time.time())
    claims = {
        "enc_data": _b64url_encode(ciphertext),
        "iv": _b64url_encode(iv),
        "tag": _b64url_encode(tag),
        "iat": now,
        "exp": now + expiry_seconds,
    }
    return jwt.encode(claims, key, algorithm="HS256", headers={"enc": "A256GCM"})


def decrypt_payload(token: str, key_hex: str) -> Dict[str, Any]:
    """Verify a token and return the decrypted payload.

    Raises:
        EncryptionError: If the token is expired, forged or undecryptable
    """
    key = validate_key(key_hex)
    try:
        claims = jwt.decode(token, key, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise EncryptionError("Encrypted payload has expired")
    except jwt.InvalidTokenError as e:
        raise EncryptionError(f"Invalid payload token: {e}")

    try:
        ciphertext = _b64url_decode(claims["enc_data"])
        iv = _b64url_decode(claims["iv"])
        tag = _b64url_decode(claims["tag"])
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        return json.loads(plaintext)
    except (KeyError, ValueError, InvalidTag) as e:
        raise EncryptionError(f"Failed to decrypt payload: {e!r}")


def create_encrypted_request(payload: Dict[str, Any], key_hex: str, expiry_seconds: int = DEFAULT_EXPIRY_SECONDS) -> Dict[str, str]:
    return {"jwt": encrypt_payload(payload, key_hex, expiry_seconds)}


def parse_encrypted_request(body: Dict[str, Any], key_hex: str) -> Dict[str, Any]:
    if "jwt" not in body:
        raise EncryptionError("No JWT token found in request")
    return decrypt_payload(body["jwt"], key_hex)
