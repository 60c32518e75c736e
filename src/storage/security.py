"""Encryption helpers for mail-provider credentials at rest."""

from __future__ import annotations

import base64
from functools import lru_cache
import hashlib
import hmac
import os

from src.core.config import get_settings


_NONCE_BYTES = 16
_MAC_BYTES = 32


def _derive_key(material: str) -> bytes:
    return hashlib.sha256(material.encode("utf-8")).digest()


@lru_cache(maxsize=1)
def get_token_key() -> bytes:
    settings = get_settings()
    seed = settings.token_encryption_key.strip() or settings.secret_key or "loomreach-dev-credential-key"
    return _derive_key(seed)


def _xor_bytes(left: bytes, right: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(left, right))


def _keystream(key: bytes, nonce: bytes, length: int) -> bytes:
    blocks = []
    counter = 0
    while len(b"".join(blocks)) < length:
        block = hmac.new(
            key,
            nonce + counter.to_bytes(4, "big"),
            digestmod=hashlib.sha256,
        ).digest()
        blocks.append(block)
        counter += 1
    return b"".join(blocks)[:length]


def encrypt_token(secret_value: str) -> str:
    """Encrypt a refresh token or SMTP password for storage on a mail account."""

    key = get_token_key()
    nonce = os.urandom(_NONCE_BYTES)
    plaintext = secret_value.encode("utf-8")
    ciphertext = _xor_bytes(plaintext, _keystream(key, nonce, len(plaintext)))
    mac = hmac.new(key, nonce + ciphertext, digestmod=hashlib.sha256).digest()
    return base64.urlsafe_b64encode(nonce + mac + ciphertext).decode("ascii")


def decrypt_token(ciphertext: str) -> str:
    key = get_token_key()
    try:
        blob = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
    except Exception as exc:
        raise ValueError("Invalid encrypted credential payload") from exc

    if len(blob) < _NONCE_BYTES + _MAC_BYTES:
        raise ValueError("Invalid encrypted credential payload")
    nonce = blob[:_NONCE_BYTES]
    mac = blob[_NONCE_BYTES:_NONCE_BYTES + _MAC_BYTES]
    encrypted = blob[_NONCE_BYTES + _MAC_BYTES:]
    expected_mac = hmac.new(key, nonce + encrypted, digestmod=hashlib.sha256).digest()
    if not hmac.compare_digest(mac, expected_mac):
        raise ValueError("Invalid encrypted credential payload")

    return _xor_bytes(encrypted, _keystream(key, nonce, len(encrypted))).decode("utf-8")


def decrypt_optional(ciphertext: str | None) -> str:
    if not ciphertext:
        return ""
    return decrypt_token(ciphertext)
