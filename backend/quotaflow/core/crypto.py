"""Fernet encryption for the workflow platform API keys stored on tenants."""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from quotaflow.core.config import settings


@lru_cache(maxsize=4)
def _cipher(key_value: str) -> Fernet:
    key_bytes = key_value.encode("utf-8")
    # A raw 32-character secret is accepted and encoded to Fernet's base64 form.
    if len(key_bytes) == 32:
        key_bytes = base64.urlsafe_b64encode(key_bytes)
    try:
        return Fernet(key_bytes)
    except ValueError as exc:
        raise ValueError("INTEGRATION_ENCRYPTION_KEY is not a valid Fernet key") from exc


def _current_cipher() -> Fernet:
    if not settings.INTEGRATION_ENCRYPTION_KEY:
        raise ValueError("INTEGRATION_ENCRYPTION_KEY is not set")
    return _cipher(settings.INTEGRATION_ENCRYPTION_KEY)


def encrypt_secret(value: str) -> str:
    return _current_cipher().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(token: str) -> str:
    try:
        raw = _current_cipher().decrypt(token.encode("utf-8"))
    except InvalidToken as exc:
        raise ValueError("Stored secret cannot be decrypted with the configured key") from exc
    return raw.decode("utf-8")
