"""
Media Tracker AI — Credential handling

Provider keys may be stored as ``enc:<fernet token>``. They are decrypted
only when a per-call config is built and are never cached in plaintext.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"
_MISSING = {"", "undefined", "null", "none"}


def _derive_key(raw_key: str) -> bytes:
    """Derive a Fernet key from a raw secret."""
    digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt(value: str, secret: str) -> str:
    """Encrypt a credential for storage in settings / .env."""
    if not value:
        return ""
    token = Fernet(_derive_key(secret)).encrypt(value.encode("utf-8"))
    return ENCRYPTED_PREFIX + token.decode("utf-8")


def reveal(stored: Optional[str], secret: Optional[str]) -> str:
    """
    Return the plaintext of a stored credential, or "" when it is missing.

    Plain values pass through untouched (development setups); encrypted ones
    need ``secret`` and degrade to "" when it is absent or wrong.
    """
    value = (stored or "").strip()
    if value.lower() in _MISSING:
        return ""
    if not value.startswith(ENCRYPTED_PREFIX):
        return value

    if not secret:
        logger.warning("Encrypted credential found but no credential_secret is configured")
        return ""
    token = value[len(ENCRYPTED_PREFIX):]
    try:
        return Fernet(_derive_key(secret)).decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.warning("Could not decrypt a stored credential; treating it as missing")
        return ""
