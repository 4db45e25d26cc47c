"""
Token encryption — encrypt / decrypt OAuth tokens and provider secrets at rest.

Uses AES-256-GCM (``AESGCM`` from the ``cryptography`` library).  The key is
derived from ``config.encryption_key`` (env var: ``ENCRYPTION_KEY``) by
right-padding it with ``"0"`` to 32 characters and truncating — this keeps
ciphertexts written by the earlier deployment readable, but it is not a KDF.

Wire format: ``base64(nonce[12] || ciphertext || tag[16])``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config.settings import config
from utils.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

_KEY_BYTES = 32
_NONCE_BYTES = 12
_TAG_BYTES = 16


def derive_key(key: str) -> bytes:
    """Pad/truncate the configured key string to exactly 32 bytes."""
    raw = key.ljust(_KEY_BYTES, "0")[:_KEY_BYTES].encode("utf-8")
    # multi-byte characters can push the encoded length past 32
    return raw[:_KEY_BYTES].ljust(_KEY_BYTES, b"0")


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt ``plaintext`` with a fresh random nonce."""
    nonce = os.urandom(_NONCE_BYTES)
    sealed = AESGCM(derive_key(key)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(ciphertext: str, key: str) -> str:
    """
    Decrypt a value produced by :func:`encrypt`.

    Raises ``DecryptionError`` for malformed input, a wrong key or a
    tampered payload.
    """
    try:
        combined = base64.b64decode(ciphertext.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise DecryptionError("Ciphertext is not valid base64") from exc

    if len(combined) < _NONCE_BYTES + _TAG_BYTES:
        raise DecryptionError("Ciphertext is too short")

    nonce, sealed = combined[:_NONCE_BYTES], combined[_NONCE_BYTES:]
    try:
        plaintext = AESGCM(derive_key(key)).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise DecryptionError("Ciphertext failed authentication") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Decrypted payload is not UTF-8") from exc


def _configured_key() -> str:
    key = config.encryption_key
    if not key:
        raise ConfigurationError(
            "ENCRYPTION_KEY is not set; refusing to store or read tokens"
        )
    return key


def encrypt_token(plaintext: str) -> str:
    """Encrypt a token string for database storage."""
    return encrypt(plaintext, _configured_key())


def decrypt_token(ciphertext: str) -> str:
    """Decrypt a token string read from the database."""
    return decrypt(ciphertext, _configured_key())
