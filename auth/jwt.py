"""
Signed bearer tokens for the web client.

Format: ``urlsafe_b64(json payload) + "." + hex(HMAC-SHA256)`` keyed with
``config.jwt_secret`` (env var: ``JWT_SECRET``).  The payload carries the
user id, issue time and expiry.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict

from config.settings import config
from utils.exceptions import AuthenticationRequired


def _sign(raw: bytes) -> str:
    return hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, *, expires_in: int | None = None) -> str:
    """Issue a token for ``user_id`` valid for ``expires_in`` seconds."""
    now = int(time.time())
    lifetime = config.jwt_expiry_seconds if expires_in is None else expires_in
    raw = json.dumps({"user_id": str(user_id), "iat": now, "exp": now + lifetime}).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw)


def _payload(token: str) -> Dict[str, Any]:
    encoded, _, signature = token.partition(".")
    if not encoded or not signature:
        raise ValueError("malformed token")
    raw = urlsafe_b64decode(encoded.encode())
    if not hmac.compare_digest(signature, _sign(raw)):
        raise ValueError("bad signature")
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("malformed payload")
    return payload


def verify_token(token: str) -> str:
    """
    Verify ``token`` and return the user id it was issued for.

    Raises ``AuthenticationRequired`` on a malformed, forged or expired token.
    """
    try:
        payload = _payload(token)
    except (ValueError, binascii.Error) as exc:
        raise AuthenticationRequired(f"Invalid token: {exc}") from exc

    if payload.get("exp", 0) < time.time():
        raise AuthenticationRequired("Token expired")
    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationRequired("Invalid token: no user")
    return user_id
