"""
OAuth ``state`` parameter — encodes ``{userId, nonce}`` as base64(JSON).

The encoding alone is forgeable, so every issued nonce is also recorded in
a server-side ``NonceStore``; a callback is accepted only if its nonce was
issued by this process, has not expired, and has not been used before.
"""

from __future__ import annotations

import binascii
import json
import logging
import threading
import time
import uuid
from base64 import b64decode, b64encode
from typing import Callable, Dict, Optional, Tuple

from config.settings import config
from utils.exceptions import InvalidOAuthState

logger = logging.getLogger(__name__)


class NonceStore:
    """In-process expiring map of issued nonces."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._issued: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def issue(self, user_id: str) -> str:
        nonce = uuid.uuid4().hex
        with self._lock:
            self._purge()
            self._issued[nonce] = (user_id, self._clock() + self._ttl)
        return nonce

    def consume(self, nonce: str, user_id: str) -> bool:
        """Remove ``nonce``; True only if it was live and issued to ``user_id``."""
        with self._lock:
            self._purge()
            entry = self._issued.pop(nonce, None)
        return entry is not None and entry[0] == user_id

    def _purge(self) -> None:
        now = self._clock()
        for key in [k for k, (_, exp) in self._issued.items() if exp < now]:
            del self._issued[key]

    def __len__(self) -> int:
        return len(self._issued)


_store: Optional[NonceStore] = None


def get_nonce_store() -> NonceStore:
    global _store
    if _store is None:
        _store = NonceStore(config.oauth_state_ttl_seconds)
    return _store


def create_state(user_id: str, store: Optional[NonceStore] = None) -> str:
    store = store if store is not None else get_nonce_store()
    payload = {"userId": str(user_id), "nonce": store.issue(str(user_id))}
    return b64encode(json.dumps(payload).encode()).decode()


def decode_state(state: str) -> Dict[str, str]:
    """Decode without verifying — raises ``InvalidOAuthState`` on bad format."""
    try:
        payload = json.loads(b64decode(state, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise InvalidOAuthState("Invalid OAuth state") from exc
    if not isinstance(payload, dict) or not payload.get("userId") or not payload.get("nonce"):
        raise InvalidOAuthState("Invalid OAuth state")
    return {"userId": str(payload["userId"]), "nonce": str(payload["nonce"])}


def consume_state(state: str, store: Optional[NonceStore] = None) -> str:
    """Verify ``state`` once and return the user id it was issued for."""
    store = store if store is not None else get_nonce_store()
    payload = decode_state(state)
    if not store.consume(payload["nonce"], payload["userId"]):
        logger.warning("Rejected OAuth state for user %s (unknown, reused or expired nonce)", payload["userId"])
        raise InvalidOAuthState("Invalid or expired OAuth state")
    return payload["userId"]
