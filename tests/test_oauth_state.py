"""
Tests for the OAuth ``state`` parameter and its nonce store.
"""

import base64
import json

import pytest

from connectors.state import NonceStore, consume_state, create_state, decode_state
from utils.exceptions import InvalidOAuthState


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestStateEncoding:
    def test_state_is_base64_json(self):
        store = NonceStore(ttl_seconds=60)
        state = create_state("user-1", store)
        payload = json.loads(base64.b64decode(state))
        assert payload["userId"] == "user-1"
        assert payload["nonce"]

    def test_nonce_recorded_in_given_store(self):
        store = NonceStore(ttl_seconds=60)
        create_state("user-1", store)
        assert len(store) == 1

    def test_decode_rejects_garbage(self):
        with pytest.raises(InvalidOAuthState):
            decode_state("%%%not-base64%%%")

    def test_decode_rejects_missing_fields(self):
        state = base64.b64encode(json.dumps({"userId": "u"}).encode()).decode()
        with pytest.raises(InvalidOAuthState):
            decode_state(state)


class TestConsumeState:
    def test_valid_state_returns_user(self):
        store = NonceStore(ttl_seconds=60)
        state = create_state("user-1", store)
        assert consume_state(state, store) == "user-1"

    def test_state_is_single_use(self):
        store = NonceStore(ttl_seconds=60)
        state = create_state("user-1", store)
        consume_state(state, store)
        with pytest.raises(InvalidOAuthState):
            consume_state(state, store)

    def test_forged_state_is_rejected(self):
        store = NonceStore(ttl_seconds=60)
        forged = base64.b64encode(
            json.dumps({"userId": "victim", "nonce": "made-up"}).encode()
        ).decode()
        with pytest.raises(InvalidOAuthState):
            consume_state(forged, store)

    def test_user_swap_is_rejected(self):
        store = NonceStore(ttl_seconds=60)
        payload = decode_state(create_state("user-1", store))
        swapped = base64.b64encode(
            json.dumps({"userId": "user-2", "nonce": payload["nonce"]}).encode()
        ).decode()
        with pytest.raises(InvalidOAuthState):
            consume_state(swapped, store)

    def test_expired_state_is_rejected(self):
        clock = FakeClock()
        store = NonceStore(ttl_seconds=60, clock=clock)
        state = create_state("user-1", store)
        clock.now += 61
        with pytest.raises(InvalidOAuthState):
            consume_state(state, store)
        assert len(store) == 0
