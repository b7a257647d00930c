"""
Tests for outstanding login request storage (state/nonce pairs).

Covers lifetime expiry, the per-client cap with oldest-first eviction and
single use, for both the session-backed and the encrypted-cookie stores.
"""

import pytest

from childfinder.auth.nonce import CookieNonceStore, SessionNonceStore, create_nonce_store
from support import FAILURE_URL, FakeClock, build_settings, create_id_token, start_login


COOKIE_KEY = "0123456789abcdef0123456789abcdef"
OTHER_KEY = "fedcba9876543210fedcba9876543210"


def complete(client, state, nonce):
    return client.post(
        "/auth/openid/return",
        data={"state": state, "id_token": create_id_token(nonce=nonce)},
    )


def nonce_cookies(client):
    return [name for name in client.cookies.keys() if name.startswith(CookieNonceStore.COOKIE_PREFIX)]


# ============================================================================
# Session-backed Storage
# ============================================================================

class TestSessionNonceStore:
    """Tests for SessionNonceStore through /login and the callback"""

    def test_expired_login_request_rejected(self, client):
        clock = FakeClock()
        settings = client.app.state.settings
        client.app.state.identity_provider.nonce_store = SessionNonceStore(settings, clock=clock)

        state, nonce = start_login(client)
        clock.advance(settings.NONCE_LIFETIME + 1)

        response = complete(client, state, nonce)

        assert response.headers["location"] == FAILURE_URL
        assert len(client.app.state.directory) == 0

    def test_login_request_within_lifetime_accepted(self, client):
        clock = FakeClock()
        settings = client.app.state.settings
        client.app.state.identity_provider.nonce_store = SessionNonceStore(settings, clock=clock)

        state, nonce = start_login(client)
        clock.advance(settings.NONCE_LIFETIME - 1)

        assert complete(client, state, nonce).headers["location"] == "/"

    def test_oldest_request_evicted_over_cap(self, make_client):
        client = make_client(NONCE_MAX_AMOUNT=2)

        first = start_login(client)
        second = start_login(client)
        third = start_login(client)

        assert complete(client, *first).headers["location"] == FAILURE_URL
        assert complete(client, *second).headers["location"] == "/"
        assert complete(client, *third).headers["location"] == "/"

    def test_concurrent_logins_complete_in_any_order(self, client):
        first = start_login(client)
        second = start_login(client)

        assert complete(client, *second).headers["location"] == "/"
        assert complete(client, *first).headers["location"] == "/"


# ============================================================================
# Cookie-backed Storage
# ============================================================================

class TestCookieNonceStore:
    """Tests for CookieNonceStore"""

    @pytest.fixture
    def cookie_client(self, make_client):
        return make_client(
            USE_COOKIE_INSTEAD_OF_SESSION=True,
            COOKIE_ENCRYPTION_KEYS=COOKIE_KEY,
        )

    def test_factory_selects_cookie_store(self):
        settings = build_settings(USE_COOKIE_INSTEAD_OF_SESSION=True, COOKIE_ENCRYPTION_KEYS=COOKIE_KEY)
        assert isinstance(create_nonce_store(settings), CookieNonceStore)
        assert isinstance(create_nonce_store(build_settings()), SessionNonceStore)

    def test_login_sets_cookie_instead_of_session(self, cookie_client):
        state, _ = start_login(cookie_client)

        names = nonce_cookies(cookie_client)
        assert len(names) == 1
        assert names[0].endswith(f".{state}")
        assert cookie_client.cookies.get("childfinder.sid") is None

    def test_cookie_round_trip_and_single_use(self, cookie_client):
        state, nonce = start_login(cookie_client)

        response = complete(cookie_client, state, nonce)

        assert response.headers["location"] == "/"
        assert len(cookie_client.app.state.directory) == 1
        assert nonce_cookies(cookie_client) == []
        assert complete(cookie_client, state, nonce).headers["location"] == FAILURE_URL

    def test_cap_evicts_oldest_cookie(self, make_client):
        client = make_client(
            USE_COOKIE_INSTEAD_OF_SESSION=True,
            COOKIE_ENCRYPTION_KEYS=COOKIE_KEY,
            NONCE_MAX_AMOUNT=2,
        )
        clock = FakeClock()
        client.app.state.identity_provider.nonce_store = CookieNonceStore(client.app.state.settings, clock=clock)

        first = start_login(client)
        clock.advance(1)
        second = start_login(client)
        clock.advance(1)
        third = start_login(client)

        assert len(nonce_cookies(client)) == 2
        assert complete(client, *first).headers["location"] == FAILURE_URL
        assert complete(client, *third).headers["location"] == "/"
        assert complete(client, *second).headers["location"] == "/"

    def test_expired_cookie_rejected(self, cookie_client):
        clock = FakeClock()
        settings = cookie_client.app.state.settings
        cookie_client.app.state.identity_provider.nonce_store = CookieNonceStore(settings, clock=clock)

        state, nonce = start_login(cookie_client)
        clock.advance(settings.NONCE_LIFETIME)

        assert complete(cookie_client, state, nonce).headers["location"] == FAILURE_URL

    def test_previous_key_still_decrypts(self):
        old = CookieNonceStore(build_settings(USE_COOKIE_INSTEAD_OF_SESSION=True, COOKIE_ENCRYPTION_KEYS=OTHER_KEY))
        rotated = CookieNonceStore(build_settings(
            USE_COOKIE_INSTEAD_OF_SESSION=True,
            COOKIE_ENCRYPTION_KEYS=f"{COOKIE_KEY},{OTHER_KEY}",
        ))

        value = old._encrypt({"state": "s", "nonce": "n", "timestamp": 1.0})

        assert rotated._decrypt(value) == {"state": "s", "nonce": "n", "timestamp": 1.0}

    def test_unknown_key_or_garbage_not_decrypted(self):
        store = CookieNonceStore(build_settings(USE_COOKIE_INSTEAD_OF_SESSION=True, COOKIE_ENCRYPTION_KEYS=COOKIE_KEY))
        other = CookieNonceStore(build_settings(USE_COOKIE_INSTEAD_OF_SESSION=True, COOKIE_ENCRYPTION_KEYS=OTHER_KEY))

        assert store._decrypt(other._encrypt({"state": "s"})) is None
        assert store._decrypt("not-a-cookie") is None
