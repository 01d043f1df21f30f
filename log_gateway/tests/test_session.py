"""
Session Tests

Tests the session record transitions, the in-memory store's absolute
expiry and the signed cookie handling in the session middleware.
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from itsdangerous import TimestampSigner

from log_gateway.auth.dependencies import get_auth_status
from log_gateway.auth.session import InMemorySessionStore, ServerSessionMiddleware
from log_gateway.models import SessionRecord, TokenSet, UserProfile

SECRET = "test-session-secret-0123456789abcdef"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ============================================================================
# SessionRecord
# ============================================================================

class TestSessionRecord:
    """Test the per-browser session state machine"""

    def test_new_record_is_anonymous(self):
        record = SessionRecord()

        assert record.authenticated is False
        assert record.to_session() == {}

    def test_begin_login_overwrites_pending_pair(self):
        record = SessionRecord()
        record.begin_login("s-1", "n-1")
        record.begin_login("s-2", "n-2")

        assert record.to_session() == {"pending_state": "s-2", "pending_nonce": "n-2"}

    def test_consume_pending_is_single_use(self):
        record = SessionRecord()
        record.begin_login("s-1", "n-1")

        assert record.consume_pending() == ("s-1", "n-1")
        assert record.consume_pending() == (None, None)

    def test_authenticate_stores_identity_and_drops_pending(self):
        record = SessionRecord()
        record.begin_login("s-1", "n-1")
        record.authenticate(
            UserProfile(sub="u-1", email="user@example.com"),
            TokenSet(access_token="at", id_token="it"),
        )

        assert record.authenticated is True
        data = record.to_session()
        assert "pending_state" not in data
        assert data["user_profile"] == {"sub": "u-1", "email": "user@example.com"}

    def test_clear_identity(self):
        record = SessionRecord(user_profile=UserProfile(sub="u-1"), token_set=TokenSet(access_token="at"))
        record.clear_identity()

        assert record.authenticated is False
        assert record.to_session() == {}

    def test_round_trip_through_session_dict(self):
        record = SessionRecord(user_profile=UserProfile(sub="u-1", name="Test User"))

        restored = SessionRecord.model_validate(record.to_session())

        assert restored.user_profile.sub == "u-1"
        assert restored.user_profile.display_name == "u-1"


# ============================================================================
# InMemorySessionStore
# ============================================================================

class TestInMemorySessionStore:
    """Test storage and absolute expiry"""

    @pytest.mark.asyncio
    async def test_create_and_load(self):
        store = InMemorySessionStore(max_age_seconds=60)

        session_id = await store.create({"pending_state": "s-1"})

        assert await store.load(session_id) == {"pending_state": "s-1"}
        assert await store.load("unknown") is None

    @pytest.mark.asyncio
    async def test_session_ids_are_unique(self):
        store = InMemorySessionStore(max_age_seconds=60)

        ids = {await store.create({"n": i}) for i in range(20)}

        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_load_returns_copy(self):
        store = InMemorySessionStore(max_age_seconds=60)
        session_id = await store.create({"user_profile": {"sub": "u-1"}})

        loaded = await store.load(session_id)
        loaded["user_profile"]["sub"] = "tampered"

        assert (await store.load(session_id))["user_profile"]["sub"] == "u-1"

    @pytest.mark.asyncio
    async def test_session_expires_after_max_age(self):
        clock = FakeClock()
        store = InMemorySessionStore(max_age_seconds=60, clock=clock)
        session_id = await store.create({"a": 1})

        clock.now += 59
        assert await store.load(session_id) == {"a": 1}

        clock.now += 1
        assert await store.load(session_id) is None

    @pytest.mark.asyncio
    async def test_save_does_not_extend_lifetime(self):
        clock = FakeClock()
        store = InMemorySessionStore(max_age_seconds=60, clock=clock)
        session_id = await store.create({"a": 1})

        clock.now += 50
        await store.save(session_id, {"a": 2})
        clock.now += 10

        assert await store.load(session_id) is None

    @pytest.mark.asyncio
    async def test_save_ignores_unknown_session(self):
        store = InMemorySessionStore(max_age_seconds=60)

        await store.save("unknown", {"a": 1})

        assert store._store == {}

    @pytest.mark.asyncio
    async def test_destroy(self):
        store = InMemorySessionStore(max_age_seconds=60)
        session_id = await store.create({"a": 1})

        await store.destroy(session_id)
        await store.destroy(session_id)

        assert await store.load(session_id) is None

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        clock = FakeClock()
        store = InMemorySessionStore(max_age_seconds=60, clock=clock)
        old = await store.create({"a": 1})
        clock.now += 30
        fresh = await store.create({"b": 2})
        clock.now += 30

        assert store.purge_expired() == 1
        assert old not in store._store
        assert fresh in store._store

    @pytest.mark.asyncio
    async def test_cleanup_task_start_and_stop(self):
        store = InMemorySessionStore(max_age_seconds=60, cleanup_interval=3600)

        await store.start_cleanup()
        assert store._cleanup_task is not None

        await store.stop()
        assert store._cleanup_task is None


# ============================================================================
# ServerSessionMiddleware
# ============================================================================

@pytest.fixture
def store():
    return InMemorySessionStore(max_age_seconds=3600)


@pytest.fixture
def session_app(store):
    """Small app exercising the middleware without the OIDC routes"""
    app = FastAPI()
    app.add_middleware(
        ServerSessionMiddleware,
        store=store,
        secret_key=SECRET,
        cookie_name="test_session",
        max_age=3600,
    )

    @app.get("/set")
    async def set_value(request: Request):
        request.session["user_profile"] = {"sub": "u-1"}
        return {"ok": True}

    @app.get("/clear")
    async def clear_value(request: Request):
        request.session.clear()
        return {"ok": True}

    @app.get("/whoami")
    async def whoami(request: Request):
        auth = get_auth_status(request)
        return {"authenticated": auth.authenticated, "session": dict(request.session)}

    return app


@pytest.fixture
def session_client(session_app):
    return TestClient(session_app, base_url="https://testserver")


def test_anonymous_request_gets_no_cookie(session_client, store):
    response = session_client.get("/whoami")

    assert response.json() == {"authenticated": False, "session": {}}
    assert "set-cookie" not in response.headers
    assert store._store == {}


def test_cookie_carries_only_signed_session_id(session_client, store):
    response = session_client.get("/set")

    session_id = next(iter(store._store))
    cookie_value = session_client.cookies.get("test_session")
    assert TimestampSigner(SECRET).unsign(cookie_value, max_age=3600).decode() == session_id
    assert "u-1" not in response.headers["set-cookie"]

    assert session_client.get("/whoami").json()["authenticated"] is True


def test_tampered_cookie_is_ignored(session_client, store):
    session_client.get("/set")
    session_id = next(iter(store._store))

    session_client.cookies.clear()
    session_client.cookies.set("test_session", f"{session_id}.forged-signature")

    assert session_client.get("/whoami").json() == {"authenticated": False, "session": {}}


def test_unknown_session_id_is_treated_as_new(session_client, store):
    signed = TimestampSigner(SECRET).sign("never-issued").decode()
    session_client.cookies.set("test_session", signed)

    assert session_client.get("/whoami").json()["authenticated"] is False


def test_emptied_session_is_destroyed_and_cookie_expired(session_client, store):
    session_client.get("/set")

    response = session_client.get("/clear")

    assert store._store == {}
    assert "max-age=0" in response.headers["set-cookie"].lower()
