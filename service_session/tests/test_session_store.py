"""
Unit tests for SessionStore.
"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_session.app.sessions.models import SessionRequest, SessionState
from service_session.app.sessions.store import SessionStore
from shared.errors import (
    AuthorizationCodeExpiredError,
    NotFoundError,
    PersistenceError,
    SessionExpiredError,
    SessionNotFoundError,
)
from shared.test_helpers import FakeClock, FakeRedis, TestDataFactory


class TestSessionStore:
    """Test cases for SessionStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def redis_client(self, clock):
        return FakeRedis(clock)

    @pytest.fixture
    def config(self):
        return TestDataFactory.create_config(session_ttl=3600, authorization_code_ttl=600)

    @pytest.fixture
    def store(self, config, redis_client, clock):
        return SessionStore(config, redis_client=redis_client, clock=clock)

    @pytest.fixture
    def session_request(self):
        return SessionRequest(**TestDataFactory.session_request_values())

    @pytest.mark.asyncio
    async def test_create_then_get_round_trips_request_fields(self, store, session_request, clock):
        session_id = await store.create(session_request)
        session = await store.get(session_id)

        assert session.session_id == session_id
        for field, value in session_request.model_dump().items():
            assert getattr(session, field) == value
        assert session.attempt_count == 0
        assert session.created_date == int(clock.now * 1000)
        assert session.expiry_date == session.created_date + 3600 * 1000
        assert session.expiry_date > session.created_date
        assert session.authorization_code is None
        assert session.authorization_code_expiry_date is None
        assert session.status == SessionState.CREATED

    @pytest.mark.asyncio
    async def test_create_returns_unique_ids(self, store, session_request):
        ids = {await store.create(session_request) for _ in range(25)}
        assert len(ids) == 25

    @pytest.mark.asyncio
    async def test_create_with_minimal_request_omits_absent_fields(self, store, redis_client):
        request = SessionRequest(client_id="c1", redirect_uri="https://rp.example/cb", state="s1")
        session_id = await store.create(request)

        stored = redis_client.hashes[f"session-table:{session_id}"]
        assert "subject" not in stored
        assert "client_ip_address" not in stored
        session = await store.get(session_id)
        assert session.subject is None

    @pytest.mark.asyncio
    async def test_create_sets_storage_ttl(self, store, session_request, redis_client):
        session_id = await store.create(session_request)
        session = await store.get(session_id)
        assert redis_client.expiries[f"session-table:{session_id}"] == session.expiry_date

    @pytest.mark.asyncio
    async def test_create_storage_failure_raises_persistence_error(self, store, session_request, redis_client):
        redis_client.fail_with = RedisConnectionError("connection refused")
        with pytest.raises(PersistenceError):
            await store.create(session_request)

    @pytest.mark.asyncio
    async def test_get_unknown_session_raises_not_found(self, store):
        with pytest.raises(SessionNotFoundError) as exc_info:
            await store.get("does-not-exist")
        assert exc_info.value.code == "NOT_FOUND"
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_get_without_id_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            await store.get(None)

    @pytest.mark.asyncio
    async def test_get_expired_session_raises_not_found(self, store, session_request, clock):
        session_id = await store.create(session_request)
        clock.advance(3601)
        with pytest.raises(SessionNotFoundError):
            await store.get(session_id)

    @pytest.mark.asyncio
    async def test_issue_authorization_code(self, store, session_request, clock):
        session_id = await store.create(session_request)
        session = await store.get(session_id)
        issued_at = int(clock.now * 1000)

        issued, claimed = await store.issue_authorization_code(session)

        assert claimed is True
        assert issued.authorization_code
        assert issued.authorization_code_expiry_date == issued_at + 600 * 1000
        assert issued.authorization_code_expiry_date > issued_at
        assert issued.status == SessionState.CODE_ISSUED

        stored = await store.get(session_id)
        assert stored.authorization_code == issued.authorization_code
        assert stored.authorization_code_expiry_date == issued.authorization_code_expiry_date
        # Only the code fields change
        assert stored.state == session.state
        assert stored.attempt_count == 0

    @pytest.mark.asyncio
    async def test_issue_authorization_code_is_unique_across_sessions(self, store, session_request):
        codes = set()
        for _ in range(10):
            session = await store.get(await store.create(session_request))
            issued, _ = await store.issue_authorization_code(session)
            codes.add(issued.authorization_code)
        assert len(codes) == 10

    @pytest.mark.asyncio
    async def test_issue_authorization_code_twice_keeps_first_code(self, store, session_request, clock):
        session = await store.get(await store.create(session_request))
        first, _ = await store.issue_authorization_code(session)

        clock.advance(5)
        # Stale snapshot, as a concurrent second caller would hold
        second, claimed = await store.issue_authorization_code(session)

        assert claimed is False
        assert second.authorization_code == first.authorization_code
        assert second.authorization_code_expiry_date == first.authorization_code_expiry_date

    @pytest.mark.asyncio
    async def test_issue_authorization_code_for_missing_session(self, store, session_request):
        session = await store.get(await store.create(session_request))
        ghost = session.model_copy(update={"session_id": "ghost"})
        with pytest.raises(SessionNotFoundError):
            await store.issue_authorization_code(ghost)

    @pytest.mark.asyncio
    async def test_issue_authorization_code_storage_failure(self, store, session_request, redis_client):
        session = await store.get(await store.create(session_request))
        redis_client.fail_with = RedisConnectionError("connection reset")
        with pytest.raises(PersistenceError):
            await store.issue_authorization_code(session)

    @pytest.mark.asyncio
    async def test_failed_issuance_write_leaves_no_partial_code(self, store, session_request, redis_client):
        """A failed transaction stores nothing, and a later call issues a complete code."""
        session_id = await store.create(session_request)
        session = await store.get(session_id)
        redis_client.fail_on_execute = RedisConnectionError("connection reset")

        with pytest.raises(PersistenceError):
            await store.issue_authorization_code(session)

        stored = await store.get(session_id)
        assert stored.authorization_code is None
        assert stored.authorization_code_expiry_date is None
        assert redis_client.strings == {}

        redis_client.fail_on_execute = None
        issued, claimed = await store.issue_authorization_code(session)

        assert claimed is True
        assert issued.authorization_code_expiry_date > issued.created_date
        found = await store.get_by_authorization_code(issued.authorization_code)
        assert found.authorization_code_expiry_date == issued.authorization_code_expiry_date

    @pytest.mark.asyncio
    async def test_concurrent_issuance_claims_once(self, store, session_request, redis_client):
        """Two racing calls get the same code and only one reports issuing it."""
        session = await store.get(await store.create(session_request))

        results = await asyncio.gather(
            store.issue_authorization_code(session),
            store.issue_authorization_code(session),
        )

        codes = {issued.authorization_code for issued, _ in results}
        assert len(codes) == 1
        assert sorted(claimed for _, claimed in results) == [False, True]
        assert len(redis_client.strings) == 1

    @pytest.mark.asyncio
    async def test_issuance_on_expired_session_does_not_recreate_it(self, store, session_request,
                                                                      redis_client, clock):
        session_id = await store.create(session_request)
        session = await store.get(session_id)
        clock.advance(3601)

        with pytest.raises(SessionNotFoundError):
            await store.issue_authorization_code(session)

        assert f"session-table:{session_id}" not in redis_client.hashes

    @pytest.mark.asyncio
    async def test_get_by_authorization_code(self, store, session_request):
        session = await store.get(await store.create(session_request))
        issued, _ = await store.issue_authorization_code(session)

        found = await store.get_by_authorization_code(issued.authorization_code)
        assert found.session_id == session.session_id

    @pytest.mark.asyncio
    async def test_get_by_unknown_authorization_code(self, store):
        with pytest.raises(NotFoundError):
            await store.get_by_authorization_code("unknown-code")

    @pytest.mark.asyncio
    async def test_get_by_expired_authorization_code(self, store, session_request, clock):
        session = await store.get(await store.create(session_request))
        issued, _ = await store.issue_authorization_code(session)

        clock.advance(601)
        with pytest.raises(AuthorizationCodeExpiredError):
            await store.get_by_authorization_code(issued.authorization_code)

    @pytest.mark.asyncio
    async def test_get_by_authorization_code_for_expired_session(self, redis_client, clock, session_request):
        # Code outlives session only when the session TTL is shorter than the code TTL
        store = SessionStore(
            TestDataFactory.create_config(session_ttl=60, authorization_code_ttl=600),
            redis_client=redis_client,
            clock=clock,
        )
        session = await store.get(await store.create(session_request))
        issued, _ = await store.issue_authorization_code(session)

        # Keep the records readable so the expiry checks are reached
        redis_client.expiries.clear()
        clock.advance(61)
        with pytest.raises(SessionExpiredError):
            await store.get_by_authorization_code(issued.authorization_code)

    @pytest.mark.asyncio
    async def test_health_check(self, store, redis_client):
        assert await store.health_check() is True
        redis_client.fail_with = RedisConnectionError("down")
        assert await store.health_check() is False
