"""
Redis-backed session store for the Session Service.

Each session is a Redis hash under ``<session_table_name>:<session_id>`` whose
key expires at the session's ``expiry_date``. Issued authorization codes get a
secondary index key ``<session_table_name>:authcode:<code>`` pointing back at
the session id.
"""

import time
import uuid
from typing import Callable, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from shared.config import IssuerConfig
from shared.errors import (
    AuthorizationCodeExpiredError,
    NotFoundError,
    PersistenceError,
    SessionExpiredError,
    SessionNotFoundError,
)
from shared.logging import get_logger
from .models import Session, SessionRequest

AUTHORIZATION_CODE_FIELD = "authorization_code"
AUTHORIZATION_CODE_EXPIRY_FIELD = "authorization_code_expiry_date"
MAX_ISSUE_ATTEMPTS = 3


class SessionStore:
    """Owns Session persistence and its two legal transitions."""

    def __init__(
        self,
        config: IssuerConfig,
        redis_client: Optional[redis.Redis] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.redis = redis_client
        self.clock = clock
        self.logger = get_logger("session.store")

        # Storage layout and lifetimes
        self.table_name = config.session_table_name
        self.session_ttl_ms = config.session_ttl * 1000
        self.authorization_code_ttl_ms = config.authorization_code_ttl * 1000

    async def start(self):
        """Connect to Redis unless a client was injected."""
        if self.redis is not None:
            return
        try:
            self.redis = redis.from_url(
                self.config.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )
            # Test connection
            await self.redis.ping()
            self.logger.info("Session store started", table=self.table_name)

        except RedisError as e:
            self.logger.error("Failed to start session store", error=str(e))
            raise PersistenceError("redis", str(e))

    async def stop(self):
        """Close the Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Session store stopped")

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _session_key(self, session_id: str) -> str:
        return f"{self.table_name}:{session_id}"

    def _code_key(self, authorization_code: str) -> str:
        return f"{self.table_name}:authcode:{authorization_code}"

    async def create(self, request: SessionRequest) -> str:
        """Persist a new session and return its id."""
        # Build the new record
        now = self._now_ms()
        session = Session(
            session_id=str(uuid.uuid4()),
            created_date=now,
            expiry_date=now + self.session_ttl_ms,
            attempt_count=0,
            **request.model_dump(),
        )
        key = self._session_key(session.session_id)

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                # Whole-item write: nothing from a previous item under this key survives
                pipe.delete(key)
                pipe.hset(key, mapping=session.to_storage())
                pipe.pexpireat(key, session.expiry_date)
                await pipe.execute()

        except RedisError as e:
            self.logger.error("Error saving session", session_id=session.session_id, error=str(e))
            raise PersistenceError("redis", f"Could not save session: {e}")

        self.logger.info(
            "Session created",
            session_id=session.session_id,
            client_id=session.client_id,
            expiry_date=session.expiry_date
        )
        return session.session_id

    async def _load(self, session_id: str) -> Optional[Session]:
        try:
            data = await self.redis.hgetall(self._session_key(session_id))
        except RedisError as e:
            self.logger.error("Error loading session", session_id=session_id, error=str(e))
            raise PersistenceError("redis", f"Could not load session: {e}")

        # Reconstruct session
        if not data:
            return None
        return Session.model_validate(data)

    async def get(self, session_id: Optional[str]) -> Session:
        """Fetch a live session by id."""
        if not session_id:
            raise SessionNotFoundError(session_id)

        session = await self._load(session_id)
        # Redis expiry is lazy; a record past its expiry date counts as gone
        if session is None or session.expiry_date <= self._now_ms():
            raise SessionNotFoundError(session_id)
        return session

    async def issue_authorization_code(self, session: Session) -> Tuple[Session, bool]:
        """
        Attach a fresh authorization code to the session.

        The read and the write happen in one WATCH/MULTI transaction, so a
        session holds at most one code and never a code without its expiry.
        Returns the stored session and whether this call issued the code; a
        call that finds a code already stored returns that one unchanged.
        """
        key = self._session_key(session.session_id)
        authorization_code = str(uuid.uuid4())

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for _ in range(MAX_ISSUE_ATTEMPTS):
                    try:
                        # Read the current record under WATCH
                        await pipe.watch(key)
                        data = await pipe.hgetall(key)
                        current = Session.model_validate(data) if data else None

                        issued_at = self._now_ms()
                        if current is None or current.expiry_date <= issued_at:
                            raise SessionNotFoundError(session.session_id)

                        if current.authorization_code is not None:
                            self.logger.warning(
                                "Authorization code already issued for session",
                                session_id=session.session_id
                            )
                            return current, False

                        # Claim the code, its expiry and the index in one transaction
                        expiry_date = issued_at + self.authorization_code_ttl_ms
                        pipe.multi()
                        pipe.hset(key, mapping={
                            AUTHORIZATION_CODE_FIELD: authorization_code,
                            AUTHORIZATION_CODE_EXPIRY_FIELD: str(expiry_date),
                        })
                        # Keep the TTL even if the key lapsed after the read
                        pipe.pexpireat(key, current.expiry_date)
                        pipe.set(self._code_key(authorization_code), current.session_id, pxat=current.expiry_date)
                        await pipe.execute()
                        break

                    except WatchError:
                        # Another writer touched the session; re-read it
                        self.logger.info("Session changed during issuance, retrying", session_id=session.session_id)
                else:
                    raise PersistenceError("redis", "Could not issue authorization code: session kept changing")

        except RedisError as e:
            self.logger.error("Error issuing authorization code", session_id=session.session_id, error=str(e))
            raise PersistenceError("redis", f"Could not issue authorization code: {e}")

        self.logger.info(
            "Authorization code issued",
            session_id=session.session_id,
            authorization_code_expiry_date=expiry_date
        )
        return current.model_copy(update={
            "authorization_code": authorization_code,
            "authorization_code_expiry_date": expiry_date,
        }), True

    async def get_by_authorization_code(self, authorization_code: Optional[str]) -> Session:
        """Resolve the session an authorization code was issued to."""
        if not authorization_code:
            raise NotFoundError("Unknown authorization code")

        try:
            session_id = await self.redis.get(self._code_key(authorization_code))
        except RedisError as e:
            self.logger.error("Error resolving authorization code", error=str(e))
            raise PersistenceError("redis", f"Could not resolve authorization code: {e}")

        # Resolve the index, then check the code still belongs to the session
        session = await self._load(session_id) if session_id else None
        if session is None or session.authorization_code != authorization_code:
            raise NotFoundError("Unknown authorization code")

        # Check expiry
        now = self._now_ms()
        if session.expiry_date <= now:
            raise SessionExpiredError(details={"session_id": session.session_id})
        if session.authorization_code_expiry_date is None or session.authorization_code_expiry_date <= now:
            raise AuthorizationCodeExpiredError(details={"session_id": session.session_id})
        return session

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False
