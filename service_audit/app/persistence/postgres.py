"""
PostgreSQL persistence layer for audit records.
"""

import time
from typing import Any, Dict, List, Optional

import asyncpg

from shared.config import IssuerConfig
from shared.errors import PersistenceError
from shared.logging import get_logger
from ..consumer.models import PersistedAuditRecord, partition_key


class PostgresAuditRecordStore:
    """Audit record table keyed by (partition_key, sort_key)."""

    def __init__(self, config: IssuerConfig, pool: Optional[asyncpg.Pool] = None):
        self.dsn = config.postgres_dsn
        # Validated as a plain identifier by IssuerConfig
        self.table_name = config.audit_event_table_name
        self.pool = pool
        self.logger = get_logger("audit.persistence.postgres")

    async def start(self):
        """Start the persistence layer."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=2,
                    max_size=10,
                    command_timeout=30
                )

            await self._create_tables()
            self.logger.info("PostgreSQL audit store started", table=self.table_name)

        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL audit store", error=str(e))
            raise PersistenceError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL audit store stopped")

    async def _create_tables(self):
        """Create the audit table if it does not exist."""
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    partition_key VARCHAR(255) NOT NULL,
                    sort_key VARCHAR(1024) NOT NULL,
                    event TEXT NOT NULL,
                    expiry_date BIGINT NOT NULL,
                    PRIMARY KEY (partition_key, sort_key)
                );
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_expiry ON {self.table_name}(expiry_date);
            """)

    async def put_record(self, record: PersistedAuditRecord) -> None:
        """Unconditionally write a record; a rewrite of the same key replaces it."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO {self.table_name} (partition_key, sort_key, event, expiry_date)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (partition_key, sort_key) DO UPDATE SET
                        event = EXCLUDED.event,
                        expiry_date = EXCLUDED.expiry_date
                """,
                    record.partition_key, record.sort_key, record.event, record.expiry_date
                )

        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error(
                "Error saving audit record",
                partition_key=record.partition_key,
                sort_key=record.sort_key,
                error=str(e)
            )
            raise PersistenceError("postgres", f"Could not save audit record: {e}")

    async def query_session_events(self, session_id: str, include_expired: bool = False) -> List[Dict[str, Any]]:
        """Load a session's audit records ordered by sort key."""
        now = int(time.time())
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(f"""
                    SELECT partition_key, sort_key, event, expiry_date FROM {self.table_name}
                    WHERE partition_key = $1 AND ($2 OR expiry_date > $3)
                    ORDER BY sort_key ASC
                """, partition_key(session_id), include_expired, now)

                return [dict(row) for row in rows]

        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Error loading audit records", session_id=session_id, error=str(e))
            raise PersistenceError("postgres", f"Could not load audit records: {e}")

    async def purge_expired(self, now: Optional[int] = None) -> int:
        """Delete records past their expiry date; returns the number removed."""
        now = int(time.time()) if now is None else now
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(f"""
                    DELETE FROM {self.table_name} WHERE expiry_date <= $1
                """, now)

        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Error purging expired audit records", error=str(e))
            raise PersistenceError("postgres", f"Could not purge audit records: {e}")

        # asyncpg returns the command tag, e.g. "DELETE 3"
        removed = int(result.split()[-1]) if result else 0
        if removed:
            self.logger.info("Expired audit records purged", removed=removed)
        return removed

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
