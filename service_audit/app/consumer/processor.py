"""
Audit batch processor.

Persists each message of a delivered batch as its own audit record and
reports which message ids failed. A failure never stops or rolls back the
other messages of the batch: the returned ids are exactly what the channel
must redeliver. Records are keyed by values that are stable across
redelivery, so a redelivered message overwrites its own earlier record
instead of creating a second one.
"""

import asyncio
import time
from contextlib import nullcontext
from typing import Callable, Iterable, List, Optional, Protocol, TYPE_CHECKING

from shared.config import IssuerConfig
from shared.logging import get_logger
from .models import (
    BatchResult,
    ChannelMessage,
    EventKeyFields,
    MessageOutcome,
    PersistedAuditRecord,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class AuditRecordWriter(Protocol):
    async def put_record(self, record: PersistedAuditRecord) -> None:
        ...


class AuditBatchProcessor:
    """Transport-neutral partial-batch consumer of audit events."""

    def __init__(
        self,
        writer: AuditRecordWriter,
        *,
        retention_seconds: int = 360,
        write_timeout_seconds: float = 5.0,
        concurrency: int = 1,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.writer = writer
        self.retention_seconds = retention_seconds
        self.write_timeout_seconds = write_timeout_seconds
        self.concurrency = max(1, concurrency)
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("audit.processor")

    @classmethod
    def from_config(
        cls,
        config: IssuerConfig,
        writer: AuditRecordWriter,
        metrics: Optional["MetricsCollector"] = None,
    ) -> "AuditBatchProcessor":
        return cls(
            writer,
            retention_seconds=config.audit_retention_seconds,
            write_timeout_seconds=config.audit_write_timeout_seconds,
            concurrency=config.audit_batch_concurrency,
            metrics=metrics,
        )

    async def process_batch(self, messages: Iterable[ChannelMessage]) -> BatchResult:
        """Persist every message independently; return the ids that failed."""
        messages = list(messages)
        self.logger.info("Starting to process records", batch_size=len(messages))

        timer = self.metrics.time_operation("audit_batch_duration_seconds") if self.metrics else nullcontext()
        with timer:
            if self.concurrency == 1:
                outcomes = [await self._process_message(message) for message in messages]
            else:
                semaphore = asyncio.Semaphore(self.concurrency)

                async def bounded(message: ChannelMessage) -> MessageOutcome:
                    async with semaphore:
                        return await self._process_message(message)

                outcomes = await asyncio.gather(*(bounded(message) for message in messages))

        failed_ids: List[str] = []
        for outcome in outcomes:
            if not outcome.ok and outcome.message_id not in failed_ids:
                failed_ids.append(outcome.message_id)

        result = BatchResult(failed_message_ids=failed_ids, processed=len(messages))
        self.logger.info(
            "Finished processing records",
            batch_size=len(messages),
            succeeded=result.succeeded,
            failed=len(failed_ids)
        )
        return result

    async def _process_message(self, message: ChannelMessage) -> MessageOutcome:
        try:
            fields = EventKeyFields.from_body(message.body)
        except Exception as e:
            # Any parse failure, including pathological nesting, fails only this message
            self.logger.error("Unreadable audit event body", message_id=message.message_id, error=str(e))
            return self._failed(message, "invalid_body")

        record = PersistedAuditRecord.from_message(
            message,
            fields,
            expiry_date=int(self.clock()) + self.retention_seconds,
        )

        try:
            await asyncio.wait_for(self.writer.put_record(record), timeout=self.write_timeout_seconds)

        except asyncio.TimeoutError:
            self.logger.error(
                "Timed out writing audit event",
                message_id=message.message_id,
                session_id=fields.session_id,
                timeout_seconds=self.write_timeout_seconds
            )
            return self._failed(message, "timeout")

        except Exception as e:
            self.logger.error(
                "Error writing audit event",
                message_id=message.message_id,
                session_id=fields.session_id,
                event_name=fields.event_name,
                error=str(e)
            )
            return self._failed(message, "write_error")

        self.logger.info(
            "Event successfully saved",
            message_id=message.message_id,
            session_id=fields.session_id,
            event_name=fields.event_name
        )
        if self.metrics:
            self.metrics.increment_counter("audit_records_persisted_total")
        return MessageOutcome(message.message_id, ok=True)

    def _failed(self, message: ChannelMessage, reason: str) -> MessageOutcome:
        if self.metrics:
            self.metrics.increment_counter("audit_records_failed_total", reason=reason)
        return MessageOutcome(message.message_id, ok=False, reason=reason)
