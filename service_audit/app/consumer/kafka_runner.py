"""
Kafka channel adapter for the audit batch processor.

Kafka has no per-message acknowledgement, so partial batch failure is
translated as follows: after a polled batch is processed, each failed message
is produced back onto the audit topic with the same ``message_id`` header and
an incremented ``delivery_attempt`` (or onto the dead-letter topic once the
attempt limit is reached), and only then are the batch offsets committed.
If handing failures back fails, the consumer seeks to the start of the batch
so the whole batch is delivered again.
"""

import asyncio
import functools
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import kafka
from kafka import KafkaProducer, TopicPartition
from kafka.errors import KafkaError

from shared.config import IssuerConfig
from shared.errors import IssuerException
from shared.logging import get_logger
from .models import BatchResult, ChannelMessage
from .processor import AuditBatchProcessor

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

MESSAGE_ID_HEADER = "message_id"
DELIVERY_ATTEMPT_HEADER = "delivery_attempt"


def to_channel_message(record: Any) -> ChannelMessage:
    """Wrap a Kafka consumer record."""
    headers: Dict[str, bytes] = dict(record.headers or [])

    message_id = headers.get(MESSAGE_ID_HEADER)
    message_id = message_id.decode('utf-8') if message_id else f"{record.topic}:{record.partition}:{record.offset}"

    try:
        delivery_attempt = int(headers.get(DELIVERY_ATTEMPT_HEADER, b"1"))
    except ValueError:
        delivery_attempt = 1

    value = record.value
    body = value.decode('utf-8', errors='replace') if isinstance(value, bytes) else str(value)

    return ChannelMessage(
        message_id=message_id,
        body=body,
        delivery_attempt=delivery_attempt,
        attributes={
            "topic": record.topic,
            "partition": record.partition,
            "offset": record.offset,
            "key": record.key,
        },
    )


class KafkaAuditBatchConsumer:
    """Drains the audit topic in batches through an AuditBatchProcessor."""

    def __init__(
        self,
        config: IssuerConfig,
        processor: AuditBatchProcessor,
        consumer: Optional[kafka.KafkaConsumer] = None,
        producer: Optional[KafkaProducer] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.bootstrap_servers = config.kafka_bootstrap
        self.group_id = config.audit_consumer_group
        self.topic = config.audit_topic
        self.dead_letter_topic = config.audit_dead_letter_topic
        self.batch_size = config.audit_batch_size
        self.max_delivery_attempts = config.audit_max_delivery_attempts
        self.poll_timeout_ms = config.audit_poll_timeout_ms
        self.send_timeout = config.publish_timeout_seconds

        self.processor = processor
        self.consumer = consumer
        self.producer = producer
        self.metrics = metrics
        self.logger = get_logger("audit.kafka.consumer")
        self.running = False
        self._consumer_task: Optional[asyncio.Task] = None

    async def start(self, start_loop: bool = False):
        """Start the Kafka consumer and the redelivery producer."""
        try:
            if self.consumer is None:
                self.consumer = kafka.KafkaConsumer(
                    bootstrap_servers=self.bootstrap_servers,
                    group_id=self.group_id,
                    auto_offset_reset='earliest',
                    enable_auto_commit=False,
                    max_poll_records=self.batch_size,
                    session_timeout_ms=30000,
                    heartbeat_interval_ms=10000
                )
            if self.producer is None:
                self.producer = KafkaProducer(
                    bootstrap_servers=self.bootstrap_servers,
                    acks='all',
                    retries=3
                )
            # Subscribe to topic
            self.consumer.subscribe([self.topic])

        except Exception as e:
            self.logger.error("Failed to start audit consumer", error=str(e))
            raise IssuerException("KAFKA_CONSUMER_START_FAILED", str(e))

        self.running = True
        if start_loop:
            self._consumer_task = asyncio.create_task(self._consume_loop())
        self.logger.info("Audit consumer started", group_id=self.group_id, topic=self.topic)

    async def stop(self):
        """Stop the consume loop and close Kafka clients."""
        self.running = False
        # Stop consume loop
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass

        # Close Kafka clients
        if self.consumer:
            self.consumer.close()
        if self.producer:
            self.producer.flush()
            self.producer.close()
        self.logger.info("Audit consumer stopped")

    async def poll_once(self) -> Optional[BatchResult]:
        """Poll one batch, process it and settle it with the broker."""
        loop = asyncio.get_running_loop()
        # Poll for messages
        batch = await loop.run_in_executor(
            None,
            functools.partial(self.consumer.poll, timeout_ms=self.poll_timeout_ms, max_records=self.batch_size)
        )
        records = [record for partition_records in (batch or {}).values() for record in partition_records]
        if not records:
            return None

        try:
            # Process messages
            messages = [to_channel_message(record) for record in records]
            result = await self.processor.process_batch(messages)

            if result.has_failures():
                failed_ids = set(result.failed_message_ids)
                try:
                    await self._redeliver([m for m in messages if m.message_id in failed_ids])
                except KafkaError as e:
                    self.logger.error(
                        "Could not hand failed audit messages back, rewinding batch",
                        failed=len(failed_ids),
                        error=str(e)
                    )
                    self._rewind(records)
                    return result

            # Commit only once every message is persisted or handed back
            self.consumer.commit()

        except Exception as e:
            # The fetch position is already past this batch
            self.logger.error("Audit batch not settled, rewinding batch", size=len(records), error=str(e))
            self._rewind(records)
            raise

        return result

    async def _redeliver(self, messages: List[ChannelMessage]):
        """Produce failed messages back to the topic, or to the dead-letter topic."""
        loop = asyncio.get_running_loop()
        pending = []
        for message in messages:
            exhausted = message.delivery_attempt >= self.max_delivery_attempts
            topic = self.dead_letter_topic if exhausted else self.topic
            future = self.producer.send(
                topic,
                value=message.body.encode('utf-8'),
                key=message.attributes.get("key"),
                headers=[
                    (MESSAGE_ID_HEADER, message.message_id.encode('utf-8')),
                    (DELIVERY_ATTEMPT_HEADER, str(message.delivery_attempt + 1).encode('utf-8')),
                ]
            )
            pending.append((message, exhausted, future))

        # Wait for every send to be acknowledged
        for message, exhausted, future in pending:
            await loop.run_in_executor(None, functools.partial(future.get, timeout=self.send_timeout))
            outcome = "dead_lettered" if exhausted else "redelivered"
            if self.metrics:
                self.metrics.increment_counter("audit_messages_redelivered_total", outcome=outcome)
            log = self.logger.error if exhausted else self.logger.warning
            log(
                "Audit message handed back to channel",
                message_id=message.message_id,
                delivery_attempt=message.delivery_attempt,
                outcome=outcome
            )

    def _rewind(self, records: List[Any]):
        """Seek every partition in the batch back to its first offset."""
        # Lowest offset per partition
        first_offsets: Dict[TopicPartition, int] = {}
        for record in records:
            tp = TopicPartition(record.topic, record.partition)
            first_offsets[tp] = min(record.offset, first_offsets.get(tp, record.offset))
        for tp, offset in first_offsets.items():
            self.consumer.seek(tp, offset)

    async def _consume_loop(self):
        """Main consumption loop."""
        while self.running:
            try:
                result = await self.poll_once()
                if result is None:
                    await asyncio.sleep(0)

            except KafkaError as e:
                self.logger.error("Kafka error in consume loop", error=str(e))
                await asyncio.sleep(5)

            except asyncio.CancelledError:
                break

            except Exception as e:
                self.logger.error("Unexpected error in consume loop", error=str(e))
                await asyncio.sleep(1)

    def is_running(self) -> bool:
        """Check if consumer is running."""
        return self.running
