"""
Kafka publisher for audit events.
"""

import asyncio
import functools
import uuid
from typing import Optional, TYPE_CHECKING

from kafka import KafkaProducer
from kafka.errors import KafkaError

from shared.config import IssuerConfig
from shared.errors import PublishError
from shared.logging import get_logger
from .builder import AuditEventBuilder
from .models import AuditEvent, AuditEventContext, EventTypeLike

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

MESSAGE_ID_HEADER = "message_id"
DELIVERY_ATTEMPT_HEADER = "delivery_attempt"


class AuditEventPublisher:
    """Builds audit events and hands them to the audit topic. Never retries."""

    def __init__(
        self,
        config: IssuerConfig,
        builder: AuditEventBuilder,
        producer: Optional[KafkaProducer] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.bootstrap_servers = config.kafka_bootstrap
        self.topic = config.audit_topic
        self.send_timeout = config.publish_timeout_seconds
        self.builder = builder
        self.producer = producer
        self.metrics = metrics
        self.logger = get_logger("session.audit.publisher")

    async def start(self):
        """Start the Kafka producer unless one was injected."""
        if self.producer is not None:
            return
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda x: x.encode('utf-8'),
                key_serializer=lambda x: x.encode('utf-8') if x else None,
                acks='all',
                retries=0,
                linger_ms=10,
                compression_type='gzip'
            )
            self.logger.info("Audit publisher started", topic=self.topic)

        except Exception as e:
            self.logger.error("Failed to start audit publisher", error=str(e))
            raise PublishError(f"Could not start Kafka producer: {e}")

    async def stop(self):
        """Flush and close the Kafka producer."""
        if self.producer:
            self.producer.flush()
            self.producer.close()
            self.logger.info("Audit publisher stopped")

    async def publish(self, event_type: EventTypeLike, context: AuditEventContext) -> AuditEvent:
        """Build the event and send it to the audit topic."""
        event = self.builder.build(event_type, context)
        await self._send(event)
        return event

    async def _send(self, event: AuditEvent):
        if not self.producer:
            raise PublishError("Audit publisher not started")

        message_id = str(uuid.uuid4())
        try:
            future = self.producer.send(
                topic=self.topic,
                value=event.to_json(),
                key=event.user.session_id,
                headers=[
                    (MESSAGE_ID_HEADER, message_id.encode('utf-8')),
                    (DELIVERY_ATTEMPT_HEADER, b"1"),
                ]
            )
            loop = asyncio.get_running_loop()
            record_metadata = await loop.run_in_executor(
                None, functools.partial(future.get, timeout=self.send_timeout)
            )

        except KafkaError as e:
            self._record(event, "error")
            self.logger.error(
                "Kafka error publishing audit event",
                event_name=event.event_name,
                session_id=event.user.session_id,
                error=str(e)
            )
            raise PublishError(f"Could not publish {event.event_name}: {e}", {"event_name": event.event_name})

        self._record(event, "ok")
        self.logger.info(
            "Audit event published",
            event_name=event.event_name,
            session_id=event.user.session_id,
            message_id=message_id,
            partition=getattr(record_metadata, "partition", None),
            offset=getattr(record_metadata, "offset", None)
        )

    def _record(self, event: AuditEvent, status: str):
        if self.metrics:
            self.metrics.increment_counter(
                "audit_events_published_total", event_name=event.event_name, status=status
            )
