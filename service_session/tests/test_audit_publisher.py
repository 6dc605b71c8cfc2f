"""
Unit tests for AuditEventPublisher.
"""

import json
from unittest.mock import MagicMock

import pytest
from kafka.errors import KafkaTimeoutError

from service_session.app.audit.builder import AuditEventBuilder
from service_session.app.audit.models import AuditEventContext, AuditEventSession, AuditEventType
from service_session.app.audit.publisher import (
    DELIVERY_ATTEMPT_HEADER,
    MESSAGE_ID_HEADER,
    AuditEventPublisher,
)
from shared.errors import PublishError, ValidationError
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, TestDataFactory


class TestAuditEventPublisher:
    """Test cases for AuditEventPublisher."""

    @pytest.fixture
    def config(self):
        return TestDataFactory.create_config()

    @pytest.fixture
    def producer(self):
        producer = MagicMock()
        future = MagicMock()
        future.get.return_value = MagicMock(partition=0, offset=42)
        producer.send.return_value = future
        return producer

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("session")

    @pytest.fixture
    def publisher(self, config, producer, metrics):
        builder = AuditEventBuilder(config.audit_config, clock=FakeClock())
        return AuditEventPublisher(config, builder, producer=producer, metrics=metrics)

    @pytest.fixture
    def context(self):
        return AuditEventContext(
            session=AuditEventSession(session_id="sess-1", subject="urn:fdc:subject:1"),
            client_ip_address="192.0.2.10",
        )

    @pytest.mark.asyncio
    async def test_publish_sends_event_to_audit_topic(self, publisher, producer, context):
        """Test the produced record."""
        event = await publisher.publish(AuditEventType.START, context)

        producer.send.assert_called_once()
        kwargs = producer.send.call_args.kwargs
        assert kwargs["topic"] == "issuer.audit.events.test"
        assert kwargs["key"] == "sess-1"
        assert json.loads(kwargs["value"]) == event.to_message()
        assert event.event_name == "IPV_TEST_CRI_START"

        headers = dict(kwargs["headers"])
        assert headers[DELIVERY_ATTEMPT_HEADER] == b"1"
        assert headers[MESSAGE_ID_HEADER]

    @pytest.mark.asyncio
    async def test_publish_uses_fresh_message_id_per_event(self, publisher, producer, context):
        """Test message ids are unique per published event."""
        await publisher.publish(AuditEventType.START, context)
        await publisher.publish(AuditEventType.START, context)

        ids = [dict(call.kwargs["headers"])[MESSAGE_ID_HEADER] for call in producer.send.call_args_list]
        assert len(set(ids)) == 2

    @pytest.mark.asyncio
    async def test_publish_waits_for_broker_acknowledgement(self, publisher, producer, context, config):
        """Test that publish blocks on the send future."""
        await publisher.publish(AuditEventType.START, context)
        producer.send.return_value.get.assert_called_once_with(timeout=config.publish_timeout_seconds)

    @pytest.mark.asyncio
    async def test_publish_kafka_error(self, publisher, producer, context, metrics):
        """Test that a channel failure surfaces as PublishError without retry."""
        producer.send.return_value.get.side_effect = KafkaTimeoutError("no ack")

        with pytest.raises(PublishError) as exc_info:
            await publisher.publish(AuditEventType.AUTH_CODE_ISSUED, context)

        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {"event_name": "IPV_TEST_CRI_AUTH_CODE_ISSUED"}
        assert producer.send.call_count == 1
        counter = metrics.get_metric("audit_events_published_total")
        assert counter.labels(event_name="IPV_TEST_CRI_AUTH_CODE_ISSUED", status="error")._value.get() == 1

    @pytest.mark.asyncio
    async def test_publish_records_success_metric(self, publisher, context, metrics):
        """Test published event counter."""
        await publisher.publish(AuditEventType.START, context)

        counter = metrics.get_metric("audit_events_published_total")
        assert counter.labels(event_name="IPV_TEST_CRI_START", status="ok")._value.get() == 1

    @pytest.mark.asyncio
    async def test_publish_without_event_type(self, publisher, producer, context):
        """Test that build errors propagate and nothing is sent."""
        with pytest.raises(ValidationError):
            await publisher.publish(None, context)
        producer.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_publish_before_start(self, config, context):
        """Test publishing without a producer."""
        publisher = AuditEventPublisher(config, AuditEventBuilder(config.audit_config))

        with pytest.raises(PublishError):
            await publisher.publish(AuditEventType.START, context)

    @pytest.mark.asyncio
    async def test_start_keeps_injected_producer(self, publisher, producer):
        """Test that start does not replace an injected producer."""
        await publisher.start()
        assert publisher.producer is producer

    @pytest.mark.asyncio
    async def test_stop_flushes_and_closes(self, publisher, producer):
        """Test stop."""
        await publisher.stop()
        producer.flush.assert_called_once()
        producer.close.assert_called_once()
