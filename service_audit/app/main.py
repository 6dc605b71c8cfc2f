"""
Audit consumer service for the credential issuer.
"""

from typing import Optional

from shared.base_service import BaseService
from shared.config import IssuerConfig
from shared.logging import set_session_context

from .consumer.kafka_runner import KafkaAuditBatchConsumer
from .consumer.processor import AuditBatchProcessor
from .persistence.postgres import PostgresAuditRecordStore


class AuditConsumerService(BaseService):
    """Audit consumer service implementation."""

    def __init__(
        self,
        config: Optional[IssuerConfig] = None,
        store: Optional[PostgresAuditRecordStore] = None,
        consumer: Optional[KafkaAuditBatchConsumer] = None,
    ):
        super().__init__("audit", 8021, config)

        self.store = store or PostgresAuditRecordStore(self.config)
        self.processor = AuditBatchProcessor.from_config(self.config, self.store, metrics=self.metrics)
        self.consumer = consumer or KafkaAuditBatchConsumer(
            self.config,
            self.processor,
            metrics=self.metrics,
        )

        self._setup_audit_routes()
        self.app.state.audit_service = self

    def _setup_audit_routes(self):
        """Set up audit-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "audit",
                "message": "Credential Issuer - Audit Consumer Service",
                "version": "1.0.0",
                "capabilities": ["kafka", "partial_batch_failure", "persistence"],
                "topic": self.config.audit_topic
            }

        @self.app.get("/sessions/{session_id}/audit-events")
        async def list_session_events(session_id: str):
            """List the persisted audit records of a session, ordered by sort key."""
            set_session_context(session_id=session_id)
            records = await self.store.query_session_events(session_id)
            return {
                "session_id": session_id,
                "events": records,
                "total": len(records)
            }

    async def _check_dependencies(self):
        """Check audit service dependencies."""
        dependencies = {}

        try:
            dependencies["kafka"] = "ok" if self.consumer.is_running() else "error"
        except Exception:
            dependencies["kafka"] = "error"

        try:
            dependencies["postgres"] = "ok" if await self.store.health_check() else "error"
        except Exception:
            dependencies["postgres"] = "error"

        return dependencies

    async def start(self):
        """Start audit service components."""
        await self.store.start()
        await self.consumer.start(start_loop=True)
        self.logger.info("Audit service components started")

    async def stop(self):
        """Stop audit service components."""
        await self.consumer.stop()
        await self.store.stop()
        self.logger.info("Audit service components stopped")


def create_app():
    """Create audit service application."""
    service = AuditConsumerService()
    return service.app


if __name__ == "__main__":
    service = AuditConsumerService()
    service.run()
