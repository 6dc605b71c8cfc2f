"""
Audit event production package.

- models: AuditEvent and its user/context sub-models
- builder: Pure construction of events from session context
- publisher: Hands built events to the Kafka audit topic
"""

from .builder import AuditEventBuilder
from .models import AuditEvent, AuditEventContext, AuditEventType
from .publisher import AuditEventPublisher

__all__ = ["AuditEvent", "AuditEventBuilder", "AuditEventContext", "AuditEventPublisher", "AuditEventType"]
