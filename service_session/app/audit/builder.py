"""
Audit event builder.

Turns a domain action plus request context into the canonical ``AuditEvent``
shape. The only I/O is the injected audit configuration lookup, which is
resolved on first use and then cached for the lifetime of the builder.
"""

import time
from typing import Callable, Optional, Union

from shared.config import AuditConfig
from shared.errors import ValidationError
from shared.logging import get_logger
from ..sessions.models import Session
from .models import (
    AuditEvent,
    AuditEventContext,
    AuditEventSession,
    AuditEventUser,
    EventTypeLike,
)


class AuditEventBuilder:
    """Builds audit events for the configured issuer."""

    def __init__(self, get_audit_config: Callable[[], AuditConfig], clock: Callable[[], float] = time.time):
        self._get_audit_config = get_audit_config
        self._audit_config: Optional[AuditConfig] = None
        self.clock = clock
        self.logger = get_logger("session.audit.builder")

    @property
    def audit_config(self) -> AuditConfig:
        if self._audit_config is None:
            self._audit_config = self._get_audit_config()
        return self._audit_config

    def build(self, event_type: Optional[EventTypeLike], context: AuditEventContext) -> AuditEvent:
        """Build an audit event; raises ValidationError when the type is missing."""
        event_type_name = _event_type_name(event_type)
        if not event_type_name:
            raise ValidationError("Audit event type not specified")

        config = self.audit_config
        return AuditEvent(
            component_id=config.issuer,
            event_name=f"{config.event_name_prefix}_{event_type_name}",
            timestamp=int(self.clock() * 1000),
            user=build_user(context.session, context.client_ip_address),
            restricted=context.restricted,
            extensions=context.extensions,
        )


def build_user(session: Optional[AuditEventSession], client_ip_address: Optional[str]) -> AuditEventUser:
    """Map a session slice and IP to the audit ``user`` object."""
    if session is None:
        return AuditEventUser(ip_address=client_ip_address)

    return AuditEventUser(
        user_id=session.subject,
        ip_address=client_ip_address,
        session_id=session.session_id,
        persistent_session_id=session.persistent_session_id,
        govuk_signin_journey_id=session.client_session_id,
    )


def context_from_session(
    session: Union[Session, AuditEventSession],
    client_ip_address: Optional[str] = None,
    **kwargs,
) -> AuditEventContext:
    """Build an event context from a stored session."""
    return AuditEventContext(
        session=AuditEventSession(
            session_id=session.session_id,
            subject=session.subject,
            persistent_session_id=session.persistent_session_id,
            client_session_id=session.client_session_id,
        ),
        client_ip_address=client_ip_address,
        **kwargs,
    )


def _event_type_name(event_type: Optional[EventTypeLike]) -> Optional[str]:
    if event_type is None:
        return None
    name = getattr(event_type, "value", event_type)
    return name.strip() if isinstance(name, str) else None
