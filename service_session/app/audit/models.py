"""
Audit event models emitted by the Session Service.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Known audit event types. The published name is ``<prefix>_<type>``."""
    START = "START"
    REQUEST_RECEIVED = "REQUEST_RECEIVED"
    REQUEST_SENT = "REQUEST_SENT"
    AUTH_CODE_ISSUED = "AUTH_CODE_ISSUED"
    VC_ISSUED = "VC_ISSUED"
    THIRD_PARTY_REQUEST_ENDED = "THIRD_PARTY_REQUEST_ENDED"
    END = "END"


class AuditEventSession(BaseModel):
    """The slice of a session an audit event needs."""
    session_id: Optional[str] = None
    subject: Optional[str] = None
    persistent_session_id: Optional[str] = None
    client_session_id: Optional[str] = None


class AuditEventContext(BaseModel):
    """Request context an audit event is built from."""
    session: Optional[AuditEventSession] = None
    client_ip_address: Optional[str] = None
    restricted: Optional[Dict[str, Any]] = None
    extensions: Optional[Dict[str, Any]] = None


class AuditEventUser(BaseModel):
    """User sub-object. Fields whose source value is absent stay None and are not serialized."""
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    session_id: Optional[str] = None
    persistent_session_id: Optional[str] = None
    govuk_signin_journey_id: Optional[str] = None


class AuditEvent(BaseModel):
    """Canonical audit record shape."""
    component_id: str
    event_name: str
    timestamp: int = Field(..., description="Epoch milliseconds at build time")
    user: AuditEventUser = Field(default_factory=AuditEventUser)
    restricted: Optional[Dict[str, Any]] = None
    extensions: Optional[Dict[str, Any]] = None

    def to_message(self) -> Dict[str, Any]:
        """Serialize, emitting only present fields."""
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_message())


EventTypeLike = Union[AuditEventType, str]
