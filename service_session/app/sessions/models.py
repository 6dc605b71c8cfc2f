"""
Session data models for the Session Service.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """Lifecycle states of a session."""
    CREATED = "created"
    CODE_ISSUED = "code_issued"


class SessionRequest(BaseModel):
    """Inbound session-initiation request."""
    client_id: str = Field(..., min_length=1, description="Relying party client ID")
    redirect_uri: str = Field(..., min_length=1, description="Redirect URI registered by the client")
    state: str = Field(..., min_length=1, description="Client-supplied state token")
    subject: Optional[str] = Field(None, description="Subject the session is for")
    persistent_session_id: Optional[str] = Field(None, description="Persistent session ID")
    client_session_id: Optional[str] = Field(None, description="Client session (journey) ID")
    client_ip_address: Optional[str] = Field(None, description="Caller IP address")


class Session(BaseModel):
    """Server-side record of one relying-party authorization flow."""
    session_id: str
    client_id: str
    redirect_uri: str
    state: str
    subject: Optional[str] = None
    persistent_session_id: Optional[str] = None
    client_session_id: Optional[str] = None
    client_ip_address: Optional[str] = None
    created_date: int = Field(..., description="Epoch milliseconds")
    expiry_date: int = Field(..., description="Epoch milliseconds")
    authorization_code: Optional[str] = None
    authorization_code_expiry_date: Optional[int] = Field(None, description="Epoch milliseconds")
    attempt_count: int = 0

    @property
    def status(self) -> SessionState:
        if self.authorization_code:
            return SessionState.CODE_ISSUED
        return SessionState.CREATED

    def to_storage(self) -> Dict[str, str]:
        """Flatten to a Redis hash mapping; absent fields are not stored."""
        return {
            key: str(value)
            for key, value in self.model_dump(exclude_none=True).items()
        }


class SessionCreatedResponse(BaseModel):
    """Response model for session creation."""
    session_id: str
    state: str
    redirect_uri: str


class SessionSummaryResponse(BaseModel):
    """Response model for session lookups. Never carries the code value."""
    session_id: str
    client_id: str
    redirect_uri: str
    status: SessionState
    created_date: int
    expiry_date: int
    authorization_code_expiry_date: Optional[int] = None
    attempt_count: int

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummaryResponse":
        return cls(
            session_id=session.session_id,
            client_id=session.client_id,
            redirect_uri=session.redirect_uri,
            status=session.status,
            created_date=session.created_date,
            expiry_date=session.expiry_date,
            authorization_code_expiry_date=session.authorization_code_expiry_date,
            attempt_count=session.attempt_count,
        )


class AuthorizationCodeResponse(BaseModel):
    """Response model for authorization code issuance."""
    authorization_code: str
    state: str
    redirect_uri: str
