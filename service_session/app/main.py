"""
Session service for the credential issuer.
"""

from typing import Optional

from fastapi import Header, Request

from shared.base_service import BaseService
from shared.config import IssuerConfig
from shared.errors import ValidationError
from shared.logging import set_session_context

from .audit.builder import AuditEventBuilder, context_from_session
from .audit.models import AuditEventType
from .audit.publisher import AuditEventPublisher
from .sessions.models import (
    AuthorizationCodeResponse,
    SessionCreatedResponse,
    SessionRequest,
    SessionSummaryResponse,
)
from .sessions.store import SessionStore


def client_ip_address(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, falling back to the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class SessionService(BaseService):
    """Session service implementation."""

    def __init__(
        self,
        config: Optional[IssuerConfig] = None,
        store: Optional[SessionStore] = None,
        publisher: Optional[AuditEventPublisher] = None,
    ):
        super().__init__("session", 8020, config)

        self.store = store or SessionStore(self.config)
        self.publisher = publisher or AuditEventPublisher(
            self.config,
            AuditEventBuilder(self.config.audit_config),
            metrics=self.metrics,
        )

        self._setup_session_routes()
        self.app.state.session_service = self

    def _setup_session_routes(self):
        """Set up session-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "session",
                "message": "Credential Issuer - Session Service",
                "version": "1.0.0",
                "capabilities": ["sessions", "authorization_codes", "audit_events"]
            }

        @self.app.post("/session", status_code=201, response_model=SessionCreatedResponse)
        async def create_session(body: SessionRequest, request: Request):
            """Create a session and emit the START audit event."""
            if not body.client_ip_address:
                body = body.model_copy(update={"client_ip_address": client_ip_address(request)})

            session_id = await self.store.create(body)
            set_session_context(session_id=session_id, client_id=body.client_id)
            self.metrics.increment_counter("sessions_created_total", client_id=body.client_id)

            session = await self.store.get(session_id)
            await self.publisher.publish(
                AuditEventType.START,
                context_from_session(session, body.client_ip_address)
            )

            return SessionCreatedResponse(
                session_id=session_id,
                state=body.state,
                redirect_uri=body.redirect_uri
            )

        @self.app.get("/session/{session_id}", response_model=SessionSummaryResponse)
        async def get_session(session_id: str):
            """Fetch a session summary."""
            session = await self.store.get(session_id)
            set_session_context(session_id=session.session_id, client_id=session.client_id)
            return SessionSummaryResponse.from_session(session)

        @self.app.post("/authorization-code", response_model=AuthorizationCodeResponse)
        async def issue_authorization_code(
            request: Request,
            session_id: Optional[str] = Header(None, alias="session-id"),
        ):
            """Issue the session's authorization code and emit AUTH_CODE_ISSUED."""
            if not session_id:
                raise ValidationError("Invalid request: Missing session-id header")

            session = await self.store.get(session_id)
            set_session_context(session_id=session.session_id, client_id=session.client_id)

            # Only the call that claimed the code emits the event
            session, issued = await self.store.issue_authorization_code(session)
            self.metrics.increment_counter(
                "authorization_codes_issued_total",
                outcome="issued" if issued else "existing"
            )

            if issued:
                await self.publisher.publish(
                    AuditEventType.AUTH_CODE_ISSUED,
                    context_from_session(session, client_ip_address(request))
                )

            return AuthorizationCodeResponse(
                authorization_code=session.authorization_code,
                state=session.state,
                redirect_uri=session.redirect_uri
            )

    async def _check_dependencies(self):
        """Check session service dependencies."""
        dependencies = {}

        try:
            dependencies["redis"] = "ok" if await self.store.health_check() else "error"
        except Exception:
            dependencies["redis"] = "error"

        dependencies["kafka"] = "ok" if self.publisher.producer is not None else "error"
        return dependencies

    async def start(self):
        """Start session service components."""
        await self.store.start()
        await self.publisher.start()
        self.logger.info("Session service components started")

    async def stop(self):
        """Stop session service components."""
        await self.publisher.stop()
        await self.store.stop()
        self.logger.info("Session service components stopped")


def create_app():
    """Create session service application."""
    service = SessionService()
    return service.app


if __name__ == "__main__":
    service = SessionService()
    service.run()
