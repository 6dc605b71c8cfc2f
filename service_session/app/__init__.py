"""
Session Service package.

Owns the relying-party session lifecycle and emits audit events for every
significant step. Key modules include:

- app.main: FastAPI app and HTTP endpoints
- app.sessions: Session models and the Redis-backed session store
- app.audit: Audit event models, builder and Kafka publisher
"""
