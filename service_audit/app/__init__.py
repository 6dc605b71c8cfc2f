"""
Audit Consumer Service package.

Drains the audit topic in batches and records each audit event as an
individually addressable, time-ordered row. Key modules include:

- app.main: FastAPI app (health, metrics, per-session audit listing)
- app.consumer: Transport-neutral batch processor and the Kafka adapter
- app.persistence: PostgreSQL audit record store
"""
