"""
Shared utilities for the credential issuer services.

This package aggregates common building blocks consumed by all services:

- config: Issuer configuration via pydantic-settings, resolved once per process
- logging: Structured logging with request/session correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service skeleton (health, metrics, error handlers)
- test_helpers: In-memory fakes and factories for tests

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
