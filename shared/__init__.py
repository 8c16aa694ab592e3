"""
Shared utilities for the Recipe Access Gateway.

This package aggregates common building blocks consumed by the gateway:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton

Do not import from service packages into shared/.
"""
