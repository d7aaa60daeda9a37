"""
Shared utilities for the Work Item Automation service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/work item correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for calls to the work tracking system
- circuit_breaker: Resilient external call protection
- base_service: FastAPI application scaffolding
- test_helpers: Work item and service hook factories for tests
"""
