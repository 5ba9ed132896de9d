"""
Shared utilities for the Access Permissions engine.

This package aggregates common building blocks consumed by the engine:

- config: Base configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- test_helpers: Permission data factories for tests

Do not import from service_* packages into shared/, test_helpers excepted.
"""
