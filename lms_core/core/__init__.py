"""Core infrastructure shared by the enrollment and progress modules.

- context: request/correlation IDs carried into every log line
- logging: structlog configuration
- exceptions: domain error taxonomy
- http_errors: domain error to HTTP status mapping
- database, redis: connection lifecycles

Submodules are imported directly; the schema registry in core.database
depends on the feature modules.
"""
