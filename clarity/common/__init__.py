"""Common utilities shared across the package.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.

Import pattern:
- from clarity.common.config import VectorStoreConfig
- from clarity.common.logging import configure_logging
"""
