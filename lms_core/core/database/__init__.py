"""Cassandra connection and schema setup."""

from lms_core.core.database.async_cassandra import (
    SCHEMA_MODULES,
    AsyncCassandraConnection,
    init_async_cassandra,
    shutdown_async_cassandra,
)


__all__ = [
    "SCHEMA_MODULES",
    "AsyncCassandraConnection",
    "init_async_cassandra",
    "shutdown_async_cassandra",
]
