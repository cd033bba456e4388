"""Exceptions raised by SchemaKit."""

from __future__ import annotations


class SchemaKitError(Exception):
    """Base class for all SchemaKit errors."""


class SchemaValidationError(SchemaKitError, ValueError):
    """A field or table definition is malformed."""

    def __init__(self, message: str, *, table: str | None = None, field: str | None = None) -> None:
        self.message = message
        self.table = table
        self.field = field
        location = ".".join(part for part in (table, field) if part)
        super().__init__(f"{location}: {message}" if location else message)


class ReservedColumnError(SchemaValidationError):
    """A table declares a column that collides with the synthetic primary key."""


class UnsupportedDialectError(SchemaKitError, ValueError):
    """The requested SQL dialect is not one SchemaKit knows how to target."""


class ConnectionUnavailableError(SchemaKitError):
    """No usable database connection was supplied for introspection or DDL."""
