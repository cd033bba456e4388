"""Supported SQL dialects and the logical-to-native type mapping.

All dialect-specific type knowledge lives here. Every lookup table is
keyed by ``Dialect`` and checked for completeness at import time, so a
new dialect member has to be filled in everywhere before anything runs.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy.dialects import mssql, mysql, postgresql, sqlite

from schemakit.exceptions import UnsupportedDialectError
from schemakit.fields import Field, LogicalType

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect as SADialect


class Dialect(str, Enum):
    """A target database's SQL variant and type system."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    MSSQL = "mssql"

    @classmethod
    def parse(cls, name: str | Dialect) -> Dialect:
        """Resolve a dialect from its name or a common alias.

        Driver suffixes are ignored, so ``"sqlite+aiosqlite"`` is SQLite.

        Raises:
            UnsupportedDialectError: If the name is not a supported dialect
        """
        if isinstance(name, Dialect):
            return name
        key = name.strip().lower().split("+", 1)[0]
        try:
            return _ALIASES[key]
        except KeyError:
            supported = ", ".join(d.value for d in cls)
            raise UnsupportedDialectError(
                f"Unsupported dialect {name!r} (supported: {supported})"
            ) from None

    def sqlalchemy_dialect(self) -> SADialect:
        """Get the SQLAlchemy dialect used to compile DDL for this dialect."""
        return _SQLALCHEMY_DIALECTS[self]()


_ALIASES: dict[str, Dialect] = {
    "postgresql": Dialect.POSTGRESQL,
    "postgres": Dialect.POSTGRESQL,
    "pg": Dialect.POSTGRESQL,
    "mysql": Dialect.MYSQL,
    "mariadb": Dialect.MYSQL,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
    "mssql": Dialect.MSSQL,
    "sqlserver": Dialect.MSSQL,
}

_SQLALCHEMY_DIALECTS: dict[Dialect, Callable[[], SADialect]] = {
    Dialect.POSTGRESQL: postgresql.dialect,
    Dialect.MYSQL: mysql.dialect,
    Dialect.SQLITE: sqlite.dialect,
    Dialect.MSSQL: mssql.dialect,
}

# Type of the synthetic ``id`` primary key (and of string columns that reference one)
_ID_TYPES: dict[Dialect, str] = {
    Dialect.POSTGRESQL: "text",
    Dialect.MYSQL: "varchar(36)",
    Dialect.SQLITE: "text",
    Dialect.MSSQL: "varchar(36)",
}

_INDEXED_STRING_TYPES: dict[Dialect, str] = {
    Dialect.POSTGRESQL: "text",
    Dialect.MYSQL: "varchar(255)",
    Dialect.SQLITE: "text",
    Dialect.MSSQL: "varchar(255)",
}

# Scalar logical types; string, number and array columns are resolved below
_NATIVE_TYPES: dict[LogicalType, dict[Dialect, str]] = {
    LogicalType.STRING: {
        Dialect.POSTGRESQL: "text",
        Dialect.MYSQL: "text",
        Dialect.SQLITE: "text",
        Dialect.MSSQL: "text",
    },
    LogicalType.BOOLEAN: {
        Dialect.POSTGRESQL: "boolean",
        Dialect.MYSQL: "boolean",
        Dialect.SQLITE: "integer",
        Dialect.MSSQL: "bit",
    },
    LogicalType.DATE: {
        Dialect.POSTGRESQL: "timestamp",
        Dialect.MYSQL: "datetime",
        Dialect.SQLITE: "date",
        Dialect.MSSQL: "datetime",
    },
    LogicalType.TIMEZONE: {
        Dialect.POSTGRESQL: "varchar(50)",
        Dialect.MYSQL: "varchar(50)",
        Dialect.SQLITE: "text",
        Dialect.MSSQL: "nvarchar(50)",
    },
    LogicalType.JSON: {
        Dialect.POSTGRESQL: "jsonb",
        Dialect.MYSQL: "json",
        Dialect.SQLITE: "text",
        Dialect.MSSQL: "nvarchar(max)",
    },
}

# Spellings a live database may report for each logical type
_ACCEPTED_TYPES: dict[Dialect, dict[LogicalType, frozenset[str]]] = {
    Dialect.POSTGRESQL: {
        LogicalType.STRING: frozenset({"character varying", "varchar", "text"}),
        LogicalType.NUMBER: frozenset({
            "int2", "int4", "int8", "integer", "bigint", "smallint",
            "numeric", "real", "double precision",
        }),
        LogicalType.BOOLEAN: frozenset({"bool", "boolean"}),
        LogicalType.DATE: frozenset({
            "timestamp", "timestamp without time zone", "timestamp with time zone",
            "timestamptz", "date",
        }),
        LogicalType.TIMEZONE: frozenset({"text", "character varying", "varchar"}),
        LogicalType.JSON: frozenset({"json", "jsonb"}),
    },
    Dialect.MYSQL: {
        LogicalType.STRING: frozenset({
            "varchar(255)", "varchar(36)", "varchar", "text", "mediumtext", "longtext",
        }),
        LogicalType.NUMBER: frozenset({
            "integer", "int", "bigint", "smallint", "decimal", "float", "double",
        }),
        LogicalType.BOOLEAN: frozenset({"boolean", "bool", "tinyint", "tinyint(1)"}),
        LogicalType.DATE: frozenset({"timestamp", "datetime", "date"}),
        LogicalType.TIMEZONE: frozenset({"varchar(50)", "varchar"}),
        LogicalType.JSON: frozenset({"json", "longtext"}),
    },
    Dialect.SQLITE: {
        LogicalType.STRING: frozenset({"text", "varchar"}),
        LogicalType.NUMBER: frozenset({"integer", "bigint", "real"}),
        LogicalType.BOOLEAN: frozenset({"integer", "boolean"}),
        LogicalType.DATE: frozenset({"date", "datetime", "timestamp", "integer"}),
        LogicalType.TIMEZONE: frozenset({"text", "varchar"}),
        LogicalType.JSON: frozenset({"text", "json"}),
    },
    Dialect.MSSQL: {
        LogicalType.STRING: frozenset({
            "text", "varchar", "nvarchar", "varchar(255)", "varchar(36)",
        }),
        LogicalType.NUMBER: frozenset({
            "int", "integer", "bigint", "smallint", "decimal", "float", "float(53)", "float(24)",
        }),
        LogicalType.BOOLEAN: frozenset({"bit", "smallint"}),
        LogicalType.DATE: frozenset({"datetime", "datetime2", "date"}),
        LogicalType.TIMEZONE: frozenset({"nvarchar(50)", "nvarchar", "varchar", "text"}),
        LogicalType.JSON: frozenset({"nvarchar(max)", "nvarchar"}),
    },
}

_TYPE_ARGS = re.compile(r"\s*\(.*\)$")


def _check_complete(name: str, table: Mapping[Dialect, object]) -> None:
    missing = [d.value for d in Dialect if d not in table]
    if missing:
        raise RuntimeError(f"{name} has no entry for dialect(s): {', '.join(missing)}")


for _name, _table in (
    ("_ALIASES", {d: d for d in _ALIASES.values()}),
    ("_SQLALCHEMY_DIALECTS", _SQLALCHEMY_DIALECTS),
    ("_ID_TYPES", _ID_TYPES),
    ("_INDEXED_STRING_TYPES", _INDEXED_STRING_TYPES),
    ("_ACCEPTED_TYPES", _ACCEPTED_TYPES),
    *((f"_NATIVE_TYPES[{t.value}]", m) for t, m in _NATIVE_TYPES.items()),
):
    _check_complete(_name, _table)


def primary_key_type(dialect: Dialect) -> str:
    """Get the native type of the synthetic ``id`` primary key."""
    return _ID_TYPES[dialect]


def resolve_column_type(field: Field, dialect: Dialect, *, indexed: bool = False) -> str:
    """Resolve a field's dialect-native column type.

    Strings that carry an index or a unique constraint get a bounded type,
    since MySQL and SQL Server cannot index unbounded text.

    Args:
        field: Field to resolve
        dialect: Target dialect
        indexed: The column is covered by an index or unique constraint
            declared on its table

    Returns:
        Native type spelling, e.g. ``"jsonb"`` or ``"varchar(36)"``

    Example:
        >>> resolve_column_type(Field(LogicalType.JSON), Dialect.POSTGRESQL)
        'jsonb'
        >>> resolve_column_type(Field(LogicalType.NUMBER, bigint=True), Dialect.MYSQL)
        'bigint'
    """
    logical_type = field.type

    if logical_type is LogicalType.STRING:
        if field.references is not None:
            return _ID_TYPES[dialect]
        if field.unique or field.indexed or indexed:
            return _INDEXED_STRING_TYPES[dialect]
        return _NATIVE_TYPES[LogicalType.STRING][dialect]

    if logical_type is LogicalType.NUMBER:
        return "bigint" if field.bigint else "integer"

    # Arrays are always serialized JSON, never native array columns
    if logical_type.is_array:
        return _NATIVE_TYPES[LogicalType.JSON][dialect]

    return _NATIVE_TYPES[logical_type][dialect]


def types_are_equivalent(live_type: str, field: Field, dialect: Dialect) -> bool:
    """Check whether a live column type is compatible with a field.

    This is a syntactic check only: it decides between "close enough,
    leave alone" and "different, warn". The live spelling is compared
    case-insensitively, first verbatim and then without its length or
    precision arguments.

    Args:
        live_type: Column type as reported by introspection
        field: Expected field
        dialect: Dialect the live database speaks

    Returns:
        True if the types are equivalent
    """
    spelling = live_type.strip().lower()
    base = _TYPE_ARGS.sub("", spelling)
    accepted = _ACCEPTED_TYPES[dialect]

    if field.type.is_array:
        return "json" in spelling or spelling in accepted[LogicalType.JSON] or base in accepted[LogicalType.JSON]

    if field.type is LogicalType.JSON and "json" in spelling:
        return True

    candidates = accepted[field.type]
    return spelling in candidates or base in candidates
