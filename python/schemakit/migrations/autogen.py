"""Schema diffing against a live database.

This module compares a canonical schema against the tables a database
actually has and works out what is missing. It only ever adds: tables
and columns absent from the database are planned, columns whose type
drifted are reported, and nothing is dropped or retyped.
"""

from __future__ import annotations

import logging
import math
from bisect import insort
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

import sqlalchemy as sa
from sqlalchemy.exc import CompileError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from schemakit.dialects import Dialect, types_are_equivalent
from schemakit.exceptions import ConnectionUnavailableError, UnsupportedDialectError
from schemakit.fields import Field
from schemakit.migrations.operations import MigrationPlan, build_plan, creation_order
from schemakit.schema import CanonicalSchema, IndexDefinition, TableDefinition

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.types import TypeEngine

logger = logging.getLogger(__name__)

Bind = Union[AsyncEngine, AsyncConnection]


@dataclass
class ColumnMetadata:
    """An existing column as reported by introspection."""

    name: str
    data_type: str
    nullable: bool = True


@dataclass
class TableMetadata:
    """An existing table as reported by introspection."""

    name: str
    columns: dict[str, ColumnMetadata] = field(default_factory=dict)

    @classmethod
    def from_types(cls, name: str, types: Mapping[str, str]) -> TableMetadata:
        """Build table metadata from a column-name to type-name mapping.

        Example:
            >>> TableMetadata.from_types("user", {"id": "text", "email": "text"})
        """
        return cls(name, {col: ColumnMetadata(col, data_type) for col, data_type in types.items()})


@dataclass
class TableToCreate:
    """A schema table with no live counterpart."""

    table: str
    fields: dict[str, Field]
    order: float = math.inf
    unique_constraints: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()


@dataclass
class ColumnsToAdd:
    """Fields of an existing table that have no live column yet."""

    table: str
    fields: dict[str, Field]
    order: float = math.inf
    indexes: tuple[IndexDefinition, ...] = ()


@dataclass
class SchemaDiff:
    """What has to be created to bring a database up to date."""

    to_create: list[TableToCreate] = field(default_factory=list)
    to_add: list[ColumnsToAdd] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_add


def _order_key(item: TableToCreate | ColumnsToAdd) -> tuple[float, str]:
    return (item.order, item.table)


def _is_field_bag(fields: Any) -> bool:
    return isinstance(fields, Mapping) and all(isinstance(f, Field) for f in fields.values())


def diff(
    schema: CanonicalSchema,
    live: Iterable[TableMetadata] | Mapping[str, TableMetadata],
    dialect: Dialect | str,
) -> SchemaDiff:
    """Compare a canonical schema with live database metadata.

    Args:
        schema: Assembled schema
        live: Introspected tables
        dialect: Dialect of the live database, used for type comparison

    Returns:
        SchemaDiff with tables to create and columns to add, each ordered
        by ``(order, table name)``; a table to create follows the tables it
        references within its order
    """
    dialect = Dialect.parse(dialect)
    live_tables = dict(live) if isinstance(live, Mapping) else {t.name: t for t in live}
    result = SchemaDiff()

    for table_name, table in schema.items():
        if not _is_field_bag(table.fields):
            logger.error("Table %s has a malformed field definition; skipping it", table_name)
            continue

        live_table = live_tables.get(table_name)
        if live_table is None:
            insort(
                result.to_create,
                TableToCreate(
                    table=table_name,
                    fields=dict(table.fields),
                    order=table.order,
                    unique_constraints=tuple(table.unique_constraints),
                    indexes=tuple(table.all_indexes()),
                ),
                key=_order_key,
            )
            continue

        missing = _missing_columns(table_name, table, live_table, dialect)
        if missing is not None:
            insort(result.to_add, missing, key=_order_key)

    result.to_create = creation_order(result.to_create)
    return result


def _missing_columns(
    table_name: str,
    table: TableDefinition,
    live_table: TableMetadata,
    dialect: Dialect,
) -> ColumnsToAdd | None:
    to_add: dict[str, Field] = {}

    for column_name, table_field in table.fields.items():
        column = live_table.columns.get(column_name)
        if column is None:
            to_add[column_name] = table_field
            continue

        if types_are_equivalent(column.data_type, table_field, dialect):
            continue

        # Column types are never altered, to avoid data loss
        logger.warning(
            "Field %s in table %s has a different type in the database. Expected %s but got %s.",
            column_name,
            table_name,
            table_field.type.value,
            column.data_type,
        )

    if not to_add:
        return None

    added = set(to_add)
    indexes = [idx for idx in table.all_indexes() if set(idx.columns) <= added]
    indexes.extend(
        IndexDefinition(tuple(cols), unique=True)
        for cols in table.unique_constraints
        if set(cols) <= added
    )
    return ColumnsToAdd(table=table_name, fields=to_add, order=table.order, indexes=tuple(indexes))


def _type_name(type_: TypeEngine, dialect: sa.engine.Dialect) -> str:
    try:
        return type_.compile(dialect=dialect)
    except CompileError:
        # Reflection yields NullType for declared types the dialect doesn't know
        logger.debug("Could not render reflected type %r", type_)
        return type(type_).__name__


def _inspect_tables(sync_conn: Connection, db_schema: str | None) -> list[TableMetadata]:
    inspector = sa.inspect(sync_conn)
    tables = []
    for table_name in inspector.get_table_names(schema=db_schema):
        columns = {}
        for col in inspector.get_columns(table_name, schema=db_schema):
            columns[col["name"]] = ColumnMetadata(
                name=col["name"],
                data_type=_type_name(col["type"], sync_conn.dialect),
                nullable=col.get("nullable", True),
            )
        tables.append(TableMetadata(table_name, columns))
    return tables


async def introspect(connection: AsyncConnection, db_schema: str | None = None) -> list[TableMetadata]:
    """Read the tables and column types a database currently has.

    Args:
        connection: Open async connection
        db_schema: Database schema/catalog to inspect (default schema when None)

    Returns:
        One TableMetadata per table
    """
    return await connection.run_sync(_inspect_tables, db_schema)


def dialect_of(bind: Bind) -> Dialect:
    """Infer the dialect of an engine or connection.

    Unknown dialects fall back to SQLite with a warning.
    """
    name = bind.dialect.name
    try:
        return Dialect.parse(name)
    except UnsupportedDialectError:
        logger.warning(
            "Could not determine database type from %r, defaulting to sqlite. "
            "Set the dialect explicitly to avoid this.",
            name,
        )
        return Dialect.SQLITE


class AutogenContext:
    """Context for diffing a schema against a live database.

    Example:
        context = AutogenContext(engine, assemble(fragments))
        changes = await context.diff()
        plan = await context.build_plan()
    """

    def __init__(
        self,
        bind: Bind | None,
        schema: CanonicalSchema,
        dialect: Dialect | str | None = None,
        db_schema: str | None = None,
    ) -> None:
        """Initialize the autogen context.

        Args:
            bind: Async engine or connection to introspect
            schema: Canonical schema to compare against
            dialect: Target dialect (inferred from ``bind`` when None)
            db_schema: Database schema/catalog to inspect

        Raises:
            ConnectionUnavailableError: If no engine or connection is given
        """
        if bind is None:
            raise ConnectionUnavailableError("A database engine or connection is required to plan migrations")
        self.bind = bind
        self.schema = schema
        self.dialect = Dialect.parse(dialect) if dialect is not None else dialect_of(bind)
        self.db_schema = db_schema

    async def get_database_schema(self) -> list[TableMetadata]:
        """Get the current database schema."""
        if isinstance(self.bind, AsyncConnection):
            return await introspect(self.bind, self.db_schema)
        async with self.bind.connect() as conn:
            return await introspect(conn, self.db_schema)

    async def diff(self) -> SchemaDiff:
        """Compare the schema to the database."""
        live = await self.get_database_schema()
        return diff(self.schema, live, self.dialect)

    async def build_plan(self) -> MigrationPlan:
        """Diff against the database and build the migration plan."""
        changes = await self.diff()
        return build_plan(changes.to_create, changes.to_add, self.dialect)
