"""Migration operations and plan building.

Operations are plain descriptors: a table name plus resolved column
definitions. SQL is never assembled by hand; each operation turns into
SQLAlchemy DDL elements that are compiled for the target dialect.
"""

from __future__ import annotations

import heapq
import logging
import math
from collections.abc import Iterable, Iterator
from itertools import groupby
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import sqlalchemy as sa
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.schema import (
    AddConstraint,
    CreateIndex,
    CreateTable as SACreateTable,
    ExecutableDDLElement,
)
from sqlalchemy.types import UserDefinedType

from schemakit.dialects import Dialect, primary_key_type, resolve_column_type
from schemakit.exceptions import ReservedColumnError, SchemaValidationError
from schemakit.fields import Field, Reference
from schemakit.schema import IndexDefinition

if TYPE_CHECKING:
    from sqlalchemy.sql.compiler import DDLCompiler

    from schemakit.migrations.autogen import ColumnsToAdd, TableToCreate

logger = logging.getLogger(__name__)

PRIMARY_KEY = "id"


class NativeType(UserDefinedType):
    """Column type that renders a resolved native spelling verbatim."""

    cache_ok = True

    def __init__(self, spec: str) -> None:
        self.spec = spec

    def get_col_spec(self, **kw: object) -> str:
        return self.spec

    def __repr__(self) -> str:
        return f"NativeType({self.spec!r})"


class AddColumn(ExecutableDDLElement):
    """``ALTER TABLE ... ADD COLUMN`` carrying inline UNIQUE/REFERENCES."""

    def __init__(
        self,
        column: sa.Column,
        *,
        unique: bool = False,
        references: Reference | None = None,
    ) -> None:
        self.column = column
        self.unique = unique
        self.references = references


def _column_clause(element: AddColumn, compiler: DDLCompiler) -> str:
    text = compiler.get_column_specification(element.column)
    if element.unique:
        text += " UNIQUE"
    ref = element.references
    if ref is not None:
        preparer = compiler.preparer
        text += f" REFERENCES {preparer.quote(ref.model)} ({preparer.quote(ref.field)})"
        if ref.on_delete:
            text += f" ON DELETE {ref.on_delete.upper()}"
    return text


@compiles(AddColumn)
def _compile_add_column(element: AddColumn, compiler: DDLCompiler, **kw: object) -> str:
    table = compiler.preparer.format_table(element.column.table)
    return f"ALTER TABLE {table} ADD COLUMN {_column_clause(element, compiler)}"


@compiles(AddColumn, "mssql")
def _compile_add_column_mssql(element: AddColumn, compiler: DDLCompiler, **kw: object) -> str:
    table = compiler.preparer.format_table(element.column.table)
    return f"ALTER TABLE {table} ADD {_column_clause(element, compiler)}"


@runtime_checkable
class Operation(Protocol):
    """Protocol for migration operations."""

    table_name: str
    order: float

    @property
    def operation_type(self) -> str: ...

    def statements(self, dialect: Dialect) -> list[ExecutableDDLElement]:
        """Build the DDL elements for this operation."""
        ...

    def to_sql(self, dialect: Dialect) -> str:
        """Compile this operation to SQL text."""
        ...


@dataclass
class ColumnDef:
    """Column definition for CreateTable and AddColumns operations."""

    name: str
    type_: str
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    references: Reference | None = None

    def to_column(self, *, with_constraints: bool = True) -> sa.Column:
        """Build the SQLAlchemy column.

        Args:
            with_constraints: Attach UNIQUE and FOREIGN KEY constraints to the column
        """
        args: list[sa.SchemaItem] = []
        if with_constraints and self.references is not None:
            args.append(sa.ForeignKey(self.references.target, ondelete=self.references.on_delete))
        return sa.Column(
            self.name,
            NativeType(self.type_),
            *args,
            primary_key=self.primary_key,
            nullable=self.nullable and not self.primary_key,
            unique=with_constraints and self.unique and not self.primary_key,
            autoincrement=False,
        )


def _compile(statements: Iterable[ExecutableDDLElement], dialect: Dialect) -> str:
    sa_dialect = dialect.sqlalchemy_dialect()
    return ";\n\n".join(str(stmt.compile(dialect=sa_dialect)).strip() for stmt in statements)


def _stub_referenced_tables(
    metadata: sa.MetaData, table_name: str, columns: Iterable[ColumnDef], dialect: Dialect
) -> None:
    """Register placeholder tables so foreign keys can resolve their targets."""
    targets: dict[str, set[str]] = {}
    for column in columns:
        ref = column.references
        if ref is not None and ref.model != table_name:
            targets.setdefault(ref.model, set()).add(ref.field)
    for name, target_columns in targets.items():
        sa.Table(
            name,
            metadata,
            *(sa.Column(col, NativeType(primary_key_type(dialect))) for col in sorted(target_columns)),
        )


@dataclass
class CreateTable:
    """Create a new table, synthetic ``id`` primary key first."""

    table_name: str
    columns: list[ColumnDef]
    order: float = math.inf
    unique_constraints: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()

    @property
    def operation_type(self) -> str:
        """Return the operation type."""
        return "create_table"

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def build_table(self, dialect: Dialect) -> tuple[sa.Table, list[sa.Index]]:
        """Build the SQLAlchemy table and its indexes."""
        metadata = sa.MetaData()
        _stub_referenced_tables(metadata, self.table_name, self.columns, dialect)
        table = sa.Table(
            self.table_name,
            metadata,
            *(col.to_column() for col in self.columns),
            *(sa.UniqueConstraint(*cols) for cols in self.unique_constraints),
        )
        indexes = [
            sa.Index(idx.index_name(self.table_name), *(table.c[c] for c in idx.columns), unique=idx.unique)
            for idx in self.indexes
        ]
        return table, indexes

    def statements(self, dialect: Dialect) -> list[ExecutableDDLElement]:
        """Generate CREATE TABLE followed by its CREATE INDEX statements."""
        table, indexes = self.build_table(dialect)
        return [SACreateTable(table), *(CreateIndex(index) for index in indexes)]

    def to_sql(self, dialect: Dialect) -> str:
        """Generate CREATE TABLE SQL."""
        return _compile(self.statements(dialect), dialect)


@dataclass
class AddColumns:
    """Add the missing columns of one existing table."""

    table_name: str
    columns: list[ColumnDef]
    order: float = math.inf
    indexes: tuple[IndexDefinition, ...] = ()

    @property
    def operation_type(self) -> str:
        """Return the operation type."""
        return "add_columns"

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def statements(self, dialect: Dialect) -> list[ExecutableDDLElement]:
        """Generate one ALTER TABLE ADD COLUMN per column, then indexes.

        SQLite cannot add a UNIQUE column, so uniqueness becomes a unique
        index there. MySQL ignores inline REFERENCES, so the foreign key is
        added as a separate constraint.
        """
        metadata = sa.MetaData()
        _stub_referenced_tables(metadata, self.table_name, self.columns, dialect)
        added = set(self.column_names)
        self_targets = sorted({
            col.references.field
            for col in self.columns
            if col.references is not None and col.references.model == self.table_name
        } - added)
        table = sa.Table(
            self.table_name,
            metadata,
            *(col.to_column(with_constraints=False) for col in self.columns),
            *(sa.Column(name, NativeType(primary_key_type(dialect))) for name in self_targets),
        )

        statements: list[ExecutableDDLElement] = []
        trailing: list[ExecutableDDLElement] = []
        for col in self.columns:
            column = table.c[col.name]
            inline_unique = col.unique and dialect is not Dialect.SQLITE
            inline_ref = col.references if dialect is not Dialect.MYSQL else None
            statements.append(AddColumn(column, unique=inline_unique, references=inline_ref))

            if col.unique and not inline_unique:
                index = sa.Index(IndexDefinition((col.name,), unique=True).index_name(self.table_name), column, unique=True)
                trailing.append(CreateIndex(index))
            if col.references is not None and inline_ref is None:
                ref = col.references
                constraint = sa.ForeignKeyConstraint([column], [ref.target], ondelete=ref.on_delete)
                table.append_constraint(constraint)
                statements.append(AddConstraint(constraint))

        for idx in self.indexes:
            index = sa.Index(idx.index_name(self.table_name), *(table.c[c] for c in idx.columns), unique=idx.unique)
            trailing.append(CreateIndex(index))

        return statements + trailing

    def to_sql(self, dialect: Dialect) -> str:
        """Generate ALTER TABLE ADD COLUMN SQL."""
        return _compile(self.statements(dialect), dialect)


@dataclass
class MigrationPlan:
    """Ordered operations for one dialect.

    Computed fresh from live state each time; nothing about applied
    migrations is persisted.
    """

    dialect: Dialect
    operations: list[Operation] = field(default_factory=list)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def of_type(self, operation_type: str) -> list[Operation]:
        """Get operations of one type, in plan order."""
        return [op for op in self.operations if op.operation_type == operation_type]


def _column_def(name: str, table_field: Field, dialect: Dialect, indexed: set[str]) -> ColumnDef:
    return ColumnDef(
        name=name,
        type_=resolve_column_type(table_field, dialect, indexed=name in indexed),
        nullable=not table_field.required,
        unique=table_field.unique,
        references=table_field.references,
    )


def _order_key(item: TableToCreate | ColumnsToAdd) -> tuple[float, str]:
    return (item.order, item.table)


def _indexed_columns(groups: Iterable[tuple[str, ...]]) -> set[str]:
    return {column for columns in groups for column in columns}


def _dependencies_first(group: list[TableToCreate]) -> list[TableToCreate]:
    """Order tables that share an ``order`` so referenced tables come first.

    Ties are broken by table name. Tables caught in a reference cycle keep
    name order and are reported.
    """
    by_name = {table.table: table for table in group}
    pending = {
        table.table: {
            f.references.model
            for f in table.fields.values()
            if f.references is not None
            and f.references.model in by_name
            and f.references.model != table.table
        }
        for table in group
    }
    ready = [name for name, deps in pending.items() if not deps]
    heapq.heapify(ready)

    ordered: list[TableToCreate] = []
    while ready:
        name = heapq.heappop(ready)
        ordered.append(by_name[name])
        for other, deps in pending.items():
            if name in deps:
                deps.discard(name)
                if not deps:
                    heapq.heappush(ready, other)

    if len(ordered) < len(group):
        placed = {table.table for table in ordered}
        cyclic = sorted(name for name in by_name if name not in placed)
        logger.warning(
            "Tables %s reference each other at order %s; creating them in name order",
            ", ".join(cyclic),
            group[0].order,
        )
        ordered.extend(by_name[name] for name in cyclic)
    return ordered


def creation_order(tables: Iterable[TableToCreate]) -> list[TableToCreate]:
    """Sort tables to create by ``order``, referenced tables first within an order.

    Remaining ties are broken by table name.
    """
    ordered: list[TableToCreate] = []
    for _, group in groupby(sorted(tables, key=_order_key), key=lambda table: table.order):
        ordered.extend(_dependencies_first(list(group)))
    return ordered


def check_reserved_columns(table: TableToCreate) -> None:
    """Reject tables that declare their own ``id`` column.

    Raises:
        ReservedColumnError: If a field's key or physical name is ``id``
    """
    for key, table_field in table.fields.items():
        if key == PRIMARY_KEY or table_field.field_name == PRIMARY_KEY:
            raise ReservedColumnError(
                f"'{PRIMARY_KEY}' is the generated primary key and cannot be declared",
                table=table.table,
                field=key,
            )


def _check_index_columns(table_name: str, columns: list[ColumnDef], indexes: Iterable[tuple[str, ...]]) -> None:
    known = {col.name for col in columns}
    for index_columns in indexes:
        unknown = [c for c in index_columns if c not in known]
        if unknown:
            raise SchemaValidationError(f"index or constraint on unknown column(s) {', '.join(unknown)}", table=table_name)


def build_add_columns(table: ColumnsToAdd, dialect: Dialect) -> AddColumns:
    """Build the ADD COLUMN operation for one existing table."""
    indexed = _indexed_columns(idx.columns for idx in table.indexes)
    columns = [_column_def(name, table_field, dialect, indexed) for name, table_field in table.fields.items()]
    _check_index_columns(table.table, columns, (idx.columns for idx in table.indexes))
    for col in columns:
        logger.info("Adding column %s (%s) to table %s", col.name, col.type_, table.table)
    return AddColumns(table.table, columns, order=table.order, indexes=tuple(table.indexes))


def build_create_table(table: TableToCreate, dialect: Dialect) -> CreateTable:
    """Build the CREATE TABLE operation for one missing table."""
    logger.info("Creating table %s with fields: %s", table.table, ", ".join(table.fields) or "(none)")
    indexed = _indexed_columns([*table.unique_constraints, *(idx.columns for idx in table.indexes)])
    columns = [ColumnDef(PRIMARY_KEY, primary_key_type(dialect), nullable=False, primary_key=True)]
    for name, table_field in table.fields.items():
        col = _column_def(name, table_field, dialect, indexed)
        logger.info("Adding column %s (%s) to table %s", col.name, col.type_, table.table)
        columns.append(col)

    _check_index_columns(
        table.table,
        columns,
        [*table.unique_constraints, *(idx.columns for idx in table.indexes)],
    )
    operation = CreateTable(
        table.table,
        columns,
        order=table.order,
        unique_constraints=tuple(table.unique_constraints),
        indexes=tuple(table.indexes),
    )
    logger.debug("SQL for table %s:\n%s", table.table, operation.to_sql(dialect))
    return operation


def build_plan(
    to_create: Iterable[TableToCreate],
    to_add: Iterable[ColumnsToAdd],
    dialect: Dialect | str,
) -> MigrationPlan:
    """Turn a schema diff into an ordered migration plan.

    ADD COLUMN operations come first, then CREATE TABLE operations; each
    group is ordered by ``(order, table name)``, except that a table to
    create always follows the tables it references within its order. Every
    created table gets a synthetic ``id`` primary key ahead of its declared fields.

    Raises:
        ReservedColumnError: If a table to create declares an ``id`` field
        SchemaValidationError: If an index names an unknown column
    """
    dialect = Dialect.parse(dialect)
    to_create = creation_order(to_create)
    to_add = sorted(to_add, key=_order_key)

    for table in to_create:
        check_reserved_columns(table)

    operations: list[Operation] = [build_add_columns(table, dialect) for table in to_add]
    operations.extend(build_create_table(table, dialect) for table in to_create)
    return MigrationPlan(dialect, operations)
