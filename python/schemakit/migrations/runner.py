"""Migration runner - compiles and executes migration plans."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncConnection

from schemakit.dialects import Dialect
from schemakit.exceptions import ConnectionUnavailableError
from schemakit.migrations.autogen import AutogenContext, Bind, ColumnsToAdd, TableToCreate
from schemakit.migrations.operations import MigrationPlan, Operation, build_plan
from schemakit.schema import TableFragment, assemble

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def compile_operations(operations: Iterable[Operation], dialect: Dialect | str) -> str:
    """Compile operations into one SQL document.

    Statements are separated by a blank line and each ends with ``;``.
    Pure: no database is touched. An empty plan compiles to ``";"``.
    """
    dialect = Dialect.parse(dialect)
    compiled = [op.to_sql(dialect) for op in operations]
    return ";\n\n".join(compiled) + ";"


async def run_operations(
    connection: AsyncConnection,
    operations: Iterable[Operation],
    dialect: Dialect | str,
) -> None:
    """Execute operations one statement at a time, in order.

    Execution stops at the first failure: the failing SQL is logged and the
    driver's exception propagates unchanged. Nothing is rolled back here;
    wrap the call in a transaction for atomicity where the dialect supports
    transactional DDL.
    """
    dialect = Dialect.parse(dialect)
    sa_dialect = dialect.sqlalchemy_dialect()

    for operation in operations:
        for statement in operation.statements(dialect):
            try:
                await connection.execute(statement)
            except Exception:
                sql = str(statement.compile(dialect=sa_dialect)).strip()
                logger.error("Migration failed on table %s! SQL:\n%s", operation.table_name, sql)
                raise


class MigrationRunner:
    """Execute a migration plan against a database.

    Example:
        runner = MigrationRunner(engine, plan)
        print(runner.compile())  # preview
        await runner.run()
    """

    def __init__(self, bind: Bind | None, plan: MigrationPlan) -> None:
        """Initialize the migration runner.

        Args:
            bind: Async engine (runs inside ``engine.begin()``) or an open
                connection (runs inside the caller's transaction)
            plan: Plan to execute
        """
        self.bind = bind
        self.plan = plan

    def compile(self) -> str:
        """Compile the plan to SQL without executing it."""
        return compile_operations(self.plan, self.plan.dialect)

    async def run(self) -> None:
        """Apply every operation in order, stopping at the first failure.

        Raises:
            ConnectionUnavailableError: If the runner has no engine or connection
        """
        if self.bind is None:
            raise ConnectionUnavailableError("A database engine or connection is required to run migrations")
        if self.plan.is_empty:
            logger.info("Database is up to date")
            return

        if isinstance(self.bind, AsyncConnection):
            await run_operations(self.bind, self.plan, self.plan.dialect)
            return

        async with self.bind.begin() as conn:
            await run_operations(conn, self.plan, self.plan.dialect)


@dataclass
class MigrationResult:
    """Outcome of planning migrations against a live database."""

    to_create: list[TableToCreate]
    to_add: list[ColumnsToAdd]
    plan: MigrationPlan
    runner: MigrationRunner

    @property
    def is_empty(self) -> bool:
        return self.plan.is_empty

    def compile_migrations(self) -> str:
        """Compile the migrations to SQL without executing them."""
        return self.runner.compile()

    async def run_migrations(self) -> None:
        """Execute the migrations."""
        await self.runner.run()


async def get_migrations(
    bind: AsyncEngine | AsyncConnection | None,
    fragments: Iterable[TableFragment],
    dialect: Dialect | str | None = None,
    db_schema: str | None = None,
) -> MigrationResult:
    """Plan the migrations needed to bring a database up to date.

    Assembles the schema, introspects the database, diffs the two and
    builds the plan. Call it right before running: the plan reflects the
    database as it was at introspection time.

    Args:
        bind: Async engine or connection
        fragments: Core and plugin table fragments
        dialect: Target dialect (inferred from ``bind`` when None)
        db_schema: Database schema/catalog to inspect

    Returns:
        MigrationResult with the diff, the plan and ways to compile or run it

    Example:
        >>> result = await get_migrations(engine, get_consent_fragments())
        >>> print(result.compile_migrations())
        >>> await result.run_migrations()
    """
    context = AutogenContext(bind, assemble(fragments), dialect, db_schema)
    changes = await context.diff()
    plan = build_plan(changes.to_create, changes.to_add, context.dialect)
    return MigrationResult(
        to_create=changes.to_create,
        to_add=changes.to_add,
        plan=plan,
        runner=MigrationRunner(bind, plan),
    )
