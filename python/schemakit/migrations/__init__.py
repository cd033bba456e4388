"""SchemaKit Migrations - additive schema reconciliation.

This module provides:
- Configuration parsing (schemakit.ini)
- Schema introspection and diffing
- Plan building into dialect-correct DDL
- Compilation and sequential execution of plans
"""

from __future__ import annotations

from schemakit.migrations.autogen import (
    AutogenContext,
    ColumnMetadata,
    ColumnsToAdd,
    SchemaDiff,
    TableMetadata,
    TableToCreate,
    diff,
    introspect,
)
from schemakit.migrations.config import SchemaKitConfig
from schemakit.migrations.operations import (
    AddColumns,
    ColumnDef,
    CreateTable,
    MigrationPlan,
    Operation,
    build_plan,
)
from schemakit.migrations.runner import (
    MigrationResult,
    MigrationRunner,
    compile_operations,
    get_migrations,
    run_operations,
)

__all__ = [
    # Config
    "SchemaKitConfig",
    # Diffing
    "AutogenContext",
    "ColumnMetadata",
    "TableMetadata",
    "TableToCreate",
    "ColumnsToAdd",
    "SchemaDiff",
    "diff",
    "introspect",
    # Operations
    "Operation",
    "ColumnDef",
    "CreateTable",
    "AddColumns",
    "MigrationPlan",
    "build_plan",
    # Runner
    "MigrationRunner",
    "MigrationResult",
    "compile_operations",
    "run_operations",
    "get_migrations",
]
