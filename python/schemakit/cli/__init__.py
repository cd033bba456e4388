"""SchemaKit CLI - Command-line interface for planning and applying migrations."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from schemakit.exceptions import SchemaKitError
from schemakit.schema import TableFragment

if TYPE_CHECKING:
    from schemakit.migrations.config import SchemaKitConfig
    from schemakit.migrations.runner import MigrationResult


def main(args: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success)
    """
    parser = argparse.ArgumentParser(
        prog="schemakit",
        description="SchemaKit - additive, multi-dialect schema migrations",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (overrides log_level in schemakit.ini)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # migrate subcommand
    migrate_parser = subparsers.add_parser("migrate", help="Database migration commands")
    migrate_subparsers = migrate_parser.add_subparsers(dest="subcommand", help="Migration commands")

    # migrate init
    init_parser = migrate_subparsers.add_parser(
        "init", help="Create a schemakit.ini"
    )
    init_parser.add_argument(
        "-d", "--directory",
        default=".",
        help="Target directory (default: current directory)",
    )
    init_parser.add_argument(
        "--url",
        help="Database URL to configure",
    )

    # plan, sql and up share their connection options
    for name, help_text in (
        ("plan", "Show the tables and columns that would be created"),
        ("sql", "Print the SQL that would be executed"),
        ("up", "Apply the migrations"),
    ):
        sub = migrate_subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "-c", "--config",
            help="Path to schemakit.ini",
        )
        sub.add_argument(
            "--url",
            help="Database URL (overrides config)",
        )
        sub.add_argument(
            "-s", "--schema",
            help="Python module containing table fragments (e.g., 'app.schema')",
        )
        sub.add_argument(
            "--dialect",
            help="Target dialect (overrides config)",
        )
        if name == "sql":
            sub.add_argument(
                "-o", "--output",
                help="Write the SQL to this file instead of stdout",
            )
        if name == "up":
            sub.add_argument(
                "-y", "--yes",
                action="store_true",
                help="Apply without asking for confirmation",
            )

    # Parse arguments
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    if parsed.command == "migrate":
        return asyncio.run(_handle_migrate(parsed))

    return 0


async def _handle_migrate(args: Any) -> int:
    """Handle migrate subcommands.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    if args.subcommand == "init":
        return _migrate_init(args)

    handlers = {
        "plan": _migrate_plan,
        "sql": _migrate_sql,
        "up": _migrate_up,
    }
    handler = handlers.get(args.subcommand)
    if handler is None:
        print("Unknown migrate subcommand. Use --help for usage.")
        return 1

    config = _load_config(args)
    if config is None:
        return 1
    _configure_logging(args.log_level or config.log_level)

    try:
        url = config.get_url(args.url)
    except ValueError:
        print("Error: No database URL configured. Use --url or set sqlalchemy.url in schemakit.ini")
        return 1

    fragments = _load_fragments(args.schema or config.schema_module)
    if not fragments:
        print("Error: No table fragments found. Use --schema to specify the schema module.")
        return 1

    return await _with_migrations(url, fragments, args.dialect or config.dialect, config.db_schema, handler, args)


def _migrate_init(args: Any) -> int:
    """Create a schemakit.ini."""
    from schemakit.migrations.config import create_default_config

    directory = Path(args.directory).resolve()
    try:
        ini_path = create_default_config(directory, args.url)
    except FileExistsError as e:
        print(f"Error: {e}")
        return 1

    print(f"Created {ini_path}")
    print("\nEdit schemakit.ini to configure your database URL and schema module.")
    return 0


async def _with_migrations(
    url: str,
    fragments: list[TableFragment],
    dialect: str | None,
    db_schema: str | None,
    handler: Callable[[MigrationResult, Any], Any],
    args: Any,
) -> int:
    """Plan migrations against ``url`` and hand the result to ``handler``."""
    from schemakit import create_engine
    from schemakit.migrations.runner import get_migrations

    engine = create_engine(url)
    try:
        try:
            result = await get_migrations(engine, fragments, dialect, db_schema)
        except SchemaKitError as e:
            print(f"Error: Migration planning failed: {e}")
            return 1
        return await handler(result, args)
    finally:
        await engine.dispose()


def _describe(result: MigrationResult) -> list[str]:
    lines = []
    for table in result.to_create:
        columns = ["id", *table.fields]
        lines.append(f"  + Table {table.table}: Create with fields [{', '.join(columns)}]")
    for table in result.to_add:
        lines.append(f"  + Table {table.table}: Add fields [{', '.join(table.fields)}]")
    return lines


async def _migrate_plan(result: MigrationResult, args: Any) -> int:
    """Show what would be created."""
    if result.is_empty:
        print("Database is up to date.")
        return 0

    print("The following migrations will be applied:")
    for line in _describe(result):
        print(line)
    return 0


async def _migrate_sql(result: MigrationResult, args: Any) -> int:
    """Print or write the compiled SQL."""
    if result.is_empty:
        print("Database is up to date.")
        return 0

    sql = result.compile_migrations()
    if args.output:
        Path(args.output).write_text(sql + "\n")
        print(f"Wrote {len(result.plan)} operation(s) to {args.output}")
    else:
        print(sql)
    return 0


async def _migrate_up(result: MigrationResult, args: Any) -> int:
    """Apply the migrations."""
    if result.is_empty:
        print("Database is up to date.")
        return 0

    print("The following migrations will be applied:")
    for line in _describe(result):
        print(line)

    if not args.yes and not _confirm("Apply these migrations to the database?"):
        print("Migration cancelled.")
        return 1

    try:
        await result.run_migrations()
    except Exception as e:
        # The failing statement has already been logged
        print(f"Error: Migration failed: {e}")
        return 1

    print(f"Applied {len(result.plan)} operation(s).")
    return 0


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_config(args: Any) -> SchemaKitConfig | None:
    """Load config from args or auto-detect.

    Without any schemakit.ini, an empty config is used so that ``--url``
    and ``--schema`` alone are enough.
    """
    from schemakit.migrations.config import CONFIG_FILENAME, SchemaKitConfig

    if getattr(args, "config", None):
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}")
            return None
        return SchemaKitConfig.from_ini(config_path)

    config_path = Path.cwd() / CONFIG_FILENAME
    if config_path.exists():
        return SchemaKitConfig.from_ini(config_path)

    return SchemaKitConfig.auto_detect() or SchemaKitConfig()


def _load_fragments(module_path: str | None) -> list[TableFragment]:
    """Load table fragments from a Python module path.

    Collects module-level ``TableFragment`` objects, including those held
    in lists or tuples, in definition order.

    Args:
        module_path: Module path like 'app.schema'

    Returns:
        List of fragments
    """
    if not module_path:
        return []

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        print(f"Error importing schema: {e}")
        return []

    fragments: list[TableFragment] = []
    seen: set[int] = set()

    def collect(obj: Any) -> None:
        if isinstance(obj, TableFragment) and id(obj) not in seen:
            seen.add(id(obj))
            fragments.append(obj)

    for name, obj in vars(module).items():
        if name.startswith("_"):
            continue
        if isinstance(obj, (list, tuple)):
            for item in obj:
                collect(item)
        else:
            collect(obj)

    return fragments


# =============================================================================
# Standalone functions for programmatic use (also used by tests)
# =============================================================================


def migrate_init(directory: Path | str, url: str | None = None) -> Path:
    """Create a schemakit.ini.

    Args:
        directory: Target directory
        url: Optional database URL to configure

    Returns:
        Path to the created file
    """
    from schemakit.migrations.config import create_default_config

    return create_default_config(Path(directory), url)


async def migrate_plan(bind: Any, fragments: list[TableFragment], dialect: str | None = None) -> dict[str, Any]:
    """Plan migrations without applying them.

    Args:
        bind: Async engine or connection
        fragments: Table fragments
        dialect: Target dialect (inferred when None)

    Returns:
        Dict with ``to_create`` and ``to_add`` table names and the compiled ``sql``
    """
    from schemakit.migrations.runner import get_migrations

    result = await get_migrations(bind, fragments, dialect)
    return {
        "to_create": [t.table for t in result.to_create],
        "to_add": [t.table for t in result.to_add],
        "sql": result.compile_migrations() if not result.is_empty else "",
    }


async def migrate_up(bind: Any, fragments: list[TableFragment], dialect: str | None = None) -> int:
    """Apply migrations.

    Args:
        bind: Async engine or connection
        fragments: Table fragments
        dialect: Target dialect (inferred when None)

    Returns:
        Number of operations applied
    """
    from schemakit.migrations.runner import get_migrations

    result = await get_migrations(bind, fragments, dialect)
    await result.run_migrations()
    return len(result.plan)


if __name__ == "__main__":
    sys.exit(main())
