"""Tests for schema diffing and introspection."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import text

from schemakit import (
    AutogenContext,
    ConnectionUnavailableError,
    Dialect,
    TableFragment,
    TableMetadata,
    assemble,
    diff,
    field,
)
from schemakit.migrations.autogen import dialect_of, introspect
from schemakit.schema import TableDefinition


def blog_schema():
    return assemble([
        TableFragment("user", {"email": field("string")}, order=1),
        TableFragment("post", {
            "authorId": field("string", references="user.id"),
            "title": field("string"),
        }, order=2),
    ])


class TestDiff:
    """Test diffing a canonical schema against live metadata."""

    def test_empty_database(self) -> None:
        """Every table is created, in order."""
        result = diff(blog_schema(), [], Dialect.POSTGRESQL)
        assert [t.table for t in result.to_create] == ["user", "post"]
        assert list(result.to_create[1].fields) == ["authorId", "title"]
        assert result.to_add == []

    def test_missing_column(self) -> None:
        live = [
            TableMetadata.from_types("user", {"id": "text"}),
            TableMetadata.from_types("post", {"id": "text", "authorId": "text", "title": "text"}),
        ]
        result = diff(blog_schema(), live, Dialect.POSTGRESQL)
        assert result.to_create == []
        assert len(result.to_add) == 1
        assert result.to_add[0].table == "user"
        assert list(result.to_add[0].fields) == ["email"]

    def test_up_to_date(self) -> None:
        live = [
            TableMetadata.from_types("user", {"id": "text", "email": "text"}),
            TableMetadata.from_types("post", {"id": "text", "authorId": "text", "title": "text"}),
        ]
        result = diff(blog_schema(), live, Dialect.POSTGRESQL)
        assert result.is_empty

    def test_live_mapping(self) -> None:
        live = {"user": TableMetadata.from_types("user", {"id": "text", "email": "text"})}
        result = diff(blog_schema(), live, "postgresql")
        assert [t.table for t in result.to_create] == ["post"]

    def test_type_mismatch_warns_but_never_alters(self, caplog: pytest.LogCaptureFixture) -> None:
        schema = assemble([TableFragment("user", {"age": field("number")})])
        live = [TableMetadata.from_types("user", {"id": "text", "age": "text"})]
        with caplog.at_level(logging.WARNING, logger="schemakit.migrations.autogen"):
            result = diff(schema, live, Dialect.POSTGRESQL)
        assert result.is_empty
        assert "Field age in table user has a different type in the database. Expected number but got text." in caplog.text

    def test_extra_live_tables_and_columns_are_ignored(self) -> None:
        schema = assemble([TableFragment("user", {"email": field("string")})])
        live = [
            TableMetadata.from_types("user", {"id": "text", "email": "text", "legacy": "integer"}),
            TableMetadata.from_types("old_table", {"id": "text"}),
        ]
        assert diff(schema, live, Dialect.SQLITE).is_empty

    def test_ordering(self) -> None:
        schema = assemble([
            TableFragment("zeta", {"a": field("string")}, order=1),
            TableFragment("last", {"a": field("string")}),
            TableFragment("alpha", {"a": field("string")}, order=1),
            TableFragment("first", {"a": field("string")}, order=0),
        ])
        result = diff(schema, [], Dialect.SQLITE)
        assert [t.table for t in result.to_create] == ["first", "alpha", "zeta", "last"]

    def test_malformed_field_bag_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        schema = blog_schema()
        schema["broken"] = TableDefinition("broken", fields={"x": "not a field"}, order=1)
        with caplog.at_level(logging.ERROR, logger="schemakit.migrations.autogen"):
            result = diff(schema, [], Dialect.POSTGRESQL)
        assert [t.table for t in result.to_create] == ["user", "post"]
        assert "broken" in caplog.text

    def test_indexes_follow_new_columns(self) -> None:
        schema = assemble([
            TableFragment("log", {
                "entityId": field("string", indexed=True),
                "hash": field("string", required=False),
                "version": field("string", required=False),
            }, unique_constraints=(("hash", "version"),)),
        ])
        live = [TableMetadata.from_types("log", {"id": "text", "entityId": "text", "hash": "text"})]
        result = diff(schema, live, Dialect.SQLITE)
        # entityId already exists and only half of (hash, version) is new
        assert result.to_add[0].indexes == ()

        live = [TableMetadata.from_types("log", {"id": "text"})]
        result = diff(schema, live, Dialect.SQLITE)
        assert [idx.index_name("log") for idx in result.to_add[0].indexes] == [
            "ix_log_entityId",
            "uq_log_hash_version",
        ]


class TestIntrospection:
    """Test reading live metadata."""

    async def test_sqlite_tables(self, sqlite_engine) -> None:
        async with sqlite_engine.begin() as conn:
            await conn.execute(text('CREATE TABLE "user" (id TEXT PRIMARY KEY, email TEXT NOT NULL, age INTEGER)'))
            tables = await introspect(conn)

        assert [t.name for t in tables] == ["user"]
        columns = tables[0].columns
        assert list(columns) == ["id", "email", "age"]
        assert columns["email"].data_type == "TEXT"
        assert columns["email"].nullable is False
        assert columns["age"].data_type == "INTEGER"

    async def test_context_diff(self, sqlite_engine) -> None:
        async with sqlite_engine.begin() as conn:
            await conn.execute(text('CREATE TABLE "user" (id TEXT PRIMARY KEY, email TEXT)'))

        context = AutogenContext(sqlite_engine, blog_schema())
        assert context.dialect is Dialect.SQLITE
        changes = await context.diff()
        assert [t.table for t in changes.to_create] == ["post"]
        assert changes.to_add == []

    async def test_context_build_plan(self, sqlite_engine) -> None:
        context = AutogenContext(sqlite_engine, blog_schema())
        plan = await context.build_plan()
        assert [op.table_name for op in plan] == ["user", "post"]

    async def test_postgres_dialect(self, postgres_engine) -> None:
        context = AutogenContext(postgres_engine, blog_schema())
        assert context.dialect is Dialect.POSTGRESQL
        tables = await context.get_database_schema()
        assert all(isinstance(t, TableMetadata) for t in tables)

    def test_requires_connection(self) -> None:
        with pytest.raises(ConnectionUnavailableError):
            AutogenContext(None, blog_schema())

    def test_unknown_dialect_falls_back_to_sqlite(self, caplog: pytest.LogCaptureFixture) -> None:
        class FakeDialect:
            name = "oracle"

        class FakeEngine:
            dialect = FakeDialect()

        with caplog.at_level(logging.WARNING, logger="schemakit.migrations.autogen"):
            assert dialect_of(FakeEngine()) is Dialect.SQLITE
        assert "defaulting to sqlite" in caplog.text

    def test_explicit_dialect_wins(self, sqlite_engine) -> None:
        context = AutogenContext(sqlite_engine, blog_schema(), dialect="postgres")
        assert context.dialect is Dialect.POSTGRESQL
