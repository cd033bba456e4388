"""Tests for schema assembly."""

from __future__ import annotations

import logging
import math

import pytest

from schemakit import IndexDefinition, Reference, SchemaValidationError, TableFragment, assemble, field, merge_fields
from schemakit.contrib.consent import CORE_FRAGMENTS, get_consent_fragments


class TestMergeFields:
    """Test field bag merging."""

    def test_overlay_wins(self) -> None:
        base = {"name": field("string")}
        merged = merge_fields(base, {"name": field("string", required=False), "age": field("number")})
        assert merged == {"name": field("string", required=False), "age": field("number")}

    def test_base_is_not_mutated(self) -> None:
        base = {"name": field("string")}
        merge_fields(base, {"age": field("number")})
        assert list(base) == ["name"]

    def test_raw_mappings_are_parsed(self) -> None:
        merged = merge_fields({}, {"age": {"type": "number", "required": False}})
        assert merged["age"] == field("number", required=False)

    def test_keyed_by_physical_name(self) -> None:
        merged = merge_fields({}, {"email": field("string", field_name="email_address")})
        assert list(merged) == ["email_address"]

    def test_malformed_overlay(self) -> None:
        with pytest.raises(SchemaValidationError, match="user"):
            merge_fields({}, ["name"], table="user")

    def test_malformed_entry(self) -> None:
        with pytest.raises(SchemaValidationError, match="user.age"):
            merge_fields({}, {"age": {"type": "integer"}}, table="user")


class TestAssemble:
    """Test folding fragments into a canonical schema."""

    def test_single_fragment(self) -> None:
        schema = assemble([TableFragment("user", {"email": field("string", unique=True)}, order=1)])
        assert list(schema) == ["user"]
        table = schema["user"]
        assert table.name == "user"
        assert table.order == 1
        assert table.fields == {"email": field("string", unique=True)}

    def test_later_fragment_wins(self) -> None:
        schema = assemble([
            TableFragment("user", {"name": field("string")}),
            TableFragment("user", {"name": field("string", required=False), "age": field("number")}),
        ])
        assert schema["user"].fields == {
            "name": field("string", required=False),
            "age": field("number"),
        }

    def test_minimum_order_is_kept(self) -> None:
        schema = assemble([
            TableFragment("user", {"name": field("string")}, order=3),
            TableFragment("user", {"age": field("number")}, order=1),
            TableFragment("user", {"bio": field("string")}),
        ])
        assert schema["user"].order == 1

    def test_missing_order_sorts_last(self) -> None:
        schema = assemble([TableFragment("note", {"body": field("string")})])
        assert schema["note"].order == math.inf

    def test_empty_input(self) -> None:
        assert assemble([]) == {}

    def test_malformed_fragment_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        """One bad plugin doesn't take the rest of the schema down."""
        with caplog.at_level(logging.WARNING, logger="schemakit.schema"):
            schema = assemble([
                TableFragment("user", {"name": field("string")}),
                TableFragment("user", "not a field bag"),
                TableFragment("post", {"title": field("string")}),
            ])
        assert schema["user"].fields == {"name": field("string")}
        assert "post" in schema
        assert "Skipping fields contributed to table user" in caplog.text

    def test_malformed_new_table_is_skipped(self) -> None:
        schema = assemble([TableFragment("broken", {"x": {"type": "uuid"}})])
        assert schema == {}

    def test_entity_name(self) -> None:
        schema = assemble([
            TableFragment("user", {"email": field("string")}, entity_name="users", order=1),
            TableFragment("post", {"authorId": field("string", references="user.id")}, order=2),
        ])
        assert set(schema) == {"users", "post"}
        assert schema["post"].fields["authorId"].references == Reference("users", "id")

    def test_constraints_accumulate(self) -> None:
        schema = assemble([
            TableFragment("policy", {"version": field("string"), "name": field("string")},
                          unique_constraints=(("version", "name"),)),
            TableFragment("policy", {"hash": field("string")}, indexes=(IndexDefinition(("hash",)),)),
        ])
        assert schema["policy"].unique_constraints == (("version", "name"),)
        assert schema["policy"].indexes == (IndexDefinition(("hash",)),)

    def test_order_violation_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="schemakit.schema"):
            assemble([
                TableFragment("post", {"authorId": field("string", references="user.id")}, order=1),
                TableFragment("user", {"email": field("string")}, order=2),
            ])
        assert "the referenced table should be created first" in caplog.text


class TestIndexes:
    """Test index definitions."""

    def test_generated_names(self) -> None:
        assert IndexDefinition(("email",)).index_name("user") == "ix_user_email"
        assert IndexDefinition(("version", "name"), unique=True).index_name("policy") == "uq_policy_version_name"
        assert IndexDefinition(("email",), name="by_email").index_name("user") == "by_email"

    def test_indexed_fields(self) -> None:
        schema = assemble([
            TableFragment("log", {
                "entityId": field("string", indexed=True),
                "code": field("string", indexed=True, unique=True),
                "body": field("string"),
            }),
        ])
        assert schema["log"].all_indexes() == [IndexDefinition(("entityId",))]


class TestConsentSchema:
    """Test the bundled consent schema."""

    def test_assembles(self) -> None:
        schema = assemble(get_consent_fragments())
        assert list(schema) == [f.key for f in CORE_FRAGMENTS]
        assert schema["consent"].fields["subjectId"].references == Reference("subject", "id")

    def test_plugin_extends_core_table(self) -> None:
        plugin = TableFragment("subject", {"locale": field("string", required=False)}, order=4)
        schema = assemble(get_consent_fragments([plugin]))
        assert "locale" in schema["subject"].fields
        assert "externalId" in schema["subject"].fields
        assert schema["subject"].order == 1
