"""Table definitions and schema assembly.

Core tables and plugin contributions are declared as ``TableFragment``
objects. Several fragments may target the same logical table;
``assemble`` folds them into one canonical schema keyed by physical
table name.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from schemakit.exceptions import SchemaValidationError
from schemakit.fields import Field, Reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexDefinition:
    """A simple (non-expression) index over one or more columns."""

    columns: tuple[str, ...]
    unique: bool = False
    name: str | None = None

    def index_name(self, table_name: str) -> str:
        """Get the index name, generating ``ix_``/``uq_`` names when unset."""
        if self.name:
            return self.name
        prefix = "uq" if self.unique else "ix"
        return f"{prefix}_{table_name}_{'_'.join(self.columns)}"


@dataclass
class TableFragment:
    """A (possibly partial) definition of one logical table.

    Args:
        key: Logical table key that references point at
        fields: Mapping of field key to ``Field`` or a raw field mapping
        order: Creation order; lower runs first, missing sorts last
        entity_name: Physical table name (defaults to ``key``)
        unique_constraints: Multi-column unique constraints
        indexes: Extra indexes

    Example:
        >>> TableFragment("post", {"authorId": field("string", references="user")}, order=2)
    """

    key: str
    fields: Any
    order: float | None = None
    entity_name: str | None = None
    unique_constraints: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()

    @property
    def table_name(self) -> str:
        return self.entity_name or self.key


@dataclass
class TableDefinition:
    """Canonical definition of one table after assembly."""

    name: str
    fields: dict[str, Field] = field(default_factory=dict)
    order: float = math.inf
    unique_constraints: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()

    def all_indexes(self) -> list[IndexDefinition]:
        """Declared indexes plus one per ``indexed`` field."""
        indexes = list(self.indexes)
        declared = {idx.columns for idx in indexes}
        for column_name, table_field in self.fields.items():
            if table_field.indexed and not table_field.unique and (column_name,) not in declared:
                indexes.append(IndexDefinition((column_name,)))
        return indexes


CanonicalSchema = dict[str, TableDefinition]


def validate_fields(fields: Any, *, table: str | None = None) -> dict[str, Field]:
    """Validate a field bag and key it by physical column name.

    Raises:
        SchemaValidationError: If the bag is not a mapping or any entry is malformed
    """
    if not isinstance(fields, Mapping):
        raise SchemaValidationError(
            f"fields must be a mapping, got {type(fields).__name__}", table=table
        )

    validated: dict[str, Field] = {}
    for key, raw in fields.items():
        if not isinstance(key, str) or not key:
            raise SchemaValidationError(f"invalid field key {key!r}", table=table)
        try:
            parsed = Field.from_mapping(raw, name=key)
        except SchemaValidationError as e:
            raise SchemaValidationError(e.message, table=table, field=e.field or key) from e
        validated[parsed.column_name(key)] = parsed
    return validated


def merge_fields(base: Mapping[str, Field], overlay: Any, *, table: str | None = None) -> dict[str, Field]:
    """Merge an overlay field bag onto a base one.

    The overlay is validated before anything is merged; on a key collision
    the overlay's field wins.

    Raises:
        SchemaValidationError: If the overlay is malformed
    """
    validated = validate_fields(overlay, table=table)
    return {**base, **validated}


def assemble(fragments: Iterable[TableFragment]) -> CanonicalSchema:
    """Fold table fragments into a canonical schema.

    Fragments are applied in iteration order. A new table name is inserted
    as-is; an existing one gets the fragment's fields merged in (later
    fragments win) and keeps the smaller of the two orders. A fragment
    whose field bag is malformed is skipped with a warning and the rest
    of the schema is still assembled.

    Args:
        fragments: Core and plugin table fragments

    Returns:
        Mapping of physical table name to TableDefinition
    """
    fragments = list(fragments)
    table_names = {fragment.key: fragment.table_name for fragment in fragments}
    schema: CanonicalSchema = {}

    for fragment in fragments:
        name = fragment.table_name
        existing = schema.get(name)

        try:
            fields = merge_fields(existing.fields if existing else {}, fragment.fields, table=name)
        except SchemaValidationError as e:
            logger.warning("Skipping fields contributed to table %s: %s", name, e)
            continue

        order = math.inf if fragment.order is None else fragment.order
        if existing is None:
            schema[name] = TableDefinition(
                name=name,
                fields=fields,
                order=order,
                unique_constraints=tuple(fragment.unique_constraints),
                indexes=tuple(fragment.indexes),
            )
        else:
            existing.fields = fields
            existing.order = min(existing.order, order)
            existing.unique_constraints += tuple(fragment.unique_constraints)
            existing.indexes += tuple(fragment.indexes)

    for table in schema.values():
        table.fields = {
            key: _resolve_reference(table_field, table_names)
            for key, table_field in table.fields.items()
        }

    _warn_on_order_violations(schema)
    return schema


def _resolve_reference(table_field: Field, table_names: Mapping[str, str]) -> Field:
    """Point a reference at the physical name of the table it targets."""
    ref = table_field.references
    if ref is None or ref.model not in table_names:
        return table_field
    target = table_names[ref.model]
    if target == ref.model:
        return table_field
    return replace(table_field, references=Reference(target, ref.field, ref.on_delete))


def _warn_on_order_violations(schema: CanonicalSchema) -> None:
    for table in schema.values():
        for column_name, table_field in table.fields.items():
            ref = table_field.references
            if ref is None or ref.model == table.name or ref.model not in schema:
                continue
            target = schema[ref.model]
            if target.order > table.order:
                logger.warning(
                    "Table %s (order %s) references %s (order %s) through %s; "
                    "the referenced table should be created first",
                    table.name,
                    table.order,
                    target.name,
                    target.order,
                    column_name,
                )
