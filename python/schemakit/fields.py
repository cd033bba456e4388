"""Field definitions for logical tables."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from schemakit.exceptions import SchemaValidationError

ON_DELETE_ACTIONS = ("CASCADE", "SET NULL", "RESTRICT", "NO ACTION")


class LogicalType(str, Enum):
    """Database-agnostic type of a field.

    The logical type never changes for a field; only its physical
    spelling varies between dialects.
    """

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMEZONE = "timezone"
    JSON = "json"
    STRING_ARRAY = "string[]"
    NUMBER_ARRAY = "number[]"

    @property
    def is_array(self) -> bool:
        """Whether values are arrays (always stored as serialized JSON)."""
        return self in (LogicalType.STRING_ARRAY, LogicalType.NUMBER_ARRAY)


class DefaultKind(str, Enum):
    """Defaults computed by the row-insertion layer at write time."""

    NOW = "now"
    TRUE = "true"
    FALSE = "false"


@dataclass(frozen=True)
class NoDefault:
    """The field has no default value."""


@dataclass(frozen=True)
class StaticDefault:
    """A literal default value."""

    value: Any


@dataclass(frozen=True)
class ComputedDefault:
    """A default evaluated when a row is inserted (e.g. the current time)."""

    kind: DefaultKind


DefaultValue = Union[NoDefault, StaticDefault, ComputedDefault]

NO_DEFAULT = NoDefault()


@dataclass(frozen=True)
class Reference:
    """Foreign key reference to another table.

    Args:
        model: Target table, either its logical key or its physical name
        field: Target column (defaults to the synthetic ``id`` key)
        on_delete: Action on delete (CASCADE, SET NULL, RESTRICT, NO ACTION)

    Example:
        >>> Reference("subject")
        Reference(model='subject', field='id', on_delete=None)
    """

    model: str
    field: str = "id"
    on_delete: str | None = None

    def __post_init__(self) -> None:
        if not self.model:
            raise SchemaValidationError("reference requires a target model")
        if self.on_delete is not None and self.on_delete.upper() not in ON_DELETE_ACTIONS:
            raise SchemaValidationError(
                f"unknown on_delete action {self.on_delete!r}, expected one of {', '.join(ON_DELETE_ACTIONS)}"
            )

    @property
    def target(self) -> str:
        """Return the reference as ``table.column``."""
        return f"{self.model}.{self.field}"


@dataclass(frozen=True)
class Field:
    """One column's contract.

    Attributes:
        type: Logical type of the column
        required: Whether the column is NOT NULL
        unique: Whether values must be unique
        bigint: Widen integer storage to 64 bits (number fields only)
        indexed: Create a single-column index
        field_name: Physical column name, when it differs from the map key
        references: Foreign key target
        default: Default value policy, applied by the row-insertion layer
    """

    type: LogicalType
    required: bool = True
    unique: bool = False
    bigint: bool = False
    indexed: bool = False
    field_name: str | None = None
    references: Reference | None = None
    default: DefaultValue = NO_DEFAULT

    def column_name(self, key: str) -> str:
        """Get the physical column name for this field stored under ``key``."""
        return self.field_name or key

    @property
    def has_default(self) -> bool:
        return not isinstance(self.default, NoDefault)

    @classmethod
    def from_mapping(cls, data: Any, *, name: str | None = None) -> Field:
        """Build a field from a loosely-typed mapping.

        Accepts ``type``, ``required``, ``unique``, ``bigint``, ``indexed``,
        ``field_name``, ``references`` (a mapping with ``model``, ``field`` and
        ``on_delete``) and ``default``.

        Raises:
            SchemaValidationError: If the mapping is not a valid field
        """
        if isinstance(data, Field):
            return data
        if not isinstance(data, Mapping):
            raise SchemaValidationError(
                f"expected a mapping, got {type(data).__name__}", field=name
            )

        raw_type = data.get("type")
        if raw_type is None:
            raise SchemaValidationError("missing 'type'", field=name)
        try:
            logical_type = LogicalType(raw_type)
        except ValueError:
            raise SchemaValidationError(f"unknown type {raw_type!r}", field=name) from None

        flags = {}
        for flag in ("required", "unique", "bigint", "indexed"):
            if flag in data:
                value = data[flag]
                if not isinstance(value, bool):
                    raise SchemaValidationError(f"'{flag}' must be a boolean", field=name)
                flags[flag] = value

        field_name = data.get("field_name")
        if field_name is not None and not isinstance(field_name, str):
            raise SchemaValidationError("'field_name' must be a string", field=name)

        return cls(
            type=logical_type,
            field_name=field_name,
            references=_parse_reference(data.get("references"), name),
            default=_parse_default(data.get("default", NO_DEFAULT)),
            **flags,
        )


def _parse_reference(raw: Any, name: str | None) -> Reference | None:
    if raw is None or isinstance(raw, Reference):
        return raw
    if isinstance(raw, str):
        table, _, column = raw.partition(".")
        return Reference(table, column or "id")
    if not isinstance(raw, Mapping) or "model" not in raw:
        raise SchemaValidationError("'references' must name a target model", field=name)
    return Reference(raw["model"], raw.get("field", "id"), raw.get("on_delete"))


def _parse_default(raw: Any) -> DefaultValue:
    if raw is None:
        return NO_DEFAULT
    if isinstance(raw, (NoDefault, StaticDefault, ComputedDefault)):
        return raw
    if isinstance(raw, DefaultKind):
        return ComputedDefault(raw)
    return StaticDefault(raw)


def field(
    type_: LogicalType | str,
    /,
    *,
    required: bool = True,
    unique: bool = False,
    bigint: bool = False,
    indexed: bool = False,
    field_name: str | None = None,
    references: Reference | str | None = None,
    default: Any = NO_DEFAULT,
) -> Field:
    """Define a field.

    Args:
        type_: Logical type, as a ``LogicalType`` or its string value
        required: Whether NULL values are rejected
        unique: Whether values must be unique
        bigint: Store numbers as 64-bit integers
        indexed: Whether to create an index on this column
        field_name: Physical column name
        references: Foreign key target, a ``Reference`` or ``"table.column"``
        default: Default value; a ``DefaultKind`` is computed at insert time

    Returns:
        A Field descriptor

    Example:
        >>> email = field("string", unique=True)
        >>> author_id = field("string", references="user.id")
        >>> created_at = field("date", default=DefaultKind.NOW)
    """
    if isinstance(references, str):
        references = _parse_reference(references, field_name)

    return Field(
        type=LogicalType(type_),
        required=required,
        unique=unique,
        bigint=bigint,
        indexed=indexed,
        field_name=field_name,
        references=references,
        default=_parse_default(default),
    )
