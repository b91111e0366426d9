"""
Record schema - the unit of data flowing through a step.

A Record is produced by a RecordSource from one input line, optionally
replaced by a transformer, and handed to a RecordSink as part of a chunk.
Records are immutable; transformers return new Records.
"""

from dataclasses import dataclass, field, replace as dc_replace
from typing import Any, Iterable, Optional, Union

FIELD_TYPES = ("string", "integer", "number", "boolean")

_TRUE_VALUES = {"true", "t", "yes", "y", "1"}
_FALSE_VALUES = {"false", "f", "no", "n", "0"}


@dataclass(frozen=True)
class FieldSpec:
    """
    A named, typed field in a record schema.

    Attributes:
        name: Field name (also the SQL parameter name in sinks)
        type: One of string, integer, number, boolean
        nullable: If true, an empty value parses to None
    """
    name: str
    type: str = "string"
    nullable: bool = False

    def __post_init__(self):
        if not self.name:
            raise ValueError("Field name is required")
        if self.type not in FIELD_TYPES:
            raise ValueError(
                f"Field '{self.name}': unknown type '{self.type}' "
                f"(expected one of {', '.join(FIELD_TYPES)})"
            )

    def parse(self, raw: str) -> Any:
        """
        Convert raw text to the declared type.

        Raises:
            ValueError: If the text cannot be converted
        """
        text = raw.strip()
        if text == "" and self.nullable:
            return None
        if self.type == "string":
            return text
        if self.type == "integer":
            return int(text)
        if self.type == "number":
            return float(text)
        lowered = text.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"invalid boolean literal: {raw!r}")

    @classmethod
    def from_config(cls, data: Union[str, dict[str, Any]]) -> "FieldSpec":
        """Build a FieldSpec from a bare name or a {name, type, nullable} mapping."""
        if isinstance(data, str):
            return cls(name=data)
        return cls(
            name=data.get("name", ""),
            type=data.get("type", "string"),
            nullable=data.get("nullable", False),
        )


@dataclass(frozen=True)
class RecordSchema:
    """Ordered field specs describing the columns of a delimited source."""
    fields: tuple[FieldSpec, ...]

    def __post_init__(self):
        if not self.fields:
            raise ValueError("Schema must declare at least one field")
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError(f"Schema has duplicate field names: {names}")

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @classmethod
    def of(cls, *fields: Union[str, dict[str, Any]]) -> "RecordSchema":
        return cls(fields=tuple(FieldSpec.from_config(f) for f in fields))

    @classmethod
    def from_config(cls, data: Iterable[Union[str, dict[str, Any]]]) -> "RecordSchema":
        return cls.of(*data)


@dataclass(frozen=True)
class Record:
    """
    An immutable, ordered set of named field values.

    Attributes:
        names: Field names in declared order
        values: Field values, aligned with names
        line_number: 1-based source line this record was parsed from (if any)
    """
    names: tuple[str, ...]
    values: tuple[Any, ...]
    line_number: Optional[int] = field(default=None, compare=False)

    def __post_init__(self):
        if len(self.names) != len(self.values):
            raise ValueError(
                f"Record has {len(self.names)} names but {len(self.values)} values"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any], line_number: Optional[int] = None) -> "Record":
        return cls(names=tuple(data.keys()), values=tuple(data.values()), line_number=line_number)

    def get(self, name: str, default: Any = None) -> Any:
        """Get a field value by name."""
        try:
            return self.values[self.names.index(name)]
        except ValueError:
            return default

    def __getitem__(self, name: str) -> Any:
        try:
            return self.values[self.names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def replace(self, **changes: Any) -> "Record":
        """Return a new Record with the given fields changed."""
        unknown = set(changes) - set(self.names)
        if unknown:
            raise KeyError(f"Unknown fields: {sorted(unknown)}")
        values = tuple(changes.get(n, v) for n, v in zip(self.names, self.values))
        return dc_replace(self, values=values)

    def as_dict(self) -> dict[str, Any]:
        return dict(zip(self.names, self.values))
