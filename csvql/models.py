"""
Data model for csvql datasets.

Descriptors are built once per load cycle and treated as immutable
until the next refresh replaces them wholesale:

- FieldDescriptor: one column with its scalar type
- RelationshipDescriptor: a declared link to another dataset
- DatasetDescriptor: name, ordered fields and relationships
- Pagination: offset/limit window with clamping rules

Filter expressions are plain dictionaries, mirroring the shape callers
send through the generated query surface:

    {
        "status": {"eq": "completed"},
        "total_amount": {"gte": 50, "lt": 100},
        "users": {"is_active": {"eq": True}},     # relationship key
    }
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from csvql.scalars import INT_MAX, ScalarType

# Internal columns never exposed through the query surface.
ROWID_COLUMN = "_rowid"
BOOKKEEPING_COLUMNS = frozenset((ROWID_COLUMN,))

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

# Operator-declaration order; placeholders follow this order within a field.
OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "contains", "startsWith", "endsWith")
STRING_OPERATORS = ("contains", "startsWith", "endsWith")

FilterExpression = Dict[str, Dict[str, Any]]
Row = Dict[str, Any]


def strip_bookkeeping(row: Row) -> Row:
    """Return a copy of a stored row without internal columns."""
    return {k: v for k, v in row.items() if k not in BOOKKEEPING_COLUMNS}


def lower_first(s: str) -> str:
    return s[:1].lower() + s[1:]


def pluralize(s: str) -> str:
    return s if s.endswith("s") else s + "s"


def capitalize(s: str) -> str:
    return s[:1].upper() + s[1:]


# =============================================================================
# Fields and relationships
# =============================================================================

@dataclass
class FieldDescriptor:
    """A single column of a dataset."""
    name: str
    type: ScalarType = ScalarType.STRING
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDescriptor":
        return cls(
            name=str(data["name"]),
            type=ScalarType.from_string(data.get("type")),
            description=data.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "type": self.type.value}
        if self.description:
            data["description"] = self.description
        return data


class Cardinality(Enum):
    """How many target rows a relationship yields per parent row."""
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"

    @classmethod
    def from_string(cls, s: str) -> "Cardinality":
        s = s.lower().strip().replace("_", "-")
        mapping = {
            'one-to-one': cls.ONE_TO_ONE,
            'onetoone': cls.ONE_TO_ONE,
            'one': cls.ONE_TO_ONE,
            'one-to-many': cls.ONE_TO_MANY,
            'onetomany': cls.ONE_TO_MANY,
            'many': cls.ONE_TO_MANY,
        }
        if s in mapping:
            return mapping[s]
        raise ValueError(f"Unknown relationship type: {s}")


@dataclass
class RelationshipDescriptor:
    """
    A declared link from a field of the owning dataset to a target dataset.

    Attributes:
        local_field: Field on the owning dataset holding the join value
        target_dataset: Name of the related dataset
        target_field: Field on the target dataset matched against local_field
        cardinality: ONE_TO_ONE yields a row or None, ONE_TO_MANY a list
    """
    local_field: str
    target_dataset: str
    target_field: str
    cardinality: Cardinality = Cardinality.ONE_TO_ONE

    @property
    def is_many(self) -> bool:
        return self.cardinality == Cardinality.ONE_TO_MANY

    @property
    def field_name(self) -> str:
        """Name of the relationship field on the query surface."""
        base = lower_first(self.target_dataset)
        return pluralize(base) if self.is_many else base

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelationshipDescriptor":
        return cls(
            local_field=str(data["field"]),
            target_dataset=str(data["references"]),
            target_field=str(data["referenceField"]),
            cardinality=Cardinality.from_string(str(data.get("type", "one-to-one"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.local_field,
            "references": self.target_dataset,
            "referenceField": self.target_field,
            "type": self.cardinality.value,
        }


@dataclass
class DatasetDescriptor:
    """A named tabular source exposed as one queryable type."""
    name: str
    fields: List[FieldDescriptor] = field(default_factory=list)
    relationships: List[RelationshipDescriptor] = field(default_factory=list)
    path: Optional[str] = None

    @property
    def query_name(self) -> str:
        """Name of the root query field for this dataset."""
        return pluralize(lower_first(self.name))

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def field_types(self) -> Dict[str, ScalarType]:
        return {f.name: f.type for f in self.fields}

    def get_field(self, name: str) -> Optional[FieldDescriptor]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def relationship_for(self, field_name: str) -> Optional[RelationshipDescriptor]:
        """Find the relationship exposed under a surface field name."""
        for rel in self.relationships:
            if rel.field_name == field_name:
                return rel
        return None

    @property
    def relationship_field_names(self) -> List[str]:
        return [rel.field_name for rel in self.relationships]


# =============================================================================
# Pagination
# =============================================================================

@dataclass
class Pagination:
    """Offset/limit window; None means "use the default"."""
    offset: Optional[int] = None
    limit: Optional[int] = None

    @classmethod
    def from_value(cls, value: Any) -> "Pagination":
        """Build from None, a Pagination or a {offset, limit} mapping."""
        if value is None:
            return cls()
        if isinstance(value, Pagination):
            return value
        return cls(offset=value.get("offset"), limit=value.get("limit"))

    def clamp(self, default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT) -> "Pagination":
        """
        Apply the clamping rules.

        offset is clamped to [0, INT_MAX] (default 0); limit to
        [0, max_limit] (default default_limit).
        """
        offset = min(max(int(self.offset or 0), 0), INT_MAX)
        limit = default_limit if self.limit is None else int(self.limit)
        limit = min(max(limit, 0), max_limit)
        return Pagination(offset=offset, limit=limit)

    def window(self, items: Iterable[Any]) -> List[Any]:
        """Slice a sequence to this (already clamped) window."""
        items = list(items)
        return items[self.offset:self.offset + self.limit]
