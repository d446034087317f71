"""
Schema synthesis: datasets to a typed query surface.

Builds, per dataset, the descriptors a transport layer needs to expose
it: an object type, a filter input type with one operator set per
field, a paginated result type and a root query field. All descriptors
live in a SchemaRegistry owned by one synthesis run; a refresh builds a
new registry instead of mutating the old one.

Relationship fields refer to their target dataset by name and are
resolved through the registry on access, so datasets may reference
each other in any order (including mutually).

Example:
    registry = SchemaSynthesizer(db).synthesize(datasets)
    users = registry.get("Users")
    users.filter_type.operator_set("id").operators["gt"]   # "Int"
    print(registry.to_sdl())
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from csvql.errors import LookupFailure, SynthesisFailure
from csvql.models import (
    BOOKKEEPING_COLUMNS, OPERATORS, STRING_OPERATORS, DatasetDescriptor, FieldDescriptor,
    RelationshipDescriptor, Row, capitalize,
)
from csvql.scalars import ScalarType
from csvql.sql import sanitize_identifier

logger = logging.getLogger(__name__)


# =============================================================================
# Schema inference
# =============================================================================

def infer_schema(
    sample_rows: List[Row],
    declared_fields: Optional[List[FieldDescriptor]] = None,
) -> List[FieldDescriptor]:
    """
    Derive a dataset's field schema from a sample row and declared fields.

    Columns come in first-row order. A declared field with the same name
    overrides type and description; declared fields never seen in the
    sample are appended. Bookkeeping columns are skipped.

    Args:
        sample_rows: Representative rows (only the first is used)
        declared_fields: Fields declared in metadata

    Returns:
        Ordered list with one descriptor per distinct column name
    """
    declared = {f.name: f for f in (declared_fields or [])}
    fields: List[FieldDescriptor] = []
    seen = set()

    if sample_rows:
        for name in sample_rows[0].keys():
            if name in BOOKKEEPING_COLUMNS or name in seen:
                continue
            seen.add(name)
            override = declared.get(name)
            if override is not None:
                fields.append(FieldDescriptor(name=name, type=override.type, description=override.description))
            else:
                fields.append(FieldDescriptor(name=name))

    for f in declared_fields or []:
        if f.name not in seen and f.name not in BOOKKEEPING_COLUMNS:
            seen.add(f.name)
            fields.append(FieldDescriptor(name=f.name, type=f.type, description=f.description))

    return fields


# =============================================================================
# Type descriptors
# =============================================================================

def type_name(dataset_name: str) -> str:
    """Surface type name for a dataset."""
    return capitalize(sanitize_identifier(dataset_name))


@dataclass
class OperatorSet:
    """
    Filter input for one field: operator name -> operand type tag.

    Typed operators use the field's scalar type (`in` takes a list of
    it); string operators always take a String.
    """
    dataset: str
    field_name: str
    scalar_type: ScalarType

    @property
    def name(self) -> str:
        return f"{type_name(self.dataset)}{capitalize(self.field_name)}Filter"

    @property
    def operators(self) -> Dict[str, str]:
        ops = {}
        for op in OPERATORS:
            if op in STRING_OPERATORS:
                ops[op] = ScalarType.STRING.value
            elif op == 'in':
                ops[op] = f"[{self.scalar_type.value}]"
            else:
                ops[op] = self.scalar_type.value
        return ops


@dataclass
class RelationshipField:
    """
    Relationship field on an object type.

    The target is looked up in the registry on access, never embedded.
    """
    descriptor: RelationshipDescriptor
    registry: "SchemaRegistry" = field(repr=False)

    @property
    def name(self) -> str:
        return self.descriptor.field_name

    @property
    def is_many(self) -> bool:
        return self.descriptor.is_many

    @property
    def target(self) -> "DatasetTypes":
        return self.registry[self.descriptor.target_dataset]

    @property
    def filter_type(self) -> "FilterType":
        return self.target.filter_type

    @property
    def accepts_pagination(self) -> bool:
        """Only one-to-many traversals are paginated."""
        return self.is_many

    @property
    def type_ref(self) -> str:
        target_name = self.target.object_type.name
        return f"[{target_name}!]!" if self.is_many else target_name


@dataclass
class ObjectType:
    """Output type: the dataset's fields plus its relationship fields."""
    dataset: str
    fields: List[FieldDescriptor] = field(default_factory=list)
    relationships: List[RelationshipField] = field(default_factory=list)

    @property
    def name(self) -> str:
        return type_name(self.dataset)

    def get_relationship(self, name: str) -> Optional[RelationshipField]:
        for rel in self.relationships:
            if rel.name == name:
                return rel
        return None


@dataclass
class FilterType:
    """Filter input type: one operator set per field, plus relationship keys."""
    dataset: str
    operator_sets: List[OperatorSet] = field(default_factory=list)
    relationships: List[RelationshipField] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{type_name(self.dataset)}Filter"

    def operator_set(self, field_name: str) -> Optional[OperatorSet]:
        for ops in self.operator_sets:
            if ops.field_name == field_name:
                return ops
        return None

    @property
    def keys(self) -> List[str]:
        return [ops.field_name for ops in self.operator_sets] + [rel.name for rel in self.relationships]


@dataclass
class ResultType:
    """Paginated envelope type {items, totalCount, offset, limit}."""
    dataset: str

    @property
    def name(self) -> str:
        return f"{type_name(self.dataset)}Result"

    @property
    def pagination_name(self) -> str:
        return f"{type_name(self.dataset)}Pagination"


@dataclass
class DatasetTypes:
    """Everything synthesized for one dataset."""
    dataset: DatasetDescriptor
    object_type: ObjectType
    filter_type: FilterType
    result_type: ResultType

    @property
    def name(self) -> str:
        return self.dataset.name

    @property
    def query_name(self) -> str:
        """Root query field name."""
        return self.dataset.query_name


# =============================================================================
# Registry
# =============================================================================

class SchemaRegistry:
    """
    Descriptors for every dataset of one load cycle, keyed by name.

    Built by SchemaSynthesizer and read-only afterwards.
    """

    def __init__(self):
        self._types: Dict[str, DatasetTypes] = {}

    def register(self, types: DatasetTypes) -> None:
        self._types[types.name] = types

    def get(self, name: str) -> Optional[DatasetTypes]:
        return self._types.get(name)

    def __getitem__(self, name: str) -> DatasetTypes:
        types = self._types.get(name)
        if types is None:
            raise KeyError(f"Unknown dataset: {name}")
        return types

    def __contains__(self, name: str) -> bool:
        return name in self._types

    def __iter__(self) -> Iterator[DatasetTypes]:
        return iter(self._types.values())

    def __len__(self) -> int:
        return len(self._types)

    @property
    def names(self) -> List[str]:
        return list(self._types.keys())

    def dataset(self, name: str) -> DatasetDescriptor:
        return self[name].dataset

    def dataset_for_query(self, query_name: str) -> Optional[DatasetDescriptor]:
        """Find the dataset behind a root query field name."""
        for types in self._types.values():
            if types.query_name == query_name:
                return types.dataset
        return None

    def field_types(self) -> Dict[str, Dict[str, ScalarType]]:
        """Declared field types of every dataset, by dataset name."""
        return {name: types.dataset.field_types for name, types in self._types.items()}

    def to_sdl(self) -> str:
        """Render the query surface as GraphQL SDL."""
        return render_sdl(self)


# =============================================================================
# Synthesizer
# =============================================================================

class SchemaSynthesizer:
    """
    Two-pass builder of a SchemaRegistry.

    Pass one samples each dataset from the row source, infers its field
    schema and registers object, filter and result types without
    relationships. Pass two attaches relationship fields, dropping any
    whose target dataset does not exist.
    """

    def __init__(self, db: Any):
        self.db = db

    def synthesize(self, datasets: List[DatasetDescriptor]) -> SchemaRegistry:
        """
        Build descriptors for all datasets.

        Raises:
            SynthesisFailure: A dataset could not be sampled
        """
        registry = SchemaRegistry()

        for dataset in datasets:
            registry.register(self._build_basic(dataset))

        for dataset in datasets:
            self._attach_relationships(registry, dataset)

        logger.info("Synthesized schema for %d datasets", len(registry))
        return registry

    def _build_basic(self, dataset: DatasetDescriptor) -> DatasetTypes:
        try:
            sample = self.db.sample(dataset.name, 1)
        except LookupFailure as e:
            raise SynthesisFailure(dataset.name, f"Cannot sample dataset '{dataset.name}': {e}") from e

        fields = infer_schema(sample, dataset.fields)
        resolved = DatasetDescriptor(name=dataset.name, fields=fields, relationships=[], path=dataset.path)

        return DatasetTypes(
            dataset=resolved,
            object_type=ObjectType(dataset=dataset.name, fields=list(fields)),
            filter_type=FilterType(
                dataset=dataset.name,
                operator_sets=[OperatorSet(dataset.name, f.name, f.type) for f in fields],
            ),
            result_type=ResultType(dataset=dataset.name),
        )

    def _attach_relationships(self, registry: SchemaRegistry, dataset: DatasetDescriptor) -> None:
        types = registry[dataset.name]
        for rel in dataset.relationships:
            if rel.target_dataset not in registry:
                logger.warning(
                    "Dataset %s: relationship on '%s' references unknown dataset '%s'; skipped",
                    dataset.name, rel.local_field, rel.target_dataset,
                )
                continue
            if types.object_type.get_relationship(rel.field_name) is not None:
                logger.warning("Dataset %s: duplicate relationship field '%s'; skipped", dataset.name, rel.field_name)
                continue

            rel_field = RelationshipField(descriptor=rel, registry=registry)
            types.dataset.relationships.append(rel)
            types.object_type.relationships.append(rel_field)
            types.filter_type.relationships.append(rel_field)


# =============================================================================
# SDL rendering
# =============================================================================

def _block(keyword: str, name: str, lines: List[str]) -> str:
    if not lines:
        return f"{keyword} {name}"
    body = "\n".join(f"  {line}" for line in lines)
    return f"{keyword} {name} {{\n{body}\n}}"


def _description(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


def render_sdl(registry: SchemaRegistry) -> str:
    """Render every registered dataset as GraphQL SDL text."""
    blocks = ["scalar Date", "scalar DateTime"]
    query_lines = []

    for types in registry:
        obj = types.object_type
        lines = []
        for f in obj.fields:
            doc = _description(f.description)
            if doc:
                lines.append(doc)
            lines.append(f"{f.name}: {f.type.value}")
        for rel in obj.relationships:
            target = rel.target
            args = [f"filter: {target.filter_type.name}"]
            if rel.accepts_pagination:
                args.append(f"pagination: {target.result_type.pagination_name}")
            lines.append(f"{rel.name}({', '.join(args)}): {rel.type_ref}")
        blocks.append(_block("type", obj.name, lines))

        for ops in types.filter_type.operator_sets:
            blocks.append(_block("input", ops.name, [f"{op}: {t}" for op, t in ops.operators.items()]))

        filter_lines = [f"{ops.field_name}: {ops.name}" for ops in types.filter_type.operator_sets]
        filter_lines += [f"{rel.name}: {rel.filter_type.name}" for rel in types.filter_type.relationships]
        blocks.append(_block("input", types.filter_type.name, filter_lines))

        result = types.result_type
        blocks.append(_block("input", result.pagination_name, ["offset: Int", "limit: Int"]))
        blocks.append(_block("type", result.name, [
            f"items: [{obj.name}!]!",
            "totalCount: Int!",
            "offset: Int!",
            "limit: Int!",
        ]))

        query_lines.append(
            f"{types.query_name}(filter: {types.filter_type.name}, "
            f"pagination: {result.pagination_name}): {result.name}!"
        )

    blocks.append(_block("type", "Query", query_lines))
    return "\n\n".join(blocks) + "\n"
