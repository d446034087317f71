"""
In-memory filter engine.

Evaluates filter expressions directly against materialized rows. This
is the reference semantics: for any filter without relationship keys,
csvql.sql must select exactly the rows apply_field_filters keeps.

Rules shared with the SQL translator:
- operands are coerced with the field's declared scalar type
- NULL never satisfies a comparison, membership or pattern test;
  only an explicit {eq: None} / {ne: None} tests for NULL
- {in: []} matches nothing
- contains/startsWith/endsWith fold ASCII letters to lower case and
  match Float values against their printf("%!.15g") text
- numbers order before text, as in SQLite

Relationship keys are handled by apply_nested_filters, which keeps a
parent row when at least one related row satisfies the nested filter.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from csvql.errors import ErrorSink, LookupFailure, log_lookup_failure
from csvql.models import (
    OPERATORS, FilterExpression, RelationshipDescriptor, Row,
)
from csvql.scalars import ScalarType, as_list, format_real, operand_scalar_type, to_storage_value

logger = logging.getLogger(__name__)

# lookup(relationship, parent_value) -> related rows
RelationshipLookup = Callable[[RelationshipDescriptor, Any], List[Row]]

_ASCII_LOWER = str.maketrans('ABCDEFGHIJKLMNOPQRSTUVWXYZ', 'abcdefghijklmnopqrstuvwxyz')


def ascii_lower(s: str) -> str:
    """Lower-case ASCII letters only, like SQLite's LOWER()."""
    return s.translate(_ASCII_LOWER)


def _sort_key(value: Any) -> Tuple[int, Any]:
    if isinstance(value, (bool, int, float)):
        return (0, value)
    if isinstance(value, bytes):
        return (2, value)
    return (1, str(value))


def _text_of(value: Any) -> str:
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, float):
        return format_real(value)
    return str(value)


def _compare(op: str, value: Any, operand: Any) -> bool:
    a, b = _sort_key(value), _sort_key(operand)
    if op == 'eq':
        return a == b
    if op == 'ne':
        return a != b
    if op == 'gt':
        return a > b
    if op == 'gte':
        return a >= b
    if op == 'lt':
        return a < b
    if op == 'lte':
        return a <= b
    return False


def matches_operator(value: Any, op: str, operand: Any, scalar_type: ScalarType) -> bool:
    """
    Evaluate one operator against one stored value.

    Args:
        value: Stored column value (None for NULL)
        op: Operator name from OPERATORS
        operand: Operand as given in the filter
        scalar_type: Type used to coerce the operand
    """
    if op in ('eq', 'ne') and operand is None:
        return (value is None) if op == 'eq' else (value is not None)

    if value is None:
        return False

    if op in ('eq', 'ne', 'gt', 'gte', 'lt', 'lte'):
        coerced = to_storage_value(scalar_type, operand)
        if coerced is None:
            return False
        return _compare(op, value, coerced)

    if op == 'in':
        members = [to_storage_value(scalar_type, v) for v in as_list(operand)]
        return any(_compare('eq', value, m) for m in members if m is not None)

    if op in ('contains', 'startsWith', 'endsWith'):
        pattern = ascii_lower(to_storage_value(ScalarType.STRING, operand) or '')
        text = ascii_lower(_text_of(value))
        if op == 'contains':
            return pattern in text
        if op == 'startsWith':
            return text.startswith(pattern)
        return text.endswith(pattern)

    return False


def matches_operator_set(value: Any, operator_set: Dict[str, Any], scalar_type: Optional[ScalarType] = None) -> bool:
    """All operators present in the set must hold (AND)."""
    if not isinstance(operator_set, dict):
        return True
    for op in OPERATORS:
        if op not in operator_set:
            continue
        operand = operator_set[op]
        if not matches_operator(value, op, operand, operand_scalar_type(scalar_type, operand)):
            return False
    return True


def matches_row(row: Row, filter: Optional[FilterExpression], types: Optional[Dict[str, ScalarType]] = None) -> bool:
    """All field keys of the filter must hold for the row (AND)."""
    if not filter:
        return True
    types = types or {}
    for name, operator_set in filter.items():
        if not matches_operator_set(row.get(name), operator_set, types.get(name)):
            return False
    return True


def apply_field_filters(
    rows: List[Row],
    filter: Optional[FilterExpression],
    types: Optional[Dict[str, ScalarType]] = None,
) -> List[Row]:
    """
    Keep the rows satisfying every field key of the filter.

    Args:
        rows: Materialized rows
        filter: Filter expression with plain field keys
        types: Declared scalar types by field name

    Returns:
        Matching rows in their original order
    """
    if not filter:
        return list(rows)
    return [row for row in rows if matches_row(row, filter, types)]


def partition_filter(
    filter: Optional[FilterExpression],
    relationships: List[RelationshipDescriptor],
) -> Tuple[FilterExpression, Dict[str, Tuple[RelationshipDescriptor, FilterExpression]]]:
    """
    Split a filter into plain field keys and relationship keys.

    Returns:
        (field filter, {relationship field name: (relationship, nested filter)})
    """
    by_name = {rel.field_name: rel for rel in relationships}
    plain: FilterExpression = {}
    nested: Dict[str, Tuple[RelationshipDescriptor, FilterExpression]] = {}

    for key, value in (filter or {}).items():
        if key in by_name:
            nested[key] = (by_name[key], value or {})
        else:
            plain[key] = value

    return plain, nested


def has_relationship_filters(filter: Optional[FilterExpression], relationships: List[RelationshipDescriptor]) -> bool:
    if not filter or not relationships:
        return False
    names = {rel.field_name for rel in relationships}
    return any(key in names for key in filter)


def apply_nested_filters(
    rows: List[Row],
    filter: Optional[FilterExpression],
    relationships: List[RelationshipDescriptor],
    lookup: RelationshipLookup,
    types: Optional[Dict[str, ScalarType]] = None,
    target_types: Optional[Dict[str, Dict[str, ScalarType]]] = None,
    on_error: Optional[ErrorSink] = None,
) -> List[Row]:
    """
    Apply field filters, then relationship filters, to rows.

    Plain field keys are applied first. For each remaining row, every
    relationship key is checked by fetching the related rows through
    `lookup` and testing whether any of them satisfies the nested
    filter. A row whose local field is NULL, or whose lookup fails,
    does not match; failures are forwarded to `on_error`.

    Args:
        rows: Parent rows
        filter: Filter expression that may contain relationship keys
        relationships: Relationships declared on the parent dataset
        lookup: Fetches related rows for (relationship, parent value)
        types: Parent field types
        target_types: Field types of target datasets, by dataset name
        on_error: Sink for lookup failures (defaults to logging)

    Returns:
        Matching parent rows in their original order
    """
    plain, nested = partition_filter(filter, relationships)
    rows = apply_field_filters(rows, plain, types)
    if not nested:
        return rows

    on_error = on_error or log_lookup_failure
    target_types = target_types or {}
    cache: Dict[Tuple[str, str, Any], Optional[List[Row]]] = {}

    def related_rows(rel: RelationshipDescriptor, parent_value: Any) -> Optional[List[Row]]:
        key = (rel.field_name, rel.target_field, parent_value)
        if key not in cache:
            try:
                cache[key] = lookup(rel, parent_value)
            except LookupFailure as e:
                on_error(e)
                cache[key] = None
        return cache[key]

    result = []
    for row in rows:
        keep = True
        for rel, nested_filter in nested.values():
            parent_value = row.get(rel.local_field)
            if parent_value is None:
                keep = False
                break
            related = related_rows(rel, parent_value)
            if not related:
                keep = False
                break
            rel_types = target_types.get(rel.target_dataset)
            if not any(matches_row(r, nested_filter, rel_types) for r in related):
                keep = False
                break
        if keep:
            result.append(row)

    logger.debug("Relationship filters kept %d of %d rows", len(result), len(rows))
    return result
