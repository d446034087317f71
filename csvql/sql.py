"""
Predicate translator: filter expressions to SQL.

Converts a structured filter for a single dataset into a WHERE clause
with positional (?) placeholders plus the ordered parameter list. Every
field's operator set becomes a parenthesized AND group and all groups
are ANDed; there is no OR composition.

Operator translation, for column F and operand v:

    eq: null          F IS NULL
    eq: v             F = ?
    ne: null          F IS NOT NULL
    ne: v             F != ?
    gt/gte/lt/lte: v  F > ? / F >= ? / F < ? / F <= ?
    in: []            1 = 0
    in: [v, ...]      F IN (?, ...)
    contains: s       LOWER(F) LIKE LOWER('%s%') ESCAPE '\\'
    startsWith: s     LOWER(F) LIKE LOWER('s%')  ESCAPE '\\'
    endsWith: s       LOWER(F) LIKE LOWER('%s')  ESCAPE '\\'

Operands are coerced through the scalar type registry using the field's
declared type. String operators are case-insensitive for ASCII letters.
A Float column is matched through its printf('%!.15g', F) text, which
format_real reproduces. The in-memory engine in csvql.filters applies
the same rules, and the two must stay equivalent for every
non-relationship filter.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from csvql.models import (
    OPERATORS, ROWID_COLUMN, Cardinality, DatasetDescriptor, FilterExpression, Pagination,
)
from csvql.scalars import ScalarType, as_list, operand_scalar_type, to_storage_value

logger = logging.getLogger(__name__)

LIKE_ESCAPE = '\\'
MATCH_NOTHING = "1 = 0"

_COMPARISON_SQL = {
    'eq': '=',
    'ne': '!=',
    'gt': '>',
    'gte': '>=',
    'lt': '<',
    'lte': '<=',
}

_PATTERN_TEMPLATES = {
    'contains': '%{}%',
    'startsWith': '{}%',
    'endsWith': '%{}',
}


def sanitize_identifier(identifier: str) -> str:
    """Replace anything outside [A-Za-z0-9_]; prefix a leading digit with '_'."""
    sanitized = re.sub(r'[^a-zA-Z0-9_]', '_', str(identifier))
    if re.match(r'^\d', sanitized):
        return f"_{sanitized}"
    return sanitized


def quote(identifier: str) -> str:
    return f'"{sanitize_identifier(identifier)}"'


def escape_like(s: str) -> str:
    return s.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


# =============================================================================
# Operator and field translation
# =============================================================================

def operator_to_sql(column: str, op: str, value: Any, scalar_type: ScalarType,
                    text_column: Optional[str] = None) -> Tuple[str, list]:
    """
    Translate one operator applied to one column.

    Args:
        column: Quoted column reference
        op: Operator name from OPERATORS
        value: Operand as given in the filter
        scalar_type: Type used to coerce the operand
        text_column: Text rendering of the column for pattern operators

    Returns:
        Tuple of (SQL fragment with ? placeholders, list of parameters)
    """
    if op in ('eq', 'ne') and value is None:
        return (f"{column} IS NULL", []) if op == 'eq' else (f"{column} IS NOT NULL", [])

    if op in _COMPARISON_SQL:
        return f"{column} {_COMPARISON_SQL[op]} ?", [to_storage_value(scalar_type, value)]

    if op == 'in':
        values = [to_storage_value(scalar_type, v) for v in as_list(value)]
        if not values:
            return MATCH_NOTHING, []
        placeholders = ', '.join('?' * len(values))
        return f"{column} IN ({placeholders})", values

    if op in _PATTERN_TEMPLATES:
        pattern = _PATTERN_TEMPLATES[op].format(escape_like(to_storage_value(ScalarType.STRING, value) or ''))
        return f"LOWER({text_column or column}) LIKE LOWER(?) ESCAPE '{LIKE_ESCAPE}'", [pattern]

    raise ValueError(f"Unknown filter operator: {op}")


def field_to_sql(name: str, operator_set: Dict[str, Any], scalar_type: Optional[ScalarType] = None) -> Tuple[str, list]:
    """
    Translate one field's operator set; operators are ANDed.

    Returns ("", []) when the set holds no known operator.
    """
    if not isinstance(operator_set, dict):
        return "", []

    column = quote(name)
    text_column = None
    if scalar_type == ScalarType.FLOAT:
        # printf() renders NULL as 0.0
        text_column = f"(CASE WHEN {column} IS NULL THEN NULL ELSE printf('%!.15g', {column}) END)"
    conditions = []
    params: list = []

    for op in OPERATORS:
        if op not in operator_set:
            continue
        value = operator_set[op]
        sql, p = operator_to_sql(column, op, value, operand_scalar_type(scalar_type, value), text_column)
        conditions.append(sql)
        params.extend(p)

    if not conditions:
        return "", []
    return f"({' AND '.join(conditions)})", params


def filter_to_sql(dataset: DatasetDescriptor, filter: Optional[FilterExpression]) -> Tuple[str, list]:
    """
    Translate a filter expression into a WHERE clause body.

    Keys naming one of the dataset's relationship fields are skipped;
    relationship filters are evaluated in memory by csvql.filters.
    """
    if not filter:
        return "", []

    types = dataset.field_types
    relationship_names = set(dataset.relationship_field_names)
    conditions = []
    params: list = []

    for name, operator_set in filter.items():
        if name in relationship_names and name not in types:
            continue
        scalar_type = types.get(name)
        sql, p = field_to_sql(name, operator_set, scalar_type)
        if sql:
            conditions.append(sql)
            params.extend(p)

    return ' AND '.join(conditions), params


# =============================================================================
# Statements
# =============================================================================

@dataclass
class Statement:
    """A translated SQL statement bound to the dataset it reads."""
    dataset: str
    sql: str
    params: List[Any] = field(default_factory=list)

    def __iter__(self):
        # Allows `sql, params = statement`
        yield self.sql
        yield self.params


def _pagination_sql(pagination: Optional[Pagination], params: list) -> str:
    if pagination is None or (pagination.limit is None and not pagination.offset):
        return ""
    sql = " LIMIT ?"
    params.append(-1 if pagination.limit is None else pagination.limit)
    if pagination.offset:
        sql += " OFFSET ?"
        params.append(pagination.offset)
    return sql


def build_select(
    dataset: DatasetDescriptor,
    filter: Optional[FilterExpression] = None,
    pagination: Optional[Pagination] = None,
) -> Statement:
    """
    Build a SELECT over one dataset ordered by insertion sequence.

    Args:
        dataset: Dataset to read
        filter: Optional filter expression (relationship keys ignored)
        pagination: Optional clamped pagination window

    Returns:
        Statement with ? placeholders in left-to-right order
    """
    params: list = []
    sql = f"SELECT * FROM {quote(dataset.name)}"

    where, where_params = filter_to_sql(dataset, filter)
    if where:
        sql += f" WHERE {where}"
        params.extend(where_params)

    sql += f" ORDER BY {quote(ROWID_COLUMN)}"
    sql += _pagination_sql(pagination, params)

    logger.debug("select %s: %s %r", dataset.name, sql, params)
    return Statement(dataset=dataset.name, sql=sql, params=params)


def build_count(dataset: DatasetDescriptor, filter: Optional[FilterExpression] = None) -> Statement:
    """Build the COUNT(*) matching build_select's filter."""
    sql = f"SELECT COUNT(*) AS count FROM {quote(dataset.name)}"
    where, params = filter_to_sql(dataset, filter)
    if where:
        sql += f" WHERE {where}"
    return Statement(dataset=dataset.name, sql=sql, params=list(params))


def build_relationship_lookup(
    target: DatasetDescriptor,
    target_field: str,
    parent_value: Any,
    cardinality: Cardinality,
    filter: Optional[FilterExpression] = None,
    pagination: Optional[Pagination] = None,
) -> Statement:
    """
    Build the lookup of rows related to one parent value.

    ONE_TO_ONE lookups return the first match only and ignore
    pagination; ONE_TO_MANY lookups apply the given window, or return
    every related row when pagination is None.
    """
    types = target.field_types
    scalar_type = operand_scalar_type(types.get(target_field), parent_value)

    params: list = [to_storage_value(scalar_type, parent_value)]
    sql = f"SELECT * FROM {quote(target.name)} WHERE {quote(target_field)} = ?"

    where, where_params = filter_to_sql(target, filter)
    if where:
        sql += f" AND {where}"
        params.extend(where_params)

    sql += f" ORDER BY {quote(ROWID_COLUMN)}"

    if cardinality == Cardinality.ONE_TO_ONE:
        sql += " LIMIT 1"
    else:
        sql += _pagination_sql(pagination, params)

    return Statement(dataset=target.name, sql=sql, params=params)
