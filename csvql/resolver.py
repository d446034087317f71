"""
Relationship resolution for individual result rows.

Given a parent row and one of its dataset's relationships, fetches the
related row (one-to-one) or a page of related rows (one-to-many) from
the row source. Lookup failures never escape: they go to the error sink
and the resolver answers None or [].
"""
import logging
from typing import Any, List, Optional, Union

from csvql.errors import ErrorSink, LookupFailure, log_lookup_failure
from csvql.models import (
    DEFAULT_LIMIT, MAX_LIMIT, Cardinality, DatasetDescriptor, FilterExpression, Pagination,
    RelationshipDescriptor, Row, strip_bookkeeping,
)
from csvql.scalars import serialize_row
from csvql.schema import SchemaRegistry
from csvql.sql import build_relationship_lookup

logger = logging.getLogger(__name__)


def output_row(dataset: DatasetDescriptor, row: Row) -> Row:
    """Stored row to output row: bookkeeping stripped, values typed."""
    return serialize_row(dataset.field_types, strip_bookkeeping(row))


class RelationshipResolver:
    """
    Resolves relationship fields against the row source.

    Example:
        resolver = RelationshipResolver(db, registry)
        rel = registry.dataset("Users").relationship_for("orders")
        orders = resolver.resolve(user_row, rel, pagination={"limit": 5})
    """

    def __init__(
        self,
        db: Any,
        registry: SchemaRegistry,
        on_error: Optional[ErrorSink] = None,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ):
        self.db = db
        self.registry = registry
        self.on_error = on_error or log_lookup_failure
        self.default_limit = default_limit
        self.max_limit = max_limit

    def resolve(
        self,
        parent_row: Row,
        relationship: RelationshipDescriptor,
        filter: Optional[FilterExpression] = None,
        pagination: Any = None,
    ) -> Union[Row, List[Row], None]:
        """
        Resolve one relationship field of a parent row.

        Args:
            parent_row: Row of the owning dataset
            relationship: Relationship to traverse
            filter: Optional filter on the target dataset
            pagination: Pagination or {offset, limit}; one-to-many only

        Returns:
            Related row or None (one-to-one), list of rows (one-to-many)
        """
        if relationship.is_many:
            return self._resolve_many(parent_row, relationship, filter, pagination)
        return self._resolve_one(parent_row, relationship, filter)

    def _resolve_one(self, parent_row: Row, relationship: RelationshipDescriptor,
                     filter: Optional[FilterExpression]) -> Optional[Row]:
        parent_value = parent_row.get(relationship.local_field)
        target = self.registry.get(relationship.target_dataset)
        if parent_value is None or target is None:
            return None

        statement = build_relationship_lookup(
            target.dataset, relationship.target_field, parent_value, Cardinality.ONE_TO_ONE, filter,
        )
        try:
            rows = self.db.execute(statement)
        except LookupFailure as e:
            self.on_error(e)
            return None

        return output_row(target.dataset, rows[0]) if rows else None

    def _resolve_many(self, parent_row: Row, relationship: RelationshipDescriptor,
                      filter: Optional[FilterExpression], pagination: Any) -> List[Row]:
        page = Pagination.from_value(pagination).clamp(self.default_limit, self.max_limit)
        if page.limit == 0:
            return []

        parent_value = parent_row.get(relationship.local_field)
        target = self.registry.get(relationship.target_dataset)
        if parent_value is None or target is None:
            return []

        statement = build_relationship_lookup(
            target.dataset, relationship.target_field, parent_value, Cardinality.ONE_TO_MANY, filter, page,
        )
        try:
            rows = self.db.execute(statement)
        except LookupFailure as e:
            self.on_error(e)
            return []

        return [output_row(target.dataset, row) for row in rows]

    def lookup(self, relationship: RelationshipDescriptor, parent_value: Any) -> List[Row]:
        """
        Fetch every stored row related to a parent value.

        Used for relationship filters, where truncating the related set
        could hide a match. Rows keep their stored representation.

        Raises:
            LookupFailure: The row source failed
        """
        target = self.registry.get(relationship.target_dataset)
        if target is None:
            return []
        statement = build_relationship_lookup(
            target.dataset, relationship.target_field, parent_value, Cardinality.ONE_TO_MANY,
        )
        return self.db.execute(statement)
