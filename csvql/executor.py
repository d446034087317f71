"""
Query execution for root query fields.

The executor answers one root query (dataset, filter, pagination) with
a ResultEnvelope. Per query it picks one of two strategies:

- SQL path: the filter has no relationship keys, so COUNT and SELECT
  are pushed to the row source with the filter as a WHERE clause.
- Memory path: the filter names at least one relationship field. The
  whole dataset is read, field and relationship filters are applied by
  csvql.filters, and the filtered rows are paginated in memory.

Both paths clamp pagination the same way, strip bookkeeping columns
and report row-source failures to the error sink, answering with an
empty envelope instead of raising.
"""
import logging
from enum import Enum
from typing import Any, List, Optional, Tuple

from csvql.errors import ErrorSink, LookupFailure, log_lookup_failure
from csvql.filters import apply_nested_filters, has_relationship_filters
from csvql.models import DEFAULT_LIMIT, MAX_LIMIT, DatasetDescriptor, FilterExpression, Pagination, Row
from csvql.resolver import RelationshipResolver, output_row
from csvql.results import ResultEnvelope
from csvql.schema import SchemaRegistry
from csvql.sql import build_count, build_select

logger = logging.getLogger(__name__)


class Strategy(Enum):
    """Evaluation strategy chosen per root query."""
    SQL = "sql"
    MEMORY = "memory"


def choose_strategy(dataset: DatasetDescriptor, filter: Optional[FilterExpression]) -> Strategy:
    """Memory path when any top-level key names a relationship field."""
    if has_relationship_filters(filter, dataset.relationships):
        return Strategy.MEMORY
    return Strategy.SQL


class QueryExecutor:
    """
    Executes root queries against one load cycle's registry and row source.

    Example:
        executor = QueryExecutor(db, registry)
        result = executor.execute("Users", {"orders": {"status": {"eq": "completed"}}})
        result.to_dict()  # {"items": [...], "totalCount": 1, "offset": 0, "limit": 100}
    """

    def __init__(
        self,
        db: Any,
        registry: SchemaRegistry,
        on_error: Optional[ErrorSink] = None,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
        resolver: Optional[RelationshipResolver] = None,
    ):
        self.db = db
        self.registry = registry
        self.on_error = on_error or log_lookup_failure
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.resolver = resolver or RelationshipResolver(
            db, registry, on_error=self.on_error, default_limit=default_limit, max_limit=max_limit,
        )

    def execute(
        self,
        dataset_name: str,
        filter: Optional[FilterExpression] = None,
        pagination: Any = None,
    ) -> ResultEnvelope:
        """
        Run a root query.

        Args:
            dataset_name: Dataset to query
            filter: Filter expression (may contain relationship keys)
            pagination: Pagination or {offset, limit}

        Returns:
            Result envelope; totalCount counts filtered rows before pagination

        Raises:
            KeyError: Unknown dataset
        """
        dataset = self.registry.dataset(dataset_name)
        page = Pagination.from_value(pagination).clamp(self.default_limit, self.max_limit)

        if page.limit == 0:
            return ResultEnvelope.empty(offset=page.offset, limit=0)

        strategy = choose_strategy(dataset, filter)
        logger.debug("Query %s: %s path", dataset.name, strategy.value)

        try:
            if strategy == Strategy.MEMORY:
                rows, total = self._execute_memory(dataset, filter, page)
            else:
                rows, total = self._execute_sql(dataset, filter, page)
        except LookupFailure as e:
            self.on_error(e)
            return ResultEnvelope.empty(offset=page.offset, limit=page.limit, strategy=strategy.value)

        return ResultEnvelope(
            items=[output_row(dataset, row) for row in rows],
            total_count=total,
            offset=page.offset,
            limit=page.limit,
            metadata={'strategy': strategy.value},
        )

    def execute_query(self, query_name: str, filter: Optional[FilterExpression] = None,
                      pagination: Any = None) -> ResultEnvelope:
        """Run a root query by its surface field name (e.g. "users")."""
        dataset = self.registry.dataset_for_query(query_name)
        if dataset is None:
            raise KeyError(f"Unknown query field: {query_name}")
        return self.execute(dataset.name, filter, pagination)

    def _execute_sql(self, dataset: DatasetDescriptor, filter: Optional[FilterExpression],
                     page: Pagination) -> Tuple[List[Row], int]:
        total = self.db.count(build_count(dataset, filter))
        rows = self.db.execute(build_select(dataset, filter, page))
        return rows, total

    def _execute_memory(self, dataset: DatasetDescriptor, filter: Optional[FilterExpression],
                        page: Pagination) -> Tuple[List[Row], int]:
        rows = self.db.execute(build_select(dataset))
        matched = apply_nested_filters(
            rows,
            filter,
            dataset.relationships,
            self.resolver.lookup,
            types=dataset.field_types,
            target_types=self.registry.field_types(),
            on_error=self.on_error,
        )
        return page.window(matched), len(matched)
