"""
Result envelope returned by every paginated csvql query.

The envelope carries the page of rows plus the pagination that
produced it. total_count is counted after filtering and before
pagination, so callers can page through a result set:

    result = executor.execute("Orders", {"status": {"eq": "completed"}},
                              Pagination(offset=0, limit=10))
    while result.has_more:
        ...
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from csvql.models import Row


@dataclass
class ResultEnvelope:
    """
    A page of rows from one dataset.

    Supports:
    - Iteration over items
    - Indexing
    - Length
    - Serialization to the surface shape {items, totalCount, offset, limit}
    """
    items: List[Row] = field(default_factory=list)
    total_count: int = 0
    offset: int = 0
    limit: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.items)

    def __getitem__(self, idx: Union[int, slice]) -> Union[Row, List[Row]]:
        return self.items[idx]

    def __bool__(self) -> bool:
        return len(self.items) > 0

    @property
    def has_more(self) -> bool:
        """Check if rows remain beyond this page."""
        return self.offset + len(self.items) < self.total_count

    def first(self) -> Optional[Row]:
        return self.items[0] if self.items else None

    def map(self, func: Callable[[Row], Row]) -> "ResultEnvelope":
        """Apply a function to each row, keeping the pagination."""
        return ResultEnvelope(
            items=[func(item) for item in self.items],
            total_count=self.total_count,
            offset=self.offset,
            limit=self.limit,
            metadata=self.metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the query-surface shape."""
        return {
            'items': list(self.items),
            'totalCount': self.total_count,
            'offset': self.offset,
            'limit': self.limit,
        }

    @classmethod
    def empty(cls, offset: int = 0, limit: int = 0, **metadata) -> "ResultEnvelope":
        """Create an empty result."""
        return cls(items=[], total_count=0, offset=offset, limit=limit, metadata=dict(metadata))
