"""
Load cycle ownership: metadata, CSV loading, schema synthesis, refresh.

A Catalog builds a Snapshot (row store, schema registry, executor and
resolver) per load cycle. refresh() builds the next snapshot completely
before swapping it in, so a reader that took `catalog.snapshot` keeps a
consistent view for the whole request. Refreshes are serialized; a
failed refresh leaves the previous snapshot in service.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.engine import make_url

from csvql.config import CsvqlConfig, get_config
from csvql.db import MEMORY, Database
from csvql.errors import FailureRecorder, log_lookup_failure
from csvql.executor import QueryExecutor
from csvql.loader import CsvLoader
from csvql.metadata import MetadataLoader
from csvql.models import DatasetDescriptor, FilterExpression, Row
from csvql.resolver import RelationshipResolver
from csvql.results import ResultEnvelope
from csvql.schema import SchemaRegistry, SchemaSynthesizer

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """Everything one load cycle produced; read-only once published."""
    database: Database
    registry: SchemaRegistry
    executor: QueryExecutor
    resolver: RelationshipResolver
    row_counts: Dict[str, int] = field(default_factory=dict)
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Catalog:
    """
    Owner of the current load cycle.

    Every load cycle gets its own storage: a private in-memory database,
    or a file of its own beside the configured database path. A refresh
    therefore never touches tables a published snapshot reads. The
    replaced snapshot stays readable until the next refresh (or close())
    discards it, so a request that took it just before the swap can
    finish.

    Example:
        with Catalog(get_config()) as catalog:
            result = catalog.query("users", {"orders": {"status": {"eq": "completed"}}})
    """

    def __init__(self, config: Optional[CsvqlConfig] = None,
                 datasets: Optional[List[DatasetDescriptor]] = None):
        """
        Args:
            config: Configuration (global configuration if omitted)
            datasets: Dataset descriptors to load instead of reading metadata
        """
        self.config = config or get_config()
        self.datasets = datasets
        self.failures = FailureRecorder(chain=log_lookup_failure)
        self._snapshot: Optional[Snapshot] = None
        self._retired: Optional[Snapshot] = None
        self._generation = 0
        self._lock = threading.Lock()

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def snapshot(self) -> Snapshot:
        """Current snapshot, loading the first one on demand."""
        snapshot = self._snapshot
        if snapshot is None:
            return self.refresh()
        return snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def refresh(self) -> Snapshot:
        """
        Build a new snapshot and publish it.

        Raises:
            CsvqlError: Metadata, loading or synthesis failed; the previous
                snapshot stays in service
        """
        with self._lock:
            snapshot = self._build()
            replaced, self._snapshot = self._snapshot, snapshot
            if self._retired is not None:
                self._retired.database.discard()
            self._retired = replaced

        logger.info(
            "Refresh completed: %d datasets, %d rows",
            len(snapshot.registry), sum(snapshot.row_counts.values()),
        )
        return snapshot

    def close(self) -> None:
        """Discard the storage of every snapshot; the next access reloads."""
        with self._lock:
            for snapshot in (self._retired, self._snapshot):
                if snapshot is not None:
                    snapshot.database.discard()
            self._snapshot = None
            self._retired = None

    def _cycle_url(self) -> str:
        """Storage URL for the next load cycle."""
        url = make_url(self.config.get_database_url())
        if not url.database or url.database == MEMORY:
            return url.render_as_string(hide_password=False)

        self._generation += 1
        path = Path(url.database)
        cycle = path.with_name(f"{path.stem}-{self._generation}-{uuid.uuid4().hex[:8]}{path.suffix}")
        return url.set(database=str(cycle)).render_as_string(hide_password=False)

    def _build(self) -> Snapshot:
        config = self.config
        db = Database(url=self._cycle_url(), echo=config.database_echo)
        try:
            datasets = self.datasets
            if datasets is None:
                datasets = MetadataLoader(config.metadata_dir).load(config.metadata_file)

            loaded = CsvLoader(db, config.data_dir).load_all(datasets)
            registry = SchemaSynthesizer(db).synthesize(loaded)
            row_counts = {name: db.row_count(name) for name in registry.names}
        except Exception:
            db.discard()
            raise

        resolver = RelationshipResolver(
            db, registry,
            on_error=self.failures,
            default_limit=config.default_limit,
            max_limit=config.max_limit,
        )
        executor = QueryExecutor(
            db, registry,
            on_error=self.failures,
            default_limit=config.default_limit,
            max_limit=config.max_limit,
            resolver=resolver,
        )
        return Snapshot(
            database=db,
            registry=registry,
            executor=executor,
            resolver=resolver,
            row_counts=row_counts,
        )

    # =========================================================================
    # Convenience entry points
    # =========================================================================

    def query(self, query_name: str, filter: Optional[FilterExpression] = None,
              pagination: Any = None) -> ResultEnvelope:
        """Run a root query by its surface field name."""
        return self.snapshot.executor.execute_query(query_name, filter, pagination)

    def resolve(self, dataset_name: str, row: Row, field_name: str,
                filter: Optional[FilterExpression] = None,
                pagination: Any = None) -> Union[Row, List[Row], None]:
        """Resolve a relationship field of a row from the given dataset."""
        snapshot = self.snapshot
        relationship = snapshot.registry.dataset(dataset_name).relationship_for(field_name)
        if relationship is None:
            raise KeyError(f"Dataset '{dataset_name}' has no relationship field '{field_name}'")
        return snapshot.resolver.resolve(row, relationship, filter, pagination)

    def status(self) -> Dict[str, Any]:
        """Summary of the current snapshot."""
        snapshot = self._snapshot
        if snapshot is None:
            return {"loaded": False, "datasets": [], "lookup_failures": len(self.failures)}
        return {
            "loaded": True,
            "loaded_at": snapshot.loaded_at.isoformat(),
            "datasets": [
                {
                    "name": types.name,
                    "query": types.query_name,
                    "rows": snapshot.row_counts.get(types.name, 0),
                    "fields": len(types.dataset.fields),
                    "relationships": len(types.dataset.relationships),
                }
                for types in snapshot.registry
            ],
            "lookup_failures": len(self.failures),
        }
