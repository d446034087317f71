"""
Row store for csvql.

Holds one SQLite table per dataset and runs the statements produced by
csvql.sql. Works with a database file or, by default, an in-process
":memory:" database that lives as long as the Database object.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional

from sqlalchemy import Column, Index, Integer, MetaData, Table, create_engine, event, inspect
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool, StaticPool

from csvql.errors import LookupFailure
from csvql.models import ROWID_COLUMN, FieldDescriptor, Row
from csvql.scalars import column_type, to_storage_value
from csvql.sql import Statement, quote, sanitize_identifier

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class Database:
    """
    Minimal row-store interface for csvql.

    Tables are created from field descriptors; rows are stored through
    the scalar type registry so the stored representation is the one
    both filter engines compare against.
    """

    def __init__(self, path: Optional[str] = None, url: Optional[str] = None, echo: bool = False):
        """
        Initialize database connection.

        Args:
            path: SQLite file path, or ":memory:" (the default)
            url: Full SQLAlchemy URL (overrides path)
            echo: Echo generated SQL

        Examples:
            Database()                       # in-memory
            Database(path="csvql.db")        # SQLite file
            Database(url="sqlite:///x.db")
        """
        if url:
            self.url = url
        elif path and str(path) != MEMORY:
            self.url = f"sqlite:///{Path(path)}"
        else:
            self.url = "sqlite://"

        database = make_url(self.url).database
        self.path: Optional[Path] = Path(database) if database and database != MEMORY else None

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False},
                poolclass=NullPool,
                echo=echo,
            )
        else:
            # One shared connection keeps the in-memory database alive
            self.engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
        event.listen(self.engine, "connect", self._configure_sqlite)

        self.metadata = MetaData()
        self._tables: Dict[str, Table] = {}

    @staticmethod
    def _configure_sqlite(dbapi_conn, connection_record):
        """Configure SQLite for bulk loading and read-mostly use."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA cache_size = -64000")  # 64MB cache
        cursor.execute("PRAGMA temp_store = MEMORY")
        cursor.close()

    @contextmanager
    def connect(self) -> Generator[Connection, None, None]:
        """
        Context manager for a transactional connection.

        Yields:
            SQLAlchemy connection, committed on success and rolled back on error
        """
        with self.engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        self.engine.dispose()

    def discard(self) -> None:
        """Dispose the engine and delete the database file with its WAL/SHM files."""
        self.dispose()
        if self.path is None:
            return
        for suffix in ("", "-wal", "-shm", "-journal"):
            file = Path(f"{self.path}{suffix}")
            try:
                file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Cannot remove %s: %s", file, e)

    # =========================================================================
    # Tables
    # =========================================================================

    def create_table(self, name: str, fields: List[FieldDescriptor]) -> Table:
        """
        Drop and recreate the table for a dataset.

        Args:
            name: Dataset name
            fields: Ordered field descriptors

        Returns:
            The SQLAlchemy table
        """
        table_name = sanitize_identifier(name)
        existing = self.metadata.tables.get(table_name)
        if existing is not None:
            self.metadata.remove(existing)

        columns = [Column(ROWID_COLUMN, Integer, primary_key=True, autoincrement=True)]
        seen = {ROWID_COLUMN}
        for f in fields:
            column_name = sanitize_identifier(f.name)
            if column_name in seen:
                continue
            seen.add(column_name)
            columns.append(Column(column_name, column_type(f.type)))

        table = Table(table_name, self.metadata, *columns, sqlite_autoincrement=True)
        for column in columns[1:]:
            Index(f"idx_{table_name}_{column.name}", column)

        with self.connect() as conn:
            table.drop(conn, checkfirst=True)
            table.create(conn)

        self._tables[name] = table
        logger.debug("Created table %s with %d columns", table_name, len(columns) - 1)
        return table

    def insert_rows(self, name: str, rows: Iterable[Row], fields: List[FieldDescriptor]) -> int:
        """
        Insert rows into a dataset's table in one transaction.

        Each value is converted with the field's scalar type; columns the
        row does not carry are stored as NULL.

        Returns:
            Number of rows inserted
        """
        table = self._tables.get(name)
        if table is None:
            raise KeyError(f"Table for dataset '{name}' has not been created")

        records = []
        for row in rows:
            record = {}
            for f in fields:
                column_name = sanitize_identifier(f.name)
                record[column_name] = to_storage_value(f.type, row.get(f.name))
            records.append(record)

        if records:
            with self.connect() as conn:
                conn.execute(table.insert(), records)

        logger.debug("Inserted %d rows into %s", len(records), name)
        return len(records)

    def has_table(self, name: str) -> bool:
        return inspect(self.engine).has_table(sanitize_identifier(name))

    def table_names(self) -> List[str]:
        return inspect(self.engine).get_table_names()

    # =========================================================================
    # Row source
    # =========================================================================

    def execute(self, statement: Statement) -> List[Row]:
        """
        Run a SELECT statement.

        Args:
            statement: Statement with positional ? parameters

        Returns:
            Rows as dictionaries, including bookkeeping columns

        Raises:
            LookupFailure: The row source failed
        """
        try:
            with self.connect() as conn:
                result = conn.exec_driver_sql(statement.sql, tuple(statement.params))
                return [dict(row) for row in result.mappings()]
        except (SQLAlchemyError, OverflowError) as e:
            raise LookupFailure(statement.dataset, f"Query on '{statement.dataset}' failed: {e}") from e

    def count(self, statement: Statement) -> int:
        """Run a COUNT statement and return its single value."""
        try:
            with self.connect() as conn:
                result = conn.exec_driver_sql(statement.sql, tuple(statement.params))
                value = result.scalar()
        except (SQLAlchemyError, OverflowError) as e:
            raise LookupFailure(statement.dataset, f"Count on '{statement.dataset}' failed: {e}") from e
        return int(value or 0)

    def sample(self, name: str, limit: int = 1) -> List[Row]:
        """First rows of a dataset in insertion order."""
        sql = f"SELECT * FROM {quote(name)} ORDER BY {quote(ROWID_COLUMN)} LIMIT ?"
        return self.execute(Statement(dataset=name, sql=sql, params=[limit]))

    def row_count(self, name: str) -> int:
        sql = f"SELECT COUNT(*) AS count FROM {quote(name)}"
        return self.count(Statement(dataset=name, sql=sql))

    def __repr__(self) -> str:
        return f"Database({self.url!r})"

