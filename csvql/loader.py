"""
CSV dataset loader.

Reads a dataset's CSV source (header row required), trims cells, skips
blank lines and loads the rows into the row store. Column names are
sanitized to SQL-safe identifiers, and declared field and relationship
names are normalized the same way so they keep matching.
"""
import csv
import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Union

from csvql.errors import LoaderError
from csvql.metadata import resolve_csv_path
from csvql.models import DatasetDescriptor, FieldDescriptor, RelationshipDescriptor
from csvql.schema import infer_schema
from csvql.sql import sanitize_identifier

logger = logging.getLogger(__name__)


def normalize_dataset(dataset: DatasetDescriptor) -> DatasetDescriptor:
    """Copy of a descriptor with field names sanitized like CSV headers."""
    return DatasetDescriptor(
        name=dataset.name,
        fields=[replace(f, name=sanitize_identifier(f.name)) for f in dataset.fields],
        relationships=[
            RelationshipDescriptor(
                local_field=sanitize_identifier(rel.local_field),
                target_dataset=rel.target_dataset,
                target_field=sanitize_identifier(rel.target_field),
                cardinality=rel.cardinality,
            )
            for rel in dataset.relationships
        ],
        path=dataset.path,
    )


def read_csv(path: Union[str, Path]) -> List[Dict[str, str]]:
    """
    Parse a CSV file into row dictionaries keyed by sanitized header.

    Raises:
        LoaderError: File missing or not readable as CSV
    """
    path = Path(path)
    if not path.exists():
        raise LoaderError(f"CSV file not found: {path}")

    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            reader = csv.reader(f)
            header = next(reader, None)
            if header is None:
                return []
            columns = [sanitize_identifier(h.strip()) for h in header]

            rows = []
            for record in reader:
                if not record or all(not cell.strip() for cell in record):
                    continue
                cells = [cell.strip() for cell in record]
                rows.append({
                    column: cells[i] if i < len(cells) else ""
                    for i, column in enumerate(columns)
                })
            return rows
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise LoaderError(f"Cannot read CSV file {path}: {e}") from e


class CsvLoader:
    """
    Loads CSV datasets into a Database.

    Example:
        loader = CsvLoader(db, data_dir="data/csv")
        dataset = loader.load(DatasetDescriptor(name="Users"))
    """

    def __init__(self, db, data_dir: Union[str, Path] = "data/csv"):
        self.db = db
        self.data_dir = Path(data_dir)

    def load(self, dataset: DatasetDescriptor) -> DatasetDescriptor:
        """
        Load one dataset into its table.

        Returns:
            The normalized descriptor with its full field schema

        Raises:
            LoaderError: The CSV source cannot be read
        """
        dataset = normalize_dataset(dataset)
        path = resolve_csv_path(dataset, self.data_dir)
        rows = read_csv(path)

        fields: List[FieldDescriptor] = infer_schema(rows[:1], dataset.fields)
        self.db.create_table(dataset.name, fields)
        count = self.db.insert_rows(dataset.name, rows, fields)

        logger.info("Loaded %d rows into %s from %s", count, dataset.name, path)
        return replace(dataset, fields=fields)

    def load_all(self, datasets: List[DatasetDescriptor]) -> List[DatasetDescriptor]:
        return [self.load(dataset) for dataset in datasets]
