"""
Dataset metadata loading from YAML.

The main metadata file lists datasets:

    datasets:
      - name: Users
        path: users.csv
        fields:
          - name: id
            type: Int
          - name: is_active
            type: Boolean
        relationships:
          - field: id
            references: Orders
            referenceField: user_id
            type: one-to-many
      - name: Orders
        metadataFile: orders.yaml

An entry naming a metadataFile is merged with that file (resolved
relative to the metadata directory): the external path wins, fields
merge by name and relationships by (field, references, referenceField).
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from csvql.errors import MetadataError
from csvql.models import DatasetDescriptor, FieldDescriptor, RelationshipDescriptor

logger = logging.getLogger(__name__)

DATASET_KEYS = ("datasets", "csvs")


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise MetadataError(f"Metadata file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise MetadataError(f"Invalid YAML in {path}: {e}") from e


def merge_fields(base: List[Dict[str, Any]], external: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Merge field entries by name; external entries override base ones."""
    merged: Dict[str, Dict[str, Any]] = {}
    for f in base:
        merged[f["name"]] = dict(f)
    for f in external:
        existing = merged.get(f["name"])
        if existing is None:
            merged[f["name"]] = dict(f)
        else:
            merged[f["name"]] = {
                **existing,
                **f,
                "description": f.get("description") or existing.get("description"),
            }
    return list(merged.values())


def _relationship_key(rel: Dict[str, Any]) -> tuple:
    return (rel.get("field"), rel.get("references"), rel.get("referenceField"))


def merge_relationships(base: List[Dict[str, Any]], external: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Merge relationship entries by (field, references, referenceField)."""
    merged: Dict[tuple, Dict[str, Any]] = {}
    for rel in list(base) + list(external):
        merged[_relationship_key(rel)] = dict(rel)
    return list(merged.values())


def dataset_from_dict(data: Dict[str, Any]) -> DatasetDescriptor:
    """
    Build a DatasetDescriptor from a metadata entry.

    Raises:
        MetadataError: Missing name, bad field or relationship entry
    """
    if not isinstance(data, dict) or not data.get("name"):
        raise MetadataError(f"Dataset entry without a name: {data!r}")

    name = str(data["name"])
    try:
        fields = [FieldDescriptor.from_dict(f) for f in data.get("fields") or []]
        relationships = [RelationshipDescriptor.from_dict(r) for r in data.get("relationships") or []]
    except (KeyError, TypeError, ValueError) as e:
        raise MetadataError(f"Invalid metadata for dataset '{name}': {e}") from e

    return DatasetDescriptor(
        name=name,
        fields=fields,
        relationships=relationships,
        path=data.get("path"),
    )


class MetadataLoader:
    """
    Loads dataset descriptors from a metadata directory.

    Example:
        loader = MetadataLoader("data/metadata")
        datasets = loader.load()              # metadata.yaml
        datasets = loader.load("other.yaml")
    """

    def __init__(self, metadata_dir: Union[str, Path] = "data/metadata"):
        self.metadata_dir = Path(metadata_dir)

    def load(self, metadata_file: str = "metadata.yaml") -> List[DatasetDescriptor]:
        """
        Load and merge all dataset entries of the main metadata file.

        Raises:
            MetadataError: File missing, invalid YAML or invalid entries
        """
        content = _read_yaml(self.metadata_dir / metadata_file)
        entries = self._dataset_entries(content)

        datasets = []
        for entry in entries:
            if isinstance(entry, dict) and entry.get("metadataFile"):
                entry = self.merge(entry, self.load_external(entry["metadataFile"]))
            datasets.append(dataset_from_dict(entry))

        names = [d.name for d in datasets]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise MetadataError(f"Duplicate dataset names: {', '.join(duplicates)}")

        logger.info("Loaded metadata for %d datasets from %s", len(datasets), self.metadata_dir / metadata_file)
        return datasets

    def load_external(self, metadata_file: str) -> Dict[str, Any]:
        content = _read_yaml(self.metadata_dir / metadata_file)
        if content is None:
            return {}
        if not isinstance(content, dict):
            raise MetadataError(f"External metadata must be a mapping: {metadata_file}")
        return content

    @staticmethod
    def merge(base: Dict[str, Any], external: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "name": base.get("name"),
            "path": external.get("path") or base.get("path"),
            "metadataFile": base.get("metadataFile"),
            "fields": merge_fields(base.get("fields") or [], external.get("fields") or []),
            "relationships": merge_relationships(
                base.get("relationships") or [], external.get("relationships") or []
            ),
        }

    @staticmethod
    def _dataset_entries(content: Any) -> List[Any]:
        if isinstance(content, dict):
            for key in DATASET_KEYS:
                if isinstance(content.get(key), list):
                    return content[key]
        raise MetadataError('Invalid metadata format: missing or invalid "datasets" list')


def resolve_csv_path(dataset: DatasetDescriptor, data_dir: Union[str, Path] = "data/csv") -> Path:
    """
    Path of a dataset's CSV source.

    An explicit path is used as is when absolute, else relative to
    data_dir; without one the file is <data_dir>/<name>.csv.
    """
    if dataset.path:
        path = Path(dataset.path)
        return path if path.is_absolute() else Path(data_dir) / path
    return Path(data_dir) / f"{dataset.name}.csv"


def load_metadata(metadata_dir: Union[str, Path], metadata_file: Optional[str] = None) -> List[DatasetDescriptor]:
    """Convenience wrapper around MetadataLoader.load."""
    return MetadataLoader(metadata_dir).load(metadata_file or "metadata.yaml")
