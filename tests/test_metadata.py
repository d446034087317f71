"""
Tests for csvql/metadata.py - YAML dataset metadata.
"""
import pytest
import textwrap
from pathlib import Path

from csvql.errors import MetadataError
from csvql.metadata import (
    MetadataLoader, dataset_from_dict, load_metadata, merge_fields, merge_relationships,
    resolve_csv_path,
)
from csvql.models import Cardinality, DatasetDescriptor
from csvql.scalars import ScalarType


def write(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text))
    return path


class TestLoad:

    def test_loads_and_merges(self, data_dirs):
        users, orders = MetadataLoader(data_dirs["metadata"]).load()

        assert users.name == "Users"
        assert users.path == "users.csv"
        assert [(f.name, f.type) for f in users.fields] == [("id", ScalarType.INT), ("is_active", ScalarType.BOOLEAN)]
        assert users.relationships[0].cardinality == Cardinality.ONE_TO_MANY
        assert users.relationships[0].field_name == "orders"

        assert orders.name == "Orders"
        assert orders.get_field("total_amount").description == "Order total"
        assert orders.relationships[0].target_dataset == "Users"
        assert orders.relationships[0].field_name == "users"

    def test_csvs_alias(self, tmp_path):
        write(tmp_path / "metadata.yaml", """\
            csvs:
              - name: Things
        """)
        assert [d.name for d in load_metadata(tmp_path)] == ["Things"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(MetadataError, match="not found"):
            MetadataLoader(tmp_path).load()

    def test_missing_external_file(self, tmp_path):
        write(tmp_path / "metadata.yaml", """\
            datasets:
              - name: Things
                metadataFile: things.yaml
        """)
        with pytest.raises(MetadataError, match="not found"):
            MetadataLoader(tmp_path).load()

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "metadata.yaml").write_text("datasets: [unclosed")
        with pytest.raises(MetadataError, match="Invalid YAML"):
            MetadataLoader(tmp_path).load()

    def test_missing_datasets_list(self, tmp_path):
        write(tmp_path / "metadata.yaml", "other: 1\n")
        with pytest.raises(MetadataError, match="datasets"):
            MetadataLoader(tmp_path).load()

    def test_unknown_type(self, tmp_path):
        write(tmp_path / "metadata.yaml", """\
            datasets:
              - name: Things
                fields:
                  - name: a
                    type: Decimal
        """)
        with pytest.raises(MetadataError, match="Things"):
            MetadataLoader(tmp_path).load()

    def test_duplicate_names(self, tmp_path):
        write(tmp_path / "metadata.yaml", """\
            datasets:
              - name: Things
              - name: Things
        """)
        with pytest.raises(MetadataError, match="Duplicate"):
            MetadataLoader(tmp_path).load()


class TestMerge:

    def test_external_path_wins(self):
        merged = MetadataLoader.merge({"name": "A", "path": "a.csv"}, {"path": "b.csv"})
        assert merged["path"] == "b.csv"
        assert MetadataLoader.merge({"name": "A", "path": "a.csv"}, {})["path"] == "a.csv"

    def test_fields_merge_by_name(self):
        merged = merge_fields(
            [{"name": "a", "type": "Int", "description": "kept"}, {"name": "b"}],
            [{"name": "a", "type": "Float"}, {"name": "c", "type": "Date"}],
        )
        assert merged == [
            {"name": "a", "type": "Float", "description": "kept"},
            {"name": "b"},
            {"name": "c", "type": "Date"},
        ]

    def test_relationships_merge_by_key(self):
        base = [{"field": "id", "references": "B", "referenceField": "a_id", "type": "one-to-one"}]
        external = [
            {"field": "id", "references": "B", "referenceField": "a_id", "type": "one-to-many"},
            {"field": "id", "references": "C", "referenceField": "a_id"},
        ]
        merged = merge_relationships(base, external)
        assert len(merged) == 2
        assert merged[0]["type"] == "one-to-many"


class TestHelpers:

    def test_dataset_from_dict_requires_name(self):
        with pytest.raises(MetadataError):
            dataset_from_dict({"fields": []})

    def test_bad_relationship(self):
        with pytest.raises(MetadataError):
            dataset_from_dict({"name": "A", "relationships": [{"field": "x"}]})

    def test_resolve_csv_path(self, tmp_path):
        assert resolve_csv_path(DatasetDescriptor("A"), "data") == Path("data") / "A.csv"
        assert resolve_csv_path(DatasetDescriptor("A", path="sub/a.csv"), "data") == Path("data/sub/a.csv")
        absolute = tmp_path / "a.csv"
        assert resolve_csv_path(DatasetDescriptor("A", path=str(absolute)), "data") == absolute
