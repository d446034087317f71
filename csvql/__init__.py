"""
csvql - typed queries over CSV datasets

Loads CSV files into SQLite and synthesizes a typed query surface per
dataset: object, filter and paginated result types, plus declared
one-to-one and one-to-many relationships between datasets.

Design Principles:
- Metadata-driven schema: fields inferred from the data, typed by YAML
- Filters pushed to SQL when possible, evaluated in memory when they
  span a relationship, with identical semantics either way
- Whole-snapshot refresh; queries never see a half-built schema

Example Usage:
    >>> from csvql import Catalog, get_config
    >>> catalog = Catalog(get_config())
    >>> result = catalog.query("users", {"orders": {"status": {"eq": "completed"}}})
    >>> result.to_dict()
"""

__version__ = "0.1.0"
__author__ = "csvql Contributors"

# Core query API
from csvql.catalog import Catalog, Snapshot
from csvql.executor import QueryExecutor
from csvql.resolver import RelationshipResolver
from csvql.results import ResultEnvelope
from csvql.schema import SchemaRegistry, SchemaSynthesizer, infer_schema

# Storage
from csvql.db import Database

# Configuration
from csvql.config import CsvqlConfig, get_config, init_config

# Models
from csvql.models import (
    Cardinality,
    DatasetDescriptor,
    FieldDescriptor,
    Pagination,
    RelationshipDescriptor,
)
from csvql.scalars import ScalarType

# Errors
from csvql.errors import (
    ConfigError,
    CsvqlError,
    FailureRecorder,
    LoaderError,
    LookupFailure,
    MetadataError,
    SynthesisFailure,
)

__all__ = [
    "Catalog",
    "Snapshot",
    "QueryExecutor",
    "RelationshipResolver",
    "ResultEnvelope",
    "SchemaRegistry",
    "SchemaSynthesizer",
    "infer_schema",
    "Database",
    "CsvqlConfig",
    "get_config",
    "init_config",
    "Cardinality",
    "DatasetDescriptor",
    "FieldDescriptor",
    "Pagination",
    "RelationshipDescriptor",
    "ScalarType",
    "ConfigError",
    "CsvqlError",
    "FailureRecorder",
    "LoaderError",
    "LookupFailure",
    "MetadataError",
    "SynthesisFailure",
]
