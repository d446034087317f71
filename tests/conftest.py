import os
import pytest
import textwrap

from csvql import config as config_module
from csvql.db import Database
from csvql.executor import QueryExecutor
from csvql.errors import FailureRecorder
from csvql.models import (
    Cardinality, DatasetDescriptor, FieldDescriptor, RelationshipDescriptor,
)
from csvql.resolver import RelationshipResolver
from csvql.scalars import ScalarType
from csvql.schema import SchemaSynthesizer


USERS_ROWS = [
    {"id": 1, "name": "Alice", "email": "alice@example.com", "is_active": True},
    {"id": 2, "name": "Bob", "email": "bob@Example.COM", "is_active": False},
    {"id": 3, "name": "Carol", "email": None, "is_active": True},
]

ORDERS_ROWS = [
    {"id": 10, "user_id": 1, "status": "completed", "total_amount": 120.5, "created": "2024-01-15"},
    {"id": 11, "user_id": 2, "status": "pending", "total_amount": 40.0, "created": "2024-02-01"},
    {"id": 12, "user_id": 1, "status": "pending", "total_amount": 75.25, "created": "2024-03-10"},
    {"id": 13, "user_id": 3, "status": "cancelled", "total_amount": 15, "created": "2024-03-11"},
    {"id": 14, "user_id": None, "status": "completed", "total_amount": 60, "created": "2024-04-01"},
]


def users_dataset():
    return DatasetDescriptor(
        name="Users",
        fields=[
            FieldDescriptor("id", ScalarType.INT),
            FieldDescriptor("name", ScalarType.STRING, "Display name"),
            FieldDescriptor("email", ScalarType.STRING),
            FieldDescriptor("is_active", ScalarType.BOOLEAN),
        ],
        relationships=[
            RelationshipDescriptor("id", "Orders", "user_id", Cardinality.ONE_TO_MANY),
        ],
    )


def orders_dataset():
    return DatasetDescriptor(
        name="Orders",
        fields=[
            FieldDescriptor("id", ScalarType.INT),
            FieldDescriptor("user_id", ScalarType.INT),
            FieldDescriptor("status", ScalarType.STRING),
            FieldDescriptor("total_amount", ScalarType.FLOAT),
            FieldDescriptor("created", ScalarType.DATE),
        ],
        relationships=[
            RelationshipDescriptor("user_id", "Users", "id", Cardinality.ONE_TO_ONE),
        ],
    )


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user and local config files and CSVQL_ variables out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("CSVQL_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_module, "_config", None)
    yield


@pytest.fixture
def datasets():
    """Users/Orders descriptors with relationships in both directions."""
    return [users_dataset(), orders_dataset()]


@pytest.fixture
def db(datasets):
    """In-memory database seeded with the Users/Orders rows."""
    database = Database()
    rows = {"Users": USERS_ROWS, "Orders": ORDERS_ROWS}
    for dataset in datasets:
        database.create_table(dataset.name, dataset.fields)
        database.insert_rows(dataset.name, rows[dataset.name], dataset.fields)
    yield database
    database.dispose()


@pytest.fixture
def registry(db, datasets):
    return SchemaSynthesizer(db).synthesize(datasets)


@pytest.fixture
def recorder():
    return FailureRecorder()


@pytest.fixture
def resolver(db, registry, recorder):
    return RelationshipResolver(db, registry, on_error=recorder)


@pytest.fixture
def executor(db, registry, recorder, resolver):
    return QueryExecutor(db, registry, on_error=recorder, resolver=resolver)


@pytest.fixture
def data_dirs(tmp_path):
    """CSV and metadata directories describing Users and Orders."""
    csv_dir = tmp_path / "csv"
    meta_dir = tmp_path / "metadata"
    csv_dir.mkdir()
    meta_dir.mkdir()

    (csv_dir / "users.csv").write_text(textwrap.dedent("""\
        id,name,email,is_active
        1, Alice ,alice@example.com,true
        2,Bob,bob@Example.COM,false

        3,Carol,,yes
    """))
    (csv_dir / "Orders.csv").write_text(textwrap.dedent("""\
        id,user_id,status,total_amount,created
        10,1,completed,120.5,2024-01-15
        11,2,pending,40.0,2024-02-01
        12,1,pending,75.25,2024-03-10
        13,3,cancelled,15,2024-03-11
        14,,completed,60,2024-04-01
    """))

    (meta_dir / "metadata.yaml").write_text(textwrap.dedent("""\
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
    """))
    (meta_dir / "orders.yaml").write_text(textwrap.dedent("""\
        fields:
          - name: id
            type: Int
          - name: user_id
            type: Int
          - name: total_amount
            type: Float
            description: Order total
          - name: created
            type: Date
        relationships:
          - field: user_id
            references: Users
            referenceField: id
            type: one-to-one
    """))

    return {"csv": csv_dir, "metadata": meta_dir}
