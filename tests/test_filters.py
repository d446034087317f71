"""
Tests for csvql/filters.py - the in-memory filter engine.

Includes the equivalence check between the in-memory engine and the
SQL translator for filters without relationship keys.
"""
import pytest
from unittest.mock import MagicMock

from csvql.errors import FailureRecorder, LookupFailure
from csvql.filters import (
    apply_field_filters, apply_nested_filters, ascii_lower, matches_operator,
    partition_filter,
)
from csvql.models import Cardinality, RelationshipDescriptor
from csvql.scalars import ScalarType
from csvql.sql import build_select


ROWS = [
    {"id": 1, "name": "Alice", "age": 30, "score": 9.5, "joined": "2023-01-10"},
    {"id": 2, "name": "bob", "age": None, "score": 7.0, "joined": "2023-06-01"},
    {"id": 3, "name": "ALINA", "age": 25, "score": None, "joined": None},
    {"id": 4, "name": None, "age": 41, "score": 3.25, "joined": "2024-02-29"},
    {"id": 5, "name": "50%_off", "age": 30, "score": 5.0, "joined": "2024-12-31"},
]

TYPES = {
    "id": ScalarType.INT,
    "name": ScalarType.STRING,
    "age": ScalarType.INT,
    "score": ScalarType.FLOAT,
    "joined": ScalarType.DATE,
}


def ids(rows):
    return [r["id"] for r in rows]


class TestMatchesOperator:

    def test_null_checks(self):
        assert matches_operator(None, "eq", None, ScalarType.INT)
        assert not matches_operator(0, "eq", None, ScalarType.INT)
        assert matches_operator(0, "ne", None, ScalarType.INT)
        assert not matches_operator(None, "ne", None, ScalarType.INT)

    def test_null_value_never_compares(self):
        for op in ("eq", "ne", "gt", "gte", "lt", "lte"):
            assert not matches_operator(None, op, 1, ScalarType.INT)
        assert not matches_operator(None, "in", [1], ScalarType.INT)
        assert not matches_operator(None, "contains", "", ScalarType.STRING)

    def test_failed_coercion_is_non_match(self):
        assert not matches_operator(5, "gt", "abc", ScalarType.INT)
        assert not matches_operator(5, "ne", "abc", ScalarType.INT)

    def test_numbers_order_before_text(self):
        assert matches_operator(5, "lt", "a", ScalarType.STRING)
        assert matches_operator("a", "gt", 5, ScalarType.INT)

    def test_ascii_lower_leaves_other_letters(self):
        assert ascii_lower("ÄBC") == "Äbc"


class TestApplyFieldFilters:

    def test_no_filter_keeps_everything(self):
        assert ids(apply_field_filters(ROWS, None, TYPES)) == [1, 2, 3, 4, 5]
        assert ids(apply_field_filters(ROWS, {}, TYPES)) == [1, 2, 3, 4, 5]

    def test_eq_coerces_operand(self):
        assert ids(apply_field_filters(ROWS, {"age": {"eq": "30"}}, TYPES)) == [1, 5]

    def test_eq_null_and_ne_null(self):
        assert ids(apply_field_filters(ROWS, {"age": {"eq": None}}, TYPES)) == [2]
        assert ids(apply_field_filters(ROWS, {"age": {"ne": None}}, TYPES)) == [1, 3, 4, 5]

    def test_ne_excludes_nulls(self):
        assert ids(apply_field_filters(ROWS, {"age": {"ne": 30}}, TYPES)) == [3, 4]

    def test_range(self):
        result = apply_field_filters(ROWS, {"score": {"gte": 5, "lt": 9.5}}, TYPES)
        assert ids(result) == [2, 5]

    def test_date_range(self):
        result = apply_field_filters(ROWS, {"joined": {"gte": "2024-01-01", "lte": "2024-12-31T08:00:00Z"}}, TYPES)
        assert ids(result) == [4, 5]

    def test_in(self):
        assert ids(apply_field_filters(ROWS, {"id": {"in": [1, "3", 99]}}, TYPES)) == [1, 3]

    def test_in_empty_matches_nothing(self):
        assert apply_field_filters(ROWS, {"id": {"in": []}}, TYPES) == []

    def test_in_null_member_never_matches(self):
        assert ids(apply_field_filters(ROWS, {"age": {"in": [None]}}, TYPES)) == []

    def test_string_operators_ascii_case_insensitive(self):
        assert ids(apply_field_filters(ROWS, {"name": {"startsWith": "al"}}, TYPES)) == [1, 3]
        assert ids(apply_field_filters(ROWS, {"name": {"contains": "B"}}, TYPES)) == [2]
        assert ids(apply_field_filters(ROWS, {"name": {"endsWith": "NA"}}, TYPES)) == [3]

    def test_string_operators_are_literal(self):
        assert ids(apply_field_filters(ROWS, {"name": {"contains": "%_"}}, TYPES)) == [5]

    def test_string_operator_on_number(self):
        assert ids(apply_field_filters(ROWS, {"score": {"contains": ".25"}}, TYPES)) == [4]

    def test_float_text_keeps_decimal_point(self):
        assert ids(apply_field_filters(ROWS, {"score": {"endsWith": ".0"}}, TYPES)) == [2, 5]
        assert matches_operator(60.0, "endsWith", "60.0", ScalarType.FLOAT)
        assert matches_operator(1e20, "contains", "1.0E+20", ScalarType.FLOAT)
        assert matches_operator(0.1 + 0.2, "eq", 0.1 + 0.2, ScalarType.FLOAT)
        assert matches_operator(0.1 + 0.2, "startsWith", "0.3", ScalarType.FLOAT)
        assert not matches_operator(0.1 + 0.2, "contains", "0000", ScalarType.FLOAT)

    def test_fields_and_operators_are_anded(self):
        result = apply_field_filters(ROWS, {"age": {"gte": 25, "lte": 30}, "name": {"contains": "a"}}, TYPES)
        assert ids(result) == [1, 3]

    def test_equality_reflexive(self):
        for row in ROWS:
            for name, value in row.items():
                if value is None:
                    continue
                assert row in apply_field_filters(ROWS, {name: {"eq": value}}, TYPES)


# Filters without relationship keys must select the same rows in SQL
EQUIVALENCE_FILTERS = [
    {"status": {"eq": "completed"}},
    {"status": {"ne": "completed"}},
    {"status": {"in": []}},
    {"status": {"in": ["pending", "cancelled", None]}},
    {"status": {"contains": "PEND"}},
    {"status": {"startsWith": "c"}},
    {"status": {"endsWith": "ED"}},
    {"user_id": {"eq": None}},
    {"user_id": {"ne": None}},
    {"user_id": {"ne": 1}},
    {"user_id": {"gt": "abc"}},
    {"total_amount": {"gte": 40, "lt": 120.5}},
    {"total_amount": {"gt": "60"}},
    {"total_amount": {"contains": "5"}},
    {"total_amount": {"endsWith": ".0"}},
    {"total_amount": {"contains": ".2"}},
    {"total_amount": {"startsWith": "60.0"}},
    {"created": {"gte": "2024-02-01", "lt": "2024-04-01"}},
    {"created": {"lte": "2024-03-10T23:59:59Z"}},
    {"id": {"in": ["10", 12, 99]}, "status": {"eq": "pending"}},
    {"status": {}},
]


class TestEngineEquivalence:

    @pytest.mark.parametrize("filter", EQUIVALENCE_FILTERS)
    def test_sql_and_memory_agree(self, db, registry, filter):
        dataset = registry.dataset("Orders")
        all_rows = db.execute(build_select(dataset))
        in_memory = [r["id"] for r in apply_field_filters(all_rows, filter, dataset.field_types)]
        pushed = [r["id"] for r in db.execute(build_select(dataset, filter))]
        assert in_memory == pushed


class TestPartitionFilter:

    def test_split(self):
        rel = RelationshipDescriptor("id", "Orders", "user_id", Cardinality.ONE_TO_MANY)
        plain, nested = partition_filter({"name": {"eq": "x"}, "orders": {"status": {"eq": "a"}}}, [rel])
        assert plain == {"name": {"eq": "x"}}
        assert nested == {"orders": (rel, {"status": {"eq": "a"}})}


class TestApplyNestedFilters:

    @pytest.fixture
    def rel(self):
        return RelationshipDescriptor("id", "Orders", "user_id", Cardinality.ONE_TO_MANY)

    @pytest.fixture
    def parents(self):
        return [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}, {"id": None, "name": "c"}]

    @pytest.fixture
    def related(self):
        return {
            1: [{"status": "pending"}, {"status": "completed"}],
            2: [{"status": "pending"}],
        }

    def test_existential_match(self, rel, parents, related):
        lookup = lambda r, value: related.get(value, [])
        result = apply_nested_filters(parents, {"orders": {"status": {"eq": "completed"}}}, [rel], lookup)
        assert result == [{"id": 1, "name": "a"}]

    def test_null_parent_value_never_matches(self, rel, parents):
        lookup = MagicMock(return_value=[{"status": "x"}])
        result = apply_nested_filters(parents, {"orders": {}}, [rel], lookup)
        assert [p["name"] for p in result] == ["a", "b"]
        assert all(call.args[1] is not None for call in lookup.call_args_list)

    def test_no_related_rows_excluded(self, rel, parents, related):
        lookup = lambda r, value: related.get(value, [])
        result = apply_nested_filters(parents[:2], {"orders": {"status": {"eq": "shipped"}}}, [rel], lookup)
        assert result == []

    def test_plain_filters_applied_first(self, rel, parents, related):
        lookup = MagicMock(side_effect=lambda r, value: related.get(value, []))
        result = apply_nested_filters(
            parents, {"name": {"eq": "b"}, "orders": {"status": {"eq": "pending"}}}, [rel], lookup,
        )
        assert result == [{"id": 2, "name": "b"}]
        lookup.assert_called_once_with(rel, 2)

    def test_lookup_failure_reported_and_row_excluded(self, rel, parents, related):
        def lookup(r, value):
            if value == 1:
                raise LookupFailure("Orders", "boom")
            return related.get(value, [])

        recorder = FailureRecorder()
        result = apply_nested_filters(
            parents, {"orders": {"status": {"eq": "pending"}}}, [rel], lookup, on_error=recorder,
        )
        assert result == [{"id": 2, "name": "b"}]
        assert len(recorder) == 1
        assert recorder.failures[0].dataset == "Orders"

    def test_nested_filter_uses_target_types(self, rel):
        lookup = lambda r, value: [{"total": 40.0}]
        result = apply_nested_filters(
            [{"id": 1}], {"orders": {"total": {"gt": "39.5"}}}, [rel], lookup,
            target_types={"Orders": {"total": ScalarType.FLOAT}},
        )
        assert result == [{"id": 1}]

    def test_second_hop_imposes_no_constraint(self, rel):
        lookup = lambda r, value: [{"status": "pending"}]
        result = apply_nested_filters(
            [{"id": 1}], {"orders": {"users": {"name": {"eq": "nobody"}}}}, [rel], lookup,
        )
        assert result == [{"id": 1}]
