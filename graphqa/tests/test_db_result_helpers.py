"""Tests for neo4j Record -> Row conversion (db_result_helpers.py).

Records are simulated with FakeRecord; graph objects with MagicMock(spec=...)
so no database is needed.
"""

from unittest.mock import MagicMock

from neo4j.graph import Node, Path, Relationship
from neo4j.time import Date

from graphqa.db_result_helpers import _unwrap_value, record_to_row, records_to_rows
from graphqa.logic.state import Nested, Scalar


class FakeRecord:
    """Ordered key/value pairs, like neo4j.Record.items()."""
    def __init__(self, pairs):
        self._pairs = list(pairs)

    def items(self):
        return list(self._pairs)


def _node(**props):
    node = MagicMock(spec=Node)
    node.items.return_value = list(props.items())
    return node


# =============================================================================
# _unwrap_value
# =============================================================================

class TestUnwrapValue:
    def test_primitives_pass_through(self):
        for value in (None, "x", 1, 2.5, True):
            assert _unwrap_value(value) == value

    def test_node_becomes_property_map(self):
        assert _unwrap_value(_node(name="Ann", age=41)) == {"name": "Ann", "age": 41}

    def test_relationship_becomes_property_map(self):
        rel = MagicMock(spec=Relationship)
        rel.items.return_value = [("since", 2019)]
        assert _unwrap_value(rel) == {"since": 2019}

    def test_path_becomes_list_of_nodes(self):
        path = MagicMock(spec=Path)
        path.nodes = (_node(name="Ann"), _node(name="Sales"))
        assert _unwrap_value(path) == [{"name": "Ann"}, {"name": "Sales"}]

    def test_nested_collections(self):
        value = {"people": [_node(name="Ann")], "count": 1}
        assert _unwrap_value(value) == {"people": [{"name": "Ann"}], "count": 1}

    def test_temporal_iso_format(self):
        assert _unwrap_value(Date(2024, 5, 1)) == "2024-05-01"

    def test_unknown_object_stringified(self):
        class Point:
            def __str__(self):
                return "POINT(1 2)"
        assert _unwrap_value(Point()) == "POINT(1 2)"


# =============================================================================
# record_to_row
# =============================================================================

class TestRecordToRow:
    def test_column_order_preserved(self):
        row = record_to_row(FakeRecord([("z", 1), ("a", 2), ("m", 3)]))
        assert row.names == ["z", "a", "m"]

    def test_scalar_and_nested_variants(self):
        row = record_to_row(FakeRecord([("name", "Ann"), ("dept", _node(name="Sales", floor=2))]))

        assert row.get("name") == Scalar("Ann")
        dept = row.get("dept")
        assert isinstance(dept, Nested)
        assert dept.keys() == ["name", "floor"]
        assert dept.get("floor") == Scalar(2)

    def test_list_becomes_joined_scalar(self):
        row = record_to_row(FakeRecord([("skills", ["python", "cypher"])]))
        assert row.get("skills") == Scalar("python, cypher")

    def test_to_dict_round_trip(self):
        row = record_to_row(FakeRecord([("name", "Ann"), ("m", {"k": 1})]))
        assert row.to_dict() == {"name": "Ann", "m": {"k": 1}}

    def test_records_to_rows(self):
        rows = records_to_rows([FakeRecord([("n", 1)]), FakeRecord([("n", 2)])])
        assert [r.to_dict() for r in rows] == [{"n": 1}, {"n": 2}]

    def test_empty(self):
        assert records_to_rows([]) == []
