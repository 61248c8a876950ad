"""GraphConnection tests with a mocked neo4j driver.

Covers schema formatting/caching, EXPLAIN validation, execution into Rows,
and _execute_with_retry connection resilience.
"""

from unittest.mock import MagicMock, patch

import pytest
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from graphqa.config_loader import Neo4jSettings
from graphqa.database import GraphConnection, format_schema


class FakeRecord:
    def __init__(self, **values):
        self._values = values

    def items(self):
        return list(self._values.items())

    def data(self):
        return dict(self._values)


def _connection(**settings):
    """GraphConnection whose driver/session are MagicMocks."""
    conn = GraphConnection(Neo4jSettings(**settings), exclude_labels=("Chunk",))
    session = MagicMock()
    driver = MagicMock()
    driver.session.return_value.__enter__.return_value = session
    conn.driver = driver
    return conn, session


# =============================================================================
# SCHEMA
# =============================================================================

NODE_PROPS = [
    {"nodeLabels": ["Person"], "propertyName": "name", "propertyTypes": ["String"]},
    {"nodeLabels": ["Person"], "propertyName": "age", "propertyTypes": ["Long"]},
    {"nodeLabels": ["Department"], "propertyName": "name", "propertyTypes": ["String"]},
    {"nodeLabels": ["Chunk"], "propertyName": "embedding", "propertyTypes": ["List"]},
]
REL_PROPS = [
    {"relType": ":`WORKS_IN`", "propertyName": "since", "propertyTypes": ["Long"]},
    {"relType": ":`MANAGES`", "propertyName": None, "propertyTypes": None},
]
RELATIONSHIPS = [
    {"start_labels": ["Person"], "rel_type": "WORKS_IN", "end_labels": ["Department"]},
    {"start_labels": ["Person"], "rel_type": "WORKS_IN", "end_labels": ["Department"]},
    {"start_labels": ["Person"], "rel_type": "MANAGES", "end_labels": ["Person"]},
]


class TestFormatSchema:
    def test_sections_present(self):
        schema = format_schema(NODE_PROPS, REL_PROPS, RELATIONSHIPS)
        assert schema.index("Node properties:") < schema.index("Relationship properties:")
        assert schema.index("Relationship properties:") < schema.index("The relationships:")

    def test_node_properties_listed(self):
        schema = format_schema(NODE_PROPS, REL_PROPS, RELATIONSHIPS)
        assert "- **Person**\n  - `name`: String\n  - `age`: Long" in schema
        assert "- **Department**" in schema

    def test_relationship_type_cleaned(self):
        schema = format_schema(NODE_PROPS, REL_PROPS, RELATIONSHIPS)
        assert "- **WORKS_IN**\n  - `since`: Long" in schema
        assert "`WORKS_IN`" not in schema.replace("- **WORKS_IN**", "")

    def test_patterns_deduplicated(self):
        schema = format_schema(NODE_PROPS, REL_PROPS, RELATIONSHIPS)
        assert schema.count("(:Person)-[:WORKS_IN]->(:Department)") == 1
        assert "(:Person)-[:MANAGES]->(:Person)" in schema

    def test_excluded_label_hidden(self):
        schema = format_schema(NODE_PROPS, REL_PROPS, RELATIONSHIPS, exclude_labels=("Chunk",))
        assert "Chunk" not in schema
        assert "embedding" not in schema


class TestSchemaCache:
    def test_schema_cached_within_ttl(self):
        conn = GraphConnection(Neo4jSettings(schema_ttl_s=300))
        with patch.object(conn, "run_query", side_effect=[NODE_PROPS, REL_PROPS, RELATIONSHIPS]) as rq:
            first = conn.get_schema()
            second = conn.get_schema()
        assert first == second
        assert rq.call_count == 3

    def test_refresh_schema_requeries(self):
        conn = GraphConnection(Neo4jSettings())
        with patch.object(conn, "run_query", side_effect=[NODE_PROPS, REL_PROPS, RELATIONSHIPS] * 2) as rq:
            conn.get_schema()
            conn.refresh_schema()
        assert rq.call_count == 6


# =============================================================================
# VALIDATE / EXECUTE
# =============================================================================

class TestValidate:
    def test_valid_read_query(self):
        conn, session = _connection()
        session.run.return_value.consume.return_value = MagicMock(query_type="r")

        assert conn.validate("MATCH (n) RETURN n", timeout=3.0) is True
        query = session.run.call_args[0][0]
        assert query.text == "EXPLAIN MATCH (n) RETURN n"
        assert query.timeout == 3.0

    def test_planner_error_is_invalid(self):
        conn, session = _connection()
        session.run.side_effect = Exception("Invalid input 'MATC'")
        assert conn.validate("MATC (n) RETURN n") is False

    def test_write_plan_rejected(self):
        conn, session = _connection()
        session.run.return_value.consume.return_value = MagicMock(query_type="w")
        assert conn.validate("CREATE (n:Person)") is False

    def test_write_plan_allowed_when_configured(self):
        conn, session = _connection(allow_write_queries=True)
        session.run.return_value.consume.return_value = MagicMock(query_type="rw")
        assert conn.validate("MERGE (n:Person {name: 'x'}) RETURN n") is True

    def test_blank_query_is_invalid(self):
        conn, session = _connection()
        assert conn.validate("   ") is False
        session.run.assert_not_called()


class TestExecute:
    def test_execute_returns_rows(self):
        conn, session = _connection()
        session.run.return_value = [FakeRecord(name="Ann", dept="Sales"), FakeRecord(name="Bob", dept="HR")]

        rows = conn.execute("MATCH (p:Person) RETURN p.name AS name, p.dept AS dept", timeout=5.0)

        assert [r.to_dict() for r in rows] == [
            {"name": "Ann", "dept": "Sales"},
            {"name": "Bob", "dept": "HR"},
        ]
        assert session.run.call_args[0][0].timeout == 5.0

    def test_execute_errors_propagate(self):
        conn, session = _connection()
        session.run.side_effect = ValueError("Neo.ClientError.Statement.ArithmeticError")
        with pytest.raises(ValueError):
            conn.execute("RETURN 1/0")

    def test_run_query_returns_dicts(self):
        conn, session = _connection()
        session.run.return_value = [FakeRecord(count=3)]
        assert conn.run_query("MATCH (n) RETURN count(n) AS count") == [{"count": 3}]


# =============================================================================
# RETRY
# =============================================================================

class TestExecuteWithRetry:
    def test_retries_on_service_unavailable(self):
        conn = GraphConnection(Neo4jSettings(max_retries=2))
        func = MagicMock(side_effect=[ServiceUnavailable("gone"), "ok"])
        with patch.object(conn, "reconnect") as reconnect:
            assert conn._execute_with_retry(func) == "ok"
        reconnect.assert_called_once()

    def test_retries_on_session_expired(self):
        conn = GraphConnection(Neo4jSettings(max_retries=2))
        func = MagicMock(side_effect=[SessionExpired("expired"), SessionExpired("expired"), "ok"])
        with patch.object(conn, "reconnect") as reconnect:
            assert conn._execute_with_retry(func) == "ok"
        assert reconnect.call_count == 2

    def test_raises_after_max_retries(self):
        conn = GraphConnection(Neo4jSettings(max_retries=1))
        func = MagicMock(side_effect=ServiceUnavailable("gone"))
        with patch.object(conn, "reconnect"):
            with pytest.raises(ServiceUnavailable):
                conn._execute_with_retry(func)
        assert func.call_count == 2

    def test_connection_like_message_retried(self):
        conn = GraphConnection(Neo4jSettings())
        func = MagicMock(side_effect=[RuntimeError("defunct connection"), "ok"])
        with patch.object(conn, "reconnect") as reconnect:
            assert conn._execute_with_retry(func) == "ok"
        reconnect.assert_called_once()

    def test_other_errors_not_retried(self):
        conn = GraphConnection(Neo4jSettings())
        func = MagicMock(side_effect=ValueError("syntax"))
        with patch.object(conn, "reconnect") as reconnect:
            with pytest.raises(ValueError):
                conn._execute_with_retry(func)
        reconnect.assert_not_called()
        assert func.call_count == 1


class TestConnectionLifecycle:
    def test_close_releases_driver(self):
        conn, _ = _connection()
        driver = conn.driver
        conn.close()
        driver.close.assert_called_once()
        assert conn.driver is None

    def test_warmup_failure_is_not_fatal(self):
        conn = GraphConnection(Neo4jSettings())
        with patch.object(conn, "verify_connection", side_effect=ServiceUnavailable("down")):
            assert conn.warmup() is False
