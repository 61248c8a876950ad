"""Graph store access: schema introspection, dry-run validation, execution.

One GraphConnection (one neo4j driver) is created per process by Services
and shared by every request. Sessions are opened per call and always closed
through `with driver.session(...)`.
"""

import logging
import time
from typing import Optional

from neo4j import GraphDatabase, Query
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from .config_loader import Neo4jSettings
from .db_result_helpers import records_to_rows
from .logic.state import Row

logger = logging.getLogger(__name__)

READ_ONLY_QUERY_TYPES = ("r",)

NODE_PROPERTIES_QUERY = """
CALL db.schema.nodeTypeProperties()
YIELD nodeLabels, propertyName, propertyTypes
RETURN nodeLabels, propertyName, propertyTypes
"""

REL_PROPERTIES_QUERY = """
CALL db.schema.relTypeProperties()
YIELD relType, propertyName, propertyTypes
RETURN relType, propertyName, propertyTypes
"""

RELATIONSHIPS_QUERY = """
MATCH (a)-[r]->(b)
WITH labels(a) AS start_labels, type(r) AS rel_type, labels(b) AS end_labels
RETURN DISTINCT start_labels, rel_type, end_labels
LIMIT 500
"""


def _clean_type_name(raw: str) -> str:
    """':`ACTED_IN`' -> 'ACTED_IN'"""
    return raw.lstrip(":").strip("`")


def format_schema(node_properties: list[dict], rel_properties: list[dict],
                  relationships: list[dict], exclude_labels: tuple[str, ...] = ()) -> str:
    """Render introspection rows as the text block handed to the query generator."""
    excluded = set(exclude_labels)

    nodes: dict[str, list[str]] = {}
    for row in node_properties:
        labels = [l for l in (row.get("nodeLabels") or []) if l not in excluded]
        if not labels or excluded.intersection(row.get("nodeLabels") or []):
            continue
        for label in labels:
            props = nodes.setdefault(label, [])
            name = row.get("propertyName")
            if name:
                types = "|".join(row.get("propertyTypes") or []) or "ANY"
                props.append(f"`{name}`: {types}")

    rels: dict[str, list[str]] = {}
    for row in rel_properties:
        rel_type = _clean_type_name(row.get("relType") or "")
        if not rel_type:
            continue
        props = rels.setdefault(rel_type, [])
        name = row.get("propertyName")
        if name:
            types = "|".join(row.get("propertyTypes") or []) or "ANY"
            props.append(f"`{name}`: {types}")

    patterns = []
    for row in relationships:
        start = [l for l in (row.get("start_labels") or []) if l not in excluded]
        end = [l for l in (row.get("end_labels") or []) if l not in excluded]
        if not start or not end:
            continue
        pattern = f"(:{start[0]})-[:{row.get('rel_type')}]->(:{end[0]})"
        if pattern not in patterns:
            patterns.append(pattern)

    lines = ["Node properties:"]
    for label in sorted(nodes):
        lines.append(f"- **{label}**")
        lines.extend(f"  - {p}" for p in nodes[label])
    lines.append("Relationship properties:")
    for rel_type in sorted(rels):
        if rels[rel_type]:
            lines.append(f"- **{rel_type}**")
            lines.extend(f"  - {p}" for p in rels[rel_type])
    lines.append("The relationships:")
    lines.extend(sorted(patterns))
    return "\n".join(lines)


class GraphConnection:
    def __init__(self, settings: Neo4jSettings, exclude_labels: tuple[str, ...] = ()):
        self.settings = settings
        self.uri = settings.uri
        self.user = settings.user
        self.password = settings.password
        self.database = settings.database
        self.exclude_labels = tuple(exclude_labels)
        self.driver = None
        self._schema: Optional[str] = None
        self._schema_loaded_at = 0.0

    def connect(self):
        if not self.driver:
            self.driver = GraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password),
                max_connection_lifetime=3600,
                max_connection_pool_size=self.settings.max_connection_pool_size,
                connection_acquisition_timeout=self.settings.connection_acquisition_timeout,
                keep_alive=True,
            )
        return self.driver

    def warmup(self) -> bool:
        """Pre-connect and warm up the connection pool. Call on server start."""
        t = time.time()
        try:
            self.verify_connection()
            logger.info(f"Neo4j connection warmed up in {time.time() - t:.2f}s")
            return True
        except Exception as e:
            logger.warning(f"Neo4j warmup failed: {e}")
            return False

    def reconnect(self):
        """Force reconnection by closing existing driver and creating new one."""
        if self.driver:
            try:
                self.driver.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing stale driver: {e}")
            self.driver = None
        return self.connect()

    def close(self):
        if self.driver:
            self.driver.close()
            self.driver = None

    def _execute_with_retry(self, query_func, max_retries: Optional[int] = None):
        """Execute a query function with automatic retry on connection failure."""
        if max_retries is None:
            max_retries = self.settings.max_retries
        last_error = None
        for attempt in range(max_retries + 1):
            try:
                return query_func()
            except (ServiceUnavailable, SessionExpired) as e:
                last_error = e
                if attempt < max_retries:
                    logger.warning(f"Neo4j connection lost ({e}); reconnecting, attempt {attempt + 1}")
                    self.reconnect()
                else:
                    raise
            except Exception as e:
                error_msg = str(e).lower()
                if "defunct" in error_msg or "connection" in error_msg:
                    last_error = e
                    if attempt < max_retries:
                        self.reconnect()
                    else:
                        raise
                else:
                    raise
        raise last_error

    def verify_connection(self) -> bool:
        def _query():
            driver = self.connect()
            with driver.session(database=self.database) as session:
                result = session.run("RETURN 1 AS test")
                return result.single()["test"] == 1
        return self._execute_with_retry(_query)

    def run_query(self, cypher: str, params: Optional[dict] = None,
                  timeout: Optional[float] = None) -> list[dict]:
        """Run a Cypher statement and return each record as a dict."""
        def _query():
            driver = self.connect()
            with driver.session(database=self.database) as session:
                result = session.run(Query(cypher, timeout=timeout), params or {})
                return [record.data() for record in result]
        return self._execute_with_retry(_query)

    # =========================================================================
    # SCHEMA
    # =========================================================================

    def get_schema(self, timeout: Optional[float] = None) -> str:
        """Schema description for query generation, cached for schema_ttl_s."""
        age = time.time() - self._schema_loaded_at
        if self._schema is not None and age < self.settings.schema_ttl_s:
            return self._schema
        return self.refresh_schema(timeout=timeout)

    def refresh_schema(self, timeout: Optional[float] = None) -> str:
        node_props = self.run_query(NODE_PROPERTIES_QUERY, timeout=timeout)
        rel_props = self.run_query(REL_PROPERTIES_QUERY, timeout=timeout)
        relationships = self.run_query(RELATIONSHIPS_QUERY, timeout=timeout)
        self._schema = format_schema(node_props, rel_props, relationships, self.exclude_labels)
        self._schema_loaded_at = time.time()
        logger.debug(f"Schema refreshed:\n{self._schema}")
        return self._schema

    # =========================================================================
    # VALIDATE / EXECUTE
    # =========================================================================

    def validate(self, query: str, timeout: Optional[float] = None) -> bool:
        """Dry-run a query with EXPLAIN. Nothing is executed.

        Returns False for an empty query, any planner/driver error, or (unless
        allow_write_queries is set) a plan that would write to the graph.
        """
        if not query or not query.strip():
            return False

        def _query():
            driver = self.connect()
            with driver.session(database=self.database) as session:
                result = session.run(Query(f"EXPLAIN {query}", timeout=timeout))
                return result.consume()

        try:
            summary = self._execute_with_retry(_query)
        except Exception as e:
            logger.info(f"Query rejected by EXPLAIN: {e}")
            return False

        query_type = getattr(summary, "query_type", None)
        if not self.settings.allow_write_queries and query_type not in READ_ONLY_QUERY_TYPES:
            logger.info(f"Query rejected: plan type {query_type!r} is not read-only")
            return False
        return True

    def execute(self, query: str, timeout: Optional[float] = None) -> list[Row]:
        """Run a query and return its records as Rows. Errors propagate."""
        def _query():
            driver = self.connect()
            with driver.session(database=self.database) as session:
                result = session.run(Query(query, timeout=timeout))
                return records_to_rows(list(result))
        return self._execute_with_retry(_query)
