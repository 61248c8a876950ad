"""Semantic cache of previously answered questions.

VectorIndex embeds question text and asks a VectorStore for the single
nearest stored question. Each stored entry carries the reusable artifacts of
an answer (the answer template and the generated query), never the rendered
answer itself, so a cache hit re-runs the query against current data.

Backends:
    Neo4jVectorStore     nodes (:Chunk {text, embedding, answerTemplate,
                         generatorQuery, createdAt}) + a cosine vector index
    InMemoryVectorStore  process-local list, for tests and local runs

Both report scores in [0, 1]. There is no update, expiry or delete path;
near-duplicate entries may coexist and only the best match is ever used.
"""

import logging
import math
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from .config_loader import CacheSettings
from .embeddings import Embedder
from .logic.deadline import Deadline
from .logic.errors import CacheUnavailable, DeadlineExceeded, PipelineError, is_timeout_error
from .logic.state import CacheEntry, CacheMatch

logger = logging.getLogger(__name__)

TEMPLATE_PROPERTY = "answerTemplate"
QUERY_PROPERTY = "generatorQuery"
CREATED_AT_PROPERTY = "createdAt"


class VectorStore(ABC):
    @abstractmethod
    def open(self) -> None:
        ...

    @abstractmethod
    def nearest(self, vector: list[float], timeout: Optional[float] = None) -> Optional[CacheMatch]:
        """Single best match for `vector`, or None when the store is empty."""
        ...

    @abstractmethod
    def insert(self, entry: CacheEntry, timeout: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def count(self, timeout: Optional[float] = None) -> int:
        ...

    def close(self) -> None:
        pass


# =============================================================================
# NEO4J BACKEND
# =============================================================================

def _parse_created_at(value) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if hasattr(value, "to_native"):
        return value.to_native()
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return datetime.now(timezone.utc)


class Neo4jVectorStore(VectorStore):
    """Cache entries stored as graph nodes behind a Neo4j vector index."""

    def __init__(self, graph, settings: CacheSettings, dimensions: int):
        self.graph = graph
        self.index_name = settings.index_name
        self.node_label = settings.node_label
        self.text_property = settings.text_property
        self.embedding_property = settings.embedding_property
        self.similarity_function = settings.similarity_function
        self.dimensions = dimensions

    def _index_exists(self) -> bool:
        rows = self.graph.run_query(
            "SHOW INDEXES YIELD name WHERE name = $index_name RETURN name",
            {"index_name": self.index_name},
        )
        return len(rows) > 0

    def _create_index(self) -> None:
        self.graph.run_query(f"""
            CREATE VECTOR INDEX {self.index_name} IF NOT EXISTS
            FOR (n:{self.node_label}) ON (n.{self.embedding_property})
            OPTIONS {{indexConfig: {{
                `vector.dimensions`: {self.dimensions},
                `vector.similarity_function`: '{self.similarity_function}'
            }}}}
        """)

    def open(self) -> None:
        """Use the existing vector index, creating a fresh empty one if it can't be opened."""
        try:
            if self._index_exists():
                logger.info(f"Using existing vector index '{self.index_name}'")
                return
            logger.warning(f"Vector index '{self.index_name}' does not exist; creating it")
        except Exception as e:
            logger.warning(f"Could not open vector index '{self.index_name}' ({e}); creating a new one")
        self._create_index()
        logger.info(f"Vector index '{self.index_name}' created")

    def nearest(self, vector: list[float], timeout: Optional[float] = None) -> Optional[CacheMatch]:
        rows = self.graph.run_query(
            """
            CALL db.index.vector.queryNodes($index_name, 1, $embedding)
            YIELD node, score
            RETURN node[$text_property] AS text,
                   node[$template_property] AS answer_template,
                   node[$query_property] AS generator_query,
                   node[$created_at_property] AS created_at,
                   score
            """,
            {
                "index_name": self.index_name,
                "embedding": vector,
                "text_property": self.text_property,
                "template_property": TEMPLATE_PROPERTY,
                "query_property": QUERY_PROPERTY,
                "created_at_property": CREATED_AT_PROPERTY,
            },
            timeout=timeout,
        )
        if not rows:
            return None
        row = rows[0]
        entry = CacheEntry(
            question_text=row.get("text") or "",
            answer_template=row.get("answer_template") or "",
            generator_query=row.get("generator_query") or "",
            created_at=_parse_created_at(row.get("created_at")),
        )
        return CacheMatch(entry=entry, score=float(row["score"]))

    def insert(self, entry: CacheEntry, timeout: Optional[float] = None) -> None:
        properties = {
            self.text_property: entry.question_text,
            self.embedding_property: entry.embedding,
            TEMPLATE_PROPERTY: entry.answer_template,
            QUERY_PROPERTY: entry.generator_query,
            CREATED_AT_PROPERTY: entry.created_at.isoformat(),
        }
        self.graph.run_query(
            f"CREATE (n:{self.node_label}) SET n += $properties",
            {"properties": properties},
            timeout=timeout,
        )

    def count(self, timeout: Optional[float] = None) -> int:
        rows = self.graph.run_query(f"MATCH (n:{self.node_label}) RETURN count(n) AS count",
                                    timeout=timeout)
        return rows[0]["count"] if rows else 0


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================

def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"vector length mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorStore(VectorStore):
    """Linear-scan store. Scores use the Neo4j cosine scale: (1 + cos) / 2."""

    def __init__(self):
        self._entries: list[CacheEntry] = []
        self._lock = threading.Lock()

    def open(self) -> None:
        pass

    def nearest(self, vector: list[float], timeout: Optional[float] = None) -> Optional[CacheMatch]:
        best: Optional[CacheMatch] = None
        for entry in list(self._entries):
            score = (1.0 + cosine_similarity(vector, entry.embedding)) / 2.0
            if best is None or score > best.score:
                best = CacheMatch(entry=entry, score=score)
        return best

    def insert(self, entry: CacheEntry, timeout: Optional[float] = None) -> None:
        if entry.embedding is None:
            raise ValueError("cache entry has no embedding")
        with self._lock:
            self._entries.append(entry)

    def count(self, timeout: Optional[float] = None) -> int:
        return len(self._entries)


# =============================================================================
# VECTOR INDEX
# =============================================================================

def _infra_error(action: str, exc: Exception) -> PipelineError:
    if isinstance(exc, PipelineError):
        return exc
    if is_timeout_error(exc):
        return DeadlineExceeded(f"{action} timed out: {exc}")
    return CacheUnavailable(f"{action} failed: {exc}")


class VectorIndex:
    """Embedder + VectorStore with the cache-hit policy.

    lookup() and add() raise CacheUnavailable (or DeadlineExceeded) when the
    embedder or store can't be reached; an empty store is a plain miss.
    """

    def __init__(self, embedder: Embedder, store: VectorStore, threshold: float = 0.95,
                 embed_timeout: Optional[float] = None, store_timeout: Optional[float] = None):
        self.embedder = embedder
        self.store = store
        self.threshold = threshold
        self.embed_timeout = embed_timeout
        self.store_timeout = store_timeout

    def open(self) -> None:
        self.store.open()

    def close(self) -> None:
        self.store.close()

    def is_hit(self, match: Optional[CacheMatch]) -> bool:
        return match is not None and match.score > self.threshold

    def _embed(self, text: str, deadline: Deadline) -> list[float]:
        timeout = deadline.bound(self.embed_timeout)
        try:
            return self.embedder.embed(text, timeout=timeout)
        except Exception as e:
            raise _infra_error("embedding", e) from e

    def lookup(self, text: str, deadline: Optional[Deadline] = None) -> Optional[CacheMatch]:
        """Nearest stored entry and its score, or None if the store is empty."""
        deadline = deadline or Deadline.never()
        vector = self._embed(text, deadline)
        timeout = deadline.bound(self.store_timeout)
        try:
            match = self.store.nearest(vector, timeout=timeout)
        except Exception as e:
            raise _infra_error("vector search", e) from e
        if match is not None:
            logger.debug(f"Nearest cached question: {match.entry.question_text!r} (score {match.score:.4f})")
        return match

    def add(self, entry: CacheEntry, deadline: Optional[Deadline] = None) -> CacheEntry:
        deadline = deadline or Deadline.never()
        entry.embedding = self._embed(entry.question_text, deadline)
        timeout = deadline.bound(self.store_timeout)
        try:
            self.store.insert(entry, timeout=timeout)
        except Exception as e:
            raise _infra_error("cache write", e) from e
        return entry

    def count(self) -> int:
        return self.store.count(timeout=self.store_timeout)
