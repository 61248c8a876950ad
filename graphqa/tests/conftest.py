"""Shared fixtures for the graphqa test suite.

No live services: the embedder is a deterministic bag-of-words fake, the
cache is the in-memory store, and the graph / generator / synthesizer are
MagicMocks with realistic return shapes.
"""

import re
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from graphqa.embeddings import Embedder
from graphqa.logic.pipeline import Pipeline
from graphqa.logic.state import Row
from graphqa.vector_index import InMemoryVectorStore, VectorIndex


# =============================================================================
# EMBEDDER
# =============================================================================

class FakeEmbedder(Embedder):
    """Bag-of-words embedder: same words (case/punctuation aside) -> same vector.

    Each new word gets its own dimension, so questions sharing no words are
    orthogonal (cosine 0, score 0.5).
    """

    def __init__(self, dimensions: int = 64):
        self.model = "fake-embedding"
        self.dimensions = dimensions
        self.vocab: dict[str, int] = {}
        self.calls: list[str] = []

    def embed(self, text, timeout=None):
        self.calls.append(text)
        vector = [0.0] * self.dimensions
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            index = self.vocab.setdefault(word, len(self.vocab) % self.dimensions)
            vector[index] += 1.0
        return vector


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store():
    return InMemoryVectorStore()


@pytest.fixture
def vector_index(embedder, store):
    return VectorIndex(embedder, store, threshold=0.95)


# =============================================================================
# MOCK COLLABORATORS
# =============================================================================

SALES_QUERY = "MATCH (p:Person)-[:WORKS_IN]->(d:Department {name: 'Sales'}) RETURN p.name AS name"


def make_rows(*records: dict) -> list[Row]:
    return [Row.from_mapping(record) for record in records]


@pytest.fixture
def mock_graph():
    """GraphConnection stand-in: valid queries, one row with name=Ann."""
    graph = MagicMock()
    graph.get_schema.return_value = "Node properties:\n- **Person**\n  - `name`: STRING"
    graph.validate.return_value = True
    graph.execute.return_value = make_rows({"name": "Ann"})
    return graph


@pytest.fixture
def mock_generator():
    generator = MagicMock()
    generator.generate.return_value = SALES_QUERY
    return generator


@pytest.fixture
def mock_synthesizer():
    synthesizer = MagicMock()
    synthesizer.synthesize.return_value = "Hello {name}"
    return synthesizer


@pytest.fixture
def pipeline(vector_index, mock_graph, mock_generator, mock_synthesizer):
    return Pipeline(vector_index, mock_graph, mock_generator, mock_synthesizer,
                    context="Test context", graph_timeout=5.0)
