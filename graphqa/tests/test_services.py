"""Services wiring and prompt loading (graph driver patched out)."""

from unittest.mock import patch

import pytest

from graphqa import prompts
from graphqa.config_loader import AppConfig
from graphqa.logic.pipeline import Pipeline
from graphqa.prompts import DEFAULT_CONTEXT, NL_TO_CYPHER_PROMPT, load_context, load_prompt
from graphqa.services import Services
from graphqa.vector_index import InMemoryVectorStore, Neo4jVectorStore


@pytest.fixture
def memory_config(tmp_path):
    config = AppConfig(base_dir=str(tmp_path))
    config.cache.backend = "memory"
    return config


# =============================================================================
# SERVICES
# =============================================================================

class TestServices:
    def test_from_config_wires_pipeline(self, memory_config, embedder):
        with patch("graphqa.services.GraphConnection") as MockGraph:
            services = Services.from_config(memory_config, embedder=embedder)

        assert isinstance(services.pipeline, Pipeline)
        assert isinstance(services.vector_index.store, InMemoryVectorStore)
        assert services.vector_index.threshold == 0.95
        assert services.pipeline.request_timeout == memory_config.timeouts.request_s
        MockGraph.return_value.warmup.assert_called_once()
        assert MockGraph.call_args.kwargs["exclude_labels"] == ("Chunk",)

    def test_neo4j_backend_opens_index(self, tmp_path, embedder):
        config = AppConfig(base_dir=str(tmp_path))
        with patch("graphqa.services.GraphConnection"), \
                patch.object(Neo4jVectorStore, "open") as open_index:
            services = Services.from_config(config, embedder=embedder)

        assert isinstance(services.vector_index.store, Neo4jVectorStore)
        open_index.assert_called_once()

    def test_context_manager_closes_graph(self, memory_config, embedder):
        with patch("graphqa.services.GraphConnection") as MockGraph:
            with Services.from_config(memory_config, embedder=embedder):
                pass
        MockGraph.return_value.close.assert_called_once()

    def test_index_open_failure_closes_graph(self, tmp_path, embedder):
        config = AppConfig(base_dir=str(tmp_path))
        with patch("graphqa.services.GraphConnection") as MockGraph, \
                patch.object(Neo4jVectorStore, "open", side_effect=RuntimeError("index unavailable")):
            with pytest.raises(RuntimeError):
                Services.from_config(config, embedder=embedder)
        MockGraph.return_value.close.assert_called_once()

    def test_embedder_failure_closes_graph(self, memory_config):
        with patch("graphqa.services.GraphConnection") as MockGraph, \
                patch("graphqa.services.build_embedder", side_effect=ValueError("GEMINI_API_KEY not set")):
            with pytest.raises(ValueError):
                Services.from_config(memory_config)
        MockGraph.return_value.close.assert_called_once()

    def test_successful_startup_leaves_graph_open(self, memory_config, embedder):
        with patch("graphqa.services.GraphConnection") as MockGraph:
            Services.from_config(memory_config, embedder=embedder)
        MockGraph.return_value.close.assert_not_called()

    def test_context_file_reaches_generator(self, tmp_path, memory_config, embedder):
        (tmp_path / "context.md").write_text("Employees belong to departments.", encoding="utf-8")
        memory_config.prompts.context_file = "context.md"
        with patch("graphqa.services.GraphConnection"):
            services = Services.from_config(memory_config, embedder=embedder)
        assert services.pipeline.context == "Employees belong to departments."
        assert services.pipeline.generator.context == "Employees belong to departments."


# =============================================================================
# PROMPTS
# =============================================================================

class TestPrompts:
    def test_default_prompt(self):
        assert load_prompt("nl_to_cypher") == NL_TO_CYPHER_PROMPT

    def test_override_from_directory(self, tmp_path):
        (tmp_path / "response_template.txt").write_text("Q={question} R={structured_response}",
                                                        encoding="utf-8")
        assert load_prompt("response_template", tmp_path) == "Q={question} R={structured_response}"

    def test_missing_override_falls_back(self, tmp_path):
        assert load_prompt("coder_system", tmp_path) == prompts.CODER_SYSTEM_PROMPT

    def test_unknown_prompt(self):
        with pytest.raises(KeyError):
            load_prompt("does_not_exist")

    def test_default_prompts_format(self):
        text = NL_TO_CYPHER_PROMPT.format(schema="S", context="C", question="Q")
        assert '"Q"' in text

    def test_context_defaults(self, tmp_path):
        assert load_context(None) == DEFAULT_CONTEXT
        assert load_context(tmp_path / "missing.md") == DEFAULT_CONTEXT
        (tmp_path / "empty.md").write_text("  ", encoding="utf-8")
        assert load_context(tmp_path / "empty.md") == DEFAULT_CONTEXT
