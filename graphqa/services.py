"""Process-wide services: one graph driver, one embedder, one cache, one pipeline.

Built once at startup (FastAPI startup hook or the CLI) and shared by every
request. Nothing here is request-scoped.

    with Services.from_config(get_config()) as services:
        print(services.pipeline.answer("Who manages Sales?"))
"""

import logging
from typing import Optional

from .config_loader import AppConfig, get_config
from .database import GraphConnection
from .embeddings import Embedder, build_embedder
from .generator import QueryGenerator
from .logic.pipeline import Pipeline
from .prompts import load_context, load_prompt
from .synthesizer import ResponseSynthesizer
from .vector_index import InMemoryVectorStore, Neo4jVectorStore, VectorIndex, VectorStore

logger = logging.getLogger(__name__)


def build_store(config: AppConfig, graph: GraphConnection) -> VectorStore:
    if config.cache.backend == "memory":
        logger.info("Semantic cache: in-memory store")
        return InMemoryVectorStore()
    logger.info(f"Semantic cache: Neo4j vector index '{config.cache.index_name}'")
    return Neo4jVectorStore(graph, config.cache, dimensions=config.models.embedding_dimensions)


class Services:
    def __init__(self, config: AppConfig, graph: GraphConnection, vector_index: VectorIndex,
                 pipeline: Pipeline):
        self.config = config
        self.graph = graph
        self.vector_index = vector_index
        self.pipeline = pipeline

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None,
                    embedder: Optional[Embedder] = None) -> "Services":
        """Connect to the graph, open the cache index and wire the pipeline."""
        config = config or get_config()
        graph = GraphConnection(config.neo4j, exclude_labels=(config.cache.node_label,))
        try:
            graph.warmup()
            return cls._wire(config, graph, embedder)
        except BaseException:
            logger.warning("Service startup failed; closing graph connection")
            graph.close()
            raise

    @classmethod
    def _wire(cls, config: AppConfig, graph: GraphConnection,
              embedder: Optional[Embedder] = None) -> "Services":
        models = config.models
        timeouts = config.timeouts

        embedder = embedder or build_embedder(models)
        vector_index = VectorIndex(
            embedder,
            build_store(config, graph),
            threshold=config.cache.hit_threshold,
            embed_timeout=timeouts.embedding_s,
            store_timeout=timeouts.graph_s,
        )
        vector_index.open()

        prompts_dir = config.resolve_path(config.prompts.prompts_dir)
        context = load_context(config.resolve_path(config.prompts.context_file))
        generator = QueryGenerator(
            model=models.query_model,
            prompt_template=load_prompt("nl_to_cypher", prompts_dir),
            system_prompt=load_prompt("coder_system", prompts_dir),
            context=context,
            temperature=models.temperature,
            max_output_tokens=models.max_output_tokens,
            timeout=timeouts.generation_s,
        )
        synthesizer = ResponseSynthesizer(
            model=models.response_model,
            prompt_template=load_prompt("response_template", prompts_dir),
            temperature=models.temperature,
            max_output_tokens=models.max_output_tokens,
            timeout=timeouts.synthesis_s,
        )
        pipeline = Pipeline(
            vector_index,
            graph,
            generator,
            synthesizer,
            context=context,
            graph_timeout=timeouts.graph_s,
            request_timeout=timeouts.request_s,
        )
        logger.info(f"Services ready (query model {models.query_model}, "
                    f"response model {models.response_model}, threshold {config.cache.hit_threshold})")
        return cls(config, graph, vector_index, pipeline)

    def close(self) -> None:
        try:
            self.vector_index.close()
        finally:
            self.graph.close()
        logger.info("Services closed")

    def __enter__(self) -> "Services":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
