"""Configuration Loader for the graph question-answering service.

Settings come from a YAML file (graphqa/config.yaml by default, or the path
in GRAPHQA_CONFIG), validated with pydantic. Connection details, model names
and a few knobs can be overridden from the environment / .env file.
"""

import logging
import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env")

_PACKAGE_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = _PACKAGE_DIR / "config.yaml"


# =============================================================================
# PYDANTIC MODELS FOR CONFIGURATION VALIDATION
# =============================================================================

class Neo4jSettings(BaseModel):
    uri: str = "bolt://localhost:7687"
    user: str = "neo4j"
    password: str = ""
    database: str = "neo4j"
    max_connection_pool_size: int = 50
    connection_acquisition_timeout: float = 30.0
    max_retries: int = 2
    schema_ttl_s: float = 300.0
    allow_write_queries: bool = False


class ModelSettings(BaseModel):
    """Model names. Routing is by prefix: gpt-* / claude-* / everything else Gemini."""
    query_model: str = "gemini-2.0-flash"
    response_model: str = "gemini-2.0-flash"
    embedding_model: str = "gemini-embedding-001"
    embedding_dimensions: int = 3072
    temperature: float = 0.0
    max_output_tokens: int = 1024


class CacheSettings(BaseModel):
    backend: Literal["neo4j", "memory"] = "neo4j"
    index_name: str = "vector_index"
    node_label: str = "Chunk"
    text_property: str = "text"
    embedding_property: str = "embedding"
    similarity_function: Literal["cosine", "euclidean"] = "cosine"
    hit_threshold: float = 0.95

    @field_validator("hit_threshold")
    @classmethod
    def _threshold_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("hit_threshold must be within [0, 1]")
        return v


class TimeoutSettings(BaseModel):
    """Seconds. Every external call is bounded by min(call timeout, request time left)."""
    embedding_s: float = 15.0
    generation_s: float = 60.0
    synthesis_s: float = 60.0
    graph_s: float = 30.0
    request_s: float = 120.0

    @field_validator("*")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v


class LoggingSettings(BaseModel):
    level: str = "INFO"
    debug: bool = False
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class PromptSettings(BaseModel):
    """Optional prompt overrides. Relative paths resolve against the config file."""
    prompts_dir: Optional[str] = None
    context_file: Optional[str] = None


class AppConfig(BaseModel):
    neo4j: Neo4jSettings = Field(default_factory=Neo4jSettings)
    models: ModelSettings = Field(default_factory=ModelSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    prompts: PromptSettings = Field(default_factory=PromptSettings)
    base_dir: Optional[str] = None

    def resolve_path(self, value: Optional[str]) -> Optional[Path]:
        if not value:
            return None
        path = Path(value)
        if not path.is_absolute() and self.base_dir:
            path = Path(self.base_dir) / path
        return path


# =============================================================================
# LOADER
# =============================================================================

# env var -> (section, key)
_ENV_OVERRIDES = {
    "NEO4J_URI": ("neo4j", "uri"),
    "NEO4J_USER": ("neo4j", "user"),
    "NEO4J_PASSWORD": ("neo4j", "password"),
    "NEO4J_DATABASE": ("neo4j", "database"),
    "CODER_MODEL": ("models", "query_model"),
    "NLP_MODEL": ("models", "response_model"),
    "EMBEDDING_MODEL": ("models", "embedding_model"),
    "CACHE_BACKEND": ("cache", "backend"),
    "CACHE_HIT_THRESHOLD": ("cache", "hit_threshold"),
    "REQUEST_TIMEOUT_S": ("timeouts", "request_s"),
    "LOG_LEVEL": ("logging", "level"),
}


def _apply_env_overrides(raw: dict, environ) -> dict:
    for env_var, (section, key) in _ENV_OVERRIDES.items():
        value = environ.get(env_var)
        if value:
            raw.setdefault(section, {})[key] = value
    return raw


def load_config(config_path: Optional[str] = None, environ=None) -> AppConfig:
    """Load and validate configuration from YAML plus environment overrides."""
    if environ is None:
        environ = os.environ
    if config_path is None:
        config_path = environ.get("GRAPHQA_CONFIG") or DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    raw: dict = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    raw = _apply_env_overrides(raw, environ)
    raw.setdefault("base_dir", str(config_path.resolve().parent))
    return AppConfig(**raw)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the loaded configuration (singleton)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """Force reload of the configuration."""
    global _config
    _config = load_config(config_path)
    return _config


def configure_logging(settings: LoggingSettings) -> None:
    level = logging.DEBUG if settings.debug else getattr(logging, settings.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=settings.format)
    # driver and HTTP client loggers stay at WARNING or above
    for noisy in ("neo4j", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
