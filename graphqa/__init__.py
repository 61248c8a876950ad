"""Natural-language question answering over a Neo4j graph with a semantic answer cache."""

__version__ = "0.1.0"
