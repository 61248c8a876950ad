"""LLM prompt templates for query generation and answer-template synthesis.

Defaults live here. A deployment can override any of them by dropping a file
with the same name into the configured prompts directory:

    nl_to_cypher.txt        user prompt for the query generator
    coder_system.txt        system prompt for the query generator
    response_template.txt   user prompt for the template synthesizer

Placeholders use str.format syntax, so literal braces must be doubled.
"""

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CODER_SYSTEM_PROMPT = """You are a coding assistant that writes Neo4j Cypher.
Do not return 'thinking' or similar placeholder texts. Only return the direct response."""

NL_TO_CYPHER_PROMPT = """You translate natural language questions into **only** Neo4j Cypher queries. The queries will be **executed directly** on Neo4j.

### Database Schema
{schema}

### Domain Context
{context}

### Instructions
- **DO NOT** add explanations, context, or introductions.
- **ONLY** return the raw Cypher query with no extra text.
- **DO NOT** wrap the response in code blocks.
- Only read data. Never CREATE, MERGE, SET, DELETE or REMOVE.
- Use only the labels, relationship types and properties in the schema.
- Give every returned column a short alias (e.g. `RETURN s.name AS name`).
- Return the grouping subject (e.g. the person or department) as the first column.

### User Question
"{question}"

### Expected Output
(Return only the Cypher query)"""

RESPONSE_TEMPLATE_PROMPT = """You write reusable answer templates for a question-answering system.

### Question
{question}

### One row returned by the database (JSON)
{structured_response}

### Instructions
- Write a short, natural-language answer to the question.
- Replace every value taken from the row with a placeholder made of the field name in single curly braces, e.g. {{name}} for the field "name".
- Use only field names that appear in the row. Never write the literal values.
- Return only the template text: no explanations, quotes or code blocks."""

DEFAULT_CONTEXT = "No additional domain context."

PROMPT_FILES = {
    "nl_to_cypher": NL_TO_CYPHER_PROMPT,
    "coder_system": CODER_SYSTEM_PROMPT,
    "response_template": RESPONSE_TEMPLATE_PROMPT,
}

_prompt_cache: dict[str, str] = {}


def load_prompt(prompt_name: str, prompts_dir: Optional[Path] = None) -> str:
    """Return the prompt override from prompts_dir if present, else the default."""
    if prompt_name not in PROMPT_FILES:
        raise KeyError(f"Unknown prompt: {prompt_name}")
    if prompts_dir is None:
        return PROMPT_FILES[prompt_name]

    prompt_path = Path(prompts_dir) / f"{prompt_name}.txt"
    cache_key = str(prompt_path)
    if cache_key in _prompt_cache:
        return _prompt_cache[cache_key]

    if not prompt_path.exists():
        return PROMPT_FILES[prompt_name]

    text = prompt_path.read_text(encoding="utf-8")
    logger.info(f"Loaded prompt override {prompt_path}")
    _prompt_cache[cache_key] = text
    return text


def load_context(context_file: Optional[Path]) -> str:
    """Free-text domain context handed to the query generator."""
    if context_file is None:
        return DEFAULT_CONTEXT
    path = Path(context_file)
    if not path.exists():
        logger.warning(f"Context file {path} not found; using default context")
        return DEFAULT_CONTEXT
    return path.read_text(encoding="utf-8").strip() or DEFAULT_CONTEXT
