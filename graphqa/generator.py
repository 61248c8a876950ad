"""Query generation: question + schema + context -> one Cypher query.

The generator owns cleanup of whatever the model wraps around the query
(reasoning blocks, code fences, a language tag, trailing semicolons), so the
pipeline only ever sees a bare query string. Generation is never retried
here; an unusable query is rejected later by validation.
"""

import logging
import re
from typing import Callable, Optional

from . import llm_router
from .logic.deadline import Deadline
from .logic.errors import DeadlineExceeded, GenerationInvalid
from .prompts import CODER_SYSTEM_PROMPT, DEFAULT_CONTEXT, NL_TO_CYPHER_PROMPT

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think(?:ing)?>.*?</think(?:ing)?>", re.DOTALL | re.IGNORECASE)
_FENCED_RE = re.compile(r"```(?:[A-Za-z0-9_-]+[ \t]*\n)?\n?(.*?)```", re.DOTALL)
_LANG_TAG_RE = re.compile(
    r"^(?i:cypher|sql)(?:\s*(?:\n|:)|[ \t]+(?=(?:MATCH|OPTIONAL|WITH|UNWIND|CALL|RETURN)\b))"
)


def strip_model_artifacts(text: str) -> str:
    """Remove reasoning blocks and code fences around model output."""
    if not text:
        return ""
    text = _THINK_RE.sub("", text).strip()
    fenced = _FENCED_RE.search(text)
    if fenced:
        text = fenced.group(1)
    else:
        text = text.replace("```", "")
    return text.strip()


def clean_query(text: str) -> str:
    query = strip_model_artifacts(text)
    query = _LANG_TAG_RE.sub("", query, count=1).strip()
    while query.endswith(";"):
        query = query[:-1].rstrip()
    return query


class QueryGenerator:
    def __init__(
        self,
        model: str,
        prompt_template: str = NL_TO_CYPHER_PROMPT,
        system_prompt: Optional[str] = CODER_SYSTEM_PROMPT,
        context: str = DEFAULT_CONTEXT,
        temperature: float = 0.0,
        max_output_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        llm: Optional[Callable[..., llm_router.LLMResult]] = None,
    ):
        self.model = model
        self.prompt_template = prompt_template
        self.system_prompt = system_prompt
        self.context = context
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self._llm = llm

    def build_prompt(self, question: str, schema: str, context: Optional[str] = None) -> str:
        return self.prompt_template.format(
            question=question,
            schema=schema,
            context=context or self.context or DEFAULT_CONTEXT,
        )

    def generate(self, question: str, schema: str, context: Optional[str] = None,
                 deadline: Optional[Deadline] = None) -> str:
        deadline = deadline or Deadline.never()
        llm = self._llm or llm_router.llm_call
        result = llm(
            model=self.model,
            user_prompt=self.build_prompt(question, schema, context),
            system_prompt=self.system_prompt,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            timeout=deadline.bound(self.timeout),
        )
        if result.timed_out:
            raise DeadlineExceeded(f"query generation timed out after {result.duration_s}s")
        if result.error:
            raise GenerationInvalid(f"query generator failed: {result.error}")

        query = clean_query(result.text)
        if not query:
            raise GenerationInvalid("query generator returned no query")
        logger.debug(f"Generated query ({result.duration_s}s):\n{query}")
        return query
