"""Response synthesis: question + first result row -> answer template.

The template names row fields as {placeholders}; the renderer fills them in,
so the same template keeps working when the cached query is re-run later
against changed data.
"""

import json
import logging
from typing import Callable, Optional

from . import llm_router
from .generator import strip_model_artifacts
from .logic.deadline import Deadline
from .logic.errors import DeadlineExceeded, SynthesisFailed
from .logic.state import Row
from .prompts import RESPONSE_TEMPLATE_PROMPT

logger = logging.getLogger(__name__)

_QUOTES = ('"', "'", "“", "”")


def clean_template(text: str) -> str:
    template = strip_model_artifacts(text)
    if len(template) >= 2 and template[0] in _QUOTES and template[-1] in _QUOTES:
        template = template[1:-1].strip()
    return template


class ResponseSynthesizer:
    def __init__(
        self,
        model: str,
        prompt_template: str = RESPONSE_TEMPLATE_PROMPT,
        temperature: float = 0.0,
        max_output_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        llm: Optional[Callable[..., llm_router.LLMResult]] = None,
    ):
        self.model = model
        self.prompt_template = prompt_template
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self._llm = llm

    def build_prompt(self, question: str, row: Row) -> str:
        structured = json.dumps(row.to_dict(), ensure_ascii=False, default=str)
        return self.prompt_template.format(question=question, structured_response=structured)

    def synthesize(self, question: str, row: Row, deadline: Optional[Deadline] = None) -> str:
        deadline = deadline or Deadline.never()
        llm = self._llm or llm_router.llm_call
        result = llm(
            model=self.model,
            user_prompt=self.build_prompt(question, row),
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            timeout=deadline.bound(self.timeout),
        )
        if result.timed_out:
            raise DeadlineExceeded(f"template synthesis timed out after {result.duration_s}s")
        if result.error:
            raise SynthesisFailed(f"template synthesizer failed: {result.error}")

        template = clean_template(result.text)
        if not template:
            raise SynthesisFailed("template synthesizer returned an empty template")
        logger.debug(f"Answer template ({result.duration_s}s): {template}")
        return template
