"""Error kinds and exceptions for the question-answering pipeline.

Every terminal failure maps to one ErrorKind with a short, fixed message.
The message is the only thing that ever reaches the caller; the internal
detail is logged and kept on the context for debugging.
"""

from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    CACHE_UNAVAILABLE = "CacheUnavailable"
    GENERATION_INVALID = "GenerationInvalid"
    EXECUTION_FAILED = "ExecutionFailed"
    EMPTY_RESULT = "EmptyResult"
    SYNTHESIS_FAILED = "SynthesisFailed"
    TIMEOUT = "Timeout"
    CANCELLED = "Cancelled"
    RENDERING_INCOMPLETE = "RenderingIncomplete"

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self]

    @property
    def is_terminal(self) -> bool:
        return self is not ErrorKind.RENDERING_INCOMPLETE


ERROR_MESSAGES = {
    ErrorKind.CACHE_UNAVAILABLE: "The answer cache is unavailable right now.",
    ErrorKind.GENERATION_INVALID: "I couldn't generate a valid query.",
    ErrorKind.EXECUTION_FAILED: "I couldn't retrieve data from the database.",
    ErrorKind.EMPTY_RESULT: "No results found.",
    ErrorKind.SYNTHESIS_FAILED: "I couldn't phrase an answer for that question.",
    ErrorKind.TIMEOUT: "The request timed out.",
    ErrorKind.CANCELLED: "The request was cancelled.",
    ErrorKind.RENDERING_INCOMPLETE: "Some values could not be filled in.",
}


class PipelineError(Exception):
    """Base error carrying an ErrorKind plus internal detail."""

    kind: ErrorKind = ErrorKind.EXECUTION_FAILED

    def __init__(self, detail: str = "", kind: Optional[ErrorKind] = None):
        super().__init__(detail or self.__class__.__name__)
        if kind is not None:
            self.kind = kind
        self.detail = detail

    @property
    def message(self) -> str:
        return self.kind.message


class CacheUnavailable(PipelineError):
    """Embedder or vector store unreachable during lookup or write."""
    kind = ErrorKind.CACHE_UNAVAILABLE


class GenerationInvalid(PipelineError):
    kind = ErrorKind.GENERATION_INVALID


class ExecutionFailed(PipelineError):
    kind = ErrorKind.EXECUTION_FAILED


class EmptyResult(PipelineError):
    """A valid query that returned zero rows."""
    kind = ErrorKind.EMPTY_RESULT


class SynthesisFailed(PipelineError):
    kind = ErrorKind.SYNTHESIS_FAILED


class DeadlineExceeded(PipelineError):
    kind = ErrorKind.TIMEOUT


class RequestCancelled(PipelineError):
    kind = ErrorKind.CANCELLED


def is_timeout_error(exc: BaseException) -> bool:
    """True for timeout exceptions raised by the HTTP and driver clients we use."""
    if isinstance(exc, (TimeoutError, DeadlineExceeded, httpx.TimeoutException)):
        return True
    name = type(exc).__name__.lower()
    if "timeout" in name or "timedout" in name:
        return True
    code = getattr(exc, "code", None) or ""
    return isinstance(code, str) and "TransactionTimedOut" in code
