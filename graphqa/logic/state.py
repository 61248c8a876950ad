"""Pipeline state: result rows, cache entries and the per-request context.

Rows are explicit ordered (field, value) lists. A value is either a Scalar
or a Nested mapping, so grouping and rendering never have to guess what a
driver object looks like. Conversion from plain Python values happens once,
at the database boundary (see db_result_helpers).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, NamedTuple, Optional, Union

from .errors import ErrorKind, PipelineError


# =============================================================================
# ROW VALUES
# =============================================================================

ScalarValue = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class Scalar:
    value: ScalarValue


@dataclass(frozen=True)
class Nested:
    """Ordered mapping of key -> FieldValue (e.g. a node's properties)."""
    items: tuple[tuple[str, "FieldValue"], ...] = ()

    def get(self, key: str) -> Optional["FieldValue"]:
        for k, v in self.items:
            if k == key:
                return v
        return None

    def keys(self) -> list[str]:
        return [k for k, _ in self.items]


FieldValue = Union[Scalar, Nested]


def to_field_value(val: Any) -> FieldValue:
    """Convert a plain Python value into a FieldValue.

    Mappings become Nested (key order preserved), sequences are joined into
    a single Scalar string, everything else is a Scalar.
    """
    if isinstance(val, (Scalar, Nested)):
        return val
    if isinstance(val, dict):
        return Nested(tuple((str(k), to_field_value(v)) for k, v in val.items()))
    if isinstance(val, (list, tuple, set)):
        parts = []
        for item in val:
            converted = to_field_value(item)
            parts.append(_plain_text(converted))
        return Scalar(", ".join(parts))
    if val is None or isinstance(val, (str, bool, int, float)):
        return Scalar(val)
    return Scalar(str(val))


def format_scalar(value: ScalarValue) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _plain_text(value: FieldValue) -> str:
    if isinstance(value, Nested):
        return ", ".join(f"{k}: {_plain_text(v)}" for k, v in value.items)
    return format_scalar(value.value)


def to_plain(value: FieldValue) -> Any:
    """Inverse of to_field_value for JSON serialization."""
    if isinstance(value, Nested):
        return {k: to_plain(v) for k, v in value.items}
    return value.value


@dataclass(frozen=True)
class Row:
    """One record returned by the graph store, in column order."""
    fields: tuple[tuple[str, FieldValue], ...] = ()

    @classmethod
    def from_pairs(cls, pairs) -> "Row":
        return cls(tuple((str(name), to_field_value(val)) for name, val in pairs))

    @classmethod
    def from_mapping(cls, mapping: dict) -> "Row":
        return cls.from_pairs(mapping.items())

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.fields]

    def get(self, name: str) -> Optional[FieldValue]:
        for n, v in self.fields:
            if n == name:
                return v
        return None

    def to_dict(self) -> dict:
        return {name: to_plain(val) for name, val in self.fields}

    def __iter__(self) -> Iterator[tuple[str, FieldValue]]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)


# =============================================================================
# SEMANTIC CACHE
# =============================================================================

@dataclass
class CacheEntry:
    """A reusable (template, query) pair keyed by the question that produced it."""
    question_text: str
    answer_template: str
    generator_query: str
    embedding: Optional[list[float]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CacheMatch(NamedTuple):
    entry: CacheEntry
    score: float


# =============================================================================
# PIPELINE CONTEXT
# =============================================================================

class Stage(str, Enum):
    LOOKUP = "lookup"
    GENERATE = "generate"
    VALIDATE = "validate"
    EXECUTE = "execute"
    SYNTHESIZE = "synthesize"
    CACHE_WRITE = "cache_write"
    RENDER = "render"
    DONE = "done"


@dataclass
class PipelineContext:
    """Mutable record threaded through every pipeline stage.

    Once `error` is set it is never replaced; later stages pass through.
    `visited` lists the stages that actually did work, in order.
    """
    question: str
    cached: bool = False
    answer_template: Optional[str] = None
    generator_query: Optional[str] = None
    result_rows: list[Row] = field(default_factory=list)
    error: Optional[PipelineError] = None
    answer: Optional[str] = None
    cache_score: Optional[float] = None
    warnings: list[ErrorKind] = field(default_factory=list)
    visited: list[Stage] = field(default_factory=list)

    @property
    def errored(self) -> bool:
        return self.error is not None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    def fail(self, error: PipelineError) -> None:
        """Record a terminal error. The first one wins."""
        if self.error is None:
            self.error = error
            self.answer = None

    def warn(self, kind: ErrorKind) -> None:
        if kind not in self.warnings:
            self.warnings.append(kind)
