"""Pipeline logic: state model, errors, deadline, renderer and the pipeline itself."""

from .deadline import Deadline
from .errors import ErrorKind, PipelineError
from .pipeline import Pipeline
from .renderer import render_template
from .state import CacheEntry, CacheMatch, PipelineContext, Row, Stage

__all__ = [
    'Deadline',
    'ErrorKind',
    'PipelineError',
    'Pipeline',
    'render_template',
    'CacheEntry',
    'CacheMatch',
    'PipelineContext',
    'Row',
    'Stage',
]
