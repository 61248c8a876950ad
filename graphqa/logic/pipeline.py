"""Query Resolution Pipeline.

Pipeline:
    [Lookup] ─hit──────────────────────────────────────┐
       └─miss→ [Generate] → [Validate] → [Execute] → [Synthesize] → [CacheWrite] → [Render] → Done
                                 hit ─────→ [Execute] ─────────────────────────────↗

Every stage takes the PipelineContext and returns it. A stage that fails
records a PipelineError on the context; from then on every stage passes the
context through untouched, so the run always ends at Done with exactly one
of `answer` / `error` set.

Rules:
    - hit iff the nearest cached question scores above the threshold AND the
      entry carries both a template and a query (no partial reuse)
    - a cached query is executed without re-validation
    - zero rows after execution is EmptyResult, cached or not
    - the cache is written only on a miss that reached synthesis without error
    - the deadline is checked before each stage and bounds each external call
"""

import logging
from typing import Callable, Optional

from .deadline import Deadline
from .errors import (
    CacheUnavailable,
    EmptyResult,
    ErrorKind,
    ExecutionFailed,
    DeadlineExceeded,
    GenerationInvalid,
    PipelineError,
    SynthesisFailed,
    is_timeout_error,
)
from .renderer import render_template
from .state import CacheEntry, PipelineContext, Stage

logger = logging.getLogger(__name__)

StageFn = Callable[[PipelineContext, Deadline], PipelineContext]


def _as_pipeline_error(exc: Exception, fallback: type[PipelineError]) -> PipelineError:
    if isinstance(exc, PipelineError):
        return exc
    if is_timeout_error(exc):
        return DeadlineExceeded(str(exc) or type(exc).__name__)
    return fallback(f"{type(exc).__name__}: {exc}")


class Pipeline:
    """Resolves one question at a time; holds no per-request state.

    Collaborators are passed in explicitly (see services.Services):
        vector_index  lookup(text, deadline) / add(entry, deadline) / is_hit(match)
        graph         get_schema(timeout) / validate(query, timeout) / execute(query, timeout)
        generator     generate(question, schema, context, deadline)
        synthesizer   synthesize(question, row, deadline)
    """

    def __init__(self, vector_index, graph, generator, synthesizer,
                 context: Optional[str] = None,
                 graph_timeout: Optional[float] = None,
                 request_timeout: Optional[float] = None):
        self.vector_index = vector_index
        self.graph = graph
        self.generator = generator
        self.synthesizer = synthesizer
        self.context = context
        self.graph_timeout = graph_timeout
        self.request_timeout = request_timeout

    @property
    def stages(self) -> list[tuple[Stage, StageFn]]:
        return [
            (Stage.LOOKUP, self.lookup),
            (Stage.GENERATE, self.generate),
            (Stage.VALIDATE, self.validate),
            (Stage.EXECUTE, self.execute),
            (Stage.SYNTHESIZE, self.synthesize),
            (Stage.CACHE_WRITE, self.cache_write),
            (Stage.RENDER, self.render),
        ]

    def run(self, question: str, deadline: Optional[Deadline] = None) -> PipelineContext:
        deadline = deadline or Deadline(self.request_timeout)
        ctx = PipelineContext(question=question)

        for stage, step in self.stages:
            if not ctx.errored:
                try:
                    deadline.check()
                except PipelineError as e:
                    self._fail(ctx, stage, e)
            ctx = step(ctx, deadline)

        if ctx.error is None and ctx.answer is None:
            self._fail(ctx, Stage.DONE, ExecutionFailed("pipeline finished without an answer"))
        logger.debug(f"Pipeline done: stages={[s.value for s in ctx.visited]} "
                     f"cached={ctx.cached} error={ctx.error_kind}")
        return ctx

    def answer(self, question: str, deadline: Optional[Deadline] = None) -> str:
        """Rendered answer, or the fixed user-facing message for the error."""
        ctx = self.run(question, deadline)
        return ctx.answer if ctx.error is None else ctx.error_message

    def _fail(self, ctx: PipelineContext, stage: Stage, error: PipelineError) -> None:
        if ctx.errored:
            return
        logger.warning(f"[{stage.value}] {error.kind.value}: {error.detail or error}")
        ctx.fail(error)

    # =========================================================================
    # STAGES
    # =========================================================================

    def lookup(self, ctx: PipelineContext, deadline: Deadline) -> PipelineContext:
        if ctx.errored:
            return ctx
        ctx.visited.append(Stage.LOOKUP)
        try:
            match = self.vector_index.lookup(ctx.question, deadline)
        except Exception as e:
            self._fail(ctx, Stage.LOOKUP, _as_pipeline_error(e, CacheUnavailable))
            return ctx

        if match is not None:
            ctx.cache_score = match.score
        if (self.vector_index.is_hit(match)
                and match.entry.answer_template and match.entry.generator_query):
            ctx.cached = True
            ctx.answer_template = match.entry.answer_template
            ctx.generator_query = match.entry.generator_query
            logger.info(f"Cache hit (score {match.score:.4f}) for {ctx.question!r}")
        else:
            score = f"{match.score:.4f}" if match is not None else "n/a"
            logger.info(f"Cache miss (best score {score}) for {ctx.question!r}")
        return ctx

    def generate(self, ctx: PipelineContext, deadline: Deadline) -> PipelineContext:
        if ctx.errored or ctx.cached:
            return ctx
        ctx.visited.append(Stage.GENERATE)
        try:
            schema = self.graph.get_schema(timeout=deadline.bound(self.graph_timeout))
        except Exception as e:
            self._fail(ctx, Stage.GENERATE, _as_pipeline_error(e, ExecutionFailed))
            return ctx

        try:
            ctx.generator_query = self.generator.generate(
                ctx.question, schema, self.context, deadline=deadline
            )
        except Exception as e:
            self._fail(ctx, Stage.GENERATE, _as_pipeline_error(e, GenerationInvalid))
            return ctx
        logger.debug(f"Generated query:\n{ctx.generator_query}")
        return ctx

    def validate(self, ctx: PipelineContext, deadline: Deadline) -> PipelineContext:
        if ctx.errored or ctx.cached:
            return ctx
        ctx.visited.append(Stage.VALIDATE)
        try:
            valid = self.graph.validate(ctx.generator_query, timeout=deadline.bound(self.graph_timeout))
        except PipelineError as e:
            self._fail(ctx, Stage.VALIDATE, e)
            return ctx
        except Exception as e:
            logger.debug(f"Validation raised, treating as invalid: {e}")
            valid = False

        if not valid:
            self._fail(ctx, Stage.VALIDATE,
                       GenerationInvalid(f"query failed dry-run validation:\n{ctx.generator_query}"))
        return ctx

    def execute(self, ctx: PipelineContext, deadline: Deadline) -> PipelineContext:
        if ctx.errored:
            return ctx
        ctx.visited.append(Stage.EXECUTE)
        try:
            rows = self.graph.execute(ctx.generator_query, timeout=deadline.bound(self.graph_timeout))
        except Exception as e:
            self._fail(ctx, Stage.EXECUTE, _as_pipeline_error(e, ExecutionFailed))
            return ctx

        if not rows:
            source = "cached" if ctx.cached else "generated"
            self._fail(ctx, Stage.EXECUTE, EmptyResult(f"{source} query returned no rows"))
            return ctx
        ctx.result_rows = list(rows)
        logger.debug(f"Query returned {len(ctx.result_rows)} row(s)")
        return ctx

    def synthesize(self, ctx: PipelineContext, deadline: Deadline) -> PipelineContext:
        if ctx.errored or ctx.cached:
            return ctx
        ctx.visited.append(Stage.SYNTHESIZE)
        try:
            ctx.answer_template = self.synthesizer.synthesize(
                ctx.question, ctx.result_rows[0], deadline=deadline
            )
        except Exception as e:
            self._fail(ctx, Stage.SYNTHESIZE, _as_pipeline_error(e, SynthesisFailed))
        return ctx

    def cache_write(self, ctx: PipelineContext, deadline: Deadline) -> PipelineContext:
        if ctx.errored or ctx.cached:
            return ctx
        ctx.visited.append(Stage.CACHE_WRITE)
        entry = CacheEntry(
            question_text=ctx.question,
            answer_template=ctx.answer_template,
            generator_query=ctx.generator_query,
        )
        try:
            self.vector_index.add(entry, deadline)
        except Exception as e:
            self._fail(ctx, Stage.CACHE_WRITE, _as_pipeline_error(e, CacheUnavailable))
            return ctx
        logger.info(f"Cached template and query for {ctx.question!r}")
        return ctx

    def render(self, ctx: PipelineContext, deadline: Deadline) -> PipelineContext:
        if ctx.errored:
            return ctx
        ctx.visited.append(Stage.RENDER)
        result = render_template(ctx.answer_template or "", ctx.result_rows)
        if result.incomplete:
            ctx.warn(ErrorKind.RENDERING_INCOMPLETE)
        ctx.answer = result.text
        return ctx
