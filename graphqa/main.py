"""HTTP transport for the question-answering pipeline.

    uvicorn graphqa.main:app --port 8000
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator

from .config_loader import configure_logging, get_config
from .logic.pipeline import Pipeline
from .services import Services

logger = logging.getLogger(__name__)

app = FastAPI(title="Graph QA API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_services: Optional[Services] = None


@app.on_event("startup")
async def startup_event():
    """Build shared services once; every request reuses them."""
    global _services
    config = get_config()
    configure_logging(config.logging)
    logger.info("Starting Graph QA API...")
    _services = await run_in_threadpool(Services.from_config, config)
    logger.info("Server ready")


@app.on_event("shutdown")
async def shutdown_event():
    global _services
    if _services is not None:
        _services.close()
        _services = None


def get_pipeline() -> Pipeline:
    if _services is None:
        raise HTTPException(status_code=503, detail="Service not ready.")
    return _services.pipeline


class AskRequest(BaseModel):
    question: str

    @field_validator("question")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("question must not be empty")
        return v


class AskResponse(BaseModel):
    answer: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    cached: bool = False


@app.get("/")
async def root():
    return {"message": "Graph QA API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.post("/ask", response_model=AskResponse)
async def ask(request: AskRequest, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        ctx = await run_in_threadpool(pipeline.run, request.question)
    except Exception:
        logger.exception(f"Unexpected failure answering {request.question!r}")
        raise HTTPException(status_code=500, detail="Internal server error.")

    if ctx.errored:
        return AskResponse(error=ctx.error_message, error_kind=ctx.error_kind.value, cached=ctx.cached)
    return AskResponse(answer=ctx.answer, cached=ctx.cached)
