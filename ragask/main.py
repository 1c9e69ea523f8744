"""Main entry point for the ragask HTTP API."""
import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException

from ragask.config import Settings
from ragask.errors import GenerationError, LoadError, PipelineRunError, RagAskError
from ragask.logger import setup_logging
from ragask.models.api import IndexRequest, IndexResponse, QueryRequest, QueryResponse, Source
from ragask.models.query import QueryState
from ragask.services.indexer import Capabilities, Indexer
from ragask.services.llm_client import LLMClientError
from ragask.services.query_pipeline import build_query_pipeline

logger = logging.getLogger(__name__)

app = FastAPI(
    title="ragask",
    description="Index a codebase and its documentation, then ask questions about it",
    version="0.18.0",
)

# Initialized on startup (tests assign them directly)
settings: Optional[Settings] = None
capabilities: Optional[Capabilities] = None
indexer: Optional[Indexer] = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global settings, capabilities, indexer

    if indexer is not None:
        return

    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger.info("Initializing ragask services...")

    try:
        capabilities = Capabilities.from_settings(settings)
        indexer = Indexer(settings, capabilities)
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    if capabilities is not None:
        await capabilities.aclose()


def _error_detail(code: str, error: Exception, **details) -> dict:
    message = getattr(error, "message", str(error))
    merged = dict(getattr(error, "details", {}) or {})
    merged.update(details)
    return {"error": {"code": code, "message": message, "details": merged}}


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "ragask API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "ragask",
        "version": app.version,
    }


@app.post("/index", response_model=IndexResponse)
async def index_endpoint(request: IndexRequest) -> IndexResponse:
    """
    Index a corpus root. Re-running over an unchanged corpus only skips.

    Raises:
        HTTPException: 400 for a missing root, 502 when a run aborts
    """
    if not request.root_path or not request.root_path.strip():
        raise HTTPException(status_code=400, detail="root_path is required and cannot be empty")

    start_time = time.time()
    try:
        report = await indexer.index(request.root_path)
    except PipelineRunError as e:
        status = 400 if isinstance(e.cause, LoadError) else 502
        logger.error(f"Indexing {request.root_path} failed: {e}")
        raise HTTPException(
            status_code=status,
            detail=_error_detail(
                type(e.cause).__name__,
                e.cause,
                loaded=e.report.loaded,
                stored=e.report.stored,
                errored=e.report.errored,
            ),
        )

    logger.info(f"Index request processed in {int((time.time() - start_time) * 1000)}ms")
    return IndexResponse(
        namespace=indexer.namespace_for(request.root_path),
        loaded=report.loaded,
        skipped=report.skipped,
        errored=report.errored,
        stored=report.stored,
    )


@app.post("/query", response_model=QueryResponse)
async def query_endpoint(request: QueryRequest) -> QueryResponse:
    """
    Answer a question from an indexed corpus.

    Raises:
        HTTPException: 400 for an empty question, 503 when generation fails,
            502 for other backend failures, 500 for unexpected errors
    """
    if not request.question or not request.question.strip():
        raise HTTPException(status_code=400, detail="Question field is required and cannot be empty")

    start_time = time.time()
    root = request.root_path or settings.corpus_root
    pipeline = build_query_pipeline(
        settings,
        indexer.namespace_for(root),
        capabilities.llm,
        capabilities.embedder,
        capabilities.store,
    )

    ctx = await pipeline.run(request.question)

    if ctx.state is QueryState.FAILED:
        error = ctx.error
        if isinstance(error, GenerationError):
            cause = error.__cause__
            while cause is not None and not isinstance(cause, LLMClientError):
                cause = cause.__cause__
            if cause is not None:
                logger.error(f"LLM client error: {cause.error.message}")
                raise HTTPException(
                    status_code=503,
                    detail={"error": {"code": cause.error.code, "message": cause.error.message, "details": cause.error.details}},
                )
            status = 503
        elif isinstance(error, RagAskError):
            status = 502
        elif isinstance(error, ValueError):
            status = 400
        else:
            status = 500
        raise HTTPException(status_code=status, detail=_error_detail(type(error).__name__, error, state="failed"))

    sources = [
        Source(path=chunk.path, chunk_id=chunk.chunk_id, relevance_score=chunk.score)
        for chunk in ctx.candidates
    ]
    logger.info(f"Query processed successfully in {int((time.time() - start_time) * 1000)}ms")
    return QueryResponse(
        answer=ctx.answer,
        questions=ctx.questions,
        sources=sources,
        compressed=ctx.compressed,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=Settings.from_env().port)
