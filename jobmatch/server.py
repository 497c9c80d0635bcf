"""FastAPI server: recommendations, semantic search and embedding maintenance."""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobmatch.errors import JobMatchError
from jobmatch.models.schemas import BatchSummary, EmbeddingStatus, GenerateRequest
from jobmatch.services.batch_generator import BatchEmbeddingGenerator
from jobmatch.services.embedding_provider import CachedEmbeddingProvider, EmbeddingProvider
from jobmatch.services.job_repository import JobRepository
from jobmatch.services.recommendation import RecommendationService, build_query

log = logging.getLogger(__name__)


def create_app(database, provider: EmbeddingProvider, *, cache_queries: bool = True) -> FastAPI:
    """Build the API around an explicitly constructed database and provider.

    Both are closed when the app shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        log.info("Shutting down: closing provider and database")
        close = getattr(provider, "close", None)
        if close is not None:
            close()
        database.close()

    app = FastAPI(title="jobmatch — Semantic Job Matching", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.database = database
    app.state.provider = provider
    app.state.query_provider = CachedEmbeddingProvider(provider) if cache_queries else provider
    app.state.generation_lock = threading.Lock()

    _register_error_handlers(app)
    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_db(request: Request):
    yield from request.app.state.database.get_db()


def get_recommender(request: Request, db: Session = Depends(get_db)) -> RecommendationService:
    return RecommendationService(JobRepository(db), request.app.state.query_provider)


def get_generator(request: Request, db: Session = Depends(get_db)) -> BatchEmbeddingGenerator:
    return BatchEmbeddingGenerator(
        JobRepository(db),
        request.app.state.provider,
        lock=request.app.state.generation_lock,
    )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

def _error(status_code: int, code: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": code, "details": details},
    )


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(JobMatchError)
    async def job_match_error(request: Request, exc: JobMatchError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(exc.status_code, exc.code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return _error(400, "invalid_request", details)

    @app.exception_handler(SQLAlchemyError)
    async def persistence_error(request: Request, exc: SQLAlchemyError):
        log.exception("Database error on %s %s", request.method, request.url.path)
        return _error(500, "persistence_error", "database operation failed")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _page_response(page) -> dict:
    return {"success": True, **page.model_dump(mode="json", by_alias=True)}


def _register_routes(app: FastAPI) -> None:

    @app.get("/api/job-recommendations")
    def job_recommendations(
        job_id: int = Query(..., alias="jobId"),
        page: int = 1,
        page_size: Optional[int] = Query(None, alias="pageSize"),
        min_score: Optional[int] = Query(None, alias="minScore"),
        service: RecommendationService = Depends(get_recommender),
    ):
        payload = {"jobId": job_id, "page": page, "minScore": min_score}
        if page_size is not None:
            payload["pageSize"] = page_size
        return _page_response(service.recommend(build_query(payload)))

    @app.post("/api/recommendations")
    def recommendations(
        body: dict,
        service: RecommendationService = Depends(get_recommender),
    ):
        return _page_response(service.recommend(build_query(body)))

    @app.get("/api/semantic-search")
    def semantic_search(
        q: str = Query(...),
        page: int = 1,
        page_size: Optional[int] = Query(None, alias="pageSize"),
        min_score: Optional[int] = Query(None, alias="minScore"),
        location: Optional[str] = None,
        company: Optional[str] = None,
        service: RecommendationService = Depends(get_recommender),
    ):
        payload = {
            "query": q,
            "page": page,
            "minScore": min_score,
            "location": location,
            "company": company,
        }
        if page_size is not None:
            payload["pageSize"] = page_size
        return _page_response(service.recommend(build_query(payload)))

    @app.post("/api/generate-embeddings", response_model=BatchSummary, response_model_by_alias=True)
    def generate_embeddings(
        body: Optional[GenerateRequest] = None,
        generator: BatchEmbeddingGenerator = Depends(get_generator),
    ):
        limit = body.limit if body else None
        return generator.generate(limit=limit)

    @app.post("/api/jobs/{job_id}/reembed", response_model=BatchSummary, response_model_by_alias=True)
    def reembed_job(
        job_id: int,
        generator: BatchEmbeddingGenerator = Depends(get_generator),
    ):
        return generator.reembed([job_id])

    @app.get("/api/check-embeddings", response_model=EmbeddingStatus, response_model_by_alias=True)
    def check_embeddings(db: Session = Depends(get_db)):
        return JobRepository(db).embedding_status()
