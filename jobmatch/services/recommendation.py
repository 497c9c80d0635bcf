"""Related-jobs recommendations and free-text semantic search."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from pydantic import ValidationError

from jobmatch.config import (
    EMBEDDING_DIMENSIONS,
    RECOMMEND_DEFAULT_MIN_SCORE,
    RECOMMEND_MAX_PAGE_SIZE,
)
from jobmatch.errors import InvalidRequest, JobNotFound, SourceNotEmbedded
from jobmatch.models.schemas import (
    JobOut,
    RecommendationPage,
    RecommendationQuery,
    RecommendedJob,
    SearchFilter,
)
from jobmatch.services.embedding_provider import EmbeddingProvider
from jobmatch.services.embedding_validator import validate
from jobmatch.services.job_repository import JobRepository

log = logging.getLogger(__name__)


def build_query(payload: Mapping[str, Any]) -> RecommendationQuery:
    """Validate a loosely-typed payload (query string or JSON body)."""
    try:
        return RecommendationQuery.model_validate(dict(payload))
    except ValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequest(messages) from e


class RecommendationService:
    """Read-only: never mutates job state."""

    def __init__(
        self,
        repository: JobRepository,
        provider: EmbeddingProvider,
        *,
        default_min_score: int = RECOMMEND_DEFAULT_MIN_SCORE,
        max_page_size: int = RECOMMEND_MAX_PAGE_SIZE,
        dimensions: int = EMBEDDING_DIMENSIONS,
    ) -> None:
        self.repository = repository
        self.provider = provider
        self.default_min_score = default_min_score
        self.max_page_size = max_page_size
        self.dimensions = dimensions

    def recommend(self, query: RecommendationQuery) -> RecommendationPage:
        if (query.source_job_id is None) == (query.query_text is None):
            raise InvalidRequest("exactly one of jobId or query must be provided")

        page = max(1, query.page)
        page_size = min(max(1, query.page_size), self.max_page_size)
        min_score = self.default_min_score if query.min_score is None else query.min_score

        if query.source_job_id is not None:
            vector = self._source_vector(query.source_job_id)
            exclude_id = query.source_job_id
        else:
            log.info("Embedding free-text query (%d chars)", len(query.query_text))
            vector = validate(self.provider.embed(query.query_text), self.dimensions)
            exclude_id = None

        filt = SearchFilter(
            min_score=min_score,
            exclude_id=exclude_id,
            min_similarity=query.min_similarity,
            location=query.location,
            company=query.company,
        )
        result = self.repository.search_similar(
            vector, filt, limit=page_size, offset=(page - 1) * page_size
        )

        items = [
            RecommendedJob(
                **JobOut.model_validate(job).model_dump(),
                distance=distance,
                similarity=1.0 - distance,
            )
            for job, distance in result.hits
        ]
        return RecommendationPage(
            items=items,
            page=page,
            page_size=page_size,
            total=result.total,
            total_pages=math.ceil(result.total / page_size),
        )

    def _source_vector(self, job_id: int) -> list[float]:
        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if not job.has_embedding:
            raise SourceNotEmbedded(job_id)
        return validate(job.embedding, self.dimensions)
