from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from jobmatch.config import CFO_SCORE_MAX, CFO_SCORE_MIN, RECOMMEND_DEFAULT_PAGE_SIZE


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ItemStatus(str, Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


class FailureReason(str, Enum):
    empty_input = "empty_input"
    not_found = "not_found"


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class JobOut(ApiModel):
    id: int
    job_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    job_url: Optional[str] = None
    publication_date: Optional[datetime] = None
    cfo_score: Optional[int] = None
    embedding_created_at: Optional[datetime] = None


class RecommendedJob(JobOut):
    distance: float
    similarity: float


# ---------------------------------------------------------------------------
# Recommendation query / page
# ---------------------------------------------------------------------------

class SearchFilter(BaseModel):
    min_score: int = 0
    exclude_id: Optional[int] = None
    min_similarity: Optional[float] = None
    location: Optional[str] = None
    company: Optional[str] = None


class RecommendationQuery(ApiModel):
    source_job_id: Optional[int] = Field(default=None, alias="jobId")
    query_text: Optional[str] = Field(default=None, alias="query")
    min_score: Optional[int] = Field(default=None, ge=CFO_SCORE_MIN, le=CFO_SCORE_MAX)
    page: int = 1
    page_size: int = RECOMMEND_DEFAULT_PAGE_SIZE
    min_similarity: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    location: Optional[str] = None
    company: Optional[str] = None

    @field_validator("page", "page_size", mode="after")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, v)

    @field_validator("query_text", "location", "company", mode="after")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "RecommendationQuery":
        if (self.source_job_id is None) == (self.query_text is None):
            raise ValueError("exactly one of jobId or query must be provided")
        return self


class RecommendationPage(ApiModel):
    items: list[RecommendedJob] = Field(default_factory=list)
    page: int
    page_size: int
    total: int
    total_pages: int


# ---------------------------------------------------------------------------
# Batch generation
# ---------------------------------------------------------------------------

class ItemOutcome(ApiModel):
    job_id: int
    status: ItemStatus = ItemStatus.pending
    reason: Optional[str] = None


class ItemFailure(ApiModel):
    job_id: int
    reason: str


class BatchSummary(ApiModel):
    requested: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[ItemFailure] = Field(default_factory=list)
    outcomes: list[ItemOutcome] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class GenerateRequest(ApiModel):
    limit: Optional[int] = Field(default=None, ge=1)


class EmbeddingStatus(ApiModel):
    total_jobs: int
    jobs_with_embeddings: int
    jobs_without_embeddings: int
