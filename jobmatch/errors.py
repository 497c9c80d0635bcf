"""Error taxonomy shared by the embedding pipeline, the recommendation service and the API."""

from __future__ import annotations


class JobMatchError(Exception):
    """Base error. ``status_code`` and ``code`` drive the HTTP mapping in server.py."""

    status_code = 500
    code = "internal_error"


class ProviderError(JobMatchError):
    """The embedding API call failed (network, auth, rate limit, malformed response)."""

    code = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


class InvalidEmbedding(JobMatchError):
    code = "invalid_embedding"


class InvalidRequest(JobMatchError):
    status_code = 400
    code = "invalid_request"


class JobNotFound(JobMatchError):
    status_code = 404
    code = "job_not_found"

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class SourceNotEmbedded(JobMatchError):
    """The source job exists but has no stored vector yet."""

    status_code = 409
    code = "source_not_embedded"

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} has no embedding yet")
        self.job_id = job_id


class GenerationInProgress(JobMatchError):
    status_code = 409
    code = "generation_in_progress"
