"""Batch embedding generation: bring every active job to an embedded state.

Steps per run:
1. Select active jobs with no embedding (stable id order)
2. Partition into batches of ``batch_size``
3. Per job: build text -> embed (with retry) -> validate -> persist
4. Aggregate per-item outcomes into a BatchSummary

A failing item is recorded and skipped; it never aborts the batch.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Iterator, Sequence

from sqlalchemy.exc import SQLAlchemyError

from jobmatch.config import (
    EMBEDDING_BATCH_PAUSE,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MAX_ATTEMPTS,
    EMBEDDING_MAX_INPUT_CHARS,
    EMBEDDING_MAX_WORKERS,
    EMBEDDING_RETRY_DELAY,
)
from jobmatch.errors import GenerationInProgress, InvalidEmbedding, JobNotFound, ProviderError
from jobmatch.models.orm import Job
from jobmatch.models.schemas import (
    BatchSummary,
    FailureReason,
    ItemFailure,
    ItemOutcome,
    ItemStatus,
)
from jobmatch.services.embedding_provider import EmbeddingProvider
from jobmatch.services.embedding_validator import validate
from jobmatch.services.job_repository import JobRepository

log = logging.getLogger(__name__)


def build_embedding_input(
    title: str | None,
    description: str | None,
    max_chars: int = EMBEDDING_MAX_INPUT_CHARS,
) -> str:
    """Title and description separated by a blank line, cut at ``max_chars``.

    Returns "" when both parts are blank.
    """
    parts = [p.strip() for p in (title or "", description or "") if p and p.strip()]
    return "\n\n".join(parts)[:max_chars]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchEmbeddingGenerator:
    def __init__(
        self,
        repository: JobRepository,
        provider: EmbeddingProvider,
        *,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        batch_pause: float = EMBEDDING_BATCH_PAUSE,
        max_workers: int = EMBEDDING_MAX_WORKERS,
        max_attempts: int = EMBEDDING_MAX_ATTEMPTS,
        retry_delay: float = EMBEDDING_RETRY_DELAY,
        max_input_chars: int = EMBEDDING_MAX_INPUT_CHARS,
        dimensions: int = EMBEDDING_DIMENSIONS,
        lock=None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.repository = repository
        self.provider = provider
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.max_workers = max_workers
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.max_input_chars = max_input_chars
        self.dimensions = dimensions
        self.lock = lock
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def generate(self, limit: int | None = None) -> BatchSummary:
        """Embed every active job that has no embedding yet."""
        with self._exclusive():
            candidates = self.repository.find_jobs_missing_embedding(limit=limit)
            return self._run(candidates)

    def reembed(self, job_ids: Sequence[int]) -> BatchSummary:
        """Regenerate the embeddings of specific jobs.

        A stored vector is only overwritten by a new, validated one; an item
        that fails keeps its previous embedding.
        """
        wanted = list(dict.fromkeys(job_ids))
        with self._exclusive():
            candidates = self.repository.find_jobs(wanted)
            found = {job.id for job in candidates}
            missing = [
                ItemOutcome(
                    job_id=job_id,
                    status=ItemStatus.failed,
                    reason=FailureReason.not_found.value,
                )
                for job_id in wanted
                if job_id not in found
            ]
            return self._run(candidates, extra=missing)

    # ------------------------------------------------------------------
    # Core loop
    # ------------------------------------------------------------------

    def _run(self, candidates: list[Job], extra: list[ItemOutcome] | None = None) -> BatchSummary:
        started = self._clock()
        outcomes: list[ItemOutcome] = []
        skipped = 0
        log.info(
            "Embedding generation: %d candidates, batch size %d",
            len(candidates),
            self.batch_size,
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for n, batch in enumerate(_batches(candidates, self.batch_size)):
                if n and self.batch_pause > 0:
                    self._sleep(self.batch_pause)

                # Provider calls may overlap; validation and persistence stay
                # on this thread, in selection order.
                texts = [
                    build_embedding_input(job.title, job.description, self.max_input_chars)
                    for job in batch
                ]
                futures: list[Future | None] = [
                    pool.submit(self._embed_with_retry, job.id, text) if text else None
                    for job, text in zip(batch, texts)
                ]
                for job, future in zip(batch, futures):
                    if future is None:
                        skipped += 1
                        log.warning("Job %s has no title or description, skipping", job.id)
                        outcomes.append(ItemOutcome(
                            job_id=job.id,
                            status=ItemStatus.failed,
                            reason=FailureReason.empty_input.value,
                        ))
                        continue
                    outcomes.append(self._finish_item(job.id, future))

                log.info(
                    "Batch %d done: %d/%d processed",
                    n + 1,
                    len(outcomes),
                    len(candidates),
                )

        outcomes.extend(extra or [])
        summary = _summarize(outcomes, skipped, started, self._clock())
        log.info(
            "Embedding generation complete: %d succeeded, %d failed (%d skipped)",
            summary.succeeded,
            summary.failed,
            summary.skipped,
        )
        return summary

    def _embed_with_retry(self, job_id: int, text: str) -> list[float]:
        delay = self.retry_delay
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self.provider.embed(text)
            except ProviderError as e:
                if not e.retryable or attempt == self.max_attempts:
                    raise
                log.warning(
                    "Job %s: embedding attempt %d/%d failed (%s), retrying in %.1fs",
                    job_id,
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                self._sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    def _finish_item(self, job_id: int, future: Future) -> ItemOutcome:
        try:
            vector = validate(future.result(), self.dimensions)
            self.repository.update_embedding(job_id, vector, self._clock())
        except (ProviderError, InvalidEmbedding, JobNotFound) as e:
            log.warning("Job %s: embedding failed: %s", job_id, e)
            return ItemOutcome(job_id=job_id, status=ItemStatus.failed, reason=str(e))
        except SQLAlchemyError as e:
            self.repository.rollback()
            log.warning("Job %s: could not persist embedding: %s", job_id, e)
            return ItemOutcome(
                job_id=job_id,
                status=ItemStatus.failed,
                reason=f"persistence error: {e}",
            )
        return ItemOutcome(job_id=job_id, status=ItemStatus.succeeded)

    def _exclusive(self):
        return _LockGuard(self.lock)


class _LockGuard:
    """Non-blocking acquire of an optional lock; raises if another run holds it."""

    def __init__(self, lock) -> None:
        self._lock = lock

    def __enter__(self) -> None:
        if self._lock is not None and not self._lock.acquire(blocking=False):
            raise GenerationInProgress("embedding generation is already running")

    def __exit__(self, *exc) -> None:
        if self._lock is not None:
            self._lock.release()


def _batches(items: list[Job], size: int) -> Iterator[list[Job]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _summarize(
    outcomes: list[ItemOutcome],
    skipped: int,
    started: datetime,
    finished: datetime,
) -> BatchSummary:
    failures = [
        ItemFailure(job_id=o.job_id, reason=o.reason or "unknown")
        for o in outcomes
        if o.status == ItemStatus.failed
    ]
    return BatchSummary(
        requested=len(outcomes),
        succeeded=sum(1 for o in outcomes if o.status == ItemStatus.succeeded),
        failed=len(failures),
        skipped=skipped,
        failures=failures,
        outcomes=outcomes,
        started_at=started,
        finished_at=finished,
    )
