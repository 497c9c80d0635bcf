"""Job repository: embedding reads/writes and cosine similarity search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

import faiss
import numpy as np
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from jobmatch.config import HNSW_EF_SEARCH
from jobmatch.errors import JobNotFound
from jobmatch.models.orm import Job
from jobmatch.models.schemas import EmbeddingStatus, SearchFilter

log = logging.getLogger(__name__)

HNSW_MAX_EF_SEARCH = 1000


@dataclass
class SearchPage:
    """Ranked hits for one page plus the total before pagination."""

    hits: list[tuple[Job, float]] = field(default_factory=list)
    total: int = 0


class JobRepository:
    """Read/update access to ``jobs`` for the embedding pipeline.

    Soft-deleted rows are invisible to every method.
    """

    def __init__(self, session: Session, *, ef_search: int = HNSW_EF_SEARCH) -> None:
        self._session = session
        self.ef_search = ef_search

    @property
    def _native_vectors(self) -> bool:
        return self._session.get_bind().dialect.name == "postgresql"

    def _active(self):
        return self._session.query(Job).filter(Job.deleted_at.is_(None))

    # ------------------------------------------------------------------
    # Embedding maintenance
    # ------------------------------------------------------------------

    def find_jobs_missing_embedding(self, limit: int | None = None) -> list[Job]:
        """Active jobs without a vector, ordered by id."""
        q = self._active().filter(Job.embedding.is_(None)).order_by(Job.id)
        if limit is not None:
            q = q.limit(limit)
        return q.all()

    def find_jobs(self, ids: Sequence[int]) -> list[Job]:
        """Active jobs among ``ids``, embedded or not, ordered by id."""
        if not ids:
            return []
        return self._active().filter(Job.id.in_(list(ids))).order_by(Job.id).all()

    def get_job(self, job_id: int) -> Job | None:
        return self._active().filter(Job.id == job_id).first()

    def update_embedding(self, job_id: int, vector: list[float], timestamp: datetime) -> None:
        updated = (
            self._active()
            .filter(Job.id == job_id)
            .update(
                {Job.embedding: vector, Job.embedding_created_at: timestamp},
                synchronize_session="fetch",
            )
        )
        if not updated:
            self._session.rollback()
            raise JobNotFound(job_id)
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def embedding_status(self) -> EmbeddingStatus:
        total = self._active().count()
        embedded = self._active().filter(Job.embedding.isnot(None)).count()
        return EmbeddingStatus(
            total_jobs=total,
            jobs_with_embeddings=embedded,
            jobs_without_embeddings=total - embedded,
        )

    # ------------------------------------------------------------------
    # Similarity search
    # ------------------------------------------------------------------

    def search_similar(
        self,
        vector: list[float],
        filt: SearchFilter,
        limit: int,
        offset: int = 0,
    ) -> SearchPage:
        """K nearest active, embedded jobs by cosine distance.

        Ordered by distance, then most recent embedding_created_at, then id.
        """
        if self._native_vectors:
            return self._search_pgvector(vector, filt, limit, offset)
        return self._search_flat(vector, filt, limit, offset)

    @staticmethod
    def _predicates(filt: SearchFilter) -> list:
        predicates = [Job.deleted_at.is_(None), Job.embedding.isnot(None)]
        if filt.min_score > 0:
            predicates.append(Job.cfo_score >= filt.min_score)
        if filt.exclude_id is not None:
            predicates.append(Job.id != filt.exclude_id)
        if filt.location:
            predicates.append(Job.location.ilike(f"%{filt.location}%"))
        if filt.company:
            predicates.append(Job.company.ilike(f"%{filt.company}%"))
        return predicates

    def _pgvector_queries(self, vector, filt, limit, offset):
        """Count query and page query sharing the same predicates."""
        predicates = self._predicates(filt)
        distance = Job.embedding.cosine_distance(vector)
        if filt.min_similarity is not None:
            predicates = [*predicates, distance <= 1.0 - filt.min_similarity]
        ranked = distance.label("distance")

        count_q = self._session.query(func.count(Job.id)).filter(*predicates)
        page_q = (
            self._session.query(Job, ranked)
            .filter(*predicates)
            .order_by(ranked, Job.embedding_created_at.desc(), Job.id)
            .offset(offset)
            .limit(limit)
        )
        return count_q, page_q

    def _search_pgvector(self, vector, filt, limit, offset) -> SearchPage:
        count_q, page_q = self._pgvector_queries(vector, filt, limit, offset)
        total = count_q.scalar() or 0
        if offset >= total:
            return SearchPage(total=total)

        # An HNSW scan yields at most ef_search rows before filtering. Widen it to
        # reach this page and keep scanning while filters reject rows
        # (iterative_scan needs the pgvector 0.8 extension).
        ef_search = min(HNSW_MAX_EF_SEARCH, max(self.ef_search, offset + limit))
        self._session.execute(text(f"SET LOCAL hnsw.ef_search = {int(ef_search)}"))
        self._session.execute(text("SET LOCAL hnsw.iterative_scan = strict_order"))

        rows = page_q.all()
        return SearchPage(hits=[(job, float(d)) for job, d in rows], total=total)

    def _search_flat(self, vector, filt, limit, offset) -> SearchPage:
        """Exact scan with a FAISS flat index for databases without pgvector."""
        candidates = self._session.query(Job).filter(*self._predicates(filt)).all()
        if not candidates:
            return SearchPage()

        matrix = np.vstack([np.asarray(j.embedding, dtype=np.float32) for j in candidates])
        query = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        # float32 noise would otherwise split exact ties
        distances = np.round(1.0 - cosine_similarities(matrix, query), 6)

        ranked = sorted(
            zip(candidates, distances.tolist()),
            key=lambda hit: (hit[1], -_timestamp(hit[0].embedding_created_at), hit[0].id),
        )
        if filt.min_similarity is not None:
            ranked = [h for h in ranked if 1.0 - h[1] >= filt.min_similarity]

        return SearchPage(hits=ranked[offset:offset + limit], total=len(ranked))


def cosine_similarities(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` (1, D) against every row of ``matrix`` (N, D).

    Inner product over L2-normalised vectors; zero vectors score 0.
    """
    matrix = _normalize(matrix)
    query = _normalize(query)
    index = faiss.IndexFlatIP(matrix.shape[1])
    index.add(matrix)
    scores, indices = index.search(query, len(matrix))
    sims = np.zeros(len(matrix), dtype=np.float32)
    sims[indices[0]] = scores[0]
    return sims


def _normalize(a: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(a, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return np.ascontiguousarray(a / norms, dtype=np.float32)


def _timestamp(dt: datetime | None) -> float:
    return dt.timestamp() if dt is not None else 0.0
