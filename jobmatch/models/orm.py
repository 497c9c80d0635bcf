from datetime import datetime, timezone

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, Index, Integer, String, Text, event, inspect
from sqlalchemy.orm.attributes import NEVER_SET, NO_VALUE

from jobmatch.config import EMBEDDING_DIMENSIONS
from jobmatch.database import Base


# ── ORM Models ──────────────────────────────────────────────────────────────

class Job(Base):
    __tablename__ = "jobs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, index=True, nullable=True)  # id at the scraped source
    title = Column(String)
    description = Column(Text)
    company = Column(String)
    location = Column(String)
    job_url = Column(String)
    publication_date = Column(DateTime(timezone=True), nullable=True)
    cfo_score = Column(Integer, nullable=True)  # 0-3, null = unscored
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    embedding_created_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        Index(
            "ix_jobs_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def __repr__(self) -> str:
        return f"<Job id={self.id} title={self.title!r}>"


# Editing the source text makes the stored vector stale: drop it so the
# next generator run picks the job up again.
@event.listens_for(Job.title, "set", active_history=True)
@event.listens_for(Job.description, "set", active_history=True)
def _clear_stale_embedding(target, value, oldvalue, initiator):
    if not inspect(target).persistent:
        return
    if oldvalue is NO_VALUE or oldvalue is NEVER_SET or value == oldvalue:
        return
    target.embedding = None
    target.embedding_created_at = None
