"""Shared fixtures: in-memory SQLite database and a deterministic fake provider."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

import numpy as np
import pytest

from jobmatch.database import Database
from jobmatch.models.orm import Job

DIM = 1536


def make_vector(*leading: float, dim: int = DIM) -> list[float]:
    """A vector whose first components are ``leading`` and the rest zero."""
    v = [0.0] * dim
    v[: len(leading)] = [float(x) for x in leading]
    return v


def text_vector(text: str) -> list[float]:
    """Deterministic pseudo-embedding for a text."""
    seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
    return np.random.default_rng(seed).standard_normal(DIM).tolist()


class FakeProvider:
    """Records calls; raises for texts containing a failure needle."""

    def __init__(self, vectors=None, failures=None):
        self.vectors = dict(vectors or {})
        self.failures = dict(failures or {})
        self.calls: list[str] = []
        self.closed = False

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        for needle, exc in self.failures.items():
            if needle in text:
                raise exc
        if text in self.vectors:
            return self.vectors[text]
        return text_vector(text)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def session(database):
    with database.session() as s:
        yield s


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def add_job(session):
    """Insert a job; jobs given an embedding get a default embedding_created_at."""

    def _add(**kwargs) -> Job:
        kwargs.setdefault("title", "Finance Controller")
        kwargs.setdefault("description", "Own the monthly close.")
        kwargs.setdefault("cfo_score", 2)
        if kwargs.get("embedding") is not None:
            kwargs.setdefault(
                "embedding_created_at", datetime(2024, 1, 1, tzinfo=timezone.utc)
            )
        job = Job(**kwargs)
        session.add(job)
        session.commit()
        return job

    return _add
