"""Embedding provider: remote OpenAI-compatible embeddings endpoint over httpx.

- One POST per ``embed`` call, no retries (callers own the retry policy)
- Output dimension fixed at 1536 via the ``dimensions`` request field
- Every call bounded by the client timeout; a timeout is a ProviderError
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Protocol

import httpx

from jobmatch.config import (
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MODEL,
    EMBEDDING_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    QUERY_CACHE_MAX_ENTRIES,
    QUERY_CACHE_TTL,
)
from jobmatch.errors import ProviderError

log = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingProvider:
    """Stateless adapter around ``POST {base_url}/embeddings``."""

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        *,
        model: str = EMBEDDING_MODEL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = EMBEDDING_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("cannot embed empty text")

        payload = {
            "model": self.model,
            "input": text,
            "dimensions": self.dimensions,
            "encoding_format": "float",
        }
        try:
            resp = self._client.post("/embeddings", json=payload)
        except httpx.TimeoutException as e:
            raise ProviderError(f"embedding request timed out: {e}", retryable=True) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"embedding request failed: {e}", retryable=True) from e

        if resp.status_code == 429:
            raise ProviderError("rate limited by embedding provider", status=429, retryable=True)
        if resp.status_code >= 400:
            raise ProviderError(
                f"embedding provider returned HTTP {resp.status_code}: {resp.text[:200]}",
                status=resp.status_code,
                retryable=resp.status_code >= 500,
            )

        try:
            vector = resp.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"malformed embedding response: {e}") from e
        if not isinstance(vector, list):
            raise ProviderError("malformed embedding response: embedding is not a list")
        return vector

    def close(self) -> None:
        self._client.close()


class CachedEmbeddingProvider:
    """LRU + TTL cache in front of another provider, for repeated query texts.

    Keys are the stripped, lower-cased text. Failures are never cached.
    """

    def __init__(
        self,
        inner: EmbeddingProvider,
        *,
        ttl_seconds: float = QUERY_CACHE_TTL,
        max_entries: int = QUERY_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[list[float], float]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def embed(self, text: str) -> list[float]:
        key = text.strip().lower()

        with self._lock:
            hit = self._entries.get(key)
            if hit is not None:
                vector, stored_at = hit
                if self._clock() - stored_at <= self.ttl_seconds:
                    self._entries.move_to_end(key)
                    return vector
                del self._entries[key]

        # not held across the provider call
        vector = self.inner.embed(text)

        with self._lock:
            self._entries[key] = (vector, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                log.debug("Query embedding cache evicted %r", evicted[:50])
        return vector

    def close(self) -> None:
        close = getattr(self.inner, "close", None)
        if close is not None:
            close()
