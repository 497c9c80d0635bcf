import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR.parent / "data"

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{DATA_DIR / 'jobmatch.db'}",
)
API_PORT = int(os.environ.get("API_PORT", "8001"))

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")

EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = 1536
EMBEDDING_TIMEOUT = float(os.environ.get("EMBEDDING_TIMEOUT", "30"))

EMBEDDING_BATCH_SIZE = int(os.environ.get("EMBEDDING_BATCH_SIZE", "10"))
EMBEDDING_BATCH_PAUSE = float(os.environ.get("EMBEDDING_BATCH_PAUSE", "1.0"))
EMBEDDING_MAX_WORKERS = int(os.environ.get("EMBEDDING_MAX_WORKERS", "1"))
EMBEDDING_MAX_ATTEMPTS = int(os.environ.get("EMBEDDING_MAX_ATTEMPTS", "3"))
EMBEDDING_RETRY_DELAY = float(os.environ.get("EMBEDDING_RETRY_DELAY", "1.0"))
# Truncation point for title + description; our policy, not the provider's limit
EMBEDDING_MAX_INPUT_CHARS = int(os.environ.get("EMBEDDING_MAX_INPUT_CHARS", "24000"))

QUERY_CACHE_TTL = float(os.environ.get("QUERY_CACHE_TTL", str(24 * 60 * 60)))
QUERY_CACHE_MAX_ENTRIES = int(os.environ.get("QUERY_CACHE_MAX_ENTRIES", "1000"))

RECOMMEND_DEFAULT_PAGE_SIZE = 5
RECOMMEND_MAX_PAGE_SIZE = int(os.environ.get("RECOMMEND_MAX_PAGE_SIZE", "50"))
RECOMMEND_DEFAULT_MIN_SCORE = int(os.environ.get("RECOMMEND_DEFAULT_MIN_SCORE", "1"))

CFO_SCORE_MIN = 0
CFO_SCORE_MAX = 3

# HNSW candidate list for similarity search; raised per query to cover the
# requested page (pgvector caps it at 1000)
HNSW_EF_SEARCH = int(os.environ.get("HNSW_EF_SEARCH", "40"))
