#!/usr/bin/env python3
"""jobmatch — embedding generation and semantic job recommendations.

Usage:
    # One-time: create tables (and the pgvector extension on PostgreSQL)
    python -m jobmatch.main init-db

    # Embed every job that has no embedding yet (cron entry point)
    python -m jobmatch.main generate [--limit N] [--batch-size N] [--workers N]

    # Regenerate the embeddings of specific jobs
    python -m jobmatch.main reembed ID [ID ...]

    # Embedding coverage
    python -m jobmatch.main status

    # Ad-hoc recommendations
    python -m jobmatch.main recommend (--job-id ID | --query TEXT) [--min-score N]

    # Serve the HTTP API
    python -m jobmatch.main serve [--port PORT]
"""

from __future__ import annotations

import argparse
import logging
import sys

from jobmatch.config import (
    API_PORT,
    DATA_DIR,
    DATABASE_URL,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_MAX_WORKERS,
    RECOMMEND_DEFAULT_PAGE_SIZE,
)
from jobmatch.database import Database
from jobmatch.errors import JobMatchError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("jobmatch")


def _provider():
    from jobmatch.services.embedding_provider import OpenAIEmbeddingProvider

    return OpenAIEmbeddingProvider()


def cmd_init_db(args: argparse.Namespace, db: Database) -> None:
    """Create the schema."""
    db.create_all()


def cmd_generate(args: argparse.Namespace, db: Database) -> None:
    """Embed all active jobs that are missing an embedding."""
    from jobmatch.services.batch_generator import BatchEmbeddingGenerator
    from jobmatch.services.job_repository import JobRepository

    provider = _provider()
    try:
        with db.session() as session:
            generator = BatchEmbeddingGenerator(
                JobRepository(session),
                provider,
                batch_size=args.batch_size,
                max_workers=args.workers,
            )
            summary = generator.generate(limit=args.limit)
    finally:
        provider.close()

    print(summary.model_dump_json(indent=2, by_alias=True, exclude={"outcomes"}))
    if summary.failed:
        log.warning("%d jobs could not be embedded", summary.failed)


def cmd_reembed(args: argparse.Namespace, db: Database) -> None:
    """Regenerate embeddings for the given job ids."""
    from jobmatch.services.batch_generator import BatchEmbeddingGenerator
    from jobmatch.services.job_repository import JobRepository

    provider = _provider()
    try:
        with db.session() as session:
            summary = BatchEmbeddingGenerator(JobRepository(session), provider).reembed(args.ids)
    finally:
        provider.close()
    print(summary.model_dump_json(indent=2, by_alias=True))


def cmd_status(args: argparse.Namespace, db: Database) -> None:
    """Show how many active jobs have embeddings."""
    from jobmatch.services.job_repository import JobRepository

    with db.session() as session:
        status = JobRepository(session).embedding_status()
    print(status.model_dump_json(indent=2, by_alias=True))


def cmd_recommend(args: argparse.Namespace, db: Database) -> None:
    """Print related jobs for a job id or a free-text query."""
    from jobmatch.services.job_repository import JobRepository
    from jobmatch.services.recommendation import RecommendationService, build_query

    payload = {"page": args.page, "pageSize": args.page_size, "minScore": args.min_score}
    if args.job_id is not None:
        payload["jobId"] = args.job_id
    if args.query is not None:
        payload["query"] = args.query

    provider = _provider()
    try:
        with db.session() as session:
            page = RecommendationService(JobRepository(session), provider).recommend(
                build_query(payload)
            )
    finally:
        provider.close()

    print(f"Page {page.page}/{page.total_pages} ({page.total} matches)")
    for item in page.items:
        print(
            f"  [{item.id}] {item.title or '(untitled)'} — {item.company or '?'}"
            f"  score={item.cfo_score}  similarity={item.similarity:.3f}"
        )


def cmd_serve(args: argparse.Namespace, db: Database) -> None:
    """Start the FastAPI server."""
    import uvicorn

    from jobmatch.server import create_app

    app = create_app(db, _provider())
    log.info("Starting server at http://localhost:%d/api", args.port)
    uvicorn.run(app, host="0.0.0.0", port=args.port, log_level="info")


COMMANDS = {
    "init-db": cmd_init_db,
    "generate": cmd_generate,
    "reembed": cmd_reembed,
    "status": cmd_status,
    "recommend": cmd_recommend,
    "serve": cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="jobmatch — embedding generation and semantic job recommendations"
    )
    parser.add_argument("--database-url", default=DATABASE_URL,
                        help="SQLAlchemy database URL (default: $DATABASE_URL)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-db", help="Create tables")

    p_gen = sub.add_parser("generate", help="Embed jobs missing an embedding")
    p_gen.add_argument("--limit", type=int, default=None,
                       help="Process at most N jobs")
    p_gen.add_argument("--batch-size", type=int, default=EMBEDDING_BATCH_SIZE,
                       help=f"Jobs per batch (default: {EMBEDDING_BATCH_SIZE})")
    p_gen.add_argument("--workers", type=int, default=EMBEDDING_MAX_WORKERS,
                       help="Concurrent provider calls (default: %(default)s)")

    p_re = sub.add_parser("reembed", help="Regenerate embeddings for specific jobs")
    p_re.add_argument("ids", type=int, nargs="+", help="Job ids")

    sub.add_parser("status", help="Show embedding coverage")

    p_rec = sub.add_parser("recommend", help="Related jobs for a job or a query")
    src = p_rec.add_mutually_exclusive_group(required=True)
    src.add_argument("--job-id", type=int, default=None)
    src.add_argument("--query", default=None)
    p_rec.add_argument("--min-score", type=int, default=None)
    p_rec.add_argument("--page", type=int, default=1)
    p_rec.add_argument("--page-size", type=int, default=RECOMMEND_DEFAULT_PAGE_SIZE)

    p_serve = sub.add_parser("serve", help="Serve the HTTP API")
    p_serve.add_argument("--port", type=int, default=API_PORT,
                         help=f"Server port (default: {API_PORT})")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    DATA_DIR.mkdir(parents=True, exist_ok=True)
    db = Database(args.database_url)
    try:
        command(args, db)
    except JobMatchError as e:
        log.error("%s: %s", e.code, e)
        return 1
    finally:
        if args.command != "serve":
            db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
