"""CLI command for settling jobs orphaned by a crash or restart.

Usage:
    python -m adgen.cli.recover_jobs [OPTIONS]

Examples:
    # Settle every orphaned job
    python -m adgen.cli.recover_jobs

    # Inspect at most 10 jobs
    python -m adgen.cli.recover_jobs --limit 10

    # Dry run (no database writes)
    python -m adgen.cli.recover_jobs --dry-run

    # Settle every unsettled job, however recently it was written
    python -m adgen.cli.recover_jobs --stale-after 0

    # Verbose logging
    python -m adgen.cli.recover_jobs -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from adgen.core import timezone  # noqa: F401
from adgen.core.config import Settings, configure_logging
from adgen.core.database import dispose_db_session, setup_db_session
from adgen.services.exceptions import StorageError
from adgen.services.job_store import JobStore
from adgen.uow import create_uow_factory
from adgen.workers.recovery import recover_orphaned_jobs

logger = structlog.get_logger()

DEFAULT_LIMIT = 100


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Settle jobs left in 'generating' by an interrupted process",
        epilog="Unsettled batch units are recorded as failed; jobs with outputs complete",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_LIMIT,
        help=f"Maximum number of jobs to inspect (default: {DEFAULT_LIMIT})",
    )

    parser.add_argument(
        "--stale-after",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Only settle jobs not written for this long "
        "(default: ORPHAN_STALE_AFTER_SECONDS, 0 = every unsettled job)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List orphaned jobs without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    stale_after = (
        settings.orphan_stale_after_seconds if args.stale_after is None else args.stale_after
    )
    logger.info(
        "cli.started", limit=args.limit, dry_run=args.dry_run, stale_after_seconds=stale_after
    )

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    job_store = JobStore(
        create_uow_factory(session_factory), max_retries=settings.job_update_max_retries
    )

    try:
        result = await recover_orphaned_jobs(
            job_store, limit=args.limit, dry_run=args.dry_run, stale_after_seconds=stale_after
        )

        print("\n" + "=" * 60)
        print("Orphaned Job Recovery Summary")
        print("=" * 60)
        print(f"Orphaned jobs found: {result.orphaned_count}")
        print(f"Jobs settled: {len(result.recovered_job_ids)}")
        print(f"Units abandoned: {result.abandoned_units}")
        for job_id in result.recovered_job_ids[:10]:
            print(f"  - {job_id}")
        if len(result.recovered_job_ids) > 10:
            print(f"  ... and {len(result.recovered_job_ids) - 10} more")

        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")
        print("=" * 60 + "\n")
        return 0

    except (StorageError, SQLAlchemyError) as e:
        logger.error("cli.recovery_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nRecovery interrupted by user", file=sys.stderr)
        return 130

    finally:
        await dispose_db_session(session_factory)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Synchronous entry point for CLI."""
    return asyncio.run(async_main(argv))


if __name__ == "__main__":
    sys.exit(main())
