"""
Scheduled job: SystemEvent retention.

Run via: python -m app.jobs.cleanup_system_events [--retention-days 90]
"""

import logging
import sys
import uuid

from app.db.session import SessionLocal
from app.middleware.correlation_id import install_correlation_id_filter, set_correlation_id
from app.services.system_event_service import DEFAULT_RETENTION_DAYS, cleanup_old_events

logger = logging.getLogger(__name__)


def run_cleanup(retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
    db = SessionLocal()
    try:
        return cleanup_old_events(db, retention_days=retention_days)
    finally:
        db.close()


def main() -> None:
    """CLI entrypoint for SystemEvent retention cleanup."""
    import argparse

    parser = argparse.ArgumentParser(description="Delete SystemEvents past retention")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=DEFAULT_RETENTION_DAYS,
        help=f"Delete events older than this many days (default: {DEFAULT_RETENTION_DAYS})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()
    if args.retention_days < 1:
        parser.error("--retention-days must be at least 1")

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s",
    )
    install_correlation_id_filter()
    set_correlation_id(f"event-retention-{uuid.uuid4()}")

    try:
        deleted = run_cleanup(args.retention_days)
        logger.info(f"Retention cleanup completed: deleted {deleted} events")
    except Exception as e:
        logger.error(f"Retention cleanup failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
