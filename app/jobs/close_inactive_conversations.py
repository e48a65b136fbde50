"""
Scheduled job: close conversations idle past the inactivity threshold.

Run via: python -m app.jobs.close_inactive_conversations [--threshold-days 2]
"""

import logging
import signal
import sys
import uuid
from datetime import timedelta

from app.core.config import settings
from app.db.session import SessionLocal
from app.middleware.correlation_id import install_correlation_id_filter, set_correlation_id
from app.services.reaper import ReaperReport, close_inactive_conversations

logger = logging.getLogger(__name__)

_stop_requested = False


def _request_stop(signum, frame) -> None:
    global _stop_requested
    logger.info(f"Signal {signum} received - stopping after the current conversation")
    _stop_requested = True


def run_reaper(threshold_days: int | None = None) -> ReaperReport:
    """Run one reaper pass in its own session."""
    days = threshold_days if threshold_days is not None else settings.inactivity_threshold_days
    db = SessionLocal()
    try:
        return close_inactive_conversations(
            db,
            threshold=timedelta(days=days),
            should_stop=lambda: _stop_requested,
        )
    finally:
        db.close()


def main() -> None:
    """CLI entrypoint for the lifecycle reaper."""
    import argparse

    parser = argparse.ArgumentParser(description="Close inactive funnel conversations")
    parser.add_argument(
        "--threshold-days",
        type=int,
        default=None,
        help=f"Inactivity threshold in days (default: {settings.inactivity_threshold_days})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s",
    )
    install_correlation_id_filter()
    set_correlation_id(f"reaper-{uuid.uuid4()}")
    signal.signal(signal.SIGTERM, _request_stop)

    try:
        report = run_reaper(args.threshold_days)
        logger.info(
            f"Reaper completed: checked={report.checked}, closed={report.closed}, "
            f"already_closed={report.already_closed}, errors={len(report.errors)}"
        )
        if report.errors:
            sys.exit(1)
    except Exception as e:
        logger.error(f"Reaper job failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
