"""
Scheduled job: send due re-prompts. Meant to run every minute (offsets are exact minutes).

Run via: python -m app.jobs.send_reprompts
"""

import asyncio
import logging
import sys
import uuid

from app.db.session import SessionLocal
from app.middleware.correlation_id import install_correlation_id_filter, set_correlation_id
from app.services.reprompts import send_due_reprompts

logger = logging.getLogger(__name__)


async def run_reprompts() -> dict:
    db = SessionLocal()
    try:
        return await send_due_reprompts(db)
    finally:
        db.close()


def main() -> None:
    """CLI entrypoint for the re-prompt scheduler tick."""
    import argparse

    parser = argparse.ArgumentParser(description="Send due funnel re-prompts")
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
    set_correlation_id(f"reprompts-{uuid.uuid4()}")

    try:
        results = asyncio.run(run_reprompts())
        logger.info(
            f"Re-prompts completed: checked={results['checked']}, sent={results['sent']}, "
            f"skipped={results['skipped']}, errors={len(results['errors'])}"
        )
        if results["errors"]:
            sys.exit(1)
    except Exception as e:
        logger.error(f"Re-prompt job failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
