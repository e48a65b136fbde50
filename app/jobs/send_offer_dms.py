"""
Scheduled job: send the offer DM to conversations waiting in OFFER without one.

Run via: python -m app.jobs.send_offer_dms [--delay-seconds 30]
"""

import asyncio
import logging
import sys
import uuid
from datetime import timedelta

from app.core.config import settings
from app.db.session import SessionLocal
from app.middleware.correlation_id import install_correlation_id_filter, set_correlation_id
from app.services.offer_dm import sweep_offer_conversations

logger = logging.getLogger(__name__)


async def run_sweep(delay_seconds: int) -> dict:
    db = SessionLocal()
    try:
        return await sweep_offer_conversations(db, delay=timedelta(seconds=delay_seconds))
    finally:
        db.close()


def main() -> None:
    """CLI entrypoint for the offer DM sweep."""
    import argparse

    parser = argparse.ArgumentParser(description="Send pending offer DMs")
    parser.add_argument(
        "--delay-seconds",
        type=int,
        default=settings.offer_dm_delay_seconds,
        help=f"Minimum seconds in OFFER before sending (default: {settings.offer_dm_delay_seconds})",
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
    set_correlation_id(f"offer-dms-{uuid.uuid4()}")

    try:
        results = asyncio.run(run_sweep(args.delay_seconds))
        logger.info(
            f"Offer DM sweep completed: checked={results['checked']}, sent={results['sent']}, "
            f"failed={results['failed']}, errors={len(results['errors'])}"
        )
        if results["errors"]:
            sys.exit(1)
    except Exception as e:
        logger.error(f"Offer DM sweep failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
