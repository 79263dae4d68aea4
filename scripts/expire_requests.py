"""
Expiry sweep entry point.

Soft-deactivates open help requests whose flight or arrival date has
passed. Meant to run once a day from cron or a scheduler:

    python -m scripts.expire_requests [--date YYYY-MM-DD]
"""

import argparse
import asyncio
import logging
from datetime import date

from helpmatch.app.core.config import settings
from helpmatch.app.core.observability import configure_logging
from helpmatch.app.db.session import AsyncSessionLocal, engine
from helpmatch.app.services.expiry import deactivate_expired_requests

logger = logging.getLogger("helpmatch.expiry")


async def run(cutoff: date) -> int:
    try:
        return await deactivate_expired_requests(AsyncSessionLocal, cutoff)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Deactivate help requests dated before a cutoff day")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=date.today(),
        help="Cutoff day (default: today)"
    )
    args = parser.parse_args()

    configure_logging(settings.debug)
    expired = asyncio.run(run(args.date))
    logger.info("Deactivated %d expired request(s)", expired)


if __name__ == "__main__":
    main()
