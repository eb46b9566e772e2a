"""One-shot expiry sweep, meant to be triggered by an external scheduler (cron).

Cancels scheduled subscriptions whose cancellation date has passed and active
subscriptions whose period ended without a renewal. Exits non-zero if any
subscription could not be processed.

Run from the backend directory:
    python -m scripts.process_expired_subscriptions
"""

import asyncio
import logging
import sys

from entitlements.config import get_settings
from entitlements.services.container import build_container

logger = logging.getLogger("scripts.process_expired_subscriptions")


async def run() -> int:
    settings = get_settings()
    services = build_container(settings)
    try:
        report = await services.subscriptions.process_expired_subscriptions()
    finally:
        await services.dispose()

    for subscription in report.processed:
        logger.info("Cancelled %s (user %s)", subscription.id, subscription.user_id)
    for subscription_id, error in report.failed:
        logger.error("Failed to expire %s: %s", subscription_id, error)
    logger.info("Sweep done: %d cancelled, %d failed", len(report.processed), len(report.failed))
    return 1 if report.failed else 0


if __name__ == "__main__":
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run()))
