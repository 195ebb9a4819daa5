"""
Overdue approval sweep.

Expires every pending trip whose approval deadline has passed and notifies
requesters and administrators. Meant to run from cron:

    python -m tripshare.app.jobs.expiry_sweep

Running it twice, or alongside the admin endpoint, is harmless.
"""

import asyncio
import logging
from typing import List

from tripshare.app.core.approval_tokens import ApprovalTokenService
from tripshare.app.core.config import Settings, settings
from tripshare.app.core.redis_client import build_redis_client
from tripshare.app.db.session import AsyncSessionLocal
from tripshare.app.domain.approval.approval_service import ApprovalService
from tripshare.app.services.notifier import MailAPINotifier, NotificationDispatcher
from tripshare.app.services.trip_store import TripStore

logger = logging.getLogger(__name__)


async def run_expiry_sweep(
    session_factory=AsyncSessionLocal,
    redis_client=None,
    notifier=None,
    config: Settings = settings,
) -> List[int]:
    """
    Run one sweep.

    Returns:
        Ids of the trips expired by this run
    """
    owns_redis = redis_client is None
    if owns_redis:
        redis_client = build_redis_client(config)
    try:
        async with session_factory() as db:
            service = ApprovalService(
                TripStore(db),
                ApprovalTokenService(config.approval_token_secret, config.algorithm, redis_client),
                NotificationDispatcher(notifier or MailAPINotifier.from_settings(config), db),
                config,
            )
            expired = await service.expire_overdue()
    finally:
        if owns_redis:
            await redis_client.aclose()

    trip_ids = [trip.id for trip in expired]
    logger.info("Expiry sweep finished: %d trip(s) expired %s", len(trip_ids), trip_ids)
    return trip_ids


def main() -> None:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_expiry_sweep())


if __name__ == "__main__":
    main()
