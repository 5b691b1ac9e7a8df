import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gatekeeper import database
from gatekeeper.config import settings
from gatekeeper.repositories.two_factor import ChallengeRepository, TrustedDeviceRepository
from gatekeeper.utils.clock import utcnow

scheduler = AsyncIOScheduler()

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "two_factor_cleanup"


async def cleanup_expired_two_factor_data(now: datetime | None = None) -> dict[str, int]:
    """
    Delete verification challenges and trusted devices whose expiry has passed.

    Only rows that are already unusable are touched, so the sweep is safe to
    run alongside request traffic and to repeat.
    """
    now = now or utcnow()
    async with database.AsyncSessionLocal() as db:
        challenges = await ChallengeRepository(db).delete_expired(now)
        devices = await TrustedDeviceRepository(db).delete_expired(now)
        await db.commit()

    if challenges or devices:
        logger.info(f"[Scheduler] Purged {challenges} expired challenges and {devices} expired trusted devices")
    return {"challenges": challenges, "trusted_devices": devices}


def schedule_cleanup(interval_hours: int | None = None):
    scheduler.add_job(
        cleanup_expired_two_factor_data,
        trigger=IntervalTrigger(hours=interval_hours or settings.cleanup_interval_hours),
        id=CLEANUP_JOB_ID,
        replace_existing=True,
    )
    logger.info(f"[Scheduler] Two-factor cleanup scheduled every {interval_hours or settings.cleanup_interval_hours}h")


def start_scheduler():
    schedule_cleanup()
    if not scheduler.running:
        scheduler.start()


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
