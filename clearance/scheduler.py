"""
Scheduler - rafraîchissement récurrent du catalogue.
"""
import redis
from rq_scheduler import Scheduler

from clearance.core.config import REDIS_URL, REFRESH_INTERVAL_SEC
from clearance.core.logging import get_logger

logger = get_logger(__name__)


def setup_scheduled_jobs(interval_sec: int = REFRESH_INTERVAL_SEC):
    from clearance.jobs_refresh import get_coordinator

    scheduler = Scheduler(connection=redis.from_url(REDIS_URL), queue_name="default")
    get_coordinator().schedule_recurring(scheduler, interval_sec)
    logger.info(f"All jobs configured - refresh every {interval_sec}s")
    return scheduler


def get_scheduled_jobs_info():
    scheduler = Scheduler(connection=redis.from_url(REDIS_URL), queue_name="default")
    return [{
        "id": job.id,
        "func_name": job.func_name,
        "interval": job.meta.get("interval"),
    } for job in scheduler.get_jobs()]


if __name__ == "__main__":
    from clearance.core.config import LOG_LEVEL
    from clearance.core.logging import setup_logging

    setup_logging(level=LOG_LEVEL)
    setup_scheduled_jobs().run()
