import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from config import get_settings
from database import session_scope
from notifications import (
    APSchedulerDelivery,
    NotificationScheduler,
    NotificationSink,
    PermissionGate,
    restore_all,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        sink: Optional[NotificationSink] = None,
        permissions: Optional[PermissionGate] = None,
    ) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.delivery = APSchedulerDelivery(self.scheduler, sink, settings.tz)
        self.permissions = permissions

    def notifications(self, session, user_id: int) -> NotificationScheduler:
        return NotificationScheduler(session, user_id, self.delivery, self.permissions)

    def _restore_jobs(self, source: str = "manual") -> int:
        logger.info(f"scheduler_restore: source={source}")
        with session_scope() as session:
            count = restore_all(session, self.delivery)
        logger.info(f"scheduler_restore: source={source} notifications_restored={count}")
        return count

    def start(self) -> None:
        if self.scheduler.running:
            return
        self._restore_jobs("startup")
        self.scheduler.start()
        logger.info("Scheduler started with persisted reminders")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
