import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from periods import current_month_key
from services import BudgetService, VisibilityService, local_today


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def roll_over_current_month(session, today: Optional[date] = None) -> tuple[int, int]:
    """Materialize the current month and inherit its budgets and visibility.

    Returns the number of budget rows and visibility flags now in effect.
    """
    key = current_month_key(today or local_today())
    budgets = BudgetService(session).resolve(key.year, key.month)
    visibility = VisibilityService(session).resolve(key.year, key.month)
    return len(budgets), len(visibility)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            budgets, flags = roll_over_current_month(session)
            logger.info(
                f"scheduler_run: source={source} budgets={budgets} visibility={flags}"
            )

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(day=1, hour=0, minute=5)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["monthly_00:05"],
            id="month_rollover",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with monthly rollover on day 1 at 00:05")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
