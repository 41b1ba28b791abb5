"""
Background Job Scheduler for the e-filing engine.

Handles scheduled tasks using APScheduler:
- Red-list sweep (every REDLIST_SWEEP_INTERVAL_MINUTES, default hourly)
- Timer refresh (every TIMER_REFRESH_INTERVAL_MINUTES, default hourly)
- Monthly points bonus (1st of the month, 00:00)
- Daily performance pass (DAILY_PERFORMANCE_HOUR:MINUTE, default 23:30)
- Webhook delivery (every minute, only when NOTIFICATION_WEBHOOK_URL is set)

Only one process should own these jobs: the scheduler starts when both
ENABLE_SCHEDULER and RUN_SCHEDULER are true.

Job failure monitoring:
- Failures are counted over a rolling 24 hours
- A job is paused after JOB_FAILURE_ALERT_THRESHOLD failures
- Health status is exposed for the /health endpoint
"""
import inspect
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings


logger = logging.getLogger(__name__)


# ==========================================
# JOB FAILURE MONITOR
# ==========================================

class JobFailureMonitor:
    """
    Monitor job failures and alert when threshold exceeded.

    Prevents a silently failing sweep from leaving overdue files off the
    red list for days.
    """

    def __init__(self, failure_threshold: int = 2):
        self.failure_threshold = failure_threshold
        self.failed_jobs: Dict[str, List[datetime]] = defaultdict(list)
        self.paused_jobs: set = set()

    async def record_success(self, job_id: str) -> None:
        """Record job success - reset failure count."""
        self.failed_jobs[job_id] = []
        if job_id in self.paused_jobs:
            self.paused_jobs.remove(job_id)

    async def record_failure(self, job_id: str, error: str) -> bool:
        """
        Record job failure and alert if threshold exceeded.

        Returns True if job should be paused.
        """
        now = datetime.now(timezone.utc)

        self.failed_jobs[job_id].append(now)

        # Keep only failures from last 24 hours
        cutoff = now - timedelta(hours=24)
        self.failed_jobs[job_id] = [
            t for t in self.failed_jobs[job_id] if t > cutoff
        ]

        failure_count = len(self.failed_jobs[job_id])

        if failure_count >= self.failure_threshold:
            await self._send_critical_alert(job_id, failure_count, error)
            self.paused_jobs.add(job_id)
            return True

        return False

    async def _send_critical_alert(self, job_id: str, failure_count: int, error: str) -> None:
        """Raise an operations alert when job failures exceed threshold."""
        logger.critical(
            f"CRITICAL: Job {job_id} failed {failure_count} times in {settings.app_name}. "
            f"Last error: {error}. Job paused."
        )

    def get_status(self) -> Dict[str, Any]:
        """Get current failure status for all jobs."""
        return {
            job_id: {
                "failure_count": len(failures),
                "last_failure": failures[-1].isoformat() if failures else None,
                "is_paused": job_id in self.paused_jobs
            }
            for job_id, failures in self.failed_jobs.items()
        }


# Global job monitor
job_monitor = JobFailureMonitor(
    failure_threshold=settings.job_failure_alert_threshold
)


class EngineScheduler:
    """
    Background job scheduler for the escalation engine.

    Each job runs with max_instances=1 and coalesce=True, so a slow sweep
    is never overlapped by the next tick of the same job.
    """

    def __init__(self):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.job_monitor = job_monitor

        self.jobs_config = {
            "redlist_sweep": {
                "func": redlist_sweep_job,
                "trigger": IntervalTrigger(minutes=settings.redlist_sweep_interval_minutes),
                "name": "Red-List Sweep",
                "description": "Red-list open files whose time budget is exhausted"
            },
            "timer_refresh": {
                "func": timer_refresh_job,
                "trigger": IntervalTrigger(minutes=settings.timer_refresh_interval_minutes),
                "name": "Timer Refresh",
                "description": "Recompute time remaining for open timed files"
            },
            "monthly_bonus": {
                "func": monthly_bonus_job,
                "trigger": CronTrigger(
                    day=settings.monthly_bonus_day,
                    hour=settings.monthly_bonus_hour,
                    minute=0,
                    timezone=settings.scheduler_timezone
                ),
                "name": "Monthly Points Bonus",
                "description": "Award the monthly bonus to users without red-listed files"
            },
            "daily_performance": {
                "func": daily_performance_job,
                "trigger": CronTrigger(
                    hour=settings.daily_performance_hour,
                    minute=settings.daily_performance_minute,
                    timezone=settings.scheduler_timezone
                ),
                "name": "Daily Performance",
                "description": "Excess-file coins and badges for the day's work"
            },
        }

        if settings.webhook_enabled:
            self.jobs_config["notification_delivery"] = {
                "func": notification_delivery_job,
                "trigger": IntervalTrigger(minutes=settings.notification_delivery_interval_minutes),
                "name": "Webhook Delivery",
                "description": "Deliver queued notifications to the outbound webhook"
            }

    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler."""
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,  # Combine missed runs into one
            'max_instances': 1,
            'misfire_grace_time': 300
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=settings.scheduler_timezone
        )

    def start(self):
        """Start the scheduler with all jobs."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = self.create_scheduler()

        for job_id, config in self.jobs_config.items():
            self.scheduler.add_job(
                config["func"],
                config["trigger"],
                id=job_id,
                name=config["name"],
                replace_existing=True
            )

        self.scheduler.start()
        self.is_running = True
        logger.info("Engine scheduler started")

        for job in self.scheduler.get_jobs():
            logger.info(f"  - {job.name}: Next run at {job.next_run_time}")

    def stop(self):
        """Stop the scheduler gracefully."""
        if self.scheduler and self.is_running:
            self.scheduler.shutdown(wait=True)
            self.is_running = False
            logger.info("Engine scheduler stopped")

    def get_jobs_status(self) -> list:
        """Get status of all scheduled jobs."""
        if not self.scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "pending": job.pending
            }
            for job in self.scheduler.get_jobs()
        ]

    def pause_job(self, job_id: str) -> bool:
        """Pause a specific job."""
        if not self.scheduler:
            return False
        self.scheduler.pause_job(job_id)
        logger.info(f"Paused job: {job_id}")
        return True

    def get_health_status(self) -> Dict[str, Any]:
        """Scheduler status and job failure information for monitoring."""
        failed_jobs = self.job_monitor.get_status()
        has_failures = any(
            info["failure_count"] > 0
            for info in failed_jobs.values()
        )

        return {
            "status": "degraded" if has_failures else "healthy",
            "is_running": self.is_running,
            "jobs": self.get_jobs_status(),
            "failures": failed_jobs,
            "paused_jobs": list(self.job_monitor.paused_jobs)
        }


# ==========================================
# JOB IMPLEMENTATIONS
# ==========================================

async def _run_monitored(job_id: str, work: Callable[[], Any]) -> Any:
    """
    Run a job body with failure monitoring.

    Successes reset the failure window; failures are recorded, may pause
    the job, and are re-raised so APScheduler logs them too.
    """
    start_time = datetime.now(timezone.utc)

    try:
        result = work()
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.error(f"Job {job_id} failed: {e}", exc_info=True)

        should_pause = await job_monitor.record_failure(job_id, str(e))
        if should_pause:
            scheduler = get_scheduler()
            if scheduler.scheduler:
                scheduler.pause_job(job_id)
        raise

    elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(f"Job {job_id} completed in {elapsed:.2f}s")
    await job_monitor.record_success(job_id)
    return result


async def redlist_sweep_job():
    """Move overdue open files onto the red list."""
    from app.services.redlist import RedListSweeper

    logger.info("Starting red-list sweep...")
    result = await _run_monitored("redlist_sweep", lambda: RedListSweeper().sweep())
    return result.to_dict()


async def timer_refresh_job():
    """Keep time_remaining / timer_percentage fresh between due-date changes."""
    from app.services.timing import TimingEngine

    logger.debug("Refreshing file timers...")
    return await _run_monitored("timer_refresh", lambda: TimingEngine().update_all_time_remaining())


async def monthly_bonus_job():
    """
    Award the monthly points bonus for the month that just ended.

    Safe to re-run: each user is claimed once per period.
    """
    from app.services.incentives import PointsLedger

    logger.info("Processing monthly bonuses...")
    return await _run_monitored("monthly_bonus", lambda: PointsLedger().process_monthly_bonuses())


async def daily_performance_job():
    """End-of-day coins and badges for every active user."""
    from app.services.incentives import CoinLedger

    logger.info("Evaluating daily performance...")
    return await _run_monitored(
        "daily_performance",
        lambda: CoinLedger().evaluate_all_daily_performance()
    )


async def notification_delivery_job():
    """Drain the webhook queue. Registered only when a webhook URL is configured."""
    from app.services.notifications import NotificationService

    return await _run_monitored(
        "notification_delivery",
        lambda: NotificationService().deliver_pending_webhooks()
    )


# ==========================================
# GLOBAL SCHEDULER INSTANCE
# ==========================================

scheduler = EngineScheduler()


def get_scheduler() -> EngineScheduler:
    """Get the global scheduler instance."""
    return scheduler

