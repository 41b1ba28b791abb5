"""
Tests for Scheduler Service.

- EngineScheduler with APScheduler (not started in tests)
- Jobs: redlist_sweep, timer_refresh, monthly_bonus, daily_performance,
  notification_delivery (only with a webhook configured)
- JobFailureMonitor pauses a job after repeated failures
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger


@pytest.fixture(autouse=True)
def reset_job_monitor():
    """The monitor is process-global; start each test clean."""
    from app.services.scheduler import job_monitor

    job_monitor.failed_jobs.clear()
    job_monitor.paused_jobs.clear()
    yield
    job_monitor.failed_jobs.clear()
    job_monitor.paused_jobs.clear()


class TestSchedulerStructure:
    """Tests for scheduler structure and configuration."""

    @pytest.mark.unit
    def test_scheduler_job_configuration(self):
        from app.services.scheduler import EngineScheduler

        scheduler = EngineScheduler()

        assert set(scheduler.jobs_config) == {"redlist_sweep", "timer_refresh", "monthly_bonus", "daily_performance"}
        assert isinstance(scheduler.jobs_config["redlist_sweep"]["trigger"], IntervalTrigger)
        assert isinstance(scheduler.jobs_config["timer_refresh"]["trigger"], IntervalTrigger)
        assert isinstance(scheduler.jobs_config["monthly_bonus"]["trigger"], CronTrigger)
        assert isinstance(scheduler.jobs_config["daily_performance"]["trigger"], CronTrigger)

    @pytest.mark.unit
    def test_webhook_delivery_registered_only_with_webhook_url(self):
        from app.core.config import settings
        from app.services.scheduler import EngineScheduler

        with patch.object(settings, "notification_webhook_url", None):
            assert "notification_delivery" not in EngineScheduler().jobs_config

        with patch.object(settings, "notification_webhook_url", "https://hooks.example.gov/efiling"):
            config = EngineScheduler().jobs_config

        assert isinstance(config["notification_delivery"]["trigger"], IntervalTrigger)
        assert config["notification_delivery"]["trigger"].interval.total_seconds() == 60

    @pytest.mark.unit
    def test_daily_performance_runs_at_end_of_day(self):
        from app.services.scheduler import EngineScheduler

        trigger = EngineScheduler().jobs_config["daily_performance"]["trigger"]
        fields = {f.name: str(f) for f in trigger.fields}

        assert fields["hour"] == "23"
        assert fields["minute"] == "30"

    @pytest.mark.unit
    def test_sweep_runs_hourly_by_default(self):
        from app.services.scheduler import EngineScheduler

        trigger = EngineScheduler().jobs_config["redlist_sweep"]["trigger"]

        assert trigger.interval.total_seconds() == 3600

    @pytest.mark.unit
    def test_scheduler_not_running_by_default(self):
        from app.services.scheduler import EngineScheduler

        scheduler = EngineScheduler()

        assert scheduler.is_running is False
        assert scheduler.scheduler is None
        assert scheduler.get_jobs_status() == []
        assert scheduler.pause_job("redlist_sweep") is False

    @pytest.mark.unit
    def test_get_health_status_structure(self):
        from app.services.scheduler import EngineScheduler

        health = EngineScheduler().get_health_status()

        assert health["status"] == "healthy"
        assert health["is_running"] is False
        assert health["jobs"] == []
        assert health["failures"] == {}
        assert health["paused_jobs"] == []

    @pytest.mark.unit
    def test_health_degraded_after_failure(self):
        from app.services.scheduler import EngineScheduler, job_monitor

        asyncio.run(job_monitor.record_failure("redlist_sweep", "boom"))

        assert EngineScheduler().get_health_status()["status"] == "degraded"


class TestJobFailureMonitor:
    """Tests for job failure monitoring."""

    @pytest.mark.unit
    def test_record_success_resets_failure_count(self):
        from app.services.scheduler import JobFailureMonitor

        monitor = JobFailureMonitor(failure_threshold=3)

        asyncio.run(monitor.record_failure("test_job", "error1"))
        asyncio.run(monitor.record_failure("test_job", "error2"))
        asyncio.run(monitor.record_success("test_job"))

        assert monitor.get_status()["test_job"]["failure_count"] == 0

    @pytest.mark.unit
    def test_failure_threshold_triggers_pause(self):
        from app.services.scheduler import JobFailureMonitor

        monitor = JobFailureMonitor(failure_threshold=2)

        assert asyncio.run(monitor.record_failure("test_job", "error1")) is False

        with patch.object(monitor, "_send_critical_alert", new_callable=AsyncMock) as alert:
            assert asyncio.run(monitor.record_failure("test_job", "error2")) is True
            alert.assert_awaited_once()

        assert "test_job" in monitor.paused_jobs
        assert monitor.get_status()["test_job"]["is_paused"] is True

    @pytest.mark.unit
    def test_success_unpauses(self):
        from app.services.scheduler import JobFailureMonitor

        monitor = JobFailureMonitor(failure_threshold=1)
        asyncio.run(monitor.record_failure("test_job", "error"))

        asyncio.run(monitor.record_success("test_job"))

        assert "test_job" not in monitor.paused_jobs


class TestJobs:
    """Job bodies delegate to the engine services."""

    @pytest.mark.unit
    def test_redlist_sweep_job(self):
        from app.services.redlist import SweepResult
        from app.services.scheduler import job_monitor, redlist_sweep_job

        with patch("app.services.redlist.RedListSweeper") as sweeper_cls:
            sweeper_cls.return_value.sweep.return_value = SweepResult(scanned=2, red_listed=1, file_ids=["f1"])

            result = asyncio.run(redlist_sweep_job())

        assert result["red_listed"] == 1
        assert result["file_ids"] == ["f1"]
        assert job_monitor.get_status()["redlist_sweep"]["failure_count"] == 0

    @pytest.mark.unit
    def test_timer_refresh_job(self):
        from app.services.scheduler import timer_refresh_job

        with patch("app.services.timing.TimingEngine") as engine_cls:
            engine_cls.return_value.update_all_time_remaining.return_value = {"updated": 3, "failed": 0}

            result = asyncio.run(timer_refresh_job())

        assert result == {"updated": 3, "failed": 0}

    @pytest.mark.unit
    def test_monthly_bonus_job(self):
        from app.services.scheduler import monthly_bonus_job

        with patch("app.services.incentives.PointsLedger") as ledger_cls:
            ledger_cls.return_value.process_monthly_bonuses.return_value = {"period": "2025-03"}

            result = asyncio.run(monthly_bonus_job())

        assert result == {"period": "2025-03"}

    @pytest.mark.unit
    def test_daily_performance_job(self):
        from app.services.scheduler import daily_performance_job, job_monitor

        with patch("app.services.incentives.CoinLedger") as ledger_cls:
            ledger_cls.return_value.evaluate_all_daily_performance.return_value = {"evaluated": 4, "failed": 0}

            result = asyncio.run(daily_performance_job())

        assert result == {"evaluated": 4, "failed": 0}
        assert job_monitor.get_status()["daily_performance"]["failure_count"] == 0

    @pytest.mark.unit
    def test_notification_delivery_job_awaits_async_body(self):
        from app.services.scheduler import job_monitor, notification_delivery_job

        with patch("app.services.notifications.NotificationService") as service_cls:
            service_cls.return_value.deliver_pending_webhooks = AsyncMock(return_value={"delivered": 2})

            result = asyncio.run(notification_delivery_job())

        assert result == {"delivered": 2}
        service_cls.return_value.deliver_pending_webhooks.assert_awaited_once()
        assert job_monitor.get_status()["notification_delivery"]["failure_count"] == 0

    @pytest.mark.unit
    def test_failing_async_job_is_recorded(self):
        from app.services.scheduler import job_monitor, notification_delivery_job

        with patch("app.services.notifications.NotificationService") as service_cls:
            service_cls.return_value.deliver_pending_webhooks = AsyncMock(side_effect=RuntimeError("queue unreadable"))

            with pytest.raises(RuntimeError):
                asyncio.run(notification_delivery_job())

        assert job_monitor.get_status()["notification_delivery"]["failure_count"] == 1

    @pytest.mark.unit
    def test_failing_job_is_recorded_and_reraised(self):
        from app.services.scheduler import job_monitor, redlist_sweep_job

        with patch("app.services.redlist.RedListSweeper") as sweeper_cls:
            sweeper_cls.return_value.sweep.side_effect = RuntimeError("database unreachable")

            with pytest.raises(RuntimeError):
                asyncio.run(redlist_sweep_job())

        assert job_monitor.get_status()["redlist_sweep"]["failure_count"] == 1

    @pytest.mark.unit
    def test_repeated_failure_pauses_running_job(self):
        from app.services import scheduler as scheduler_module

        fake = MagicMock()
        fake.scheduler = object()

        with patch.object(scheduler_module, "get_scheduler", return_value=fake), \
                patch.object(scheduler_module.job_monitor, "failure_threshold", 1), \
                patch("app.services.redlist.RedListSweeper") as sweeper_cls:
            sweeper_cls.return_value.sweep.side_effect = RuntimeError("database unreachable")

            with pytest.raises(RuntimeError):
                asyncio.run(scheduler_module.redlist_sweep_job())

        fake.pause_job.assert_called_once_with("redlist_sweep")
