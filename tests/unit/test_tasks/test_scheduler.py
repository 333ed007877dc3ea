"""Tests for NotificationScheduler: registry, lifecycle and on-demand runs."""

from __future__ import annotations

import pytest

from notification_service.features.notifications.exceptions import JobNotFoundError
from notification_service.infra.metrics.prometheus import REGISTRY
from notification_service.tasks.scheduler import NotificationScheduler


async def _ok() -> dict[str, int]:
    return {"done": 1}


async def _boom() -> None:
    msg = "database is locked"
    raise RuntimeError(msg)


@pytest.fixture
def scheduler() -> NotificationScheduler:
    scheduler = NotificationScheduler()
    scheduler.register("ok_job", _ok, cron="*/5 * * * *", description="Always works")
    scheduler.register("broken_job", _boom, cron="0 * * * *", description="Always fails")
    return scheduler


class TestRegistry:
    def test_register(self, scheduler: NotificationScheduler) -> None:
        job = scheduler.get("ok_job")

        assert job.schedule == "*/5 * * * *"
        assert job.description == "Always works"
        assert job.is_running is False
        assert set(scheduler.jobs) == {"ok_job", "broken_job"}

    def test_duplicate_name(self, scheduler: NotificationScheduler) -> None:
        with pytest.raises(ValueError, match="already registered"):
            scheduler.register("ok_job", _ok, cron="* * * * *")

    def test_invalid_cron(self, scheduler: NotificationScheduler) -> None:
        with pytest.raises(ValueError):
            scheduler.register("bad_cron", _ok, cron="every five minutes")

    def test_unknown_job(self, scheduler: NotificationScheduler) -> None:
        with pytest.raises(JobNotFoundError):
            scheduler.get("nope")


class TestRunNow:
    async def test_success(self, scheduler: NotificationScheduler) -> None:
        before = REGISTRY.get_sample_value(
            "notification_scheduler_job_runs_total", {"job": "ok_job", "outcome": "success"},
        ) or 0

        result = await scheduler.run_now("ok_job")

        assert result == {"name": "ok_job", "success": True, "result": {"done": 1}, "error": None}
        job = scheduler.get("ok_job")
        assert job.run_count == 1
        assert job.last_run is not None
        assert job.in_progress is False
        assert REGISTRY.get_sample_value(
            "notification_scheduler_job_runs_total", {"job": "ok_job", "outcome": "success"},
        ) == before + 1

    async def test_failure_is_captured(self, scheduler: NotificationScheduler) -> None:
        result = await scheduler.run_now("broken_job")

        assert result["success"] is False
        assert result["result"] is None
        assert result["error"] == "Scheduled job broken_job failed: database is locked"
        assert scheduler.get("broken_job").last_error == result["error"]

    async def test_next_success_clears_error(self) -> None:
        calls = []

        async def flaky() -> str:
            calls.append(1)
            if len(calls) == 1:
                msg = "first run fails"
                raise RuntimeError(msg)
            return "ok"

        scheduler = NotificationScheduler()
        scheduler.register("flaky", flaky, cron="* * * * *")

        assert (await scheduler.run_now("flaky"))["success"] is False
        assert await scheduler.run_now("flaky") == {"name": "flaky", "success": True, "result": "ok", "error": None}
        assert scheduler.get("flaky").run_count == 2

    async def test_unknown_job(self, scheduler: NotificationScheduler) -> None:
        with pytest.raises(JobNotFoundError):
            await scheduler.run_now("nope")


class TestLifecycle:
    async def test_start_and_stop_single_job(self, scheduler: NotificationScheduler) -> None:
        try:
            scheduler.start_job("ok_job")

            assert scheduler.running is True
            entries = {entry["name"]: entry for entry in scheduler.status()}
            assert entries["ok_job"]["is_running"] is True
            assert entries["ok_job"]["next_run"] is not None
            assert entries["broken_job"]["is_running"] is False
            assert entries["broken_job"]["next_run"] is None

            scheduler.stop_job("ok_job")
            assert scheduler.get("ok_job").is_running is False
            # Stopping twice is harmless
            scheduler.stop_job("ok_job")
        finally:
            scheduler.shutdown()

        assert scheduler.running is False

    async def test_start_all_and_shutdown(self, scheduler: NotificationScheduler) -> None:
        scheduler.start_all()
        try:
            assert all(entry["is_running"] for entry in scheduler.status())
        finally:
            scheduler.shutdown()

        assert not any(entry["is_running"] for entry in scheduler.status())

    def test_status_before_any_run(self, scheduler: NotificationScheduler) -> None:
        entry = scheduler.status()[0]

        assert entry == {
            "name": "ok_job",
            "schedule": "*/5 * * * *",
            "description": "Always works",
            "is_running": False,
            "in_progress": False,
            "last_run": None,
            "next_run": None,
            "last_error": None,
            "run_count": 0,
        }
