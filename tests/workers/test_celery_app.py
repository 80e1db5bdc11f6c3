"""Tests for the Celery application configuration."""

from cloudsweep.core.config import settings
from cloudsweep.workers import tasks  # noqa: F401
from cloudsweep.workers.celery_app import celery_app


class TestCeleryApp:
    """Test Celery wiring."""

    def test_tasks_registered(self):
        """Test that every task is registered under its public name."""
        for name in (
            "cloudsweep.scan_resources",
            "cloudsweep.cleanup_resources",
            "cloudsweep.apply_policy",
            "cloudsweep.run_scheduled_policies",
        ):
            assert name in celery_app.tasks

    def test_at_least_once_delivery(self):
        """Test that tasks are acknowledged after they ran."""
        assert celery_app.conf.task_acks_late is True
        assert celery_app.conf.task_reject_on_worker_lost is True
        assert celery_app.conf.task_time_limit == settings.SCAN_TASK_TIME_LIMIT

    def test_policy_schedule_check(self):
        """Test the beat entry driving scheduled policies."""
        entry = celery_app.conf.beat_schedule["run-scheduled-policies"]

        assert entry["task"] == "cloudsweep.run_scheduled_policies"
        assert entry["schedule"].minute == {settings.POLICY_SCHEDULE_CHECK_MINUTE}
