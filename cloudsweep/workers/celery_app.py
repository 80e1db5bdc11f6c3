"""Celery application configuration."""

from celery import Celery, signals
from celery.schedules import crontab

from cloudsweep.core.config import settings
from cloudsweep.core.logging import configure_logging

# Initialize Sentry for error tracking
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            CeleryIntegration(),
            SqlalchemyIntegration(),
        ],
        send_default_pii=False,
        attach_stacktrace=True,
    )

# Create Celery application
celery_app = Celery(
    "cloudsweep",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["cloudsweep.workers.tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.SCAN_TASK_TIME_LIMIT,
    task_soft_time_limit=max(settings.SCAN_TASK_TIME_LIMIT - 300, 60),
    task_acks_late=True,  # At-least-once delivery: handlers are idempotent
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,  # Fetch one task at a time
    worker_max_tasks_per_child=50,  # Restart worker after 50 tasks
)

# Celery Beat schedule
# Check every hour which policies are due according to their cron schedule
celery_app.conf.beat_schedule = {
    "run-scheduled-policies": {
        "task": "cloudsweep.run_scheduled_policies",
        "schedule": crontab(minute=settings.POLICY_SCHEDULE_CHECK_MINUTE),
    },
}


@signals.setup_logging.connect
def setup_celery_logging(**kwargs: object) -> None:
    """Let structlog own the worker logging configuration."""
    configure_logging()


if __name__ == "__main__":
    celery_app.start()
