"""Celery task handlers for scans, cleanups and policy application."""

import asyncio
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Coroutine

import structlog
from celery.schedules import ParseException, crontab
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cloudsweep.core.database import AsyncSessionLocal, utcnow
from cloudsweep.core.exceptions import CloudSweepError, NotFoundError, ValidationError
from cloudsweep.crud import cloud_account as cloud_account_crud
from cloudsweep.crud import policy as policy_crud
from cloudsweep.crud import scan as scan_crud
from cloudsweep.models.policy import Policy
from cloudsweep.models.resource import CloudProvider
from cloudsweep.models.scan import Scan
from cloudsweep.providers.registry import ProviderRegistry, build_default_registry
from cloudsweep.schemas.task import (
    ApplyPolicyPayload,
    CleanupResourcesPayload,
    ScanResourcesPayload,
)
from cloudsweep.services.cleanup_orchestrator import CleanupOrchestrator
from cloudsweep.services.policy_applier import PolicyApplier
from cloudsweep.services.scan_orchestrator import ScanOrchestrator
from cloudsweep.workers.celery_app import celery_app

logger = structlog.get_logger()

SessionFactory = async_sessionmaker[AsyncSession]


@lru_cache(maxsize=1)
def get_registry() -> ProviderRegistry:
    """Provider registry of this worker process, built on first use."""
    return build_default_registry()


def _run(coro: Coroutine[Any, Any, dict[str, Any]]) -> dict[str, Any]:
    """Run a coroutine on the worker's event loop."""
    # Get or create event loop for Celery solo pool
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop.run_until_complete(coro)


def _error(error: CloudSweepError) -> dict[str, Any]:
    return {"status": "error", **error.to_dict()}


def _invalid_payload(name: str, error: PydanticValidationError) -> dict[str, Any]:
    messages = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
    ]
    logger.warning("task.invalid_payload", task=name, errors=messages)
    return _error(ValidationError(f"invalid {name} payload", details={"errors": messages}))


async def _provider_credentials(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: CloudProvider,
) -> bytes:
    account = await cloud_account_crud.get_active_account(db, organization_id, provider)
    if account is None:
        raise NotFoundError(
            f"no active {provider.value} account for organization {organization_id}",
            details={"organization_id": str(organization_id), "provider": provider.value},
        )
    return cloud_account_crud.decrypt_credentials(account)


# ---------------------------------------------------------------------------
# Scan
# ---------------------------------------------------------------------------


@celery_app.task(name="cloudsweep.scan_resources", bind=True)
def scan_resources(self: Any, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Scan a provider for an organization.

    Args:
        payload: ``ScanResourcesPayload`` as JSON

    Returns:
        Dict with the scan report, or an error description
    """
    return _run(_scan_resources_async(payload, task_id=self.request.id))


async def _scan_resources_async(
    payload: dict[str, Any],
    session_factory: SessionFactory = AsyncSessionLocal,
    registry: ProviderRegistry | None = None,
    task_id: str | None = None,
) -> dict[str, Any]:
    """
    Async implementation of the scan task.

    A scan row is created up front (stamped with the Celery task id) unless
    the producer already created one or a previous delivery of the same task
    did, so re-deliveries resume the same scan.
    """
    try:
        data = ScanResourcesPayload.model_validate(payload)
    except PydanticValidationError as e:
        return _invalid_payload("scan", e)

    log = logger.bind(organization_id=str(data.organization_id), provider=data.provider.value)

    async with session_factory() as db:
        try:
            credentials = await _provider_credentials(db, data.organization_id, data.provider)

            scan_id = data.scan_id
            if scan_id is None and task_id is not None:
                redelivered = await scan_crud.get_scan_by_task_id(db, data.organization_id, task_id)
                if redelivered is not None:
                    log.info("task.scan_redelivered", scan_id=str(redelivered.id), task_id=task_id)
                    scan_id = redelivered.id
            if scan_id is None:
                scan = Scan.new(
                    data.organization_id,
                    data.provider.value,
                    data.regions,
                    [t.value for t in data.resource_types],
                )
                scan.celery_task_id = task_id
                scan = await scan_crud.create_scan(db, scan)
                scan_id = scan.id

            orchestrator = ScanOrchestrator(db, registry or get_registry())
            report = await orchestrator.run_scan(
                data.organization_id,
                data.provider,
                data.regions,
                data.resource_types,
                credentials,
                scan_id=scan_id,
            )
        except CloudSweepError as e:
            log.error("task.scan_failed", error=str(e), error_type=type(e).__name__)
            return _error(e)

    return {"status": "success", **report.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


@celery_app.task(name="cloudsweep.cleanup_resources", bind=True)
def cleanup_resources(self: Any, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Apply one remediation action to a set of resources.

    Args:
        payload: ``CleanupResourcesPayload`` as JSON

    Returns:
        Dict with the cleanup report, or an error description
    """
    return _run(_cleanup_resources_async(payload))


async def _cleanup_resources_async(
    payload: dict[str, Any],
    session_factory: SessionFactory = AsyncSessionLocal,
    registry: ProviderRegistry | None = None,
) -> dict[str, Any]:
    """Async implementation of the cleanup task."""
    try:
        data = CleanupResourcesPayload.model_validate(payload)
    except PydanticValidationError as e:
        return _invalid_payload("cleanup", e)

    async with session_factory() as db:
        try:
            credentials = await cloud_account_crud.get_credentials_by_provider(db, data.organization_id)
            orchestrator = CleanupOrchestrator(db, registry or get_registry())
            report = await orchestrator.run_cleanup(
                data.organization_id,
                data.resource_ids,
                data.action,
                credentials,
                dry_run=data.dry_run,
            )
        except CloudSweepError as e:
            logger.error(
                "task.cleanup_failed",
                organization_id=str(data.organization_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            return _error(e)

    return {"status": "success", **report.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@celery_app.task(name="cloudsweep.apply_policy", bind=True)
def apply_policy(self: Any, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Apply a policy to the organization's inventory.

    Args:
        payload: ``ApplyPolicyPayload`` as JSON

    Returns:
        Dict with the policy application report, or an error description
    """
    return _run(_apply_policy_async(payload))


async def _apply_policy_async(
    payload: dict[str, Any],
    session_factory: SessionFactory = AsyncSessionLocal,
    registry: ProviderRegistry | None = None,
) -> dict[str, Any]:
    """Async implementation of the policy application task."""
    try:
        data = ApplyPolicyPayload.model_validate(payload)
    except PydanticValidationError as e:
        return _invalid_payload("policy", e)

    async with session_factory() as db:
        try:
            credentials = await cloud_account_crud.get_credentials_by_provider(db, data.organization_id)
            applier = PolicyApplier(db, registry or get_registry())
            report = await applier.apply_policy(
                data.organization_id,
                data.policy_id,
                credentials,
                dry_run=data.dry_run,
            )
        except CloudSweepError as e:
            logger.error(
                "task.apply_policy_failed",
                organization_id=str(data.organization_id),
                policy_id=str(data.policy_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            return _error(e)

    return {"status": "success", **report.model_dump(mode="json")}


def policy_is_due(policy: Policy, now: datetime | None = None) -> bool:
    """
    Check whether a scheduled policy should run.

    Args:
        policy: Policy with a 5-field cron ``schedule`` (m h dom mon dow)
        now: Current time (naive UTC)

    Returns:
        True if a scheduled run fell due since ``last_applied_at`` (or the
        policy never ran); False for unscheduled policies or invalid schedules
    """
    if not policy.schedule:
        return False
    if policy.last_applied_at is None:
        return True

    current = (now or utcnow()).replace(tzinfo=timezone.utc)
    try:
        minute, hour, day_of_month, month_of_year, day_of_week = policy.schedule.split()
        schedule = crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
            nowfun=lambda: current,
        )
        remaining = schedule.remaining_estimate(policy.last_applied_at.replace(tzinfo=timezone.utc))
    except (ParseException, ValueError) as e:
        logger.warning("policy.invalid_schedule", policy_id=str(policy.id), schedule=policy.schedule, error=str(e))
        return False
    return remaining.total_seconds() <= 0


@celery_app.task(name="cloudsweep.run_scheduled_policies")
def run_scheduled_policies() -> dict[str, Any]:
    """
    Enqueue ``apply_policy`` for every enabled policy whose schedule is due.

    This task runs every hour (see the beat schedule).

    Returns:
        Dict with the triggered policy ids
    """
    return _run(_run_scheduled_policies_async())


async def _run_scheduled_policies_async(
    session_factory: SessionFactory = AsyncSessionLocal,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Async implementation of the policy scheduler."""
    now = now or utcnow()
    async with session_factory() as db:
        policies = await policy_crud.get_scheduled_policies(db)

    triggered = []
    for policy in policies:
        if not policy_is_due(policy, now):
            continue
        apply_policy.delay(
            {
                "organization_id": str(policy.organization_id),
                "policy_id": str(policy.id),
                "dry_run": False,
            }
        )
        triggered.append(str(policy.id))

    logger.info("policy.schedule_checked", checked=len(policies), triggered=len(triggered))
    return {"status": "success", "policies_checked": len(policies), "policies_triggered": triggered}
