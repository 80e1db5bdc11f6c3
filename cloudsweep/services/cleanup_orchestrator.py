"""Cleanup orchestration: remediation fan-out with per-resource outcomes."""

import asyncio
import uuid
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import sentry_sdk
import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.core.config import settings
from cloudsweep.core.exceptions import CredentialsInvalidError, ValidationError
from cloudsweep.crud import resource as resource_crud
from cloudsweep.models.policy import PolicyAction
from cloudsweep.models.resource import CloudProvider, Resource
from cloudsweep.providers.base import ResourceCleaner
from cloudsweep.providers.registry import ProviderRegistry
from cloudsweep.schemas.report import CleanupReport, CleanupResult

T = TypeVar("T")

NOT_FOUND_MESSAGE = "resource not found"
UNSUPPORTED_ACTION_MESSAGE = "unsupported action"
LOCKED_MESSAGE = "resource is locked by another cleanup"

REMEDIATION_ACTIONS = frozenset(
    {PolicyAction.DELETE.value, PolicyAction.STOP.value, PolicyAction.TAG.value}
)

Credentials = bytes | Mapping[CloudProvider, bytes]


class CleanupOrchestrator:
    """
    Applies one remediation action to a set of resources.

    Resource-local failures never raise: every requested id yields exactly
    one :class:`CleanupResult` in the report. Provider groups run
    concurrently and calls within a group are bounded by a semaphore; the
    shared session is only ever used under ``_db_lock``.
    """

    def __init__(
        self,
        db: AsyncSession,
        registry: ProviderRegistry,
        logger: Any = None,
        max_concurrency: int | None = None,
        lease_seconds: int | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            db: Database session owned by the caller
            registry: Provider registry used to build cleaners
            logger: structlog logger (defaults to the module logger)
            max_concurrency: In-flight remediation calls per provider group
            lease_seconds: Per-resource cleanup lease duration, 0 disables leasing
        """
        self.db = db
        self.registry = registry
        self.logger = logger or structlog.get_logger(__name__)
        self.max_concurrency = (
            settings.CLEANUP_MAX_CONCURRENCY if max_concurrency is None else max_concurrency
        )
        self.lease_seconds = settings.CLEANUP_LEASE_SECONDS if lease_seconds is None else lease_seconds
        if self.max_concurrency < 1:
            raise ValidationError("max_concurrency must be >= 1")
        if self.lease_seconds < 0:
            raise ValidationError("lease_seconds must be >= 0")
        self._db_lock = asyncio.Lock()

    async def run_cleanup(
        self,
        organization_id: uuid.UUID,
        resource_ids: Iterable[uuid.UUID | str],
        action: PolicyAction | str,
        credentials: Credentials,
        dry_run: bool = False,
    ) -> CleanupReport:
        """
        Run a cleanup.

        Args:
            organization_id: Organization owning the resources
            resource_ids: Resources to remediate (duplicates are processed once)
            action: ``delete``, ``stop`` or ``tag``; anything else fails per resource
            credentials: Credential blob, or a mapping provider -> blob when the
                resources span several providers
            dry_run: Report the savings without calling any provider

        Returns:
            Consolidated report, unresolved ids first, then provider groups
            in order of first appearance

        Raises:
            ValidationError: A resource id is not a UUID
        """
        action = str(getattr(action, "value", action))
        ids = self._parse_ids(resource_ids)
        log = self.logger.bind(
            organization_id=str(organization_id),
            action=action,
            dry_run=dry_run,
        )
        log.info("cleanup.started", requested=len(ids))

        report = CleanupReport(dry_run=dry_run)
        try:
            resolved = await self._resolve(organization_id, ids)
        except SQLAlchemyError as e:
            log.error("cleanup.resolve_failed", error=str(e), error_type=type(e).__name__)
            report.record_all(
                [
                    CleanupResult.failed(str(resource_id), f"failed to load resource: {e}", action=action)
                    for resource_id in ids
                ]
            )
            log.info("cleanup.completed", success_count=0, failure_count=report.failure_count)
            return report

        for resource_id in ids:
            if resource_id not in resolved:
                report.record(CleanupResult.failed(str(resource_id), NOT_FOUND_MESSAGE, action=action))

        if not resolved:
            log.info("cleanup.completed", success_count=0, failure_count=report.failure_count)
            return report

        groups: dict[str, list[Resource]] = {}
        for resource_id in ids:
            resource = resolved.get(resource_id)
            if resource is not None:
                groups.setdefault(resource.provider, []).append(resource)

        group_results = await asyncio.gather(
            *(
                self._run_group(provider, resources, action, credentials, dry_run, log)
                for provider, resources in groups.items()
            )
        )
        for results in group_results:
            report.record_all(results)

        log.info(
            "cleanup.completed",
            success_count=report.success_count,
            failure_count=report.failure_count,
            total_cost_saved=round(report.total_cost_saved, 2),
            total_carbon_saved=round(report.total_carbon_saved, 4),
        )
        return report

    @staticmethod
    def _parse_ids(resource_ids: Iterable[uuid.UUID | str]) -> list[uuid.UUID]:
        ids: list[uuid.UUID] = []
        for raw in resource_ids:
            try:
                resource_id = raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
            except ValueError as e:
                raise ValidationError(
                    f"invalid resource id: {raw}",
                    details={"resource_id": str(raw)},
                ) from e
            if resource_id not in ids:
                ids.append(resource_id)
        return ids

    async def _resolve(
        self,
        organization_id: uuid.UUID,
        ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, Resource]:
        """Load the organization's resources and detach them from the session."""
        if not ids:
            return {}
        try:
            result = await self.db.execute(
                select(Resource).where(
                    Resource.organization_id == organization_id,
                    Resource.id.in_(ids),
                )
            )
            resources = list(result.scalars().all())
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        for resource in resources:
            self.db.expunge(resource)
        return {resource.id: resource for resource in resources}

    async def _run_group(
        self,
        provider: str,
        resources: list[Resource],
        action: str,
        credentials: Credentials,
        dry_run: bool,
        log: Any,
    ) -> list[CleanupResult]:
        try:
            cleaner = await self.registry.create_cleaner(provider, self._credentials_for(credentials, provider))
        except Exception as e:
            log.warning("cleanup.cleaner_unavailable", provider=provider, error=str(e))
            return [
                CleanupResult.failed(str(r.id), f"failed to create cleaner: {e}", action=action)
                for r in resources
            ]

        semaphore = asyncio.Semaphore(self.max_concurrency)
        return list(
            await asyncio.gather(
                *(self._process(cleaner, resource, action, dry_run, semaphore, log) for resource in resources)
            )
        )

    @staticmethod
    def _credentials_for(credentials: Credentials, provider: str) -> bytes:
        if not isinstance(credentials, Mapping):
            return credentials
        blob = credentials.get(CloudProvider(provider))
        if blob is None:
            raise CredentialsInvalidError(
                f"no credentials configured for provider {provider}",
                provider=provider,
            )
        return blob

    async def _process(
        self,
        cleaner: ResourceCleaner,
        resource: Resource,
        action: str,
        dry_run: bool,
        semaphore: asyncio.Semaphore,
        log: Any,
    ) -> CleanupResult:
        resource_id = str(resource.id)

        if dry_run:
            return CleanupResult(
                resource_id=resource_id,
                success=True,
                action=action,
                cost_saved=resource.monthly_cost,
                carbon_saved=resource.carbon_footprint,
            )

        if action not in REMEDIATION_ACTIONS:
            return CleanupResult.failed(resource_id, UNSUPPORTED_ACTION_MESSAGE, action=action)

        async with semaphore:
            if not self.lease_seconds:
                return await self._remediate(cleaner, resource, action, log)

            token = str(uuid.uuid4())
            try:
                acquired = await self._locked(
                    resource_crud.acquire_cleanup_lease,
                    resource.id,
                    token,
                    self.lease_seconds,
                )
            except SQLAlchemyError as e:
                log.error("cleanup.lease_failed", resource_id=resource_id, error=str(e))
                return CleanupResult.failed(resource_id, f"failed to acquire cleanup lease: {e}", action=action)

            if not acquired:
                log.info("cleanup.resource_locked", resource_id=resource_id)
                return CleanupResult.failed(resource_id, LOCKED_MESSAGE, action=action)

            try:
                try:
                    await self._reload_state(resource)
                except SQLAlchemyError as e:
                    log.error("cleanup.state_reload_failed", resource_id=resource_id, error=str(e))
                    return CleanupResult.failed(resource_id, f"failed to load resource state: {e}", action=action)
                return await self._remediate(cleaner, resource, action, log)
            finally:
                try:
                    await self._locked(resource_crud.release_cleanup_lease, resource.id, token)
                except SQLAlchemyError as e:
                    # The lease expires on its own
                    log.error("cleanup.lease_release_failed", resource_id=resource_id, error=str(e))

    async def _remediate(
        self,
        cleaner: ResourceCleaner,
        resource: Resource,
        action: str,
        log: Any,
    ) -> CleanupResult:
        resource_id = str(resource.id)

        if resource.is_deleted() and resource.has_remediation(action):
            log.info("cleanup.resource_skipped", resource_id=resource_id)
            return CleanupResult(resource_id=resource_id, success=True, action=action, skipped=True)

        try:
            if action == PolicyAction.DELETE.value:
                result = await cleaner.delete(resource)
            elif action == PolicyAction.STOP.value:
                result = await cleaner.stop(resource)
            else:
                result = await cleaner.tag(resource, settings.cleanup_marker_tags)
        except Exception as e:
            log.warning(
                "cleanup.resource_failed",
                resource_id=resource_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return CleanupResult.failed(resource_id, str(e), action=action)

        if not result.success:
            log.warning("cleanup.resource_failed", resource_id=resource_id, error=result.error_message)
            return result

        log.info("cleanup.resource_cleaned", resource_id=resource_id, cost_saved=result.cost_saved)
        await self._record_success(resource, action, log)
        return result

    async def _record_success(self, resource: Resource, action: str, log: Any) -> None:
        """Mark the resource deleted; a failed write keeps the remediation successful."""
        resource.mark_deleted()
        resource.record_remediation(action)
        try:
            await self._locked(resource_crud.save_remediation_state, resource)
        except SQLAlchemyError as e:
            log.error(
                "cleanup.status_persist_failed",
                resource_id=str(resource.id),
                error=str(e),
            )
            sentry_sdk.capture_exception(e)

    async def _reload_state(self, resource: Resource) -> None:
        """Refresh status and remediation ledger of a detached resource."""

        async def load(db: AsyncSession) -> tuple[str, dict] | None:
            result = await db.execute(
                select(Resource.status, Resource.resource_metadata).where(Resource.id == resource.id)
            )
            return result.one_or_none()

        row = await self._locked(load)
        if row is not None:
            resource.status, resource.resource_metadata = row[0], dict(row[1] or {})

    async def _locked(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run a database call under the session lock, rolling back on failure."""
        async with self._db_lock:
            try:
                return await fn(self.db, *args)
            except SQLAlchemyError:
                await self.db.rollback()
                raise
