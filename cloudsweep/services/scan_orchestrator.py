"""Scan orchestration: provider discovery into a persisted inventory."""

import uuid
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.core.exceptions import (
    CloudSweepError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    ScanCancelledError,
    ScanStateError,
    ValidationError,
)
from cloudsweep.crud import resource as resource_crud
from cloudsweep.crud import scan as scan_crud
from cloudsweep.models.resource import CloudProvider, Resource, ResourceType
from cloudsweep.models.scan import Scan
from cloudsweep.providers.registry import ProviderRegistry
from cloudsweep.schemas.report import ScanReport


class ScanOrchestrator:
    """
    Turns a scan request into a persisted, annotated inventory.

    Resources are only written once discovery, classification and
    estimation all succeeded, in a single bulk upsert. Any failure after
    the scan row exists leaves the scan ``failed`` with the error message;
    scan rows are never deleted.
    """

    def __init__(
        self,
        db: AsyncSession,
        registry: ProviderRegistry,
        logger: Any = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            db: Database session owned by the caller
            registry: Provider registry used to build scanners
            logger: structlog logger (defaults to the module logger)
        """
        self.db = db
        self.registry = registry
        self.logger = logger or structlog.get_logger(__name__)

    async def run_scan(
        self,
        organization_id: uuid.UUID,
        provider: CloudProvider | str,
        regions: list[str],
        resource_types: list[ResourceType | str],
        credentials: bytes,
        scan_id: uuid.UUID | None = None,
    ) -> ScanReport:
        """
        Run one scan.

        Args:
            organization_id: Organization owning the inventory
            provider: Cloud provider to scan
            regions: Regions to scan (at least one)
            resource_types: Resource types to include (empty = every type the scanner supports)
            credentials: Opaque credential blob for the provider
            scan_id: Scan created earlier by the producer; re-deliveries of a
                completed scan return its stored report

        Returns:
            Summary of the completed scan

        Raises:
            ValidationError: Malformed request, raised before any scan row exists
            NotFoundError: ``scan_id`` does not name a scan of the organization
            ScanStateError: ``scan_id`` names a failed or cancelled scan
            ScanCancelledError: The scan was cancelled while running
            ProviderError: Scanner construction, discovery or classification failed
            PersistenceError: The scan or its resources could not be stored
        """
        provider, types = self._validate_request(provider, regions, resource_types)

        scan = await self._load_or_create_scan(organization_id, provider, regions, types, scan_id)
        log = self.logger.bind(
            scan_id=str(scan.id),
            organization_id=str(organization_id),
            provider=provider.value,
        )

        if scan.is_completed():
            log.info("scan.already_completed")
            return ScanReport.from_scan(scan)
        if scan.is_cancelled():
            raise ScanCancelledError(
                f"Scan {scan.id} was cancelled",
                details={"scan_id": str(scan.id)},
            )
        if scan.is_terminal:
            raise ScanStateError(
                f"Scan {scan.id} is already {scan.status}",
                details={"scan_id": str(scan.id), "status": scan.status},
            )

        if not scan.is_running():
            scan.start()
            await self._save_scan(scan)
        log.info("scan.started", regions=list(regions), resource_types=types)

        scanner = await self._provider_step(
            scan, log, provider, "factory",
            lambda: self.registry.create_scanner(provider, credentials),
        )
        resources = await self._provider_step(
            scan, log, provider, "discover",
            lambda: scanner.discover(list(regions), types),
        )

        resources = self._distinct(resources)
        for resource in resources:
            resource.organization_id = organization_id

        await self._provider_step(
            scan, log, provider, "classify",
            lambda: scanner.classify_unused(resources),
        )

        unused_found = 0
        estimated_savings = 0.0
        carbon_savings = 0.0
        for resource in resources:
            resource.monthly_cost = await self._estimate(scanner.estimate_cost, resource, "cost", log)
            resource.carbon_footprint = await self._estimate(scanner.estimate_carbon, resource, "carbon", log)
            if resource.is_unused():
                unused_found += 1
                estimated_savings += resource.monthly_cost
                carbon_savings += resource.carbon_footprint

        await self._ensure_not_cancelled(scan)

        try:
            await resource_crud.bulk_upsert_resources(self.db, resources)
        except SQLAlchemyError as e:
            await self.db.rollback()
            await self._fail(scan, e, log, stage="persist")
            raise PersistenceError(
                f"failed to save resources: {e}",
                details={"scan_id": str(scan.id), "resources": len(resources)},
            ) from e

        scan.complete(
            resources_found=len(resources),
            unused_found=unused_found,
            estimated_savings=estimated_savings,
            carbon_savings=carbon_savings,
        )
        await self._save_scan(scan)

        log.info(
            "scan.completed",
            resources_found=len(resources),
            unused_found=unused_found,
            estimated_savings=round(estimated_savings, 2),
            carbon_savings=round(carbon_savings, 4),
        )
        return ScanReport.from_scan(scan)

    @staticmethod
    def _distinct(resources: list[Resource]) -> list[Resource]:
        """One resource per (provider, native id): the last observation wins, first-seen order."""
        by_key: dict[tuple[str, str], Resource] = {}
        for resource in resources:
            by_key[(resource.provider, resource.resource_id)] = resource
        return list(by_key.values())

    @staticmethod
    def _validate_request(
        provider: CloudProvider | str,
        regions: list[str],
        resource_types: list[ResourceType | str],
    ) -> tuple[CloudProvider, list[str]]:
        if not regions:
            raise ValidationError("at least one region is required")
        try:
            provider = CloudProvider(provider)
        except ValueError as e:
            raise ValidationError(f"unknown cloud provider: {provider}") from e
        try:
            types = [ResourceType(t).value for t in resource_types]
        except ValueError as e:
            raise ValidationError(f"unknown resource type: {e}") from e
        return provider, types

    async def _load_or_create_scan(
        self,
        organization_id: uuid.UUID,
        provider: CloudProvider,
        regions: list[str],
        resource_types: list[str],
        scan_id: uuid.UUID | None,
    ) -> Scan:
        try:
            if scan_id is not None:
                scan = await scan_crud.get_scan_by_id(self.db, scan_id, organization_id)
                if scan is None:
                    raise NotFoundError(
                        f"scan {scan_id} not found",
                        details={"scan_id": str(scan_id)},
                    )
                return scan
            return await scan_crud.create_scan(
                self.db,
                Scan.new(organization_id, provider.value, regions, resource_types),
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"failed to create scan: {e}") from e

    async def _save_scan(self, scan: Scan) -> None:
        try:
            await scan_crud.update_scan(self.db, scan)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                f"failed to update scan: {e}",
                details={"scan_id": str(scan.id)},
            ) from e

    async def _ensure_not_cancelled(self, scan: Scan) -> None:
        try:
            await self.db.refresh(scan)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to reload scan: {e}",
                details={"scan_id": str(scan.id)},
            ) from e
        if scan.is_cancelled():
            raise ScanCancelledError(
                f"Scan {scan.id} was cancelled",
                details={"scan_id": str(scan.id)},
            )

    async def _fail(self, scan: Scan, error: Exception, log: Any, stage: str) -> None:
        """Record a failure on the scan unless it was cancelled meanwhile."""
        log.error("scan.failed", stage=stage, error=str(error), error_type=type(error).__name__)
        await self._ensure_not_cancelled(scan)
        try:
            scan.fail(str(error))
            await scan_crud.update_scan(self.db, scan)
        except SQLAlchemyError as e:
            await self.db.rollback()
            log.error("scan.fail_persist_failed", error=str(e))
            raise PersistenceError(
                f"failed to record scan failure: {e}",
                details={"scan_id": str(scan.id)},
            ) from e

    async def _provider_step(
        self,
        scan: Scan,
        log: Any,
        provider: CloudProvider,
        stage: str,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run a provider call, failing the scan if it raises."""
        try:
            return await call()
        except CloudSweepError as e:
            await self._fail(scan, e, log, stage=stage)
            raise
        except Exception as e:
            await self._fail(scan, e, log, stage=stage)
            raise ProviderError(f"{stage} failed: {e}", provider=provider.value) from e

    @staticmethod
    async def _estimate(
        estimator: Callable[[Resource], Awaitable[float]],
        resource: Resource,
        kind: str,
        log: Any,
    ) -> float:
        try:
            return float(await estimator(resource))
        except Exception as e:
            log.warning(
                f"scan.{kind}_estimate_failed",
                resource_id=resource.resource_id,
                error=str(e),
            )
            return 0.0
