"""Policy application: evaluate a policy against the inventory and remediate."""

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.core.database import utcnow
from cloudsweep.core.exceptions import NotFoundError, PersistenceError
from cloudsweep.crud import policy as policy_crud
from cloudsweep.crud import resource as resource_crud
from cloudsweep.models.policy import PolicyAction
from cloudsweep.providers.registry import ProviderRegistry
from cloudsweep.schemas.report import PolicyApplicationReport
from cloudsweep.services import policy_engine
from cloudsweep.services.cleanup_orchestrator import CleanupOrchestrator, Credentials


class PolicyApplier:
    """Applies organization policies to the live inventory."""

    def __init__(
        self,
        db: AsyncSession,
        registry: ProviderRegistry,
        logger: Any = None,
        cleanup: CleanupOrchestrator | None = None,
    ) -> None:
        """
        Initialize the applier.

        Args:
            db: Database session owned by the caller
            registry: Provider registry handed to the cleanup orchestrator
            logger: structlog logger (defaults to the module logger)
            cleanup: Cleanup orchestrator (built from ``db``/``registry`` when omitted)
        """
        self.db = db
        self.registry = registry
        self.logger = logger or structlog.get_logger(__name__)
        self.cleanup = cleanup or CleanupOrchestrator(db, registry, logger=self.logger)

    async def apply_policy(
        self,
        organization_id: uuid.UUID,
        policy_id: uuid.UUID,
        credentials: Credentials,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> PolicyApplicationReport:
        """
        Evaluate one policy and run its actions on the matching resources.

        ``notify`` only records the matched ids and emits a ``policy.notify``
        event; ``tag``/``stop``/``delete`` go through the cleanup
        orchestrator, in the policy's action order.

        Args:
            organization_id: Organization owning the policy
            policy_id: Policy to apply
            credentials: Credential blob or mapping provider -> blob
            dry_run: Forwarded to every cleanup
            now: Evaluation time (naive UTC)

        Returns:
            Matched ids and one cleanup report per remediation action

        Raises:
            NotFoundError: The policy does not exist in the organization
            PersistenceError: Inventory could not be read or the policy stamped
        """
        now = now or utcnow()
        log = self.logger.bind(
            organization_id=str(organization_id),
            policy_id=str(policy_id),
            dry_run=dry_run,
        )

        try:
            policy = await policy_crud.get_policy_by_id(self.db, policy_id, organization_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"failed to load policy: {e}") from e
        if policy is None:
            raise NotFoundError(
                f"policy {policy_id} not found",
                details={"policy_id": str(policy_id)},
            )

        report = PolicyApplicationReport(
            policy_id=policy.id,
            policy_enabled=policy.is_enabled,
            dry_run=dry_run,
        )
        if not policy.is_enabled:
            log.info("policy.skipped_disabled")
            return report

        actions = policy.action_list
        try:
            inventory = await resource_crud.list_resources(
                self.db,
                organization_id,
                provider=policy.provider,
                statuses=resource_crud.LIVE_STATUSES,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"failed to list resources: {e}") from e

        matched = [r.id for r in inventory if policy_engine.policy_applies(policy, r, now=now)]
        report.evaluated_count = len(inventory)
        report.matched_resource_ids = matched
        log.info("policy.evaluated", evaluated=len(inventory), matched=len(matched))

        if matched:
            for action in actions:
                if action == PolicyAction.NOTIFY:
                    report.notified_resource_ids = list(matched)
                    log.info(
                        "policy.notify",
                        policy_name=policy.name,
                        resource_ids=[str(i) for i in matched],
                    )
                    continue
                report.cleanups[action.value] = await self.cleanup.run_cleanup(
                    organization_id,
                    matched,
                    action,
                    credentials,
                    dry_run=dry_run,
                )

        if not dry_run:
            try:
                await policy_crud.mark_policy_applied(self.db, policy, now)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise PersistenceError(f"failed to stamp policy: {e}") from e

        log.info("policy.applied", actions=[a.value for a in actions])
        return report

    async def plan_actions(
        self,
        organization_id: uuid.UUID,
        now: datetime | None = None,
        single: bool = False,
    ) -> dict[uuid.UUID, list[PolicyAction]]:
        """
        Combine the actions every enabled policy requests per resource.

        Args:
            organization_id: Organization to evaluate
            now: Evaluation time (naive UTC)
            single: Only keep the first matching policy's actions

        Returns:
            Mapping resource id -> actions, for resources matched by at least one policy
        """
        now = now or utcnow()
        try:
            policies = await policy_crud.get_enabled_policies(self.db, organization_id)
            inventory = await resource_crud.list_resources(
                self.db,
                organization_id,
                statuses=resource_crud.LIVE_STATUSES,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"failed to load policies or inventory: {e}") from e

        plan: dict[uuid.UUID, list[PolicyAction]] = {}
        for resource in inventory:
            actions = policy_engine.collect_actions(policies, resource, now=now, single=single)
            if actions:
                plan[resource.id] = actions
        return plan
