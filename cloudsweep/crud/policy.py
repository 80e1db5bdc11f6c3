"""CRUD operations for policies."""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.models.policy import Policy
from cloudsweep.schemas.policy import PolicyCreate, PolicyUpdate


async def create_policy(
    db: AsyncSession,
    organization_id: uuid.UUID,
    policy_in: PolicyCreate,
) -> Policy:
    """
    Create a policy for an organization.

    Args:
        db: Database session
        organization_id: Organization UUID
        policy_in: Validated policy definition

    Returns:
        Created policy object
    """
    policy = Policy(
        id=uuid.uuid4(),
        organization_id=organization_id,
        name=policy_in.name,
        description=policy_in.description,
        provider=policy_in.provider.value,
        resource_types=[t.value for t in policy_in.resource_types],
        actions=[a.value for a in policy_in.actions],
        is_enabled=policy_in.is_enabled,
        schedule=policy_in.schedule,
    )
    policy.conditions = policy_in.conditions
    db.add(policy)
    await db.commit()
    await db.refresh(policy)
    return policy


async def get_policy_by_id(
    db: AsyncSession,
    policy_id: uuid.UUID,
    organization_id: uuid.UUID,
) -> Policy | None:
    """
    Get a policy of an organization.

    Args:
        db: Database session
        policy_id: Policy UUID
        organization_id: Organization UUID (policies never cross organizations)

    Returns:
        Policy object or None if not found
    """
    result = await db.execute(
        select(Policy).where(
            Policy.id == policy_id,
            Policy.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def list_policies(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: str | None = None,
    is_enabled: bool | None = None,
    skip: int = 0,
    limit: int = 100,
) -> list[Policy]:
    """List policies of an organization in creation order."""
    query = select(Policy).where(Policy.organization_id == organization_id)
    if provider is not None:
        query = query.where(Policy.provider == provider)
    if is_enabled is not None:
        query = query.where(Policy.is_enabled == is_enabled)
    result = await db.execute(query.order_by(Policy.created_at, Policy.name).offset(skip).limit(limit))
    return list(result.scalars().all())


async def get_enabled_policies(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: str | None = None,
) -> list[Policy]:
    """Get every enabled policy of an organization."""
    query = select(Policy).where(
        Policy.organization_id == organization_id,
        Policy.is_enabled.is_(True),
    )
    if provider is not None:
        query = query.where(Policy.provider == provider)
    result = await db.execute(query.order_by(Policy.created_at, Policy.name))
    return list(result.scalars().all())


async def get_scheduled_policies(db: AsyncSession) -> list[Policy]:
    """Get enabled policies carrying a cron schedule, across organizations."""
    result = await db.execute(
        select(Policy)
        .where(Policy.is_enabled.is_(True), Policy.schedule.is_not(None))
        .order_by(Policy.organization_id, Policy.created_at)
    )
    return list(result.scalars().all())


async def update_policy(
    db: AsyncSession,
    policy: Policy,
    policy_in: PolicyUpdate,
) -> Policy:
    """
    Update a policy.

    Args:
        db: Database session
        policy: Existing policy object
        policy_in: Fields to change

    Returns:
        Updated policy object
    """
    update_data = policy_in.model_dump(exclude_unset=True)

    if "conditions" in update_data and policy_in.conditions is not None:
        policy.conditions = policy_in.conditions
        update_data.pop("conditions")
    if policy_in.resource_types is not None:
        update_data["resource_types"] = [t.value for t in policy_in.resource_types]
    if policy_in.actions is not None:
        update_data["actions"] = [a.value for a in policy_in.actions]

    for field, value in update_data.items():
        setattr(policy, field, value)

    await db.commit()
    await db.refresh(policy)
    return policy


async def set_policy_enabled(db: AsyncSession, policy: Policy, enabled: bool) -> Policy:
    """Enable or disable a policy."""
    if enabled:
        policy.enable()
    else:
        policy.disable()
    await db.commit()
    return policy


async def mark_policy_applied(db: AsyncSession, policy: Policy, applied_at: datetime) -> Policy:
    """Stamp the last application time of a policy."""
    policy.last_applied_at = applied_at
    await db.commit()
    return policy


async def delete_policy(db: AsyncSession, policy: Policy) -> None:
    """Delete a policy."""
    await db.delete(policy)
    await db.commit()
