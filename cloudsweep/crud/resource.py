"""CRUD operations for resources."""

import uuid
from datetime import timedelta
from typing import Iterable

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.core.database import utcnow
from cloudsweep.models.resource import Resource, ResourceStatus

# Statuses a governance action can still act on
LIVE_STATUSES = (ResourceStatus.ACTIVE.value, ResourceStatus.UNUSED.value)


async def create_resource(db: AsyncSession, resource: Resource) -> Resource:
    """
    Persist a new resource.

    Args:
        db: Database session
        resource: Transient resource

    Returns:
        Persisted resource
    """
    db.add(resource)
    await db.commit()
    return resource


async def get_resource_by_id(
    db: AsyncSession,
    resource_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
) -> Resource | None:
    """
    Get resource by ID, optionally scoped to an organization.

    Args:
        db: Database session
        resource_id: Resource UUID
        organization_id: Restrict the lookup to this organization

    Returns:
        Resource or None if not found
    """
    query = select(Resource).where(Resource.id == resource_id)
    if organization_id is not None:
        query = query.where(Resource.organization_id == organization_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_resource_by_native_id(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: str,
    native_resource_id: str,
) -> Resource | None:
    """Get a resource by its provider-side identifier."""
    result = await db.execute(
        select(Resource).where(
            Resource.organization_id == organization_id,
            Resource.provider == provider,
            Resource.resource_id == native_resource_id,
        )
    )
    return result.scalar_one_or_none()


def _filtered(
    query,
    organization_id: uuid.UUID,
    provider: str | None,
    resource_type: str | None,
    statuses: Iterable[str] | None,
    region: str | None,
):
    query = query.where(Resource.organization_id == organization_id)
    if provider is not None:
        query = query.where(Resource.provider == provider)
    if resource_type is not None:
        query = query.where(Resource.resource_type == resource_type)
    if statuses is not None:
        query = query.where(Resource.status.in_([str(s) for s in statuses]))
    if region is not None:
        query = query.where(Resource.region == region)
    return query


async def list_resources(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: str | None = None,
    resource_type: str | None = None,
    statuses: Iterable[str] | None = None,
    region: str | None = None,
    skip: int = 0,
    limit: int | None = None,
) -> list[Resource]:
    """
    List resources of an organization.

    Args:
        db: Database session
        organization_id: Organization UUID
        provider: Optional provider filter
        resource_type: Optional resource type filter
        statuses: Optional set of statuses to include
        region: Optional region filter
        skip: Number of records to skip
        limit: Maximum number of records to return (None = all)

    Returns:
        Resources ordered by creation time
    """
    query = _filtered(select(Resource), organization_id, provider, resource_type, statuses, region)
    query = query.order_by(Resource.created_at, Resource.resource_id).offset(skip)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_resources(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: str | None = None,
    resource_type: str | None = None,
    statuses: Iterable[str] | None = None,
    region: str | None = None,
) -> int:
    """Count resources matching the same filters as :func:`list_resources`."""
    query = _filtered(
        select(func.count(Resource.id)),
        organization_id,
        provider,
        resource_type,
        statuses,
        region,
    )
    result = await db.execute(query)
    return int(result.scalar_one())


async def bulk_upsert_resources(db: AsyncSession, resources: list[Resource]) -> list[Resource]:
    """
    Persist discovered resources in one transaction.

    Resources are keyed on ``(organization_id, provider, resource_id)``:
    unknown keys are inserted, known keys are updated in place through
    :meth:`Resource.observe`, so a re-scan never duplicates a resource.

    Args:
        db: Database session
        resources: Transient resources stamped with their organization

    Returns:
        The persisted rows, one per distinct key, in first-seen order
    """
    if not resources:
        return []

    organization_ids = {r.organization_id for r in resources}
    native_ids = {r.resource_id for r in resources}
    result = await db.execute(
        select(Resource).where(
            Resource.organization_id.in_(organization_ids),
            Resource.resource_id.in_(native_ids),
        )
    )
    by_key: dict[tuple[uuid.UUID, str, str], Resource] = {
        (row.organization_id, row.provider, row.resource_id): row for row in result.scalars().all()
    }

    persisted: dict[tuple[uuid.UUID, str, str], Resource] = {}
    for resource in resources:
        key = (resource.organization_id, resource.provider, resource.resource_id)
        current = by_key.get(key)
        if current is None:
            db.add(resource)
            by_key[key] = resource
            persisted[key] = resource
        else:
            current.observe(resource)
            persisted.setdefault(key, current)

    await db.commit()
    return list(persisted.values())


async def save_remediation_state(db: AsyncSession, resource: Resource) -> None:
    """
    Write a (possibly detached) resource's status and metadata by id.

    Args:
        db: Database session
        resource: Resource whose ``status``/``resource_metadata`` changed
    """
    await db.execute(
        update(Resource)
        .where(Resource.id == resource.id)
        .values(
            status=resource.status,
            resource_metadata=resource.resource_metadata,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def acquire_cleanup_lease(
    db: AsyncSession,
    resource_id: uuid.UUID,
    token: str,
    ttl_seconds: int,
) -> bool:
    """
    Claim the cleanup lease of a resource.

    The claim is a conditional update: it only succeeds when no lease is
    held or the held lease has expired.

    Args:
        db: Database session
        resource_id: Resource UUID
        token: Unique token identifying the claimant
        ttl_seconds: Lease duration

    Returns:
        True if the lease was acquired
    """
    now = utcnow()
    result = await db.execute(
        update(Resource)
        .where(
            Resource.id == resource_id,
            or_(
                Resource.lease_token.is_(None),
                Resource.lease_expires_at.is_(None),
                Resource.lease_expires_at < now,
            ),
        )
        .values(lease_token=token, lease_expires_at=now + timedelta(seconds=ttl_seconds))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def release_cleanup_lease(db: AsyncSession, resource_id: uuid.UUID, token: str) -> None:
    """Release a lease previously acquired with ``token``."""
    await db.execute(
        update(Resource)
        .where(Resource.id == resource_id, Resource.lease_token == token)
        .values(lease_token=None, lease_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

