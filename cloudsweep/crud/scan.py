"""CRUD operations for scans."""

import uuid

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.models.scan import Scan


async def create_scan(db: AsyncSession, scan: Scan) -> Scan:
    """
    Persist a new scan.

    Args:
        db: Database session
        scan: Transient scan, usually built with :meth:`Scan.new`

    Returns:
        Persisted scan object
    """
    db.add(scan)
    await db.commit()
    await db.refresh(scan)
    return scan


async def get_scan_by_id(
    db: AsyncSession,
    scan_id: uuid.UUID,
    organization_id: uuid.UUID | None = None,
) -> Scan | None:
    """
    Get scan by ID.

    Args:
        db: Database session
        scan_id: Scan UUID
        organization_id: Restrict the lookup to this organization

    Returns:
        Scan object or None if not found
    """
    query = select(Scan).where(Scan.id == scan_id)
    if organization_id is not None:
        query = query.where(Scan.organization_id == organization_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def update_scan(db: AsyncSession, scan: Scan) -> Scan:
    """Persist the state transitions applied to an attached scan."""
    db.add(scan)
    await db.commit()
    return scan


async def list_scans(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: str | None = None,
    status: str | None = None,
    skip: int = 0,
    limit: int = 100,
) -> list[Scan]:
    """
    List scans of an organization, newest first.

    Args:
        db: Database session
        organization_id: Organization UUID
        provider: Optional provider filter
        status: Optional status filter
        skip: Number of records to skip
        limit: Maximum number of records to return

    Returns:
        List of scan objects
    """
    query = select(Scan).where(Scan.organization_id == organization_id)
    if provider is not None:
        query = query.where(Scan.provider == provider)
    if status is not None:
        query = query.where(Scan.status == status)
    result = await db.execute(
        query.order_by(desc(Scan.created_at)).offset(skip).limit(limit)
    )
    return list(result.scalars().all())


async def get_latest_scan(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: str | None = None,
) -> Scan | None:
    """Get the most recently created scan of an organization."""
    scans = await list_scans(db, organization_id, provider=provider, limit=1)
    return scans[0] if scans else None


async def get_scan_by_task_id(
    db: AsyncSession,
    organization_id: uuid.UUID,
    task_id: str,
) -> Scan | None:
    """
    Get the scan started by a Celery task.

    Args:
        db: Database session
        organization_id: Organization UUID
        task_id: Celery task id stamped on the scan

    Returns:
        Most recent matching scan or None
    """
    result = await db.execute(
        select(Scan)
        .where(Scan.organization_id == organization_id, Scan.celery_task_id == task_id)
        .order_by(desc(Scan.created_at))
        .limit(1)
    )
    return result.scalar_one_or_none()
