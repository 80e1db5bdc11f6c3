"""CRUD operations for CloudAccount model."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.core.security import get_credential_encryption
from cloudsweep.models.cloud_account import CloudAccount
from cloudsweep.models.resource import CloudProvider


async def create_cloud_account(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: CloudProvider,
    account_identifier: str,
    name: str,
    credentials: bytes,
    regions: list[str] | None = None,
) -> CloudAccount:
    """
    Create a cloud account with encrypted credentials.

    Args:
        db: Database session
        organization_id: Organization UUID
        provider: Cloud provider
        account_identifier: AWS account id, Azure subscription or GCP project
        name: Display name
        credentials: Provider credential blob, stored encrypted
        regions: Regions scanned by default

    Returns:
        Created CloudAccount object
    """
    account = CloudAccount(
        id=uuid.uuid4(),
        organization_id=organization_id,
        provider=CloudProvider(provider).value,
        account_identifier=account_identifier,
        name=name,
        credentials_encrypted=get_credential_encryption().encrypt(credentials),
        regions=regions,
        is_active=True,
    )
    db.add(account)
    await db.commit()
    await db.refresh(account)
    return account


async def get_active_accounts(db: AsyncSession, organization_id: uuid.UUID) -> list[CloudAccount]:
    """Get the active cloud accounts of an organization, oldest first."""
    result = await db.execute(
        select(CloudAccount)
        .where(
            CloudAccount.organization_id == organization_id,
            CloudAccount.is_active.is_(True),
        )
        .order_by(CloudAccount.created_at)
    )
    return list(result.scalars().all())


async def get_active_account(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider: CloudProvider | str,
) -> CloudAccount | None:
    """
    Get the active account an organization uses for a provider.

    Args:
        db: Database session
        organization_id: Organization UUID
        provider: Cloud provider

    Returns:
        The oldest active account for the provider, or None
    """
    result = await db.execute(
        select(CloudAccount)
        .where(
            CloudAccount.organization_id == organization_id,
            CloudAccount.provider == CloudProvider(provider).value,
            CloudAccount.is_active.is_(True),
        )
        .order_by(CloudAccount.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


def decrypt_credentials(account: CloudAccount) -> bytes:
    """Return the decrypted credential blob of an account."""
    return get_credential_encryption().decrypt(account.credentials_encrypted)


async def get_credentials_by_provider(
    db: AsyncSession,
    organization_id: uuid.UUID,
) -> dict[CloudProvider, bytes]:
    """
    Decrypt one credential blob per provider for an organization.

    Args:
        db: Database session
        organization_id: Organization UUID

    Returns:
        Mapping provider -> decrypted credentials (first active account wins)
    """
    credentials: dict[CloudProvider, bytes] = {}
    for account in await get_active_accounts(db, organization_id):
        provider = CloudProvider(account.provider)
        if provider not in credentials:
            credentials[provider] = decrypt_credentials(account)
    return credentials
