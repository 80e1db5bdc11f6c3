"""Tests for resource CRUD operations."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from cloudsweep.crud import resource as resource_crud
from cloudsweep.models.organization import Organization
from cloudsweep.models.resource import CloudProvider, Resource, ResourceStatus, ResourceType


def _discovered(organization: Organization, resource_id: str, **kwargs) -> Resource:
    resource = Resource.discovered(
        provider=kwargs.pop("provider", CloudProvider.AWS),
        resource_type=kwargs.pop("resource_type", ResourceType.EBS_VOLUME),
        resource_id=resource_id,
        region=kwargs.pop("region", "us-east-1"),
        **kwargs,
    )
    resource.organization_id = organization.id
    return resource


class TestResourceCRUD:
    """Test resource CRUD operations."""

    @pytest.mark.asyncio
    async def test_get_resource_by_id_scoped(
        self, db_session: AsyncSession, make_resource, other_organization: Organization
    ):
        """Test that lookups scoped to another organization find nothing."""
        resource = await make_resource()

        assert (await resource_crud.get_resource_by_id(db_session, resource.id)).id == resource.id
        assert await resource_crud.get_resource_by_id(db_session, resource.id, other_organization.id) is None

    @pytest.mark.asyncio
    async def test_get_resource_by_native_id(
        self, db_session: AsyncSession, organization: Organization, make_resource
    ):
        """Test lookup by provider-side identifier."""
        resource = await make_resource(resource_id="vol-0native")

        found = await resource_crud.get_resource_by_native_id(db_session, organization.id, "aws", "vol-0native")

        assert found is not None
        assert found.id == resource.id

    @pytest.mark.asyncio
    async def test_list_and_count_filters(
        self, db_session: AsyncSession, organization: Organization, make_resource
    ):
        """Test provider, status and region filters."""
        await make_resource(resource_id="vol-1", status=ResourceStatus.UNUSED)
        await make_resource(resource_id="vol-2", status=ResourceStatus.ACTIVE, region="eu-west-1")
        await make_resource(resource_id="vol-3", status=ResourceStatus.DELETED)
        await make_resource(resource_id="gce-1", provider=CloudProvider.GCP, resource_type=ResourceType.GCE_DISK)

        live = await resource_crud.list_resources(
            db_session,
            organization.id,
            provider="aws",
            statuses=resource_crud.LIVE_STATUSES,
        )
        in_eu = await resource_crud.count_resources(db_session, organization.id, region="eu-west-1")
        total = await resource_crud.count_resources(db_session, organization.id)

        assert sorted(r.resource_id for r in live) == ["vol-1", "vol-2"]
        assert in_eu == 1
        assert total == 4

    @pytest.mark.asyncio
    async def test_list_resources_pagination(
        self, db_session: AsyncSession, organization: Organization, make_resource
    ):
        """Test skip and limit."""
        for i in range(5):
            await make_resource(resource_id=f"vol-{i}")

        page = await resource_crud.list_resources(db_session, organization.id, skip=1, limit=2)

        assert len(page) == 2


class TestBulkUpsert:
    """Test the scan upsert."""

    @pytest.mark.asyncio
    async def test_inserts_new_resources(self, db_session: AsyncSession, organization: Organization):
        """Test that unknown keys are inserted."""
        rows = await resource_crud.bulk_upsert_resources(
            db_session,
            [_discovered(organization, "vol-1"), _discovered(organization, "vol-2")],
        )

        assert [r.resource_id for r in rows] == ["vol-1", "vol-2"]
        assert await resource_crud.count_resources(db_session, organization.id) == 2

    @pytest.mark.asyncio
    async def test_rescan_updates_in_place(self, db_session: AsyncSession, organization: Organization):
        """Test that a re-scan never duplicates a resource."""
        first = await resource_crud.bulk_upsert_resources(db_session, [_discovered(organization, "vol-1", name="old")])

        second = await resource_crud.bulk_upsert_resources(
            db_session,
            [_discovered(organization, "vol-1", name="new"), _discovered(organization, "vol-2")],
        )

        assert await resource_crud.count_resources(db_session, organization.id) == 2
        assert second[0].id == first[0].id
        assert second[0].name == "new"

    @pytest.mark.asyncio
    async def test_duplicate_keys_in_one_batch(self, db_session: AsyncSession, organization: Organization):
        """Test that a resource reported twice in one scan is stored once."""
        rows = await resource_crud.bulk_upsert_resources(
            db_session,
            [_discovered(organization, "vol-1", name="a"), _discovered(organization, "vol-1", name="b")],
        )

        assert len(rows) == 1
        assert rows[0].name == "b"
        assert await resource_crud.count_resources(db_session, organization.id) == 1

    @pytest.mark.asyncio
    async def test_same_native_id_other_provider(self, db_session: AsyncSession, organization: Organization):
        """Test that the key includes the provider."""
        await resource_crud.bulk_upsert_resources(
            db_session,
            [
                _discovered(organization, "disk-1"),
                _discovered(organization, "disk-1", provider=CloudProvider.GCP, resource_type=ResourceType.GCE_DISK),
            ],
        )

        assert await resource_crud.count_resources(db_session, organization.id) == 2

    @pytest.mark.asyncio
    async def test_rescan_keeps_deleted_status(
        self, db_session: AsyncSession, organization: Organization, make_resource
    ):
        """Test that a deleted resource stays deleted when seen again."""
        await make_resource(resource_id="vol-1", status=ResourceStatus.DELETED)

        rows = await resource_crud.bulk_upsert_resources(db_session, [_discovered(organization, "vol-1")])

        assert rows[0].status == ResourceStatus.DELETED.value

    @pytest.mark.asyncio
    async def test_empty_batch(self, db_session: AsyncSession):
        """Test that an empty batch is a no-op."""
        assert await resource_crud.bulk_upsert_resources(db_session, []) == []


class TestRemediationState:
    """Test status writes and cleanup leases."""

    @pytest.mark.asyncio
    async def test_save_remediation_state(self, db_session: AsyncSession, make_resource):
        """Test that status and ledger are written by id."""
        resource = await make_resource()
        resource_id = resource.id
        db_session.expunge(resource)
        resource.mark_deleted()
        resource.record_remediation("delete")

        await resource_crud.save_remediation_state(db_session, resource)

        stored = await resource_crud.get_resource_by_id(db_session, resource_id)
        assert stored.status == ResourceStatus.DELETED.value
        assert stored.has_remediation("delete")

    @pytest.mark.asyncio
    async def test_lease_is_exclusive(self, db_session: AsyncSession, make_resource):
        """Test that a held lease blocks other claimants until released."""
        resource = await make_resource()

        assert await resource_crud.acquire_cleanup_lease(db_session, resource.id, "token-a", 300) is True
        assert await resource_crud.acquire_cleanup_lease(db_session, resource.id, "token-b", 300) is False

        # Releasing with the wrong token is a no-op
        await resource_crud.release_cleanup_lease(db_session, resource.id, "token-b")
        assert await resource_crud.acquire_cleanup_lease(db_session, resource.id, "token-b", 300) is False

        await resource_crud.release_cleanup_lease(db_session, resource.id, "token-a")
        assert await resource_crud.acquire_cleanup_lease(db_session, resource.id, "token-b", 300) is True

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken(self, db_session: AsyncSession, make_resource):
        """Test that an expired lease does not block forever."""
        resource = await make_resource()

        assert await resource_crud.acquire_cleanup_lease(db_session, resource.id, "crashed-worker", -60) is True
        assert await resource_crud.acquire_cleanup_lease(db_session, resource.id, "token-b", 300) is True
