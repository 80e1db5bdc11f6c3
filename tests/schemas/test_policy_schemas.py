"""Tests for policy and task payload schemas."""

import uuid

import pytest
from pydantic import ValidationError

from cloudsweep.schemas.policy import PolicyConditions, PolicyCreate, PolicyUpdate
from cloudsweep.schemas.task import CleanupResourcesPayload, ScanResourcesPayload


class TestPolicyConditions:
    """Test condition validation."""

    def test_inverted_cost_bounds(self):
        """Test that min above max is rejected."""
        with pytest.raises(ValidationError, match="min_monthly_cost"):
            PolicyConditions(min_monthly_cost=50, max_monthly_cost=10)

    def test_equal_cost_bounds(self):
        """Test that equal bounds are accepted."""
        conditions = PolicyConditions(min_monthly_cost=10, max_monthly_cost=10)

        assert conditions.min_monthly_cost == conditions.max_monthly_cost

    def test_unknown_condition(self):
        """Test that unknown keys are rejected instead of silently ignored."""
        with pytest.raises(ValidationError):
            PolicyConditions(idle_days=3)

    def test_negative_unused_days(self):
        """Test that unused_days cannot be negative."""
        with pytest.raises(ValidationError):
            PolicyConditions(unused_days=-1)


class TestPolicyCreate:
    """Test policy definitions."""

    def test_schedule_is_stripped(self):
        """Test a valid cron schedule."""
        policy = PolicyCreate(name="nightly", provider="aws", actions=["notify"], schedule=" 0 3 * * * ")

        assert policy.schedule == "0 3 * * *"

    def test_schedule_field_count(self):
        """Test that schedules must have five fields."""
        with pytest.raises(ValidationError, match="5-field cron"):
            PolicyCreate(name="bad", provider="aws", actions=["notify"], schedule="0 3 * *")

    def test_actions_required(self):
        """Test that a policy needs at least one action."""
        with pytest.raises(ValidationError):
            PolicyCreate(name="empty", provider="aws", actions=[])

    def test_update_schedule_validated(self):
        """Test that updates validate schedules too."""
        with pytest.raises(ValidationError, match="5-field cron"):
            PolicyUpdate(schedule="daily")


class TestTaskPayloads:
    """Test task payload validation."""

    def test_scan_payload_strips_regions(self):
        """Test region normalization."""
        payload = ScanResourcesPayload(
            organization_id=uuid.uuid4(),
            provider="aws",
            regions=[" us-east-1 "],
        )

        assert payload.regions == ["us-east-1"]
        assert payload.resource_types == []
        assert payload.scan_id is None

    def test_scan_payload_rejects_blank_region(self):
        """Test that blank regions are rejected."""
        with pytest.raises(ValidationError, match="empty"):
            ScanResourcesPayload(organization_id=uuid.uuid4(), provider="aws", regions=["  "])

    def test_scan_payload_requires_regions(self):
        """Test that at least one region is required."""
        with pytest.raises(ValidationError):
            ScanResourcesPayload(organization_id=uuid.uuid4(), provider="aws", regions=[])

    def test_cleanup_payload_keeps_unknown_action(self):
        """Test that unknown actions are reported per resource, not rejected here."""
        payload = CleanupResourcesPayload(
            organization_id=uuid.uuid4(),
            resource_ids=[uuid.uuid4()],
            action="archive",
        )

        assert payload.action == "archive"
        assert payload.dry_run is False
