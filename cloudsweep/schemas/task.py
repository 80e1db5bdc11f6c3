"""Task payload schemas (at-least-once delivery)."""

import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cloudsweep.models.resource import CloudProvider, ResourceType


class ScanResourcesPayload(BaseModel):
    """Payload of the scan task."""

    model_config = ConfigDict(extra="ignore")

    organization_id: uuid.UUID
    provider: CloudProvider
    regions: list[str] = Field(..., min_length=1)
    resource_types: list[ResourceType] = Field(default_factory=list)
    scan_id: uuid.UUID | None = Field(
        default=None,
        description="Pre-created scan row; re-deliveries of a finished scan are no-ops",
    )

    @field_validator("regions")
    @classmethod
    def validate_regions(cls, v: list[str]) -> list[str]:
        """Strip regions and reject blanks."""
        regions = [region.strip() for region in v]
        if any(not region for region in regions):
            raise ValueError("regions cannot contain empty values")
        return regions


class CleanupResourcesPayload(BaseModel):
    """Payload of the cleanup task."""

    model_config = ConfigDict(extra="ignore")

    organization_id: uuid.UUID
    resource_ids: list[uuid.UUID] = Field(..., min_length=1)
    # Kept as free text: unknown actions are reported per resource, not rejected
    action: str = Field(..., min_length=1)
    dry_run: bool = False


class ApplyPolicyPayload(BaseModel):
    """Payload of the policy application task."""

    model_config = ConfigDict(extra="ignore")

    organization_id: uuid.UUID
    policy_id: uuid.UUID
    dry_run: bool = False
