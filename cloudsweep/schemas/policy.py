"""Policy Pydantic schemas."""

import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cloudsweep.models.policy import PolicyAction
from cloudsweep.models.resource import CloudProvider, ResourceType

CRON_FIELD_COUNT = 5


def _validate_cron(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if len(v.split()) != CRON_FIELD_COUNT:
        raise ValueError("schedule must be a 5-field cron expression")
    return v


class PolicyConditions(BaseModel):
    """
    Declarative conditions deciding whether a policy applies to a resource.

    Every field is optional; an absent condition is vacuously satisfied and
    present conditions are combined conjunctively.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    unused_days: int | None = Field(
        default=None,
        ge=0,
        description="Minimum days since last seen, only for resources already unused",
    )
    min_monthly_cost: float | None = Field(default=None, ge=0, description="Inclusive lower bound")
    max_monthly_cost: float | None = Field(default=None, ge=0, description="Inclusive upper bound")
    required_tags: dict[str, str] = Field(
        default_factory=dict,
        description="Every pair must be present and equal",
    )
    excluded_tags: dict[str, str] = Field(
        default_factory=dict,
        description="Any matching pair excludes the resource",
    )
    regions: list[str] = Field(default_factory=list, description="Allowed regions (empty = any)")
    name_pattern: str | None = Field(
        default=None,
        min_length=1,
        description="Glob matched against the resource name ('*', '?', '[seq]')",
    )

    @model_validator(mode="after")
    def validate_cost_bounds(self) -> "PolicyConditions":
        """Reject inverted cost bounds."""
        if (
            self.min_monthly_cost is not None
            and self.max_monthly_cost is not None
            and self.min_monthly_cost > self.max_monthly_cost
        ):
            raise ValueError("min_monthly_cost cannot be greater than max_monthly_cost")
        return self


class PolicyBase(BaseModel):
    """Base policy schema."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    provider: CloudProvider
    resource_types: list[ResourceType] = Field(
        default_factory=list,
        description="Applicable resource types (empty = all types)",
    )
    conditions: PolicyConditions = Field(default_factory=PolicyConditions)
    actions: list[PolicyAction] = Field(..., min_length=1)
    is_enabled: bool = True
    schedule: str | None = Field(default=None, description="5-field cron expression")

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str | None) -> str | None:
        """Require a 5-field cron expression when a schedule is set."""
        return _validate_cron(v)


class PolicyCreate(PolicyBase):
    """Schema for creating a policy."""


class PolicyUpdate(BaseModel):
    """Schema for updating a policy."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    resource_types: list[ResourceType] | None = None
    conditions: PolicyConditions | None = None
    actions: list[PolicyAction] | None = Field(default=None, min_length=1)
    schedule: str | None = None

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str | None) -> str | None:
        """Require a 5-field cron expression when a schedule is set."""
        return _validate_cron(v)


class Policy(PolicyBase):
    """Schema for policy responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
