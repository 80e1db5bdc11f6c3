"""Policy database model."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cloudsweep.core.database import Base, utcnow

if TYPE_CHECKING:
    from cloudsweep.schemas.policy import PolicyConditions


class PolicyAction(str, Enum):
    """Remediation actions a policy may request."""

    NOTIFY = "notify"
    TAG = "tag"
    STOP = "stop"
    DELETE = "delete"


class Policy(Base):
    """
    Named, organization-scoped remediation rule.

    Conditions are persisted as JSON but only ever exposed as the typed
    :class:`PolicyConditions` struct.
    """

    __tablename__ = "policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    resource_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    conditions_data: Mapped[dict] = mapped_column(
        "conditions",
        JSON,
        nullable=False,
        default=dict,
    )
    actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    schedule: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )  # 5-field cron expression
    last_applied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def conditions(self) -> "PolicyConditions":
        """Declarative conditions as a typed struct."""
        from cloudsweep.schemas.policy import PolicyConditions

        return PolicyConditions.model_validate(self.conditions_data or {})

    @conditions.setter
    def conditions(self, value: "PolicyConditions") -> None:
        self.conditions_data = value.model_dump(mode="json", exclude_defaults=True)

    @property
    def action_list(self) -> list[PolicyAction]:
        """Actions as enum members, de-duplicated in declaration order."""
        seen: list[PolicyAction] = []
        for raw in self.actions or []:
            action = PolicyAction(raw)
            if action not in seen:
                seen.append(action)
        return seen

    def enable(self) -> None:
        """Enable the policy."""
        self.is_enabled = True
        self.updated_at = utcnow()

    def disable(self) -> None:
        """Disable the policy."""
        self.is_enabled = False
        self.updated_at = utcnow()

    def has_delete_action(self) -> bool:
        """Return True if the policy includes the delete action."""
        return PolicyAction.DELETE.value in (self.actions or [])

    def __repr__(self) -> str:
        """String representation."""
        return f"<Policy {self.name} ({self.provider})>"
