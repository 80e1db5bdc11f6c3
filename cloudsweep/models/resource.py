"""Cloud resource database model."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cloudsweep.core.database import Base, utcnow


class CloudProvider(str, Enum):
    """Supported cloud providers."""

    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"


class ResourceType(str, Enum):
    """Provider-specific resource type vocabulary."""

    EC2_INSTANCE = "ec2_instance"
    EBS_VOLUME = "ebs_volume"
    EBS_SNAPSHOT = "ebs_snapshot"
    ELASTIC_IP = "elastic_ip"
    LOAD_BALANCER = "load_balancer"
    S3_BUCKET = "s3_bucket"
    RDS_INSTANCE = "rds_instance"
    AZURE_VM = "azure_vm"
    AZURE_DISK = "azure_disk"
    GCE_INSTANCE = "gce_instance"
    GCE_DISK = "gce_disk"


class ResourceStatus(str, Enum):
    """Resource status enumeration."""

    ACTIVE = "active"  # Serving traffic / in use
    UNUSED = "unused"  # Flagged idle by the provider's heuristic
    DELETED = "deleted"  # Removed by a successful cleanup
    EXCLUDED = "excluded"  # Opted out of governance


# Statuses a re-scan is not allowed to move a resource out of
STICKY_STATUSES = frozenset(
    {ResourceStatus.UNUSED.value, ResourceStatus.DELETED.value, ResourceStatus.EXCLUDED.value}
)

REMEDIATIONS_KEY = "remediations"


class Resource(Base):
    """Discovered cloud resource."""

    __tablename__ = "resources"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "provider",
            "resource_id",
            name="uq_resources_org_provider_resource_id",
        ),
    )

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
    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )  # Native provider id, e.g. 'i-0abc...' or 'vol-0abc...'
    region: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ResourceStatus.ACTIVE.value,
        nullable=False,
        index=True,
    )
    tags: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    resource_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    monthly_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    carbon_footprint: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )  # kg CO2e per month
    last_seen_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    # Cleanup lease: at most one cleanup may act on a resource at a time
    lease_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @classmethod
    def discovered(
        cls,
        provider: CloudProvider | str,
        resource_type: ResourceType | str,
        resource_id: str,
        region: str,
        name: str | None = None,
        tags: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "Resource":
        """
        Build a freshly discovered, not yet persisted resource.

        The organization id is left unset; the scan orchestrator stamps it.

        Args:
            provider: Cloud provider
            resource_type: Resource type
            resource_id: Native provider identifier
            region: Region the resource lives in
            name: Display name, if any
            tags: Provider tags
            metadata: Provider-specific attributes used by classification and pricing

        Returns:
            Transient Resource in ``active`` status
        """
        now = utcnow()
        return cls(
            id=uuid.uuid4(),
            provider=CloudProvider(provider).value,
            resource_type=ResourceType(resource_type).value,
            resource_id=resource_id,
            region=region,
            name=name,
            status=ResourceStatus.ACTIVE.value,
            tags=dict(tags or {}),
            resource_metadata=dict(metadata or {}),
            monthly_cost=0.0,
            carbon_footprint=0.0,
            last_seen_at=now,
            created_at=now,
            updated_at=now,
        )

    def is_unused(self) -> bool:
        """Return True if the resource is flagged unused."""
        return self.status == ResourceStatus.UNUSED.value

    def is_deleted(self) -> bool:
        """Return True if the resource was removed by a cleanup."""
        return self.status == ResourceStatus.DELETED.value

    def mark_unused(self) -> None:
        """Flag the resource as unused."""
        self.status = ResourceStatus.UNUSED.value
        self.updated_at = utcnow()

    def mark_deleted(self) -> None:
        """Flag the resource as deleted."""
        self.status = ResourceStatus.DELETED.value
        self.updated_at = utcnow()

    def mark_excluded(self) -> None:
        """Exclude the resource from governance."""
        self.status = ResourceStatus.EXCLUDED.value
        self.updated_at = utcnow()

    def has_remediation(self, action: str) -> bool:
        """Return True if ``action`` was already applied successfully."""
        return action in (self.resource_metadata or {}).get(REMEDIATIONS_KEY, [])

    def record_remediation(self, action: str) -> None:
        """Append ``action`` to the remediation ledger kept in metadata."""
        metadata = dict(self.resource_metadata or {})
        applied = list(metadata.get(REMEDIATIONS_KEY, []))
        if action not in applied:
            applied.append(action)
        metadata[REMEDIATIONS_KEY] = applied
        # Reassign so the JSON column is flagged dirty
        self.resource_metadata = metadata

    def observe(self, other: "Resource") -> None:
        """
        Merge a re-discovered copy of this resource in place.

        Descriptive attributes and estimates follow the new observation;
        status only moves away from ``active`` (no reactivation), and the
        remediation ledger survives the metadata refresh.

        Args:
            other: Transient resource produced by the latest scan
        """
        self.name = other.name
        self.region = other.region
        self.resource_type = other.resource_type
        self.tags = dict(other.tags or {})

        metadata = dict(other.resource_metadata or {})
        ledger = (self.resource_metadata or {}).get(REMEDIATIONS_KEY)
        if ledger:
            metadata[REMEDIATIONS_KEY] = list(ledger)
        self.resource_metadata = metadata

        self.monthly_cost = other.monthly_cost
        self.carbon_footprint = other.carbon_footprint
        self.last_seen_at = other.last_seen_at

        if self.status not in STICKY_STATUSES:
            self.status = other.status
        self.updated_at = utcnow()

    def __repr__(self) -> str:
        """String representation."""
        return f"<Resource {self.provider}:{self.resource_type}:{self.resource_id} - {self.status}>"
