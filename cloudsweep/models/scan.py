"""Scan database model."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Float, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cloudsweep.core.database import Base, utcnow
from cloudsweep.core.exceptions import ScanCancelledError, ScanStateError

ERROR_MESSAGE_MAX_LENGTH = 500


class ScanStatus(str, Enum):
    """Scan status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_SCAN_STATUSES = frozenset(
    {ScanStatus.COMPLETED.value, ScanStatus.FAILED.value, ScanStatus.CANCELLED.value}
)


class Scan(Base):
    """
    One discovery run.

    State machine: ``pending -> running -> {completed | failed}``;
    ``cancelled`` is reachable from ``pending``/``running`` only through
    :meth:`cancel`. Terminal scans never change again.
    """

    __tablename__ = "scans"

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
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    regions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    resource_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ScanStatus.PENDING.value,
        nullable=False,
        index=True,
    )
    resources_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unused_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    estimated_savings: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    carbon_savings: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
    )  # kg CO2e per month
    error_message: Mapped[str | None] = mapped_column(
        String(ERROR_MESSAGE_MAX_LENGTH),
        nullable=True,
    )
    celery_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @classmethod
    def new(
        cls,
        organization_id: uuid.UUID,
        provider: str,
        regions: list[str],
        resource_types: list[str],
    ) -> "Scan":
        """Build a pending scan."""
        now = utcnow()
        return cls(
            id=uuid.uuid4(),
            organization_id=organization_id,
            provider=provider,
            regions=list(regions),
            resource_types=list(resource_types),
            status=ScanStatus.PENDING.value,
            resources_found=0,
            unused_found=0,
            estimated_savings=0.0,
            carbon_savings=0.0,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        """True once the scan is completed, failed or cancelled."""
        return self.status in TERMINAL_SCAN_STATUSES

    def is_running(self) -> bool:
        """Return True if the scan is running."""
        return self.status == ScanStatus.RUNNING.value

    def is_completed(self) -> bool:
        """Return True if the scan completed."""
        return self.status == ScanStatus.COMPLETED.value

    def is_cancelled(self) -> bool:
        """Return True if the scan was cancelled."""
        return self.status == ScanStatus.CANCELLED.value

    def _ensure_not_terminal(self, target: ScanStatus) -> None:
        if self.is_cancelled():
            raise ScanCancelledError(
                f"Scan {self.id} was cancelled",
                details={"scan_id": str(self.id), "target_status": target.value},
            )
        if self.is_terminal:
            raise ScanStateError(
                f"Scan {self.id} is already {self.status}",
                details={
                    "scan_id": str(self.id),
                    "status": self.status,
                    "target_status": target.value,
                },
            )

    def start(self) -> None:
        """Transition ``pending -> running`` and stamp ``started_at``."""
        self._ensure_not_terminal(ScanStatus.RUNNING)
        if self.status != ScanStatus.PENDING.value:
            raise ScanStateError(
                f"Scan {self.id} cannot start from {self.status}",
                details={"scan_id": str(self.id), "status": self.status},
            )
        now = utcnow()
        self.status = ScanStatus.RUNNING.value
        self.started_at = now
        self.updated_at = now

    def complete(
        self,
        resources_found: int,
        unused_found: int,
        estimated_savings: float,
        carbon_savings: float,
    ) -> None:
        """Transition ``running -> completed`` recording counts and totals."""
        self._ensure_not_terminal(ScanStatus.COMPLETED)
        if self.status != ScanStatus.RUNNING.value:
            raise ScanStateError(
                f"Scan {self.id} cannot complete from {self.status}",
                details={"scan_id": str(self.id), "status": self.status},
            )
        now = utcnow()
        self.status = ScanStatus.COMPLETED.value
        self.resources_found = resources_found
        self.unused_found = unused_found
        self.estimated_savings = estimated_savings
        self.carbon_savings = carbon_savings
        self.completed_at = now
        self.updated_at = now

    def fail(self, error_message: str) -> None:
        """Transition to ``failed`` with a human-readable message."""
        self._ensure_not_terminal(ScanStatus.FAILED)
        now = utcnow()
        self.status = ScanStatus.FAILED.value
        self.error_message = (error_message or "unknown error")[:ERROR_MESSAGE_MAX_LENGTH]
        self.completed_at = now
        self.updated_at = now

    def cancel(self) -> None:
        """Cancel a pending or running scan (external request only)."""
        if self.is_terminal:
            raise ScanStateError(
                f"Scan {self.id} is already {self.status}",
                details={"scan_id": str(self.id), "status": self.status},
            )
        now = utcnow()
        self.status = ScanStatus.CANCELLED.value
        self.completed_at = now
        self.updated_at = now

    def __repr__(self) -> str:
        """String representation."""
        return f"<Scan {self.id} - {self.status}>"
