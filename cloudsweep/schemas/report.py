"""Result and report schemas returned by the orchestrators."""

import uuid

from pydantic import BaseModel, ConfigDict, Field

from cloudsweep.models.scan import Scan


class ScanReport(BaseModel):
    """Summary of one completed scan."""

    model_config = ConfigDict(frozen=True)

    scan_id: uuid.UUID
    resources_found: int = Field(ge=0)
    unused_found: int = Field(ge=0)
    estimated_savings: float = Field(description="Monthly cost of unused resources (USD)")
    carbon_savings: float = Field(description="Monthly carbon of unused resources (kg CO2e)")

    @classmethod
    def from_scan(cls, scan: Scan) -> "ScanReport":
        """Rebuild the report from a completed scan row."""
        return cls(
            scan_id=scan.id,
            resources_found=scan.resources_found,
            unused_found=scan.unused_found,
            estimated_savings=scan.estimated_savings,
            carbon_savings=scan.carbon_savings,
        )


class CleanupResult(BaseModel):
    """Outcome of one remediation on one resource. Never persisted."""

    resource_id: str
    success: bool
    action: str | None = None
    error_message: str | None = None
    cost_saved: float = 0.0
    carbon_saved: float = 0.0
    skipped: bool = Field(
        default=False,
        description="Action was already applied; no provider call was made",
    )

    @classmethod
    def failed(cls, resource_id: str, error_message: str, action: str | None = None) -> "CleanupResult":
        """Build a failed result."""
        return cls(
            resource_id=resource_id,
            success=False,
            action=action,
            error_message=error_message,
        )


class CleanupReport(BaseModel):
    """
    Aggregated outcome of a cleanup invocation.

    Only :meth:`record` mutates the totals, so the report is consistent
    with its results: ``success_count + failure_count == len(results)`` and
    ``total_cost_saved`` is the sum of ``cost_saved`` over successful
    results.
    """

    results: list[CleanupResult] = Field(default_factory=list)
    total_cost_saved: float = 0.0
    total_carbon_saved: float = 0.0
    success_count: int = 0
    failure_count: int = 0
    dry_run: bool = False

    def record(self, result: CleanupResult) -> None:
        """Append a result and fold it into the totals."""
        self.results.append(result)
        if result.success:
            self.success_count += 1
            self.total_cost_saved += result.cost_saved
            self.total_carbon_saved += result.carbon_saved
        else:
            self.failure_count += 1

    def record_all(self, results: list[CleanupResult]) -> None:
        """Record several results in order."""
        for result in results:
            self.record(result)

    @property
    def total_processed(self) -> int:
        """Number of results, resolved or not."""
        return self.success_count + self.failure_count


class PolicyApplicationReport(BaseModel):
    """Outcome of applying one policy to an organization's inventory."""

    policy_id: uuid.UUID
    policy_enabled: bool = True
    dry_run: bool = False
    evaluated_count: int = 0
    matched_resource_ids: list[uuid.UUID] = Field(default_factory=list)
    notified_resource_ids: list[uuid.UUID] = Field(default_factory=list)
    cleanups: dict[str, CleanupReport] = Field(
        default_factory=dict,
        description="Cleanup report per remediation action, in policy order",
    )
