"""Base abstract classes for cloud provider executors."""

from abc import ABC, abstractmethod
from typing import Any

from cloudsweep.models.resource import CloudProvider, Resource
from cloudsweep.schemas.report import CleanupResult


class CloudScanner(ABC):
    """
    Abstract base class for provider scanners.

    Every provider executor registered for scanning must implement this
    interface so the scan orchestrator can drive discovery, classification
    and estimation the same way for AWS, Azure and GCP.
    """

    @property
    @abstractmethod
    def provider(self) -> CloudProvider:
        """Cloud provider this scanner talks to."""

    @abstractmethod
    async def validate_credentials(self) -> dict[str, Any]:
        """
        Validate the credentials the scanner was built with.

        Returns:
            Provider account information (account id, principal, ...)

        Raises:
            CredentialsInvalidError: If the provider rejects the credentials
        """

    @abstractmethod
    async def discover(self, regions: list[str], resource_types: list[str]) -> list[Resource]:
        """
        Enumerate resources in the given regions.

        Args:
            regions: Regions to scan
            resource_types: Resource types to include (empty = every supported type)

        Returns:
            Transient resources in ``active`` status, without organization id
        """

    @abstractmethod
    async def classify_unused(self, resources: list[Resource]) -> None:
        """
        Mark unused resources in place.

        Args:
            resources: Resources returned by :meth:`discover`
        """

    @abstractmethod
    async def estimate_cost(self, resource: Resource) -> float:
        """Estimate the monthly cost of a resource in USD."""

    @abstractmethod
    async def estimate_carbon(self, resource: Resource) -> float:
        """Estimate the monthly carbon footprint of a resource in kg CO2e."""


class ResourceCleaner(ABC):
    """
    Abstract base class for provider remediation executors.

    Methods return a :class:`CleanupResult`; an expected provider-side
    refusal is reported as a failed result, anything else may raise.
    """

    @property
    @abstractmethod
    def provider(self) -> CloudProvider:
        """Cloud provider this cleaner talks to."""

    @abstractmethod
    async def validate_credentials(self) -> dict[str, Any]:
        """Validate the credentials the cleaner was built with."""

    @abstractmethod
    async def delete(self, resource: Resource) -> CleanupResult:
        """Permanently delete a resource."""

    @abstractmethod
    async def stop(self, resource: Resource) -> CleanupResult:
        """Stop a running resource (e.g. an EC2 instance)."""

    @abstractmethod
    async def tag(self, resource: Resource, tags: dict[str, str]) -> CleanupResult:
        """Add tags to a resource."""
