"""Provider registry: builds scanners and cleaners keyed by cloud provider."""

from typing import Callable

import structlog

from cloudsweep.core.exceptions import CloudSweepError, ProviderError, ProviderUnsupportedError
from cloudsweep.models.resource import CloudProvider
from cloudsweep.providers.base import CloudScanner, ResourceCleaner

logger = structlog.get_logger()

ScannerBuilder = Callable[[bytes], CloudScanner]
CleanerBuilder = Callable[[bytes], ResourceCleaner]


class ProviderRegistry:
    """
    Registry of executor builders, populated once at startup.

    A builder receives the opaque credential blob and returns an executor;
    it raises :class:`CredentialsInvalidError` when the blob is malformed.
    The registry then validates the credentials against the provider before
    handing the executor out.
    """

    def __init__(self) -> None:
        self._scanners: dict[CloudProvider, ScannerBuilder] = {}
        self._cleaners: dict[CloudProvider, CleanerBuilder] = {}

    def register_scanner(self, provider: CloudProvider, builder: ScannerBuilder) -> None:
        """Register the scanner builder of a provider."""
        self._scanners[CloudProvider(provider)] = builder

    def register_cleaner(self, provider: CloudProvider, builder: CleanerBuilder) -> None:
        """Register the cleaner builder of a provider."""
        self._cleaners[CloudProvider(provider)] = builder

    @property
    def scanner_providers(self) -> list[CloudProvider]:
        """Providers with a registered scanner."""
        return list(self._scanners)

    @property
    def cleaner_providers(self) -> list[CloudProvider]:
        """Providers with a registered cleaner."""
        return list(self._cleaners)

    async def create_scanner(self, provider: CloudProvider | str, credentials: bytes) -> CloudScanner:
        """
        Build and validate a scanner.

        Args:
            provider: Cloud provider
            credentials: Opaque credential blob

        Returns:
            Scanner ready for discovery

        Raises:
            ProviderUnsupportedError: If no scanner is registered for the provider
            CredentialsInvalidError: If the credentials are malformed or rejected
        """
        builder = self._lookup(self._scanners, provider, "scanner")
        scanner = builder(credentials)
        await self._validate(scanner, provider)
        return scanner

    async def create_cleaner(self, provider: CloudProvider | str, credentials: bytes) -> ResourceCleaner:
        """
        Build and validate a cleaner.

        Raises:
            ProviderUnsupportedError: If no cleaner is registered for the provider
            CredentialsInvalidError: If the credentials are malformed or rejected
        """
        builder = self._lookup(self._cleaners, provider, "cleaner")
        cleaner = builder(credentials)
        await self._validate(cleaner, provider)
        return cleaner

    @staticmethod
    def _lookup(builders: dict, provider: CloudProvider | str, kind: str) -> Callable:
        try:
            key = CloudProvider(provider)
        except ValueError as e:
            raise ProviderUnsupportedError(
                f"unknown cloud provider: {provider}",
                provider=str(provider),
            ) from e
        builder = builders.get(key)
        if builder is None:
            raise ProviderUnsupportedError(
                f"no {kind} registered for provider {key.value}",
                provider=key.value,
            )
        return builder

    @staticmethod
    async def _validate(executor: CloudScanner | ResourceCleaner, provider: CloudProvider | str) -> None:
        provider_name = CloudProvider(provider).value
        try:
            identity = await executor.validate_credentials()
        except CloudSweepError:
            raise
        except Exception as e:
            raise ProviderError(
                f"credential validation failed: {e}",
                provider=provider_name,
            ) from e
        logger.debug("provider.credentials_validated", provider=provider_name, identity=identity)


def build_default_registry() -> ProviderRegistry:
    """
    Build the registry used by the workers.

    Only AWS ships executors; Azure and GCP requests fail with
    :class:`ProviderUnsupportedError`.
    """
    from cloudsweep.providers.aws import AWSCleaner, AWSScanner

    registry = ProviderRegistry()
    registry.register_scanner(CloudProvider.AWS, AWSScanner.from_credentials)
    registry.register_cleaner(CloudProvider.AWS, AWSCleaner.from_credentials)
    return registry
