"""Cloud provider executors and the registry that builds them."""

from cloudsweep.providers.base import CloudScanner, ResourceCleaner
from cloudsweep.providers.registry import ProviderRegistry, build_default_registry

__all__ = ["CloudScanner", "ResourceCleaner", "ProviderRegistry", "build_default_registry"]
