"""SQLAlchemy database models."""

from cloudsweep.models.organization import Organization
from cloudsweep.models.cloud_account import CloudAccount
from cloudsweep.models.resource import CloudProvider, Resource, ResourceStatus, ResourceType
from cloudsweep.models.scan import Scan, ScanStatus
from cloudsweep.models.policy import Policy, PolicyAction

__all__ = [
    "Organization",
    "CloudAccount",
    "CloudProvider",
    "Resource",
    "ResourceStatus",
    "ResourceType",
    "Scan",
    "ScanStatus",
    "Policy",
    "PolicyAction",
]
