"""AWS scanner and cleaner implementations."""

import json
from typing import Any

import aioboto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

from cloudsweep.core.config import settings
from cloudsweep.core.exceptions import CredentialsInvalidError, ProviderError
from cloudsweep.models.resource import CloudProvider, Resource, ResourceType
from cloudsweep.providers.base import CloudScanner, ResourceCleaner
from cloudsweep.schemas.report import CleanupResult

logger = structlog.get_logger()

HOURS_PER_MONTH = 730

SUPPORTED_RESOURCE_TYPES = (
    ResourceType.EC2_INSTANCE.value,
    ResourceType.EBS_VOLUME.value,
    ResourceType.ELASTIC_IP.value,
)

# Instances in these states are gone or going; they are not inventory
IGNORED_INSTANCE_STATES = frozenset({"shutting-down", "terminated"})
IGNORED_VOLUME_STATES = frozenset({"deleting", "deleted"})

# AWS pricing constants (USD, us-east-1 on-demand)
PRICING = {
    "ebs_gp3_per_gb": 0.08,  # General Purpose SSD (gp3)
    "ebs_gp2_per_gb": 0.10,  # General Purpose SSD (gp2)
    "ebs_io1_per_gb": 0.125,  # Provisioned IOPS SSD (io1)
    "ebs_io2_per_gb": 0.125,  # Provisioned IOPS SSD (io2)
    "ebs_st1_per_gb": 0.045,  # Throughput Optimized HDD (st1)
    "ebs_sc1_per_gb": 0.015,  # Cold HDD (sc1)
    "ebs_standard_per_gb": 0.05,  # Magnetic (standard)
    "elastic_ip": 3.60,  # Unassociated Elastic IP
}

# On-demand hourly price per instance type; unknown types use the default
INSTANCE_HOURLY_PRICING = {
    "t2.micro": 0.0116,
    "t2.small": 0.023,
    "t2.medium": 0.0464,
    "t3.nano": 0.0052,
    "t3.micro": 0.0104,
    "t3.small": 0.0208,
    "t3.medium": 0.0416,
    "t3.large": 0.0832,
    "t3.xlarge": 0.1664,
    "t4g.micro": 0.0084,
    "t4g.small": 0.0168,
    "t4g.medium": 0.0336,
    "m5.large": 0.096,
    "m5.xlarge": 0.192,
    "m5.2xlarge": 0.384,
    "m6i.large": 0.096,
    "c5.large": 0.085,
    "c5.xlarge": 0.17,
    "r5.large": 0.126,
    "r5.xlarge": 0.252,
}
DEFAULT_INSTANCE_HOURLY_PRICE = 0.10

# Average power draw (W) per instance size
INSTANCE_SIZE_WATTS = {
    "nano": 2.0,
    "micro": 3.5,
    "small": 7.0,
    "medium": 14.0,
    "large": 28.0,
    "xlarge": 56.0,
    "2xlarge": 112.0,
    "4xlarge": 224.0,
}
DEFAULT_INSTANCE_WATTS = 28.0

# Storage power draw (W per GB)
SSD_WATTS_PER_GB = 0.0012
HDD_WATTS_PER_GB = 0.00065
HDD_VOLUME_TYPES = frozenset({"st1", "sc1", "standard"})

# Grid carbon intensity (kg CO2e per kWh) per region
GRID_INTENSITY = {
    "us-east-1": 0.379,
    "us-east-2": 0.410,
    "us-west-1": 0.190,
    "us-west-2": 0.136,
    "ca-central-1": 0.030,
    "eu-west-1": 0.316,
    "eu-west-2": 0.225,
    "eu-west-3": 0.051,
    "eu-central-1": 0.338,
    "eu-north-1": 0.009,
    "ap-south-1": 0.708,
    "ap-southeast-1": 0.408,
    "ap-southeast-2": 0.790,
    "ap-northeast-1": 0.465,
    "sa-east-1": 0.074,
}
DEFAULT_GRID_INTENSITY = 0.400

AWS_PUE = 1.135


def parse_credentials(credentials: bytes) -> dict[str, str]:
    """
    Decode an AWS credential blob.

    Args:
        credentials: JSON object with ``access_key_id``, ``secret_access_key``
            and optionally ``session_token``

    Returns:
        Parsed credentials

    Raises:
        CredentialsInvalidError: If the blob is not JSON or misses a key
    """
    try:
        data = json.loads(credentials)
    except (TypeError, ValueError) as e:
        raise CredentialsInvalidError(
            "AWS credentials must be a JSON object",
            provider=CloudProvider.AWS.value,
        ) from e

    if not isinstance(data, dict):
        raise CredentialsInvalidError(
            "AWS credentials must be a JSON object",
            provider=CloudProvider.AWS.value,
        )

    missing = [key for key in ("access_key_id", "secret_access_key") if not data.get(key)]
    if missing:
        raise CredentialsInvalidError(
            f"AWS credentials are missing: {', '.join(missing)}",
            provider=CloudProvider.AWS.value,
            details={"missing": missing},
        )
    return data


def _tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {tag["Key"]: tag.get("Value", "") for tag in tags or []}


def _client_error_message(error: ClientError) -> str:
    err = error.response.get("Error", {})
    return f"{err.get('Code', 'Unknown')}: {err.get('Message', str(error))}"


class AWSExecutor:
    """Shared session and client configuration for AWS executors."""

    def __init__(self, credentials: dict[str, str], session: Any = None) -> None:
        """
        Initialize the AWS session.

        Args:
            credentials: Parsed credentials (see :func:`parse_credentials`)
            session: Pre-built aioboto3 session (tests inject a mock)
        """
        self.config = Config(
            connect_timeout=60,
            read_timeout=60,
            retries={"max_attempts": settings.AWS_MAX_ATTEMPTS, "mode": "standard"},
        )
        self.session = session or aioboto3.Session(
            aws_access_key_id=credentials["access_key_id"],
            aws_secret_access_key=credentials["secret_access_key"],
            aws_session_token=credentials.get("session_token"),
        )

    @classmethod
    def from_credentials(cls, credentials: bytes):
        """Build the executor from an opaque credential blob."""
        return cls(parse_credentials(credentials))

    @property
    def provider(self) -> CloudProvider:
        """Cloud provider."""
        return CloudProvider.AWS

    def _client(self, service: str, region: str):
        return self.session.client(service, region_name=region, config=self.config)

    async def validate_credentials(self) -> dict[str, str]:
        """
        Validate AWS credentials using STS GetCallerIdentity.

        Returns:
            Dict with account_id, arn, user_id

        Raises:
            CredentialsInvalidError: If AWS rejects the credentials
        """
        try:
            async with self._client("sts", settings.AWS_DEFAULT_REGION) as sts:
                response = await sts.get_caller_identity()
        except ClientError as e:
            logger.warning("aws.credentials_rejected", error=_client_error_message(e))
            raise CredentialsInvalidError(
                f"AWS rejected the credentials ({_client_error_message(e)})",
                provider=CloudProvider.AWS.value,
            ) from e

        return {
            "account_id": response["Account"],
            "arn": response["Arn"],
            "user_id": response["UserId"],
        }


class AWSScanner(AWSExecutor, CloudScanner):
    """
    AWS implementation of the scanner contract.

    Covers EC2 instances, EBS volumes and Elastic IPs. Unused heuristics:
    stopped instances, unattached (``available``) volumes and Elastic IPs
    without an association.
    """

    async def discover(self, regions: list[str], resource_types: list[str]) -> list[Resource]:
        """
        Enumerate EC2 inventory in each region.

        Args:
            regions: AWS regions to scan
            resource_types: Types to include (empty = every supported type)

        Returns:
            Transient resources in discovery order (region, then type)

        Raises:
            ProviderError: If an EC2 API call fails
        """
        requested = [getattr(t, "value", t) for t in resource_types] or list(SUPPORTED_RESOURCE_TYPES)
        types = []
        for resource_type in requested:
            if resource_type not in SUPPORTED_RESOURCE_TYPES:
                logger.warning("aws.resource_type_unsupported", resource_type=resource_type)
            elif resource_type not in types:
                types.append(resource_type)

        resources: list[Resource] = []
        for region in regions:
            try:
                async with self._client("ec2", region) as ec2:
                    for resource_type in types:
                        if resource_type == ResourceType.EC2_INSTANCE.value:
                            resources.extend(await self._discover_instances(ec2, region))
                        elif resource_type == ResourceType.EBS_VOLUME.value:
                            resources.extend(await self._discover_volumes(ec2, region))
                        else:
                            resources.extend(await self._discover_addresses(ec2, region))
            except ClientError as e:
                raise ProviderError(
                    f"AWS discovery failed in {region}: {_client_error_message(e)}",
                    provider=CloudProvider.AWS.value,
                    details={"region": region},
                ) from e

            logger.info("aws.region_scanned", region=region, resource_types=types)

        return resources

    @staticmethod
    async def _paginate(method, result_key: str, **kwargs) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            response = await method(**kwargs)
            items.extend(response.get(result_key, []))
            next_token = response.get("NextToken")
            if not next_token:
                return items
            kwargs["NextToken"] = next_token

    async def _discover_instances(self, ec2, region: str) -> list[Resource]:
        reservations = await self._paginate(ec2.describe_instances, "Reservations")
        resources = []
        for reservation in reservations:
            for instance in reservation.get("Instances", []):
                state = instance.get("State", {}).get("Name", "unknown")
                if state in IGNORED_INSTANCE_STATES:
                    continue
                tags = _tags_to_dict(instance.get("Tags"))
                launch_time = instance.get("LaunchTime")
                resources.append(
                    Resource.discovered(
                        provider=CloudProvider.AWS,
                        resource_type=ResourceType.EC2_INSTANCE,
                        resource_id=instance["InstanceId"],
                        region=region,
                        name=tags.get("Name"),
                        tags=tags,
                        metadata={
                            "instance_type": instance.get("InstanceType"),
                            "state": state,
                            "launch_time": launch_time.isoformat() if launch_time else None,
                            "availability_zone": instance.get("Placement", {}).get("AvailabilityZone"),
                        },
                    )
                )
        return resources

    async def _discover_volumes(self, ec2, region: str) -> list[Resource]:
        volumes = await self._paginate(ec2.describe_volumes, "Volumes")
        resources = []
        for volume in volumes:
            state = volume.get("State", "unknown")
            if state in IGNORED_VOLUME_STATES:
                continue
            tags = _tags_to_dict(volume.get("Tags"))
            create_time = volume.get("CreateTime")
            resources.append(
                Resource.discovered(
                    provider=CloudProvider.AWS,
                    resource_type=ResourceType.EBS_VOLUME,
                    resource_id=volume["VolumeId"],
                    region=region,
                    name=tags.get("Name"),
                    tags=tags,
                    metadata={
                        "volume_type": volume.get("VolumeType"),
                        "size_gb": volume.get("Size", 0),
                        "state": state,
                        "iops": volume.get("Iops"),
                        "attached_instances": [
                            a["InstanceId"] for a in volume.get("Attachments", []) if a.get("InstanceId")
                        ],
                        "create_time": create_time.isoformat() if create_time else None,
                    },
                )
            )
        return resources

    async def _discover_addresses(self, ec2, region: str) -> list[Resource]:
        # DescribeAddresses is not paginated
        response = await ec2.describe_addresses()
        resources = []
        for address in response.get("Addresses", []):
            tags = _tags_to_dict(address.get("Tags"))
            resources.append(
                Resource.discovered(
                    provider=CloudProvider.AWS,
                    resource_type=ResourceType.ELASTIC_IP,
                    resource_id=address.get("AllocationId") or address["PublicIp"],
                    region=region,
                    name=tags.get("Name"),
                    tags=tags,
                    metadata={
                        "public_ip": address.get("PublicIp"),
                        "association_id": address.get("AssociationId"),
                        "instance_id": address.get("InstanceId"),
                        "network_interface_id": address.get("NetworkInterfaceId"),
                        "domain": address.get("Domain"),
                    },
                )
            )
        return resources

    async def classify_unused(self, resources: list[Resource]) -> None:
        """Mark stopped instances, available volumes and unassociated EIPs as unused."""
        for resource in resources:
            metadata = resource.resource_metadata or {}
            if resource.resource_type == ResourceType.EC2_INSTANCE.value:
                unused = metadata.get("state") == "stopped"
            elif resource.resource_type == ResourceType.EBS_VOLUME.value:
                unused = metadata.get("state") == "available"
            elif resource.resource_type == ResourceType.ELASTIC_IP.value:
                unused = not metadata.get("association_id")
            else:
                unused = False
            if unused:
                resource.mark_unused()

    async def estimate_cost(self, resource: Resource) -> float:
        """
        Estimate the monthly list price of a resource.

        Instances are priced as if running (the cost a restart would incur),
        volumes by provisioned size and type, Elastic IPs at a flat rate.
        """
        metadata = resource.resource_metadata or {}
        if resource.resource_type == ResourceType.EC2_INSTANCE.value:
            hourly = INSTANCE_HOURLY_PRICING.get(
                metadata.get("instance_type") or "",
                DEFAULT_INSTANCE_HOURLY_PRICE,
            )
            return round(hourly * HOURS_PER_MONTH, 2)
        if resource.resource_type == ResourceType.EBS_VOLUME.value:
            volume_type = metadata.get("volume_type") or "gp2"
            per_gb = PRICING.get(f"ebs_{volume_type}_per_gb", PRICING["ebs_gp2_per_gb"])
            return round(float(metadata.get("size_gb") or 0) * per_gb, 2)
        if resource.resource_type == ResourceType.ELASTIC_IP.value:
            return PRICING["elastic_ip"]
        return 0.0

    async def estimate_carbon(self, resource: Resource) -> float:
        """Estimate monthly emissions: power draw x hours x PUE x grid intensity."""
        metadata = resource.resource_metadata or {}
        if resource.resource_type == ResourceType.EC2_INSTANCE.value:
            size = (metadata.get("instance_type") or "").partition(".")[2]
            watts = INSTANCE_SIZE_WATTS.get(size, DEFAULT_INSTANCE_WATTS)
        elif resource.resource_type == ResourceType.EBS_VOLUME.value:
            per_gb = HDD_WATTS_PER_GB if metadata.get("volume_type") in HDD_VOLUME_TYPES else SSD_WATTS_PER_GB
            watts = float(metadata.get("size_gb") or 0) * per_gb
        else:
            return 0.0

        kwh = watts * HOURS_PER_MONTH / 1000 * AWS_PUE
        intensity = GRID_INTENSITY.get(resource.region, DEFAULT_GRID_INTENSITY)
        return round(kwh * intensity, 4)


class AWSCleaner(AWSExecutor, ResourceCleaner):
    """AWS implementation of the cleaner contract."""

    async def delete(self, resource: Resource) -> CleanupResult:
        """Terminate an instance, delete a volume or release an Elastic IP."""
        action = "delete"
        if resource.resource_type == ResourceType.EC2_INSTANCE.value:
            call = ("terminate_instances", {"InstanceIds": [resource.resource_id]})
        elif resource.resource_type == ResourceType.EBS_VOLUME.value:
            call = ("delete_volume", {"VolumeId": resource.resource_id})
        elif resource.resource_type == ResourceType.ELASTIC_IP.value:
            # EC2-Classic addresses have no allocation id and are stored under their public IP
            if resource.resource_id.startswith("eipalloc-"):
                call = ("release_address", {"AllocationId": resource.resource_id})
            else:
                call = ("release_address", {"PublicIp": resource.resource_id})
        else:
            return CleanupResult.failed(
                str(resource.id),
                f"delete is not supported for {resource.resource_type}",
                action=action,
            )
        return await self._execute(resource, action, *call, saves=True)

    async def stop(self, resource: Resource) -> CleanupResult:
        """Stop an EC2 instance."""
        if resource.resource_type != ResourceType.EC2_INSTANCE.value:
            return CleanupResult.failed(
                str(resource.id),
                f"stop is not supported for {resource.resource_type}",
                action="stop",
            )
        return await self._execute(
            resource,
            "stop",
            "stop_instances",
            {"InstanceIds": [resource.resource_id]},
            saves=True,
        )

    async def tag(self, resource: Resource, tags: dict[str, str]) -> CleanupResult:
        """Add tags to an instance, volume or Elastic IP allocation."""
        if resource.resource_type not in SUPPORTED_RESOURCE_TYPES:
            return CleanupResult.failed(
                str(resource.id),
                f"tag is not supported for {resource.resource_type}",
                action="tag",
            )
        return await self._execute(
            resource,
            "tag",
            "create_tags",
            {
                "Resources": [resource.resource_id],
                "Tags": [{"Key": key, "Value": value} for key, value in tags.items()],
            },
            saves=False,
        )

    async def _execute(
        self,
        resource: Resource,
        action: str,
        operation: str,
        params: dict[str, Any],
        saves: bool,
    ) -> CleanupResult:
        try:
            async with self._client("ec2", resource.region) as ec2:
                await getattr(ec2, operation)(**params)
        except ClientError as e:
            logger.warning(
                "aws.remediation_failed",
                resource_id=resource.resource_id,
                operation=operation,
                error=_client_error_message(e),
            )
            return CleanupResult.failed(str(resource.id), _client_error_message(e), action=action)

        logger.info("aws.remediation_applied", resource_id=resource.resource_id, operation=operation)
        return CleanupResult(
            resource_id=str(resource.id),
            success=True,
            action=action,
            cost_saved=resource.monthly_cost if saves else 0.0,
            carbon_saved=resource.carbon_footprint if saves else 0.0,
        )
