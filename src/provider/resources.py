"""Concrete declared configuration node types.

These models cover the resource families the provider manages:
networks, Kubernetes clusters and node pools, database instances and
users, service accounts, and roles. Wire aliases are camelCase, matching
the remote API payloads.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, field_validator

from .models import ConfigNode

# =============================================================================
# Resource kinds
# =============================================================================

NETWORK = "network"
SUBNETWORK = "subnetwork"
CLUSTER = "cluster"
NODE_POOL = "node-pool"
DATABASE_INSTANCE = "database-instance"
DATABASE_USER = "database-user"
SERVICE_ACCOUNT = "service-account"
CUSTOM_ROLE = "custom-role"
PREDEFINED_ROLE = "predefined-role"


# =============================================================================
# Networking
# =============================================================================


class NetworkConfig(ConfigNode):
    """VPC network."""

    create_only_fields = frozenset({"name", "auto_create_subnetworks"})
    output_fields = frozenset({"self_link"})

    name: Annotated[str, Field(min_length=1, max_length=63)]
    description: str | None = None
    auto_create_subnetworks: bool = Field(False, alias="autoCreateSubnetworks")
    routing_mode: str | None = Field(None, alias="routingMode")
    self_link: str | None = Field(None, alias="selfLink")

    @field_validator("routing_mode")
    @classmethod
    def validate_routing_mode(cls, v: str | None) -> str | None:
        if v is not None and v not in {"REGIONAL", "GLOBAL"}:
            raise ValueError("routingMode must be REGIONAL or GLOBAL")
        return v


class SubnetworkConfig(ConfigNode):
    """Regional subnetwork of a VPC network."""

    create_only_fields = frozenset({"name", "region", "network"})
    reference_fields = {"network": NETWORK}
    output_fields = frozenset({"self_link"})

    name: Annotated[str, Field(min_length=1, max_length=63)]
    network: str
    region: str
    ip_cidr_range: str = Field(alias="ipCidrRange")
    private_ip_google_access: bool | None = Field(None, alias="privateIpGoogleAccess")
    self_link: str | None = Field(None, alias="selfLink")

    @field_validator("ip_cidr_range")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError("ipCidrRange must be in CIDR notation (e.g., 10.0.0.0/24)")
        return v


# =============================================================================
# Kubernetes
# =============================================================================


class AddonsConfig(ConfigNode):
    """Cluster add-on toggles."""

    http_load_balancing: bool | None = Field(None, alias="httpLoadBalancing")
    horizontal_pod_autoscaling: bool | None = Field(None, alias="horizontalPodAutoscaling")
    network_policy: bool | None = Field(None, alias="networkPolicy")


class MaintenanceWindow(ConfigNode):
    """Daily maintenance window."""

    start_time: str = Field(alias="startTime")
    duration: str | None = None


class ClusterConfig(ConfigNode):
    """Managed Kubernetes cluster."""

    create_only_fields = frozenset(
        {"name", "location", "network", "subnetwork", "cluster_ipv4_cidr"}
    )
    reference_fields = {"network": NETWORK, "subnetwork": SUBNETWORK}
    output_fields = frozenset({"self_link", "status", "label_fingerprint", "endpoint"})

    name: Annotated[str, Field(min_length=1, max_length=40)]
    location: str
    description: str | None = None
    network: str | None = None
    subnetwork: str | None = None
    cluster_ipv4_cidr: str | None = Field(None, alias="clusterIpv4Cidr")
    master_version: str | None = Field(None, alias="masterVersion")
    node_locations: list[str] | None = Field(None, alias="nodeLocations")
    logging_service: str | None = Field(None, alias="loggingService")
    monitoring_service: str | None = Field(None, alias="monitoringService")
    release_channel: Literal["RAPID", "REGULAR", "STABLE"] | None = Field(
        None, alias="releaseChannel"
    )
    addons_config: AddonsConfig | None = Field(None, alias="addonsConfig")
    maintenance_window: MaintenanceWindow | None = Field(None, alias="maintenanceWindow")
    labels: dict[str, str] | None = None

    self_link: str | None = Field(None, alias="selfLink")
    status: str | None = None
    label_fingerprint: str | None = Field(None, alias="labelFingerprint")
    endpoint: str | None = None


class NodeTaint(ConfigNode):
    """Kubernetes taint applied to every node of a pool."""

    key: Annotated[str, Field(min_length=1)]
    value: str = ""
    effect: Literal["NO_SCHEDULE", "PREFER_NO_SCHEDULE", "NO_EXECUTE"]

    def primary_key(self) -> str:
        return f"{self.key}={self.value}:{self.effect}"


class NodeConfig(ConfigNode):
    """Machine settings shared by every node of a pool."""

    unordered_fields = frozenset({"taints", "oauth_scopes"})

    machine_type: str | None = Field(None, alias="machineType")
    disk_size_gb: int | None = Field(None, alias="diskSizeGb", ge=10)
    image_type: str | None = Field(None, alias="imageType")
    labels: dict[str, str] | None = None
    taints: list[NodeTaint] | None = None
    oauth_scopes: list[str] | None = Field(None, alias="oauthScopes")


class NodePoolAutoscaling(ConfigNode):
    """Node pool autoscaler bounds."""

    enabled: bool = False
    min_node_count: int | None = Field(None, alias="minNodeCount")
    max_node_count: int | None = Field(None, alias="maxNodeCount")


class NodePoolConfig(ConfigNode):
    """Node pool attached to a cluster."""

    create_only_fields = frozenset({"name", "cluster", "initial_node_count"})
    reference_fields = {"cluster": CLUSTER}
    output_fields = frozenset({"self_link", "status"})

    name: Annotated[str, Field(min_length=1, max_length=40)]
    cluster: str
    initial_node_count: int = Field(1, alias="initialNodeCount", ge=0)
    node_count: int | None = Field(None, alias="nodeCount", ge=0)
    version: str | None = None
    locations: list[str] | None = None
    autoscaling: NodePoolAutoscaling | None = None
    config: NodeConfig | None = None

    self_link: str | None = Field(None, alias="selfLink")
    status: str | None = None

    def primary_key(self) -> str:
        return self.name


# =============================================================================
# Databases
# =============================================================================


class DatabaseFlag(ConfigNode):
    """Engine flag set on a database instance."""

    name: Annotated[str, Field(min_length=1)]
    value: str

    def primary_key(self) -> str:
        return self.name


class BackupConfiguration(ConfigNode):
    """Automated backup settings."""

    enabled: bool | None = None
    start_time: str | None = Field(None, alias="startTime")
    point_in_time_recovery_enabled: bool | None = Field(
        None, alias="pointInTimeRecoveryEnabled"
    )


class DatabaseSettings(ConfigNode):
    """User-settable database instance settings."""

    unordered_fields = frozenset({"database_flags"})

    tier: str | None = None
    activation_policy: Literal["ALWAYS", "NEVER"] | None = Field(None, alias="activationPolicy")
    availability_type: Literal["ZONAL", "REGIONAL"] | None = Field(
        None, alias="availabilityType"
    )
    data_disk_size_gb: int | None = Field(None, alias="dataDiskSizeGb", ge=10)
    database_flags: list[DatabaseFlag] | None = Field(None, alias="databaseFlags")
    backup_configuration: BackupConfiguration | None = Field(None, alias="backupConfiguration")
    user_labels: dict[str, str] | None = Field(None, alias="userLabels")


class DatabaseInstanceConfig(ConfigNode):
    """Managed database instance."""

    create_only_fields = frozenset({"name", "database_version", "region", "root_password"})
    output_fields = frozenset({"self_link", "settings_version", "state"})

    name: Annotated[str, Field(min_length=1, max_length=98)]
    database_version: str = Field(alias="databaseVersion")
    region: str
    root_password: str | None = Field(None, alias="rootPassword")
    settings: DatabaseSettings | None = None
    deletion_protection: bool | None = Field(None, alias="deletionProtection")

    self_link: str | None = Field(None, alias="selfLink")
    settings_version: int | None = Field(None, alias="settingsVersion")
    state: str | None = None


class DatabaseUserConfig(ConfigNode):
    """Login user on a database instance."""

    create_only_fields = frozenset({"name", "instance", "host"})
    reference_fields = {"instance": DATABASE_INSTANCE}

    name: Annotated[str, Field(min_length=1)]
    instance: str
    host: str | None = None
    password: str | None = None


# =============================================================================
# Identity
# =============================================================================


class ServiceAccountConfig(ConfigNode):
    """Service account identity."""

    create_only_fields = frozenset({"name"})
    output_fields = frozenset({"email", "unique_id"})

    name: Annotated[str, Field(min_length=6, max_length=30)]
    display_name: str | None = Field(None, alias="displayName")
    description: str | None = None
    enabled: bool | None = None

    email: str | None = None
    unique_id: str | None = Field(None, alias="uniqueId")


class CustomRoleConfig(ConfigNode):
    """Project-level custom role."""

    create_only_fields = frozenset({"role_id"})
    unordered_fields = frozenset({"permissions"})

    role_id: str = Field(alias="roleId", pattern=r"^[a-zA-Z0-9_.]{3,64}$")
    title: str | None = None
    description: str | None = None
    permissions: list[str] | None = Field(None, alias="includedPermissions")
    stage: Literal["ALPHA", "BETA", "GA", "DEPRECATED", "DISABLED", "EAP"] | None = None


class PredefinedRoleConfig(ConfigNode):
    """Read-only role managed by the platform."""

    unordered_fields = frozenset({"permissions"})

    name: str
    title: str | None = None
    description: str | None = None
    permissions: list[str] | None = Field(None, alias="includedPermissions")


RESOURCE_TYPES: dict[str, type[ConfigNode]] = {
    NETWORK: NetworkConfig,
    SUBNETWORK: SubnetworkConfig,
    CLUSTER: ClusterConfig,
    NODE_POOL: NodePoolConfig,
    DATABASE_INSTANCE: DatabaseInstanceConfig,
    DATABASE_USER: DatabaseUserConfig,
    SERVICE_ACCOUNT: ServiceAccountConfig,
    CUSTOM_ROLE: CustomRoleConfig,
    PREDEFINED_ROLE: PredefinedRoleConfig,
}


def get_config_class(kind: str) -> type[ConfigNode]:
    """Get the configuration node type for a resource kind.

    Raises:
        ValueError: If the kind is unknown.
    """
    node_type = RESOURCE_TYPES.get(kind)
    if node_type is None:
        raise ValueError(f"Unknown resource kind '{kind}'. Valid kinds: {list(RESOURCE_TYPES)}")
    return node_type
