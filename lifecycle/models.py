"""Pydantic models for resource configuration, plans and lifecycle results."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================


class ResourceKind(str, Enum):
    """Remote resource types managed through the control plane."""

    CLUSTER = "cluster"
    DEDICATED_CLUSTER = "dedicated_cluster"
    DEDICATED_NODE_GROUP = "dedicated_node_group"
    DEDICATED_PRIVATE_ENDPOINT_CONNECTION = "dedicated_private_endpoint_connection"
    DEDICATED_VPC_PEERING = "dedicated_vpc_peering"
    DEDICATED_NETWORK_CONTAINER = "dedicated_network_container"
    DEDICATED_AUDIT_LOG_CONFIG = "dedicated_audit_log_config"
    DEDICATED_AUDIT_LOG_FILTER_RULE = "dedicated_audit_log_filter_rule"
    SERVERLESS_CLUSTER = "serverless_cluster"
    SERVERLESS_BRANCH = "serverless_branch"
    SERVERLESS_EXPORT = "serverless_export"


class LifecycleState(str, Enum):
    """Where a resource instance sits in its lifecycle."""

    ABSENT = "absent"
    PENDING = "pending"
    READY = "ready"
    DELETING = "deleting"
    ERROR = "error"


class ChangeKind(str, Enum):
    """How a field changed between observed and desired."""

    MODIFY = "modify"
    INSERT = "insert"
    REMOVE = "remove"


# =============================================================================
# RESOURCE CONFIG MODELS
# =============================================================================


class ResourceConfig(BaseModel):
    """Base for desired configuration.

    Accepts both snake_case and the API's camelCase keys, so an observed API
    payload can be validated into the same model as the desired config.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class IpAccessListEntry(ResourceConfig):
    cidr_notation: str
    description: str = ""


class PublicEndpointSetting(ResourceConfig):
    enabled: Optional[bool] = None
    ip_access_list: Optional[list[IpAccessListEntry]] = None


class TiProxySetting(ResourceConfig):
    node_spec_key: Optional[str] = None
    node_count: Optional[int] = Field(default=None, ge=0)


class TidbNodeSetting(ResourceConfig):
    node_spec_key: str
    node_count: int = Field(..., ge=1)
    tiproxy_setting: Optional[TiProxySetting] = None
    public_endpoint_setting: Optional[PublicEndpointSetting] = None


class StorageNodeSetting(ResourceConfig):
    node_spec_key: str
    node_count: int = Field(..., ge=1)
    storage_size_gi: int = Field(..., ge=1)
    storage_type: Optional[str] = None
    raft_store_iops: Optional[int] = None


class DedicatedClusterConfig(ResourceConfig):
    """Configuration for a dedicated cluster."""

    project_id: Optional[str] = None
    display_name: str
    region_id: str
    cloud_provider: Optional[str] = None
    labels: Optional[dict[str, str]] = None
    root_password: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1024, le=65535)
    paused: bool = False
    tidb_node_setting: TidbNodeSetting
    tikv_node_setting: StorageNodeSetting
    tiflash_node_setting: Optional[StorageNodeSetting] = None


class NodeGroupConfig(ResourceConfig):
    """Configuration for a TiDB node group of a dedicated cluster."""

    cluster_id: str
    display_name: str
    node_spec_key: Optional[str] = None
    node_count: int = Field(..., ge=0)
    tiproxy_setting: Optional[TiProxySetting] = None
    public_endpoint_setting: Optional[PublicEndpointSetting] = None


class PrivateEndpointConnectionConfig(ResourceConfig):
    cluster_id: str
    node_group_id: str
    endpoint_id: str
    labels: Optional[dict[str, str]] = None


class VpcPeeringConfig(ResourceConfig):
    project_id: Optional[str] = None
    tidb_cloud_region_id: str
    customer_region_id: str
    customer_account_id: str
    customer_vpc_id: str
    customer_vpc_cidr: str
    labels: Optional[dict[str, str]] = None


class NetworkContainerConfig(ResourceConfig):
    region_id: str
    cidr_notion: str
    labels: Optional[dict[str, str]] = None


class AuditLogConfig(ResourceConfig):
    cluster_id: str
    enabled: Optional[bool] = None
    bucket_uri: Optional[str] = None
    bucket_region_id: Optional[str] = None
    aws_role_arn: Optional[str] = None
    azure_sas_token: Optional[str] = None


class AuditLogFilterRuleConfig(ResourceConfig):
    cluster_id: str
    user_expr: str
    db_expr: str
    table_expr: str
    access_type_list: list[str] = Field(default_factory=list)


class Region(ResourceConfig):
    name: str


class SpendingLimit(ResourceConfig):
    monthly: int = Field(..., ge=0)


class AutoScaling(ResourceConfig):
    min_rcu: int = Field(..., ge=0)
    max_rcu: int = Field(..., ge=0)


class AutomatedBackupPolicy(ResourceConfig):
    start_time: Optional[str] = None
    retention_days: Optional[int] = Field(default=None, ge=1)


class PublicEndpoint(ResourceConfig):
    disabled: bool = False


class Endpoints(ResourceConfig):
    public: Optional[PublicEndpoint] = None


class EncryptionConfig(ResourceConfig):
    enhanced_encryption_enabled: bool = False


class ServerlessClusterConfig(ResourceConfig):
    """Configuration for a serverless cluster."""

    display_name: str
    region: Region
    labels: Optional[dict[str, str]] = None
    spending_limit: Optional[SpendingLimit] = None
    auto_scaling: Optional[AutoScaling] = None
    automated_backup_policy: Optional[AutomatedBackupPolicy] = None
    endpoints: Optional[Endpoints] = None
    encryption_config: Optional[EncryptionConfig] = None


class ServerlessBranchConfig(ResourceConfig):
    cluster_id: str
    display_name: str
    parent_id: Optional[str] = None
    parent_timestamp: Optional[str] = None


class ServerlessExportConfig(ResourceConfig):
    cluster_id: str
    display_name: Optional[str] = None
    export_options: Optional[dict[str, Any]] = None
    target: Optional[dict[str, Any]] = None


class IpAccess(ResourceConfig):
    cidr: str
    description: str = ""


class ComponentTiDB(ResourceConfig):
    node_size: str
    node_quantity: int = Field(..., ge=1)


class ComponentStorage(ResourceConfig):
    node_size: str
    storage_size_gib: int = Field(..., ge=1)
    node_quantity: int = Field(..., ge=1)


class Components(ResourceConfig):
    tidb: Optional[ComponentTiDB] = None
    tikv: Optional[ComponentStorage] = None
    tiflash: Optional[ComponentStorage] = None


class ClusterSettings(ResourceConfig):
    root_password: Optional[str] = None
    port: Optional[int] = None
    paused: Optional[bool] = None
    components: Optional[Components] = None
    ip_access_list: Optional[list[IpAccess]] = None


class LegacyClusterConfig(ResourceConfig):
    """Configuration for a cluster managed through the original cluster API."""

    project_id: str
    name: str
    cluster_type: str
    cloud_provider: str
    region: str
    config: ClusterSettings


CONFIG_MODELS: dict[ResourceKind, type[ResourceConfig]] = {
    ResourceKind.CLUSTER: LegacyClusterConfig,
    ResourceKind.DEDICATED_CLUSTER: DedicatedClusterConfig,
    ResourceKind.DEDICATED_NODE_GROUP: NodeGroupConfig,
    ResourceKind.DEDICATED_PRIVATE_ENDPOINT_CONNECTION: PrivateEndpointConnectionConfig,
    ResourceKind.DEDICATED_VPC_PEERING: VpcPeeringConfig,
    ResourceKind.DEDICATED_NETWORK_CONTAINER: NetworkContainerConfig,
    ResourceKind.DEDICATED_AUDIT_LOG_CONFIG: AuditLogConfig,
    ResourceKind.DEDICATED_AUDIT_LOG_FILTER_RULE: AuditLogFilterRuleConfig,
    ResourceKind.SERVERLESS_CLUSTER: ServerlessClusterConfig,
    ResourceKind.SERVERLESS_BRANCH: ServerlessBranchConfig,
    ResourceKind.SERVERLESS_EXPORT: ServerlessExportConfig,
}


# =============================================================================
# PLAN MODELS
# =============================================================================


class FieldChange(BaseModel):
    """One field that differs between observed and desired.

    Paths are dotted; collection elements are addressed by identity key,
    e.g. ``tidb_node_setting.public_endpoint_setting.ip_access_list[10.0.0.0/8].description``.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    old: Any = None
    new: Any = None
    kind: ChangeKind = ChangeKind.MODIFY

    @property
    def top_level(self) -> str:
        return self.path.split(".", 1)[0].split("[", 1)[0]


class PatchPlan(BaseModel):
    """Validated minimal partial update.

    ``payload`` sends list-valued collections and opaque maps whole, as the
    desired value. Only ``changes`` is minimal per element.
    """

    changes: list[FieldChange] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    touched_fields: list[str] = Field(default_factory=list)
    update_mask: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.changes


# =============================================================================
# LIFECYCLE RESULTS
# =============================================================================


class LifecycleResult(BaseModel):
    """Outcome of a create, update or delete."""

    kind: ResourceKind
    ref: dict[str, str]
    state: LifecycleState
    remote_state: Optional[str] = None
    snapshot: Optional[dict[str, Any]] = None
    plan: Optional[PatchPlan] = None
    message: str = ""
