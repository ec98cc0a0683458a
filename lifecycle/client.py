"""Control-plane API client."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from lifecycle.errors import ControlPlaneError, ResourceNotFound
from lifecycle.models import PatchPlan, ResourceKind
from lifecycle.settings import Settings, get_settings

logger = logging.getLogger(__name__)

LEGACY = "legacy"
DEDICATED = "dedicated"
SERVERLESS = "serverless"

# User-defined maps whose keys are sent as-is
_OPAQUE_KEYS = frozenset({"labels", "annotations"})


@dataclass(frozen=True)
class Endpoint:
    """Where a resource kind lives on the API and how its payloads look.

    collection: path used to create; item: path used to get, patch and delete.
    id_field: response field holding the new resource id, stored under ref_key.
    envelope: partial updates are wrapped as ``{envelope: payload, "updateMask": ...}``.
    """

    api: str
    collection: str
    item: str
    ref_key: str
    id_field: Optional[str] = None
    camel: bool = True
    envelope: Optional[str] = None
    deletable: bool = True


ENDPOINTS: dict[ResourceKind, Endpoint] = {
    ResourceKind.CLUSTER: Endpoint(
        api=LEGACY,
        collection="/api/v1beta/projects/{project_id}/clusters",
        item="/api/v1beta/projects/{project_id}/clusters/{cluster_id}",
        ref_key="cluster_id",
        id_field="id",
        camel=False,
    ),
    ResourceKind.DEDICATED_CLUSTER: Endpoint(
        api=DEDICATED,
        collection="/v1beta1/clusters",
        item="/v1beta1/clusters/{cluster_id}",
        ref_key="cluster_id",
        id_field="clusterId",
    ),
    ResourceKind.DEDICATED_NODE_GROUP: Endpoint(
        api=DEDICATED,
        collection="/v1beta1/clusters/{cluster_id}/tidbNodeGroups",
        item="/v1beta1/clusters/{cluster_id}/tidbNodeGroups/{node_group_id}",
        ref_key="node_group_id",
        id_field="tidbNodeGroupId",
    ),
    ResourceKind.DEDICATED_PRIVATE_ENDPOINT_CONNECTION: Endpoint(
        api=DEDICATED,
        collection="/v1beta1/clusters/{cluster_id}/tidbNodeGroups/{node_group_id}/privateEndpointConnections",
        item=(
            "/v1beta1/clusters/{cluster_id}/tidbNodeGroups/{node_group_id}"
            "/privateEndpointConnections/{private_endpoint_connection_id}"
        ),
        ref_key="private_endpoint_connection_id",
        id_field="privateEndpointConnectionId",
    ),
    ResourceKind.DEDICATED_VPC_PEERING: Endpoint(
        api=DEDICATED,
        collection="/v1beta1/vpcPeerings",
        item="/v1beta1/vpcPeerings/{vpc_peering_id}",
        ref_key="vpc_peering_id",
        id_field="vpcPeeringId",
    ),
    ResourceKind.DEDICATED_NETWORK_CONTAINER: Endpoint(
        api=DEDICATED,
        collection="/v1beta1/networkContainers",
        item="/v1beta1/networkContainers/{network_container_id}",
        ref_key="network_container_id",
        id_field="networkContainerId",
    ),
    ResourceKind.DEDICATED_AUDIT_LOG_CONFIG: Endpoint(
        api=DEDICATED,
        collection="/v1beta1/clusters/{cluster_id}/auditLogConfig",
        item="/v1beta1/clusters/{cluster_id}/auditLogConfig",
        ref_key="cluster_id",
        deletable=False,
    ),
    ResourceKind.DEDICATED_AUDIT_LOG_FILTER_RULE: Endpoint(
        api=DEDICATED,
        collection="/v1beta1/clusters/{cluster_id}/auditLogFilterRules",
        item="/v1beta1/clusters/{cluster_id}/auditLogFilterRules/{audit_log_filter_rule_id}",
        ref_key="audit_log_filter_rule_id",
        id_field="auditLogFilterRuleId",
    ),
    ResourceKind.SERVERLESS_CLUSTER: Endpoint(
        api=SERVERLESS,
        collection="/v1beta1/clusters",
        item="/v1beta1/clusters/{cluster_id}",
        ref_key="cluster_id",
        id_field="clusterId",
        envelope="cluster",
    ),
    ResourceKind.SERVERLESS_BRANCH: Endpoint(
        api=SERVERLESS,
        collection="/v1beta1/clusters/{cluster_id}/branches",
        item="/v1beta1/clusters/{cluster_id}/branches/{branch_id}",
        ref_key="branch_id",
        id_field="branchId",
    ),
    ResourceKind.SERVERLESS_EXPORT: Endpoint(
        api=SERVERLESS,
        collection="/v1beta1/clusters/{cluster_id}/exports",
        item="/v1beta1/clusters/{cluster_id}/exports/{export_id}",
        ref_key="export_id",
        id_field="exportId",
    ),
}


def to_wire(value: Any, camel: bool = True) -> Any:
    """Convert snake_case keys to the API's camelCase, leaving user maps alone."""
    if isinstance(value, dict):
        return {
            (to_camel(k) if camel else k): (v if k in _OPAQUE_KEYS else to_wire(v, camel))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [to_wire(v, camel) for v in value]
    return value


class ControlPlaneClient:
    """Client for the dedicated, serverless and legacy cluster APIs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.base_urls = {
            LEGACY: settings.api_url.rstrip("/"),
            DEDICATED: settings.dedicated_api_url.rstrip("/"),
            SERVERLESS: settings.serverless_api_url.rstrip("/"),
        }
        self.auth = httpx.DigestAuth(settings.public_key, settings.private_key)
        self.timeout = settings.request_timeout
        self.transport = transport

        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def url(self, kind: ResourceKind, ref: dict[str, str], item: bool = True) -> str:
        endpoint = ENDPOINTS[kind]
        template = endpoint.item if item else endpoint.collection
        try:
            path = template.format(**ref)
        except KeyError as e:
            raise ValueError(f"{kind.value} reference is missing {e.args[0]!r}") from None
        return f"{self.base_urls[endpoint.api]}{path}"

    async def get(self, kind: ResourceKind, ref: dict[str, str]) -> dict[str, Any]:
        """Read a resource."""
        return await self._request("GET", self.url(kind, ref))

    async def create(
        self,
        kind: ResourceKind,
        ref: dict[str, str],
        config: BaseModel | dict[str, Any],
    ) -> dict[str, Any]:
        """Create a resource and return the API's response."""
        endpoint = ENDPOINTS[kind]
        if isinstance(config, BaseModel):
            body = config.model_dump(mode="json", by_alias=endpoint.camel, exclude_none=True)
        else:
            body = to_wire(config, endpoint.camel)
        return await self._request("POST", self.url(kind, ref, item=False), body)

    async def patch(self, kind: ResourceKind, ref: dict[str, str], plan: PatchPlan) -> dict[str, Any]:
        """Send a planned partial update."""
        endpoint = ENDPOINTS[kind]
        body = to_wire(plan.payload, endpoint.camel)
        if endpoint.envelope:
            body = {endpoint.envelope: body, "updateMask": ",".join(plan.update_mask)}
        return await self._request("PATCH", self.url(kind, ref), body)

    async def delete(self, kind: ResourceKind, ref: dict[str, str]) -> dict[str, Any]:
        """Delete a resource."""
        if not ENDPOINTS[kind].deletable:
            raise ControlPlaneError(f"delete is not supported for {kind.value}")
        return await self._request("DELETE", self.url(kind, ref))

    async def _request(
        self,
        method: str,
        url: str,
        body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        logger.debug(f"{method} {url}")
        async with httpx.AsyncClient(auth=self.auth, transport=self.transport) as client:
            response = await client.request(
                method,
                url,
                headers=self.headers,
                json=body,
                timeout=self.timeout,
            )

        if response.status_code == 404:
            raise ResourceNotFound(
                f"{method} {url}: not found",
                status_code=404,
                detail=response.text,
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ControlPlaneError(
                f"{method} {url} failed with HTTP {response.status_code}",
                status_code=response.status_code,
                detail=response.text,
            ) from e

        if not response.content:
            return {}
        return response.json()


def get_control_plane_client() -> ControlPlaneClient:
    """Get control-plane client instance."""
    return ControlPlaneClient()
