"""Remote API client over the Azure Resource Manager generic resources API.

One ArmResourceClient serves one resource type within one resource group.
Long-running ARM calls return LROPollers; each poller is kept in a
registry and exposed to the core as an OperationHandle, so the Waiter
drives completion instead of blocking on `poller.result()`.

PAYLOAD MAPPING:
    request "name"       -> last segment of the resource id
    request "location"   -> GenericResource.location
    request "labels"     -> GenericResource.tags
    everything else      -> GenericResource.properties

Remote objects are flattened the other way round, with "id" and
"selfLink" both set to the ARM resource id.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any

from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError
from azure.core.polling import LROPoller
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resource.resources.models import GenericResource

from .config import DEFAULT_API_VERSION
from .errors import NotFoundError, TransportError, ValidationError
from .operations import OperationErrorDetail, OperationHandle, OperationStatus
from .resolver import extract_name

logger = logging.getLogger(__name__)

# Request keys mapped onto GenericResource attributes instead of properties
ENVELOPE_KEYS = frozenset({"name", "location", "labels"})


class ArmResourceClient:
    """Generic-resources client for one ARM resource type."""

    def __init__(
        self,
        client: ResourceManagementClient,
        subscription_id: str,
        resource_group: str,
        resource_type: str,
        *,
        api_version: str = DEFAULT_API_VERSION,
        parent_field: str | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            client: Azure ResourceManagementClient.
            subscription_id: Subscription holding the resources.
            resource_group: Resource group holding the resources.
            resource_type: Provider namespace and type, e.g.
                "Microsoft.ContainerService/managedClusters". Child types
                add their segment: ".../managedClusters/agentPools".
            api_version: API version used for every call.
            parent_field: Request field naming the parent resource, for
                child types.
        """
        if parent_field is not None and resource_type.count("/") < 2:
            raise ValueError(f"{resource_type} is not a child resource type")

        self._client = client
        self._scope = f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
        self._resource_type = resource_type
        self._api_version = api_version
        self._parent_field = parent_field

        self._pollers: dict[str, LROPoller[Any]] = {}
        self._lock = threading.Lock()

    def resource_id(self, name: str, parent: str | None = None) -> str:
        """Build the ARM id of a resource of this type."""
        if self._parent_field is None:
            return f"{self._scope}/providers/{self._resource_type}/{name}"

        if not parent:
            raise ValidationError(f"{self._resource_type} needs '{self._parent_field}'")
        parent_type, child_segment = self._resource_type.rsplit("/", 1)
        if parent.startswith("/"):
            parent_id = parent.rstrip("/")
        else:
            parent_id = f"{self._scope}/providers/{parent_type}/{extract_name(parent)}"
        return f"{parent_id}/{child_segment}/{name}"

    # -------------------------------------------------------------------------
    # RemoteApiClient
    # -------------------------------------------------------------------------

    def get(self, remote_id: str) -> dict[str, Any] | None:
        try:
            resource = self._client.resources.get_by_id(
                resource_id=remote_id,
                api_version=self._api_version,
            )
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise _transport_error(f"Failed to read {remote_id}", e) from e
        return self._flatten(resource)

    def create(self, request: dict[str, Any]) -> OperationHandle:
        name = request.get("name")
        if not name:
            raise ValidationError(f"Create request for {self._resource_type} has no name")

        parent = request.get(self._parent_field) if self._parent_field else None
        remote_id = self.resource_id(name, parent)

        try:
            poller = self._client.resources.begin_create_or_update_by_id(
                resource_id=remote_id,
                api_version=self._api_version,
                parameters=self._envelope(request),
            )
        except AzureError as e:
            raise _transport_error(f"Failed to create {remote_id}", e) from e
        return self._track("create", remote_id, poller)

    def update(
        self,
        remote_id: str,
        request: dict[str, Any],
        *,
        action: str | None = None,
    ) -> OperationHandle:
        # ARM has no dedicated endpoints; each action becomes its own PATCH
        verb = action or "update"
        try:
            poller = self._client.resources.begin_update_by_id(
                resource_id=remote_id,
                api_version=self._api_version,
                parameters=self._envelope(request),
            )
        except ResourceNotFoundError as e:
            raise NotFoundError(f"Resource {remote_id} not found", remote_id) from e
        except AzureError as e:
            raise _transport_error(f"Failed to {verb} {remote_id}", e) from e
        return self._track(verb, remote_id, poller)

    def delete(self, remote_id: str) -> OperationHandle:
        try:
            poller = self._client.resources.begin_delete_by_id(
                resource_id=remote_id,
                api_version=self._api_version,
            )
        except ResourceNotFoundError as e:
            raise NotFoundError(f"Resource {remote_id} not found", remote_id) from e
        except AzureError as e:
            raise _transport_error(f"Failed to delete {remote_id}", e) from e
        return self._track("delete", remote_id, poller)

    def get_operation(self, handle: OperationHandle) -> OperationHandle:
        """Report the current status of a tracked poller.

        Raises:
            NotFoundError: If the poller is unknown, or the operation failed
                because its target does not exist.
            TransportError: If the status could not be retrieved.
        """
        with self._lock:
            poller = self._pollers.get(handle.name)
        if poller is None:
            raise NotFoundError(f"Unknown operation {handle.name}", handle.target_id)

        if not poller.done():
            return handle.advance(OperationStatus.RUNNING)

        with self._lock:
            self._pollers.pop(handle.name, None)

        try:
            poller.result()
        except ResourceNotFoundError as e:
            raise NotFoundError(
                f"Target of operation {handle.name} not found", handle.target_id
            ) from e
        except HttpResponseError as e:
            return handle.advance(OperationStatus.DONE, _error_details(e))
        except AzureError as e:
            raise _transport_error(f"Failed to poll operation {handle.name}", e) from e
        return handle.advance(OperationStatus.DONE)

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    @property
    def pending_operations(self) -> list[str]:
        with self._lock:
            return sorted(self._pollers)

    def _track(self, verb: str, remote_id: str, poller: LROPoller[Any]) -> OperationHandle:
        name = f"{verb}-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._pollers[name] = poller
        logger.info(
            f"Submitted {verb} for {remote_id}",
            extra={"operation": name, "remote_id": remote_id, "api_version": self._api_version},
        )
        return OperationHandle(name=name, target_id=remote_id, status=OperationStatus.PENDING)

    def _envelope(self, request: dict[str, Any]) -> GenericResource:
        properties = {
            key: value
            for key, value in request.items()
            if key not in ENVELOPE_KEYS and key != self._parent_field
        }
        return GenericResource(
            location=request.get("location"),
            tags=request.get("labels"),
            properties=properties or None,
        )

    def _flatten(self, resource: GenericResource) -> dict[str, Any]:
        remote: dict[str, Any] = dict(resource.properties or {})
        remote["id"] = resource.id
        remote["selfLink"] = resource.id
        remote["name"] = resource.name
        if resource.location is not None:
            remote["location"] = resource.location
        if resource.tags is not None:
            remote["labels"] = dict(resource.tags)
        if self._parent_field and resource.id:
            # .../parentType/parentName/childSegment/name
            remote[self._parent_field] = resource.id.rsplit("/", 2)[0]
        return remote


def _error_details(error: HttpResponseError) -> list[OperationErrorDetail]:
    odata = error.error
    if odata is None:
        code = str(error.status_code) if error.status_code is not None else ""
        return [OperationErrorDetail(code=code, message=error.message or str(error))]

    details = [OperationErrorDetail(code=odata.code or "", message=odata.message or "")]
    for detail in odata.details or []:
        details.append(OperationErrorDetail(code=detail.code or "", message=detail.message or ""))
    return details


def _transport_error(message: str, error: AzureError) -> TransportError:
    if isinstance(error, HttpResponseError):
        error_code = error.error.code if error.error else None
        logger.error(
            f"{message}: {error}",
            extra={"status_code": error.status_code, "error_code": error_code},
        )
    else:
        logger.error(f"{message}: {error}", extra={"error_type": type(error).__name__})
    return TransportError(f"{message}: {error}", error)
