"""Capability interfaces and their client-backed implementations.

A resource type is described by the capabilities it actually supports,
not by a base class. A binding composes up to four of them:

    Refreshable  - read the remote object back into a declared tree
    Creatable    - submit a create request built from the full tree
    Updatable    - plan update steps scoped to a change set
    Deletable    - submit a delete request

A binding without a capability cannot perform that operation; the
orchestrator reports UnsupportedOperationError instead of silently
doing nothing.

UPDATE GROUPS:
Some remote APIs expose dedicated endpoints for certain fields (e.g. a
"set labels" call) alongside a general patch endpoint. Changed fields are
partitioned into groups, in declared group order, and each non-empty
group becomes one UpdateStep. Steps are lazy: the request is built only
when the step is submitted, after the previous step has finished, so it
can include server-side state (a settings version counter) that the
previous step changed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, runtime_checkable

from .changeset import ChangeSet
from .config import OperationTimeouts
from .converter import ModelConverter
from .errors import NotFoundError, TransportError
from .models import ConfigNode
from .operations import OperationHandle

logger = logging.getLogger(__name__)

RemoteObject = dict[str, Any]
RemoteRequest = dict[str, Any]

GENERAL_GROUP = "patch"


# =============================================================================
# Collaborator protocols
# =============================================================================


class RemoteApiClient(Protocol):
    """Remote API for one resource type.

    `get` returns None when the object does not exist. Every other call
    raises TransportError when the request itself could not be completed.
    """

    def get(self, remote_id: str) -> RemoteObject | None: ...

    def create(self, request: RemoteRequest) -> OperationHandle | RemoteObject: ...

    def update(
        self, remote_id: str, request: RemoteRequest, *, action: str | None = None
    ) -> OperationHandle: ...

    def delete(self, remote_id: str) -> OperationHandle | None: ...

    def get_operation(self, handle: OperationHandle) -> OperationHandle: ...


class WireConverter(Protocol):
    """Converts between declared trees and remote payloads without I/O."""

    def to_remote_request(
        self, config: ConfigNode, fields: Any = None
    ) -> RemoteRequest: ...

    def from_remote_object(self, remote: RemoteObject) -> ConfigNode: ...


# =============================================================================
# Capabilities
# =============================================================================


@dataclass(frozen=True)
class CreateSubmission:
    """Result of submitting a create request.

    Attributes:
        remote_id: Identifier assigned to the new object. None only when an
                   operation is pending that reports its target on completion.
        operation: Handle to wait on, or None if the create was synchronous.
    """

    remote_id: str | None
    operation: OperationHandle | None = None


@dataclass(frozen=True)
class UpdateStep:
    """One remote call of a multi-step update.

    Attributes:
        group: Name of the update group the step belongs to.
        fields: Changed field names covered by this step.
        submit: Builds the request and sends it. Returns the operation to
                wait on, or None if the call completed synchronously.
    """

    group: str
    fields: tuple[str, ...]
    submit: Callable[[], OperationHandle | None]


@dataclass(frozen=True)
class UpdateGroup:
    """Fields that must be sent together through one endpoint.

    Attributes:
        name: Group name, used in logs and step descriptions.
        fields: Top-level field names routed to this group.
        action: Dedicated endpoint passed to the client, None for the
                general patch endpoint. A callable picks the endpoint from
                the declared tree (e.g. enable vs disable).
        prepare: Adds server-side state to the request. When set, the
                 current remote object is re-read right before the step
                 is submitted and passed in.
    """

    name: str
    fields: frozenset[str]
    action: str | Callable[[ConfigNode], str] | None = None
    prepare: Callable[[RemoteRequest, RemoteObject], RemoteRequest] | None = None


@runtime_checkable
class Refreshable(Protocol):
    def read(self, remote_id: str) -> ConfigNode | None:
        """Fetch the remote object as a declared tree, None if absent."""
        ...


@runtime_checkable
class Creatable(Protocol):
    def submit_create(self, config: ConfigNode) -> CreateSubmission: ...


@runtime_checkable
class Updatable(Protocol):
    def plan_update(
        self, remote_id: str, config: ConfigNode, changes: ChangeSet
    ) -> list[UpdateStep]: ...


@runtime_checkable
class Deletable(Protocol):
    def submit_delete(self, remote_id: str) -> OperationHandle | None:
        """Request deletion.

        Returns:
            Operation to wait on, or None when the object simply disappears.

        Raises:
            NotFoundError: If the object is already gone.
        """
        ...


# =============================================================================
# Client-backed implementations
# =============================================================================


class ClientRefresher:
    """Refreshable backed by a remote client."""

    def __init__(self, client: RemoteApiClient, converter: WireConverter) -> None:
        self._client = client
        self._converter = converter

    def read(self, remote_id: str) -> ConfigNode | None:
        remote = self._client.get(remote_id)
        if remote is None:
            return None
        return self._converter.from_remote_object(remote)


class ClientCreator:
    """Creatable backed by a remote client."""

    def __init__(self, client: RemoteApiClient, converter: WireConverter) -> None:
        self._client = client
        self._converter = converter

    def submit_create(self, config: ConfigNode) -> CreateSubmission:
        request = self._converter.to_remote_request(config)
        result = self._client.create(request)

        if isinstance(result, OperationHandle):
            remote_id = result.target_id
            operation = result
        else:
            remote_id = result.get("id") or result.get("selfLink")
            operation = None

        # An operation may only name its target once it finishes
        if not remote_id and operation is None:
            raise TransportError(
                f"Create of {type(config).__name__} returned no remote identifier"
            )
        return CreateSubmission(remote_id=remote_id, operation=operation)


class ClientUpdater:
    """Updatable backed by a remote client, partitioned into update groups.

    Fields not covered by any group go through the general patch endpoint,
    which runs after every dedicated group unless it is listed explicitly.
    """

    def __init__(
        self,
        client: RemoteApiClient,
        converter: WireConverter,
        groups: list[UpdateGroup] | None = None,
    ) -> None:
        self._client = client
        self._converter = converter
        self._groups = list(groups or [])

        seen: set[str] = set()
        for group in self._groups:
            overlap = seen & group.fields
            if overlap:
                raise ValueError(f"Fields {sorted(overlap)} belong to more than one update group")
            seen |= group.fields

    def plan_update(
        self, remote_id: str, config: ConfigNode, changes: ChangeSet
    ) -> list[UpdateStep]:
        """Partition a change set into ordered update steps.

        Fields without a declared value in `config` are left out: absence
        means the caller never mentioned them, so nothing is sent.
        """
        declared = [name for name in changes.names() if config.is_set(name)]
        skipped = [name for name in changes.names() if not config.is_set(name)]
        if skipped:
            logger.info(
                f"Not sending fields without a declared value: {skipped}",
                extra={"remote_id": remote_id, "skipped_fields": skipped},
            )

        routed = frozenset().union(
            *(g.fields for g in self._groups if g.name != GENERAL_GROUP)
        )
        general = frozenset(declared) - routed

        groups = [
            replace(g, fields=general) if g.name == GENERAL_GROUP else g for g in self._groups
        ]
        if not any(g.name == GENERAL_GROUP for g in groups):
            groups.append(UpdateGroup(name=GENERAL_GROUP, fields=general))

        steps = []
        for group in groups:
            fields = tuple(name for name in declared if name in group.fields)
            if fields:
                steps.append(
                    UpdateStep(
                        group=group.name,
                        fields=fields,
                        submit=self._submitter(remote_id, config, group, fields),
                    )
                )
        return steps

    def _submitter(
        self,
        remote_id: str,
        config: ConfigNode,
        group: UpdateGroup,
        fields: tuple[str, ...],
    ) -> Callable[[], OperationHandle | None]:
        def submit() -> OperationHandle | None:
            request = self._converter.to_remote_request(config, fields)
            if group.prepare is not None:
                current = self._client.get(remote_id)
                if current is None:
                    raise NotFoundError(f"Resource {remote_id} not found", remote_id)
                request = group.prepare(request, current)
            action = group.action(config) if callable(group.action) else group.action
            return self._client.update(remote_id, request, action=action)

        return submit


class ClientDeleter:
    """Deletable backed by a remote client."""

    def __init__(self, client: RemoteApiClient) -> None:
        self._client = client

    def submit_delete(self, remote_id: str) -> OperationHandle | None:
        return self._client.delete(remote_id)


# =============================================================================
# Binding
# =============================================================================


@dataclass
class ResourceBinding:
    """Everything the orchestrator needs to manage one resource kind.

    Attributes:
        kind: Resource kind.
        node_type: Root configuration node type.
        operations: Fetches operation status (usually client.get_operation).
        refresher, creator, updater, deleter: Optional capabilities.
        timeouts: Wait budgets for create, update and delete.
        delete_check_interval: Seconds between absence checks after a delete.
    """

    kind: str
    node_type: type[ConfigNode]
    operations: Callable[[OperationHandle], OperationHandle]
    refresher: Refreshable | None = None
    creator: Creatable | None = None
    updater: Updatable | None = None
    deleter: Deletable | None = None
    timeouts: OperationTimeouts | None = None
    delete_check_interval: float | None = None
    lookup_remote: Callable[[str], RemoteObject | None] | None = field(default=None, repr=False)

    @property
    def capabilities(self) -> list[str]:
        names = []
        for name, impl in (
            ("refresh", self.refresher),
            ("create", self.creator),
            ("update", self.updater),
            ("delete", self.deleter),
        ):
            if impl is not None:
                names.append(name)
        return names

    @classmethod
    def for_client(
        cls,
        kind: str,
        node_type: type[ConfigNode],
        client: RemoteApiClient,
        *,
        groups: list[UpdateGroup] | None = None,
        timeouts: OperationTimeouts | None = None,
        delete_check_interval: float | None = None,
        read_only: bool = False,
    ) -> ResourceBinding:
        """Build a binding whose capabilities all go through one client.

        Args:
            kind: Resource kind.
            node_type: Root configuration node type.
            client: Remote API client for this resource type.
            groups: Update groups for dedicated endpoints.
            timeouts: Wait budgets; None uses the session defaults.
            delete_check_interval: Seconds between absence checks after a delete.
            read_only: Only bind the Refreshable capability.
        """
        converter = ModelConverter(node_type)
        binding = cls(
            kind=kind,
            node_type=node_type,
            operations=client.get_operation,
            refresher=ClientRefresher(client, converter),
            timeouts=timeouts,
            delete_check_interval=delete_check_interval,
            lookup_remote=client.get,
        )
        if not read_only:
            binding.creator = ClientCreator(client, converter)
            binding.updater = ClientUpdater(client, converter, groups)
            binding.deleter = ClientDeleter(client)
        return binding
