"""Mock cloud object store and per-kind API clients.

Provides in-memory state with scripted long-running operations. Effects
of a create, update or delete are applied when its operation reaches a
successful terminal status, the way a real remote API behaves.
"""

from __future__ import annotations

import copy
import itertools
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from provider.errors import NotFoundError
from provider.operations import OperationErrorDetail, OperationHandle, OperationStatus


@dataclass
class RecordedCall:
    """One call made against the mock API."""

    method: str
    kind: str
    remote_id: str | None = None
    request: dict[str, Any] | None = None
    action: str | None = None


@dataclass
class ScriptedOperation:
    """Status sequence returned by successive polls of one operation.

    The last status is repeated once the sequence is exhausted. A DONE
    status with errors is a terminal failure.
    """

    statuses: list[OperationStatus] = field(default_factory=lambda: [OperationStatus.DONE])
    errors: list[OperationErrorDetail] = field(default_factory=list)
    not_found_on_poll: bool = False


@dataclass
class _PendingOperation:
    name: str
    statuses: deque[OperationStatus]
    errors: list[OperationErrorDetail]
    effect: Callable[[], None]
    not_found_on_poll: bool = False
    polls: int = 0


class MockCloudState:
    """In-memory remote object store shared by every mock client.

    All operations are synchronous since this is test code.
    """

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[RecordedCall] = []
        self._scripts: dict[str, deque[ScriptedOperation]] = {}
        self._failures: dict[str, deque[Exception]] = {}
        self._operations: dict[str, _PendingOperation] = {}
        self._ghosts: dict[str, tuple[dict[str, Any], int]] = {}
        self._counter = itertools.count(1)

    def script(
        self,
        method: str,
        statuses: list[OperationStatus] | None = None,
        errors: list[OperationErrorDetail] | None = None,
        *,
        not_found_on_poll: bool = False,
    ) -> None:
        """Script the operation returned by the next call to `method`."""
        self._scripts.setdefault(method, deque()).append(
            ScriptedOperation(
                statuses=list(statuses or [OperationStatus.DONE]),
                errors=list(errors or []),
                not_found_on_poll=not_found_on_poll,
            )
        )

    def fail_next(self, method: str, error: Exception) -> None:
        """Make the next call to `method` raise `error`."""
        self._failures.setdefault(method, deque()).append(error)

    def put(self, remote_id: str, remote: dict[str, Any]) -> None:
        """Pre-populate an object."""
        self.objects[remote_id] = {**copy.deepcopy(remote), "id": remote_id}

    def calls_to(self, method: str, kind: str | None = None) -> list[RecordedCall]:
        return [
            c for c in self.calls if c.method == method and (kind is None or c.kind == kind)
        ]

    def operation_polls(self, name: str) -> int:
        operation = self._operations.get(name)
        return operation.polls if operation else 0

    @property
    def mutating_calls(self) -> list[RecordedCall]:
        return [c for c in self.calls if c.method in ("create", "update", "delete")]

    # Internal helpers used by MockCloudClient

    def _raise_injected(self, method: str) -> None:
        pending = self._failures.get(method)
        if pending:
            raise pending.popleft()

    def _start_operation(
        self,
        method: str,
        effect: Callable[[], None],
        errors: list[OperationErrorDetail] | None = None,
    ) -> _PendingOperation:
        scripts = self._scripts.get(method)
        script = scripts.popleft() if scripts else ScriptedOperation()
        operation = _PendingOperation(
            name=f"operation-{method}-{next(self._counter)}",
            statuses=deque(script.statuses),
            errors=list(errors or script.errors),
            effect=effect,
            not_found_on_poll=script.not_found_on_poll,
        )
        self._operations[operation.name] = operation
        return operation

    def _bury(self, remote_id: str, linger_gets: int) -> None:
        removed = self.objects.pop(remote_id, None)
        if removed is not None and linger_gets > 0:
            self._ghosts[remote_id] = (removed, linger_gets)

    def _read(self, remote_id: str) -> dict[str, Any] | None:
        ghost = self._ghosts.get(remote_id)
        if ghost is not None:
            remote, remaining = ghost
            if remaining <= 1:
                del self._ghosts[remote_id]
            else:
                self._ghosts[remote_id] = (remote, remaining - 1)
            return copy.deepcopy(remote)
        remote = self.objects.get(remote_id)
        return copy.deepcopy(remote) if remote is not None else None


class MockCloudClient:
    """Remote API client for one resource kind over a MockCloudState."""

    def __init__(
        self,
        state: MockCloudState,
        kind: str,
        *,
        synchronous_create: bool = False,
        delete_returns_handle: bool = True,
        linger_gets: int = 0,
        versioned: bool = False,
        outputs: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            state: Shared object store.
            kind: Resource kind served by this client.
            synchronous_create: Return the created object instead of an operation.
            delete_returns_handle: False makes deletes return None; the
                object disappears without an operation to poll.
            linger_gets: Number of reads that still see a deleted object.
            versioned: Keep a settingsVersion counter and reject stale updates.
            outputs: Server-managed fields added to every created object.
        """
        self.state = state
        self.kind = kind
        self.synchronous_create = synchronous_create
        self.delete_returns_handle = delete_returns_handle
        self.linger_gets = linger_gets
        self.versioned = versioned
        self.outputs = dict(outputs or {})

    def remote_id_for(self, name: str) -> str:
        return f"projects/test/{self.kind}s/{name}"

    def get(self, remote_id: str) -> dict[str, Any] | None:
        self.state.calls.append(RecordedCall("get", self.kind, remote_id))
        self.state._raise_injected("get")
        return self.state._read(remote_id)

    def create(self, request: dict[str, Any]) -> OperationHandle | dict[str, Any]:
        self.state.calls.append(RecordedCall("create", self.kind, request=copy.deepcopy(request)))
        self.state._raise_injected("create")

        name = request.get("name") or request.get("roleId")
        remote_id = self.remote_id_for(name)
        remote = {
            **copy.deepcopy(request),
            **self.outputs,
            "id": remote_id,
            "selfLink": f"https://cloud.test/{remote_id}",
        }
        if self.versioned:
            remote["settingsVersion"] = 1

        def effect() -> None:
            self.state.objects[remote_id] = remote

        if self.synchronous_create:
            effect()
            return copy.deepcopy(remote)

        operation = self.state._start_operation("create", effect)
        return OperationHandle(name=operation.name, target_id=remote_id)

    def update(
        self, remote_id: str, request: dict[str, Any], *, action: str | None = None
    ) -> OperationHandle:
        self.state.calls.append(
            RecordedCall("update", self.kind, remote_id, copy.deepcopy(request), action)
        )
        self.state._raise_injected("update")

        current = self.state.objects.get(remote_id)
        if current is None:
            raise NotFoundError(f"{remote_id} not found", remote_id)

        errors = None
        if self.versioned and request.get("settingsVersion") != current.get("settingsVersion"):
            errors = [
                OperationErrorDetail(
                    code="staleSettingsVersion",
                    message=(
                        f"expected settingsVersion {current.get('settingsVersion')}, "
                        f"got {request.get('settingsVersion')}"
                    ),
                )
            ]

        def effect() -> None:
            target = self.state.objects[remote_id]
            target.update(
                {k: copy.deepcopy(v) for k, v in request.items() if k != "settingsVersion"}
            )
            if action == "enable":
                target["enabled"] = True
            elif action == "disable":
                target["enabled"] = False
            if self.versioned:
                target["settingsVersion"] = target.get("settingsVersion", 0) + 1

        operation = self.state._start_operation("update", effect, errors)
        return OperationHandle(name=operation.name, target_id=remote_id)

    def delete(self, remote_id: str) -> OperationHandle | None:
        self.state.calls.append(RecordedCall("delete", self.kind, remote_id))
        self.state._raise_injected("delete")

        if remote_id not in self.state.objects:
            raise NotFoundError(f"{remote_id} not found", remote_id)

        def effect() -> None:
            self.state._bury(remote_id, self.linger_gets)

        if not self.delete_returns_handle:
            effect()
            return None

        operation = self.state._start_operation("delete", effect)
        return OperationHandle(name=operation.name, target_id=remote_id)

    def get_operation(self, handle: OperationHandle) -> OperationHandle:
        self.state.calls.append(RecordedCall("get_operation", self.kind, handle.target_id))
        self.state._raise_injected("get_operation")

        operation = self.state._operations.get(handle.name)
        if operation is None:
            raise NotFoundError(f"Unknown operation {handle.name}")
        operation.polls += 1

        if operation.not_found_on_poll:
            operation.effect()
            raise NotFoundError(f"Target of {handle.name} not found", handle.target_id)

        status = (
            operation.statuses.popleft()
            if len(operation.statuses) > 1
            else operation.statuses[0]
        )
        if status is not OperationStatus.DONE:
            return handle.advance(status)
        if operation.errors:
            return handle.advance(OperationStatus.DONE, operation.errors)
        operation.effect()
        return handle.advance(OperationStatus.DONE)
