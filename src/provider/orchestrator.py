"""Resource lifecycle orchestration.

The orchestrator drives one resource instance through its lifecycle
using the capabilities its binding provides:

    UNBOUND --create--> BOUND --delete--> DELETED
                          |
                        update

RECONCILING is entered for the duration of a create, update or delete
and left on completion. A failed operation puts the instance back where
it started, with the error on the result; there is no silent partial state.

Lifecycle operations never raise for provider errors. They return a
ReconcileResult holding the original exception and its FailureKind.
Nothing is retried here: transport retries belong to the client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from .capabilities import ResourceBinding
from .changeset import ChangeSet, compute_changes
from .errors import (
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    ProviderError,
    RemoteOperationError,
    ReplacementRequiredError,
    TransportError,
    UnsupportedOperationError,
    UpdateStepError,
    ValidationError,
    WaitCancelledError,
)
from .models import ConfigNode
from .resolver import ResourceHandle, SubresourceResolver
from .waiter import Waiter, call_blocking

logger = logging.getLogger(__name__)


class LifecycleState(StrEnum):
    """Lifecycle states of a resource instance."""

    UNBOUND = "unbound"
    BOUND = "bound"
    RECONCILING = "reconciling"
    DELETED = "deleted"


class FailureKind(StrEnum):
    """Classification of a failed lifecycle operation."""

    VALIDATION = "validation"
    TRANSPORT = "transport"
    REMOTE_OPERATION = "remote_operation"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"
    INVALID_STATE = "invalid_state"


class ResourceInstance:
    """One declared resource and its binding to a remote object.

    The remote identifier is assigned once, at creation, and never changes.
    """

    def __init__(
        self,
        kind: str,
        config: ConfigNode,
        remote_id: str | None = None,
    ) -> None:
        self.kind = kind
        self.config = config
        self._remote_id = remote_id
        self.state = LifecycleState.BOUND if remote_id else LifecycleState.UNBOUND

    @property
    def remote_id(self) -> str | None:
        return self._remote_id

    def bind(self, remote_id: str) -> None:
        """Record the identifier assigned by the remote system.

        Raises:
            InvalidStateError: If the instance is already bound to another id.
        """
        if self._remote_id is not None and self._remote_id != remote_id:
            raise InvalidStateError(
                f"{self.kind} is bound to {self._remote_id}, cannot rebind to {remote_id}"
            )
        self._remote_id = remote_id

    def __repr__(self) -> str:
        return f"ResourceInstance({self.kind}, {self._remote_id or '<unbound>'}, {self.state})"


@dataclass
class ReconcileResult:
    """Result of one lifecycle operation on one instance.

    Attributes:
        operation: "create", "update" or "delete".
        kind: Resource kind.
        remote_id: Remote identifier. Set on a failed create when the remote
                   side assigned one, so a retry can find the orphan.
        changes: Changed field names (update).
        applied_fields: Fields applied by completed update steps.
        failed_fields: Fields of the update step that failed.
        skipped_fields: Changed fields with no declared value, not sent.
        config: Refreshed declared tree after success.
        error: Original exception on failure.
        failure_kind: Classification of `error`.
    """

    operation: str
    kind: str
    remote_id: str | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    changes: list[str] = field(default_factory=list)
    applied_fields: list[str] = field(default_factory=list)
    failed_fields: list[str] = field(default_factory=list)
    skipped_fields: list[str] = field(default_factory=list)
    config: ConfigNode | None = None
    error: Exception | None = None
    failure_kind: FailureKind | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        if self.error is None:
            return f"{self.operation} {self.kind} succeeded"
        return f"{self.operation} {self.kind} failed ({self.failure_kind}): {self.error}"

    def raise_for_error(self) -> None:
        """Re-raise the original exception of a failed operation."""
        if self.error is not None:
            raise self.error


def classify_error(error: BaseException) -> FailureKind:
    """Map an exception to its failure kind.

    Anything outside the provider taxonomy is reported as a transport
    failure, unchanged.
    """
    match error:
        case UpdateStepError():
            return classify_error(error.error)
        case ValidationError():
            return FailureKind.VALIDATION
        case RemoteOperationError():
            return FailureKind.REMOTE_OPERATION
        case OperationTimeoutError():
            return FailureKind.TIMEOUT
        case WaitCancelledError():
            return FailureKind.CANCELLED
        case NotFoundError():
            return FailureKind.NOT_FOUND
        case UnsupportedOperationError():
            return FailureKind.UNSUPPORTED
        case InvalidStateError():
            return FailureKind.INVALID_STATE
        case _:
            return FailureKind.TRANSPORT


class ResourceOrchestrator:
    """Generic lifecycle driver, parameterized by a resource binding.

    Update steps for one instance run strictly one after another, each
    waited to a terminal status before the next request is built.
    """

    def __init__(
        self,
        binding: ResourceBinding,
        waiter: Waiter,
        resolver: SubresourceResolver,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            binding: Capabilities and timeouts of the managed resource kind.
            waiter: Polls remote operations; shared by the whole session.
            resolver: Session-scoped reference resolver.
        """
        self._binding = binding
        self._waiter = waiter
        self._resolver = resolver

    @property
    def binding(self) -> ResourceBinding:
        return self._binding

    # -------------------------------------------------------------------------
    # refresh
    # -------------------------------------------------------------------------

    async def refresh(self, instance: ResourceInstance) -> bool:
        """Overwrite the local tree with the remote object.

        Never mutates remote state. References that cannot be resolved are
        left unset locally instead of failing the refresh.

        Returns:
            True if the remote object exists, False if it is gone (or the
            instance was never created).

        Raises:
            UnsupportedOperationError: If the binding cannot refresh.
            TransportError: If the remote read failed.
        """
        self._check_kind(instance)
        if instance.remote_id is None or instance.state is LifecycleState.DELETED:
            return False

        refresher = self._binding.refresher
        if refresher is None:
            raise UnsupportedOperationError(f"{self._binding.kind} cannot be refreshed")

        try:
            remote = await call_blocking(refresher.read, instance.remote_id)
        except NotFoundError:
            remote = None

        if remote is None:
            logger.info(
                f"{self._binding.kind} {instance.remote_id} no longer exists",
                extra={"kind": self._binding.kind, "remote_id": instance.remote_id},
            )
            return False

        instance.config = await self._drop_unresolved(remote)
        self._register(instance)
        return True

    # -------------------------------------------------------------------------
    # create
    # -------------------------------------------------------------------------

    async def create(self, instance: ResourceInstance) -> ReconcileResult:
        """Create the remote object from the full declared tree.

        On failure the instance stays UNBOUND; any identifier the remote
        side already assigned is reported on the result.
        """
        result = ReconcileResult(operation="create", kind=self._binding.kind)

        if instance.state is not LifecycleState.UNBOUND:
            return self._fail(
                result, InvalidStateError(f"Cannot create {instance!r}: not UNBOUND")
            )
        creator = self._binding.creator
        if creator is None:
            return self._fail(
                result, UnsupportedOperationError(f"{self._binding.kind} cannot be created")
            )

        logger.info(
            f"Creating {self._binding.kind}",
            extra={"kind": self._binding.kind, "resource_name": _name_of(instance.config)},
        )

        try:
            self._check_kind(instance)
            await self._require_references(instance.config)
        except ProviderError as e:
            return self._fail(result, e)

        instance.state = LifecycleState.RECONCILING
        try:
            submission = await call_blocking(creator.submit_create, instance.config)
            result.remote_id = submission.remote_id

            if submission.operation is not None:
                finished = await self._waiter.await_completion(
                    submission.operation,
                    self._binding.operations,
                    timeout=self._timeout("create"),
                )
                result.remote_id = result.remote_id or finished.target_id
            if not result.remote_id:
                raise TransportError(
                    f"Create of {self._binding.kind} finished without a remote identifier"
                )
            remote_id = result.remote_id

            instance.bind(remote_id)
            instance.state = LifecycleState.BOUND
            self._register(instance)

            if self._binding.refresher is not None and not await self.refresh(instance):
                raise NotFoundError(
                    f"{self._binding.kind} {remote_id} vanished after create", remote_id
                )
        except Exception as e:
            if result.remote_id is None:
                result.remote_id = _target_of(e)
            return self._fail(result, e)
        finally:
            if instance.state is LifecycleState.RECONCILING:
                instance.state = LifecycleState.UNBOUND

        result.config = instance.config
        return self._succeed(result)

    # -------------------------------------------------------------------------
    # update
    # -------------------------------------------------------------------------

    async def update(
        self,
        instance: ResourceInstance,
        previous: ConfigNode | None,
        next_: ConfigNode,
    ) -> ReconcileResult:
        """Apply the fields that changed between two declared trees.

        An empty change set succeeds without any remote call. Otherwise
        one step per update group is issued, in order, and each is waited
        to completion before the next request is built. The first failing
        step stops the update; the result lists applied and failed fields.
        """
        result = ReconcileResult(
            operation="update", kind=self._binding.kind, remote_id=instance.remote_id
        )

        if instance.state is not LifecycleState.BOUND or instance.remote_id is None:
            return self._fail(
                result, InvalidStateError(f"Cannot update {instance!r}: not BOUND")
            )

        try:
            self._check_kind(instance)
            changes = compute_changes(previous, next_)
        except (TypeError, ValidationError) as e:
            error = e if isinstance(e, ValidationError) else ValidationError(str(e))
            return self._fail(result, error)

        result.changes = changes.names()
        if not changes:
            logger.debug(
                f"{self._binding.kind} {instance.remote_id} is up to date",
                extra={"kind": self._binding.kind, "remote_id": instance.remote_id},
            )
            result.config = instance.config
            return self._succeed(result)

        logger.info(
            f"Updating {self._binding.kind} {instance.remote_id}",
            extra={
                "kind": self._binding.kind,
                "remote_id": instance.remote_id,
                "changed_fields": result.changes,
            },
        )

        updater = self._binding.updater
        if updater is None:
            return self._fail(
                result, UnsupportedOperationError(f"{self._binding.kind} cannot be updated")
            )

        try:
            self._check_replacement(changes)
            await self._require_references(next_)
            steps = updater.plan_update(instance.remote_id, next_, changes)
        except ProviderError as e:
            return self._fail(result, e)

        result.skipped_fields = [name for name in result.changes if not next_.is_set(name)]

        instance.state = LifecycleState.RECONCILING
        try:
            applied: list[str] = []
            for step in steps:
                logger.info(
                    f"Update step '{step.group}' for {self._binding.kind} {instance.remote_id}",
                    extra={"step": step.group, "fields": list(step.fields)},
                )
                try:
                    operation = await call_blocking(step.submit)
                    if operation is not None:
                        await self._waiter.await_completion(
                            operation,
                            self._binding.operations,
                            timeout=self._timeout("update"),
                        )
                except Exception as e:
                    raise UpdateStepError(list(applied), list(step.fields), e) from e
                applied.extend(step.fields)
                result.applied_fields = list(applied)

            instance.config = next_
            instance.state = LifecycleState.BOUND

            if self._binding.refresher is not None and not await self.refresh(instance):
                raise NotFoundError(
                    f"{self._binding.kind} {instance.remote_id} vanished during update",
                    instance.remote_id,
                )
        except UpdateStepError as e:
            result.applied_fields = e.applied
            result.failed_fields = e.failed
            return self._fail(result, e)
        except Exception as e:
            return self._fail(result, e)
        finally:
            if instance.state is LifecycleState.RECONCILING:
                instance.state = LifecycleState.BOUND

        result.config = instance.config
        return self._succeed(result)

    # -------------------------------------------------------------------------
    # delete
    # -------------------------------------------------------------------------

    async def delete(self, instance: ResourceInstance) -> ReconcileResult:
        """Delete the remote object and confirm it is gone.

        A remote object that is already absent counts as deleted.
        """
        result = ReconcileResult(
            operation="delete", kind=self._binding.kind, remote_id=instance.remote_id
        )

        if instance.state is LifecycleState.DELETED:
            return self._succeed(result)
        if instance.state is not LifecycleState.BOUND or instance.remote_id is None:
            return self._fail(
                result, InvalidStateError(f"Cannot delete {instance!r}: not BOUND")
            )
        deleter = self._binding.deleter
        if deleter is None:
            return self._fail(
                result, UnsupportedOperationError(f"{self._binding.kind} cannot be deleted")
            )

        remote_id = instance.remote_id
        logger.info(
            f"Deleting {self._binding.kind} {remote_id}",
            extra={"kind": self._binding.kind, "remote_id": remote_id},
        )

        instance.state = LifecycleState.RECONCILING
        try:
            try:
                operation = await call_blocking(deleter.submit_delete, remote_id)
            except NotFoundError:
                logger.info(
                    f"{self._binding.kind} {remote_id} was already gone",
                    extra={"kind": self._binding.kind, "remote_id": remote_id},
                )
            else:
                if operation is not None:
                    await self._waiter.await_completion(
                        operation,
                        self._binding.operations,
                        timeout=self._timeout("delete"),
                        not_found_is_done=True,
                    )
                await self._confirm_absent(remote_id)

            instance.state = LifecycleState.DELETED
            self._resolver.forget(self._binding.kind, remote_id)
        except Exception as e:
            return self._fail(result, e)
        finally:
            if instance.state is LifecycleState.RECONCILING:
                instance.state = LifecycleState.BOUND

        return self._succeed(result)

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    async def _confirm_absent(self, remote_id: str) -> None:
        refresher = self._binding.refresher
        if refresher is None:
            return

        async def absent() -> bool:
            try:
                return await call_blocking(refresher.read, remote_id) is None
            except NotFoundError:
                return True

        await self._waiter.until(
            absent,
            description=f"{self._binding.kind} {remote_id} to be deleted",
            poll_interval=self._binding.delete_check_interval,
            timeout=self._timeout("delete"),
        )

    async def _require_references(self, config: ConfigNode) -> None:
        for _, kind, reference in config.references():
            await call_blocking(self._resolver.require, kind, reference)

    async def _drop_unresolved(self, config: ConfigNode) -> ConfigNode:
        dropped = set()
        for name, kind, reference in config.references():
            try:
                handle = await call_blocking(self._resolver.resolve, kind, reference)
            except ProviderError as e:
                logger.warning(
                    f"Lookup of {kind} '{reference}' failed: {e}",
                    extra={"field": name, "reference": reference},
                )
                handle = None
            if handle is None:
                logger.warning(
                    f"Leaving '{name}' unset: {kind} '{reference}' could not be resolved",
                    extra={"field": name, "kind": kind, "reference": reference},
                )
                dropped.add(name)

        if not dropped:
            return config
        values = {name: getattr(config, name, None) for name in type(config).model_fields}
        for name in dropped:
            values[name] = None
        return type(config).model_construct(
            _fields_set=set(config.model_fields_set) - dropped, **values
        )

    def _check_replacement(self, changes: ChangeSet) -> None:
        create_only = [
            name for name in changes.names() if name in self._binding.node_type.create_only_fields
        ]
        if create_only:
            raise ReplacementRequiredError(create_only)

    def _check_kind(self, instance: ResourceInstance) -> None:
        if instance.kind != self._binding.kind:
            raise ValidationError(
                f"Instance of kind {instance.kind} given to the {self._binding.kind} orchestrator"
            )
        if not isinstance(instance.config, self._binding.node_type):
            raise ValidationError(
                f"Expected {self._binding.node_type.__name__}, "
                f"got {type(instance.config).__name__}"
            )

    def _register(self, instance: ResourceInstance) -> None:
        self._resolver.register(
            ResourceHandle(
                kind=self._binding.kind,
                remote_id=instance.remote_id,
                self_link=getattr(instance.config, "self_link", None),
            )
        )

    def _timeout(self, operation: str) -> float | None:
        timeouts = self._binding.timeouts
        if timeouts is None:
            return None
        return getattr(timeouts, operation)

    def _succeed(self, result: ReconcileResult) -> ReconcileResult:
        result.end_time = datetime.now(UTC)
        logger.info(
            f"{result.operation} {result.kind} succeeded in {result.duration_seconds:.1f}s",
            extra={
                "operation": result.operation,
                "kind": result.kind,
                "remote_id": result.remote_id,
            },
        )
        return result

    def _fail(self, result: ReconcileResult, error: Exception) -> ReconcileResult:
        result.error = error
        result.failure_kind = classify_error(error)
        result.end_time = datetime.now(UTC)

        if not isinstance(error, ProviderError):
            logger.exception(
                f"Unexpected error during {result.operation} of {result.kind}",
                exc_info=error,
            )
        else:
            logger.error(
                f"{result.operation} {result.kind} failed: {error}",
                extra={
                    "operation": result.operation,
                    "kind": result.kind,
                    "remote_id": result.remote_id,
                    "failure_kind": str(result.failure_kind),
                },
            )
        return result


def _name_of(config: ConfigNode) -> str | None:
    return getattr(config, "name", None)


def _target_of(error: Exception) -> str | None:
    operation = getattr(error, "operation", None)
    return getattr(operation, "target_id", None)
