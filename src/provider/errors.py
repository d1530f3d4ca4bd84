"""Error taxonomy for the reconciliation core.

Every failure surfaced by a lifecycle operation is one of these types.
Callers decide what to retry; the core itself never retries.

ERROR KINDS:
- ValidationError: detected before any remote call, never partially applied
- TransportError: the remote client could not complete a call
- RemoteOperationError: a remote job finished with errors (terminal)
- OperationTimeoutError: polling gave up, the remote job may still be running
- NotFoundError: the remote object does not exist
"""

from __future__ import annotations

from typing import Any

from .operations import OperationErrorDetail, OperationHandle, format_operation_errors


class ProviderError(Exception):
    """Base class for all reconciliation core errors."""

    pass


class ValidationError(ProviderError):
    """Raised when a declared value violates a constraint the core enforces."""

    pass


class UnresolvedReferenceError(ValidationError):
    """Raised when a cross-resource reference cannot be resolved."""

    def __init__(self, kind: str, reference: str) -> None:
        super().__init__(f"Unresolved {kind} reference: {reference}")
        self.kind = kind
        self.reference = reference


class ReplacementRequiredError(ValidationError):
    """Raised when an update touches create-only fields."""

    def __init__(self, fields: list[str]) -> None:
        super().__init__(
            f"Fields {fields} can only be set at creation; the resource must be replaced"
        )
        self.fields = fields


class TransportError(ProviderError):
    """Raised when the remote client could not complete a request or poll.

    The original exception is kept on `cause` and chained as `__cause__`.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RemoteOperationError(ProviderError):
    """Raised when a remote asynchronous job reaches terminal failure."""

    def __init__(
        self,
        errors: list[OperationErrorDetail],
        operation: OperationHandle | None = None,
    ) -> None:
        super().__init__(format_operation_errors(errors))
        self.errors = list(errors)
        self.operation = operation


class OperationTimeoutError(ProviderError, TimeoutError):
    """Raised when polling exceeds its bound without a terminal status.

    The remote job may still be running. Re-poll with a fresh waiter
    using the same `operation` to keep waiting.
    """

    def __init__(self, message: str, operation: Any = None, elapsed_seconds: float = 0.0) -> None:
        super().__init__(message)
        self.operation = operation
        self.elapsed_seconds = elapsed_seconds


class WaitCancelledError(ProviderError):
    """Raised when the surrounding context cancels a wait.

    Only the wait stops. The remote job is left to finish on its own.
    """

    pass


class NotFoundError(ProviderError):
    """Raised when a remote object does not exist."""

    def __init__(self, message: str, remote_id: str | None = None) -> None:
        super().__init__(message)
        self.remote_id = remote_id


class UnsupportedOperationError(ProviderError):
    """Raised when a resource binding lacks the requested capability."""

    pass


class InvalidStateError(ProviderError):
    """Raised when a lifecycle operation is invoked from the wrong state."""

    pass


class UpdateStepError(ProviderError):
    """Raised when a multi-step update fails partway through.

    Attributes:
        applied: Field names applied by steps that completed.
        failed: Field names of the step that failed.
        error: The underlying error of the failing step.
    """

    def __init__(self, applied: list[str], failed: list[str], error: BaseException) -> None:
        applied_text = ", ".join(applied) if applied else "none"
        super().__init__(
            f"Update failed on fields [{', '.join(failed)}] "
            f"after applying [{applied_text}]: {error}"
        )
        self.applied = applied
        self.failed = failed
        self.error = error
