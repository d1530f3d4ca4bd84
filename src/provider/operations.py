"""Operation handles for remote asynchronous jobs.

An OperationHandle is an opaque reference to a remote long-running
operation (LRO). Its status only ever moves forward:

    PENDING / RUNNING  ->  DONE
                       ->  DONE (with errors)

A handle with a terminal status is never polled again.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class OperationStatus(str, Enum):
    """Remote operation states."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return self is OperationStatus.DONE


@dataclass(frozen=True)
class OperationErrorDetail:
    """A single structured error reported by the remote system."""

    code: str
    message: str

    def __str__(self) -> str:
        if self.code:
            return f"{self.code}: {self.message}"
        return self.message


@dataclass(frozen=True)
class OperationHandle:
    """Reference to a remote asynchronous job.

    Attributes:
        name: Operation name or ID, unique within the remote API.
        self_link: Optional URL of the operation resource.
        target_id: Remote identifier of the resource the job acts on, if known.
        status: Last observed status.
        errors: Structured errors, in remote order. Non-empty only when
                the operation finished with a failure.
    """

    name: str
    self_link: str | None = None
    target_id: str | None = None
    status: OperationStatus = OperationStatus.PENDING
    errors: tuple[OperationErrorDetail, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Operation name cannot be empty")
        if self.errors and not self.status.is_terminal:
            raise ValueError("Only a finished operation can carry errors")

    @property
    def done(self) -> bool:
        """Check if the operation reached a terminal status."""
        return self.status.is_terminal

    @property
    def failed(self) -> bool:
        """Check if the operation finished with errors."""
        return self.done and bool(self.errors)

    @property
    def succeeded(self) -> bool:
        """Check if the operation finished without errors."""
        return self.done and not self.errors

    def advance(
        self,
        status: OperationStatus,
        errors: list[OperationErrorDetail] | tuple[OperationErrorDetail, ...] = (),
    ) -> OperationHandle:
        """Return a copy of this handle with a newer status.

        Raises:
            ValueError: If this handle is already terminal.
        """
        if self.done:
            raise ValueError(f"Operation {self.name} already finished")
        return replace(self, status=status, errors=tuple(errors))


def format_operation_errors(
    errors: list[OperationErrorDetail] | tuple[OperationErrorDetail, ...],
) -> str:
    """Format structured errors as one message, one line per error."""
    if not errors:
        return "Remote operation failed without error details"
    return "\n".join(str(e) for e in errors)
