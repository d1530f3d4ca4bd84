"""In-memory cloud API mock for lifecycle testing.

Provides a scripted implementation of the remote API client contract so
orchestrator, waiter and session behavior can be tested without a cloud.

Key Features:
- In-memory object store shared by every per-kind client
- Scripted operation status sequences (PENDING, RUNNING, DONE)
- Terminal-failure and transport-error injection
- Deletes that signal completion only by the object disappearing
- Settings-version counters that reject stale updates
- Call recording for "exactly these calls" assertions
- A fake monotonic clock for deterministic waiter timing

Usage:
    from cloud_mock import FakeClock, MockCloudClient, MockCloudState

    state = MockCloudState()
    client = MockCloudClient(state, "cluster")
    state.script("create", [OperationStatus.RUNNING, OperationStatus.DONE])
"""

from .clock import FakeClock
from .cloud import MockCloudClient, MockCloudState, RecordedCall, ScriptedOperation

__all__ = [
    "FakeClock",
    "MockCloudClient",
    "MockCloudState",
    "RecordedCall",
    "ScriptedOperation",
]
