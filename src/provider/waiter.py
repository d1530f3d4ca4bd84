"""Polling waiter for remote long-running operations.

The Waiter is a stateless service: it holds only its default cadence and
budget, and is passed explicitly to whoever needs to wait. Every wait is
bounded by a timeout; callers doing known-slow work (cluster creation,
node pool scaling) pass their own longer budget.

TERMINATION:
1. Terminal success -> return the final handle
2. Terminal failure -> raise RemoteOperationError at once, no further polls
3. Budget exhausted -> raise OperationTimeoutError (never before the budget)
4. Cancel event set -> raise WaitCancelledError; the remote job keeps running
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .config import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_TIMEOUT_SECONDS, ConfigurationError
from .errors import (
    NotFoundError,
    OperationTimeoutError,
    RemoteOperationError,
    WaitCancelledError,
)
from .operations import OperationHandle, OperationStatus

logger = logging.getLogger(__name__)

# A poll step returns (finished, value)
PollStep = Callable[[], Awaitable[tuple[bool, Any]]]


async def call_blocking(fn: Callable[..., Any], *args: Any) -> Any:
    """Run a client call without blocking the event loop.

    Coroutine functions are awaited directly; plain callables run in the
    default executor, as the Azure SDK clients are synchronous.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args))


class Waiter:
    """Polls remote state until a terminal condition or the budget runs out."""

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        *,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the waiter.

        Args:
            poll_interval: Default seconds between polls.
            timeout: Default wait budget, used only when a call names none.
            cancel_event: Set by the surrounding context to stop waiting.
            clock: Monotonic time source.
            sleep: Replacement for the pause between polls (tests).

        Raises:
            ConfigurationError: If the interval or timeout is not positive.
        """
        self._poll_interval = _positive("poll interval", poll_interval)
        self._timeout = _positive("timeout", timeout)
        self._cancel_event = cancel_event
        self._clock = clock
        self._sleep = sleep

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def cancelled(self) -> bool:
        """Check if the surrounding context asked to stop waiting."""
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def await_completion(
        self,
        handle: OperationHandle,
        fetch: Callable[[OperationHandle], Any],
        *,
        poll_interval: float | None = None,
        timeout: float | None = None,
        not_found_is_done: bool = False,
    ) -> OperationHandle:
        """Poll an operation until it finishes.

        Args:
            handle: Operation to wait for.
            fetch: Returns the current state of a handle (client.get_operation).
            poll_interval: Seconds between polls; defaults to the waiter's.
            timeout: Wait budget in seconds; defaults to the waiter's.
            not_found_is_done: Treat a NotFoundError from fetch as completion.
                Used for deletes, where the operation may vanish with its target.

        Returns:
            The terminal, successful handle.

        Raises:
            RemoteOperationError: The operation finished with errors.
            OperationTimeoutError: The budget ran out first.
            WaitCancelledError: The cancel event was set.
            ConfigurationError: The poll interval or timeout is not positive.
        """
        interval, budget = self._settings(poll_interval, timeout)
        if handle.done:
            if handle.failed:
                raise RemoteOperationError(list(handle.errors), handle)
            return handle

        latest = handle

        async def step() -> tuple[bool, Any]:
            nonlocal latest
            try:
                current = await call_blocking(fetch, latest)
            except NotFoundError:
                if not not_found_is_done:
                    raise
                logger.debug(
                    "Operation target no longer exists, treating as done",
                    extra={"operation": handle.name},
                )
                latest = latest.advance(OperationStatus.DONE)
                return True, latest

            latest = current
            if current.failed:
                logger.error(
                    "Remote operation failed",
                    extra={
                        "operation": current.name,
                        "errors": [str(e) for e in current.errors],
                    },
                )
                raise RemoteOperationError(list(current.errors), current)
            return current.done, current

        try:
            return await self._poll(
                step, description=f"operation {handle.name}", interval=interval, budget=budget
            )
        except OperationTimeoutError as e:
            e.operation = latest
            raise

    async def until(
        self,
        check: Callable[[], Any],
        *,
        description: str = "condition",
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> None:
        """Poll a predicate until it returns True.

        Args:
            check: Returns True once the awaited condition holds.
            description: Human-readable name for logs and errors.
            poll_interval: Seconds between checks; defaults to the waiter's.
            timeout: Wait budget in seconds; defaults to the waiter's.

        Raises:
            OperationTimeoutError: The budget ran out first.
            WaitCancelledError: The cancel event was set.
            ConfigurationError: The poll interval or timeout is not positive.
        """
        interval, budget = self._settings(poll_interval, timeout)

        async def step() -> tuple[bool, Any]:
            return bool(await call_blocking(check)), None

        await self._poll(step, description=description, interval=interval, budget=budget)

    def _settings(
        self, poll_interval: float | None, timeout: float | None
    ) -> tuple[float, float]:
        interval = self._poll_interval
        if poll_interval is not None:
            interval = _positive("poll interval", poll_interval)
        budget = _positive("timeout", timeout) if timeout is not None else self._timeout
        return interval, budget

    async def _poll(
        self,
        step: PollStep,
        *,
        description: str,
        interval: float,
        budget: float,
    ) -> Any:
        start = self._clock()
        attempt = 0

        while True:
            self._raise_if_cancelled(description)

            attempt += 1
            finished, value = await step()
            if finished:
                logger.debug(
                    "Wait finished",
                    extra={"target": description, "polls": attempt},
                )
                return value

            elapsed = self._clock() - start
            if elapsed >= budget:
                logger.error(
                    "Wait timed out",
                    extra={"target": description, "timeout_seconds": budget, "polls": attempt},
                )
                raise OperationTimeoutError(
                    f"Timed out after {elapsed:.1f}s waiting for {description}",
                    elapsed_seconds=elapsed,
                )

            logger.debug(
                "Still waiting",
                extra={"target": description, "polls": attempt, "elapsed_seconds": elapsed},
            )
            await self._pause(min(interval, budget - elapsed))

    async def _pause(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
        elif self._cancel_event is None:
            await asyncio.sleep(seconds)
        else:
            try:
                await asyncio.wait_for(self._cancel_event.wait(), timeout=seconds)
            except TimeoutError:
                # Normal timeout, poll again
                pass

    def _raise_if_cancelled(self, description: str) -> None:
        if self.cancelled:
            logger.warning("Wait cancelled", extra={"target": description})
            raise WaitCancelledError(f"Stopped waiting for {description}: cancelled")


def _positive(name: str, value: float) -> float:
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value
