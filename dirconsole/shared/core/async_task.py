"""
Single In-Flight Async Operation

Every interactive widget owns one AsyncTask per kind of network call it makes.
The task tracks busy/idle state and funnels the eventual success or failure
into one completion callback on the event loop.

Each start() is stamped with a monotonically increasing generation. Only the
completion of the latest generation is delivered; an earlier call that is
still outstanding, or any call finishing after teardown(), is discarded as a
stale completion.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

import structlog

from dirconsole.shared.core.exceptions import (
    ConsoleError,
    StaleCompletion,
    ValidationError,
    as_console_error,
)

logger = structlog.get_logger()

RequestT = TypeVar("RequestT")
ResponseT = TypeVar("ResponseT")


class TaskState(Enum):
    """AsyncTask lifecycle states."""

    IDLE = "idle"  # Nothing started yet, or torn down
    RUNNING = "running"  # Latest generation outstanding
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskOutcome(Generic[RequestT, ResponseT]):
    """Result of one started operation, as handed to the completion callback."""

    generation: int
    request: RequestT
    value: Optional[ResponseT] = None
    error: Optional[ConsoleError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TaskHandle:
    """Reference to one started operation."""

    generation: int
    task: "asyncio.Task[Any]"

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> None:
        """Wait until the operation finished and its completion was processed."""
        await asyncio.wait([self.task])


class AsyncTask(Generic[RequestT, ResponseT]):
    """
    Wraps one outstanding asynchronous operation for its owner.

    Usage:
        task = AsyncTask(catalog.list_groups_for, on_complete, name="group_list")
        task.start(request)
        if not task.is_busy():
            ...

    Overlapping starts are not rejected; the newest start supersedes the
    bookkeeping of the previous one. Callers gate user-triggered starts on
    is_busy(). There is no retry, timeout or cancellation.
    """

    def __init__(
        self,
        operation: Callable[[RequestT], Awaitable[ResponseT]],
        on_complete: Callable[[TaskOutcome[RequestT, ResponseT]], None],
        *,
        name: str,
        error_message: str = "Error trying to complete the request",
    ):
        self.name = name
        self.error_message = error_message
        self._operation = operation
        self._on_complete = on_complete
        self._state = TaskState.IDLE
        self._error: Optional[ConsoleError] = None
        self._generation = 0
        self._closed = False
        # Strong references; the loop only keeps weak ones.
        self._pending: set["asyncio.Task[Any]"] = set()

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def error(self) -> Optional[ConsoleError]:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def is_busy(self) -> bool:
        return self._state is TaskState.RUNNING

    def start(self, request: RequestT) -> TaskHandle:
        """Start `operation(request)` on the running loop and make it current."""
        if self._closed:
            raise ValidationError(
                f"{self.name} was torn down", code="task_torn_down"
            )

        loop = asyncio.get_running_loop()
        if self._state is TaskState.RUNNING:
            logger.debug(
                "async_task_superseded",
                task=self.name,
                previous_generation=self._generation,
            )
        self._generation += 1
        generation = self._generation
        self._state = TaskState.RUNNING
        self._error = None

        task = loop.create_task(
            self._invoke(request), name=f"{self.name}#{generation}"
        )
        self._pending.add(task)
        task.add_done_callback(functools.partial(self._on_done, generation, request))
        logger.debug("async_task_started", task=self.name, generation=generation)
        return TaskHandle(generation=generation, task=task)

    def teardown(self) -> None:
        """Detach the owner: every completion still outstanding becomes a no-op."""
        if self._closed:
            return
        self._closed = True
        self._state = TaskState.IDLE
        logger.debug(
            "async_task_torn_down", task=self.name, outstanding=len(self._pending)
        )

    async def wait_idle(self) -> None:
        """Wait until no started operation is outstanding, including chained ones."""
        while self._pending:
            await asyncio.wait(set(self._pending))

    async def _invoke(self, request: RequestT) -> ResponseT:
        return await self._operation(request)

    def _on_done(
        self, generation: int, request: RequestT, task: "asyncio.Task[Any]"
    ) -> None:
        self._pending.discard(task)

        if task.cancelled():
            if not self._closed and generation == self._generation:
                self._state = TaskState.IDLE
            logger.warning("async_task_cancelled", task=self.name, generation=generation)
            return

        # Always retrieve the exception so asyncio does not report it as unhandled.
        exc = task.exception()

        if self._closed or generation != self._generation:
            stale = StaleCompletion(
                f"{self.name} completion discarded",
                details={"generation": generation, "current": self._generation},
            )
            logger.debug(
                "async_task_stale_completion_discarded",
                task=self.name,
                generation=generation,
                current_generation=self._generation,
                closed=self._closed,
                failed=exc is not None,
                reason=stale.code,
            )
            return

        if exc is None:
            self._state = TaskState.SUCCEEDED
            outcome: TaskOutcome[RequestT, ResponseT] = TaskOutcome(
                generation=generation, request=request, value=task.result()
            )
        else:
            error = as_console_error(exc, self.error_message)
            self._state = TaskState.FAILED
            self._error = error
            logger.warning(
                "async_task_failed",
                task=self.name,
                generation=generation,
                error=str(error),
                error_type=type(exc).__name__,
            )
            outcome = TaskOutcome(generation=generation, request=request, error=error)

        self._on_complete(outcome)
