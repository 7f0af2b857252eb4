"""
Sequential Batch Mutation

Applies one mutation per selected entity, strictly one at a time, in the
order of the snapshot taken at submit time:

- the cursor advances by exactly one, only after a step succeeded;
- a "committed" notification for items[cursor] is emitted before the next
  step is dispatched;
- the first failure halts the chain with the cursor left on the failed item;
  earlier steps are not rolled back and nothing is retried.

Every submission creates a fresh BatchJob. There is no resume.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

import structlog

from dirconsole.modules.directory.domain.events import (
    Command,
    EmitBatchDone,
    EmitCommitted,
    Event,
    IssueMutation,
    ReportError,
    StepFailed,
    StepSucceeded,
    SubmitRequested,
)
from dirconsole.modules.directory.domain.models import Entity
from dirconsole.shared.core.async_task import AsyncTask, TaskOutcome
from dirconsole.shared.core.async_utils import call_listener
from dirconsole.shared.core.error_sink import ErrorSink
from dirconsole.shared.core.exceptions import ValidationError

logger = structlog.get_logger()


class BatchStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchJob:
    items: tuple[Entity, ...]
    cursor: int = 0
    status: BatchStatus = BatchStatus.IDLE
    error: Optional[Exception] = None
    job_id: int = 0

    @property
    def current(self) -> Optional[Entity]:
        if self.cursor < len(self.items):
            return self.items[self.cursor]
        return None

    @property
    def committed(self) -> tuple[Entity, ...]:
        return self.items[: self.cursor]

    @property
    def remaining(self) -> tuple[Entity, ...]:
        return self.items[self.cursor :]

    @property
    def finished(self) -> bool:
        return self.status in (BatchStatus.DONE, BatchStatus.FAILED)


@dataclass(frozen=True)
class BatchStep:
    """Request handed to the AsyncTask for one step."""

    job_id: int
    index: int
    entity: Entity


def _current_job(
    job: Optional[BatchJob], job_id: int, index: int
) -> Optional[BatchJob]:
    """The running job, if the step at (job_id, index) is the one it waits on."""
    if job is None or job.status is not BatchStatus.RUNNING:
        return None
    if job.job_id != job_id or job.cursor != index:
        return None
    return job


def reduce_batch(
    job: Optional[BatchJob], event: Event
) -> tuple[Optional[BatchJob], list[Command]]:
    if isinstance(event, SubmitRequested):
        if job is not None and job.status is BatchStatus.RUNNING:
            return job, [
                ReportError(
                    ValidationError(
                        "A batch is already running",
                        code="batch_in_progress",
                        details={"job_id": job.job_id, "cursor": job.cursor},
                    )
                )
            ]
        if not event.items:
            return job, []
        items = tuple(event.items)
        new_job = BatchJob(
            items=items,
            cursor=0,
            status=BatchStatus.RUNNING,
            job_id=(job.job_id + 1) if job is not None else 1,
        )
        return new_job, [IssueMutation(job_id=new_job.job_id, index=0, entity=items[0])]

    if isinstance(event, StepSucceeded):
        current = _current_job(job, event.job_id, event.index)
        if current is None:
            return job, []
        entity = current.items[current.cursor]
        cursor = current.cursor + 1
        if cursor == len(current.items):
            done = replace(current, cursor=cursor, status=BatchStatus.DONE)
            return done, [EmitCommitted(entity), EmitBatchDone(done)]
        advanced = replace(current, cursor=cursor)
        return advanced, [
            EmitCommitted(entity),
            IssueMutation(job_id=current.job_id, index=cursor, entity=current.items[cursor]),
        ]

    if isinstance(event, StepFailed):
        current = _current_job(job, event.job_id, event.index)
        if current is None:
            return job, []
        return replace(current, status=BatchStatus.FAILED, error=event.error), [
            ReportError(event.error)
        ]

    raise TypeError(f"Unsupported batch event: {event!r}")


class SequentialBatchMutator:
    """
    Drives a BatchJob through an AsyncTask, one network call at a time.

    Listeners:
        on_committed(entity) -- once per successful step, before the next step
        on_done(job)         -- when every item was committed
        on_failed(job)       -- after a step failed and the error was reported
    Failures and rejected submissions are reported through the ErrorSink.
    """

    def __init__(
        self,
        mutate: Callable[[Entity], Awaitable[Any]],
        *,
        error_sink: ErrorSink,
        on_committed: Optional[Callable[[Entity], Any]] = None,
        on_done: Optional[Callable[[BatchJob], Any]] = None,
        on_failed: Optional[Callable[[BatchJob], Any]] = None,
        name: str = "batch",
        error_message: str = "Error trying to apply the change",
    ):
        self.name = name
        self._mutate = mutate
        self._error_sink = error_sink
        self._on_committed = on_committed
        self._on_done = on_done
        self._on_failed = on_failed
        self._job: Optional[BatchJob] = None
        self._task: AsyncTask[BatchStep, Any] = AsyncTask(
            self._run_step,
            self._on_step_complete,
            name=f"{name}.step",
            error_message=error_message,
        )

    @property
    def job(self) -> Optional[BatchJob]:
        return self._job

    @property
    def is_running(self) -> bool:
        return self._job is not None and self._job.status is BatchStatus.RUNNING

    def is_busy(self) -> bool:
        return self.is_running or self._task.is_busy()

    def submit(self, items: Sequence[Entity]) -> Optional[BatchJob]:
        """
        Start a new job over a snapshot of `items`.

        Returns the new job, or None when nothing was started (empty
        selection, a job already running, or the mutator was torn down).
        """
        if self._task.closed:
            logger.debug("batch_submit_after_teardown", batch=self.name)
            return None

        previous = self._job
        self.dispatch(SubmitRequested(items=tuple(items)))
        job = self._job
        if job is None or job is previous:
            if items:
                logger.info("batch_submit_rejected", batch=self.name, size=len(items))
            return None
        logger.info(
            "batch_job_started",
            batch=self.name,
            job_id=job.job_id,
            size=len(job.items),
        )
        return job

    def dispatch(self, event: Event) -> None:
        self._job, commands = reduce_batch(self._job, event)
        for command in commands:
            self._execute(command)

    async def join(self) -> Optional[BatchJob]:
        """Wait until no step is outstanding and return the current job."""
        await self._task.wait_idle()
        return self._job

    def teardown(self) -> None:
        self._task.teardown()

    def _execute(self, command: Command) -> None:
        if isinstance(command, IssueMutation):
            self._task.start(
                BatchStep(job_id=command.job_id, index=command.index, entity=command.entity)
            )
        elif isinstance(command, EmitCommitted):
            logger.info(
                "batch_step_committed",
                batch=self.name,
                entity_id=command.entity.key,
                cursor=self._job.cursor if self._job else None,
            )
            call_listener(self._on_committed, command.entity)
        elif isinstance(command, EmitBatchDone):
            logger.info(
                "batch_job_done",
                batch=self.name,
                job_id=command.job.job_id,
                committed=len(command.job.committed),
            )
            call_listener(self._on_done, command.job)
        elif isinstance(command, ReportError):
            if self._job is not None and self._job.status is BatchStatus.FAILED:
                logger.warning(
                    "batch_job_failed",
                    batch=self.name,
                    job_id=self._job.job_id,
                    cursor=self._job.cursor,
                    committed=len(self._job.committed),
                )
            self._error_sink.report(command.error)
            if self._job is not None and self._job.status is BatchStatus.FAILED:
                call_listener(self._on_failed, self._job)
        else:
            raise TypeError(f"Unsupported batch command: {command!r}")

    async def _run_step(self, step: BatchStep) -> Any:
        return await self._mutate(step.entity)

    def _on_step_complete(self, outcome: TaskOutcome[BatchStep, Any]) -> None:
        step = outcome.request
        error = outcome.error
        if error is None:
            self.dispatch(StepSucceeded(job_id=step.job_id, index=step.index))
        else:
            self.dispatch(StepFailed(job_id=step.job_id, index=step.index, error=error))
