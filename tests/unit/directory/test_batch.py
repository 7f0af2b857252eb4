"""
Tests for the sequential batch mutator: pure reducer and async driver.
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from dirconsole.modules.directory.domain.batch import (
    BatchJob,
    BatchStatus,
    SequentialBatchMutator,
    reduce_batch,
)
from dirconsole.modules.directory.domain.events import (
    EmitBatchDone,
    EmitCommitted,
    IssueMutation,
    QueryChanged,
    ReportError,
    StepFailed,
    StepSucceeded,
    SubmitRequested,
)
from dirconsole.modules.directory.domain.models import Entity
from dirconsole.shared.core.error_sink import ErrorSink
from dirconsole.shared.core.exceptions import NetworkError

U1, U2, U3, U4 = (Entity(f"u{i}", f"User {i}") for i in range(1, 5))


class TestReduceBatch:
    def test_submit_creates_running_job_and_first_step(self):
        job, commands = reduce_batch(None, SubmitRequested(items=(U1, U2)))

        assert job == BatchJob(items=(U1, U2), cursor=0, status=BatchStatus.RUNNING, job_id=1)
        assert commands == [IssueMutation(job_id=1, index=0, entity=U1)]

    def test_empty_submit_is_noop(self):
        assert reduce_batch(None, SubmitRequested()) == (None, [])

    def test_job_ids_increase_per_submission(self):
        done = BatchJob(items=(U1,), cursor=1, status=BatchStatus.DONE, job_id=4)
        job, _ = reduce_batch(done, SubmitRequested(items=(U2,)))
        assert job.job_id == 5
        assert job.cursor == 0

    def test_submit_while_running_is_rejected(self):
        running = BatchJob(items=(U1,), status=BatchStatus.RUNNING, job_id=1)
        job, commands = reduce_batch(running, SubmitRequested(items=(U2,)))

        assert job is running
        [command] = commands
        assert isinstance(command, ReportError)
        assert command.error.code == "batch_in_progress"

    def test_success_commits_then_issues_next(self):
        job, _ = reduce_batch(None, SubmitRequested(items=(U1, U2)))
        job, commands = reduce_batch(job, StepSucceeded(job_id=1, index=0))

        assert job.cursor == 1
        assert job.status is BatchStatus.RUNNING
        assert commands == [EmitCommitted(U1), IssueMutation(job_id=1, index=1, entity=U2)]

    def test_last_success_finishes_job(self):
        job, _ = reduce_batch(None, SubmitRequested(items=(U1,)))
        job, commands = reduce_batch(job, StepSucceeded(job_id=1, index=0))

        assert job.status is BatchStatus.DONE
        assert job.cursor == 1
        assert commands == [EmitCommitted(U1), EmitBatchDone(job)]

    def test_failure_halts_with_cursor_on_failed_item(self):
        error = NetworkError("boom")
        job, _ = reduce_batch(None, SubmitRequested(items=(U1, U2, U3)))
        job, _ = reduce_batch(job, StepSucceeded(job_id=1, index=0))
        job, commands = reduce_batch(job, StepFailed(job_id=1, index=1, error=error))

        assert job.status is BatchStatus.FAILED
        assert job.cursor == 1
        assert job.current == U2
        assert job.committed == (U1,)
        assert job.remaining == (U2, U3)
        assert job.error is error
        assert commands == [ReportError(error)]

    @pytest.mark.parametrize(
        "event",
        [
            StepSucceeded(job_id=99, index=0),
            StepSucceeded(job_id=1, index=1),
            StepFailed(job_id=1, index=3, error=NetworkError("late")),
        ],
    )
    def test_steps_for_other_jobs_or_positions_are_ignored(self, event):
        job, _ = reduce_batch(None, SubmitRequested(items=(U1, U2)))
        assert reduce_batch(job, event) == (job, [])

    def test_steps_after_finish_are_ignored(self):
        job = BatchJob(items=(U1,), cursor=1, status=BatchStatus.DONE, job_id=1)
        assert reduce_batch(job, StepSucceeded(job_id=1, index=1)) == (job, [])

    def test_unknown_event_is_rejected(self):
        with pytest.raises(TypeError):
            reduce_batch(None, QueryChanged("x"))


def _make_mutator(mutate, log, **kwargs):
    sink = kwargs.pop("error_sink", None) or ErrorSink(owner="test")
    mutator = SequentialBatchMutator(
        mutate,
        error_sink=sink,
        on_committed=lambda entity: log.append(("committed", entity.key)),
        on_done=lambda job: log.append(("done", job.job_id)),
        on_failed=lambda job: log.append(("failed", job.cursor)),
        **kwargs,
    )
    return mutator, sink


@pytest.mark.asyncio
async def test_all_steps_succeed_in_selection_order():
    log = []
    in_flight = []

    async def mutate(entity):
        in_flight.append(entity.key)
        assert len(in_flight) == 1
        log.append(("call", entity.key))
        await asyncio.sleep(0)
        in_flight.remove(entity.key)

    mutator, sink = _make_mutator(mutate, log)
    job = mutator.submit([U1, U2, U3])
    assert job.status is BatchStatus.RUNNING
    assert mutator.is_busy()

    final = await mutator.join()

    assert log == [
        ("call", "u1"),
        ("committed", "u1"),
        ("call", "u2"),
        ("committed", "u2"),
        ("call", "u3"),
        ("committed", "u3"),
        ("done", 1),
    ]
    assert final.status is BatchStatus.DONE
    assert final.cursor == 3
    assert sink.last_error is None
    assert not mutator.is_busy()


@pytest.mark.asyncio
@pytest.mark.parametrize("failing_index", [0, 1, 2, 3])
async def test_first_failure_halts_remaining_steps(failing_index):
    log = []
    items = [U1, U2, U3, U4]
    failing = items[failing_index]
    error = NetworkError("AddUserToGroup failed: denied")
    parent = MagicMock()

    async def mutate(entity):
        log.append(("call", entity.key))
        await asyncio.sleep(0)
        if entity is failing:
            raise error

    mutator, sink = _make_mutator(mutate, log, error_sink=ErrorSink(parent))
    mutator.submit(items)
    job = await mutator.join()

    calls = [entry[1] for entry in log if entry[0] == "call"]
    committed = [entry[1] for entry in log if entry[0] == "committed"]
    assert calls == [item.key for item in items[: failing_index + 1]]
    assert committed == [item.key for item in items[:failing_index]]
    assert ("done", 1) not in log
    assert log[-1] == ("failed", failing_index)
    assert job.status is BatchStatus.FAILED
    assert job.cursor == failing_index
    assert job.error is error
    assert sink.last_error is error
    parent.assert_called_once_with(error)


@pytest.mark.asyncio
async def test_untyped_step_failure_uses_error_message():
    log = []

    async def mutate(entity):
        raise RuntimeError("socket closed")

    mutator, sink = _make_mutator(
        mutate, log, error_message="Error trying to initiate adding the user to a group"
    )
    mutator.submit([U1])
    job = await mutator.join()

    assert isinstance(job.error, NetworkError)
    assert sink.last_error.message == "Error trying to initiate adding the user to a group"


@pytest.mark.asyncio
async def test_empty_submit_issues_no_calls():
    mutate = MagicMock()
    log = []
    mutator, sink = _make_mutator(mutate, log)

    assert mutator.submit([]) is None
    await mutator.join()

    mutate.assert_not_called()
    assert log == []
    assert mutator.job is None
    assert sink.last_error is None


@pytest.mark.asyncio
async def test_single_item_batch():
    log = []

    async def mutate(entity):
        log.append(("call", entity.key))

    mutator, _ = _make_mutator(mutate, log)
    mutator.submit([U2])
    job = await mutator.join()

    assert log == [("call", "u2"), ("committed", "u2"), ("done", 1)]
    assert job.committed == (U2,)


@pytest.mark.asyncio
async def test_duplicate_items_are_each_dispatched():
    log = []

    async def mutate(entity):
        log.append(("call", entity.key))

    mutator, _ = _make_mutator(mutate, log)
    mutator.submit([U1, U1])
    job = await mutator.join()

    assert [entry for entry in log if entry[0] == "call"] == [("call", "u1"), ("call", "u1")]
    assert job.cursor == 2


@pytest.mark.asyncio
async def test_resubmit_while_running_is_rejected():
    log = []
    gate = asyncio.Event()

    async def mutate(entity):
        log.append(("call", entity.key))
        await gate.wait()

    mutator, sink = _make_mutator(mutate, log)
    first = mutator.submit([U1, U2])
    await asyncio.sleep(0)

    assert mutator.submit([U3]) is None
    assert sink.last_error.code == "batch_in_progress"
    assert mutator.job is first

    gate.set()
    job = await mutator.join()

    assert [entry[1] for entry in log if entry[0] == "call"] == ["u1", "u2"]
    assert job.job_id == 1
    assert job.status is BatchStatus.DONE


@pytest.mark.asyncio
async def test_submit_snapshot_is_isolated_from_later_changes():
    log = []

    async def mutate(entity):
        log.append(("call", entity.key))

    mutator, _ = _make_mutator(mutate, log)
    selection = [U1, U2]
    mutator.submit(selection)
    selection.append(U3)
    job = await mutator.join()

    assert job.items == (U1, U2)


@pytest.mark.asyncio
async def test_new_job_after_failure_starts_fresh():
    log = []
    failures = {"u2"}

    async def mutate(entity):
        log.append(("call", entity.key))
        if entity.key in failures:
            raise NetworkError("denied")

    mutator, sink = _make_mutator(mutate, log)
    mutator.submit([U1, U2, U3])
    failed = await mutator.join()
    assert failed.status is BatchStatus.FAILED

    failures.clear()
    retry = mutator.submit(failed.remaining)
    assert retry.job_id == 2
    assert retry.cursor == 0
    done = await mutator.join()

    assert done.status is BatchStatus.DONE
    assert [entry[1] for entry in log if entry[0] == "call"] == ["u1", "u2", "u2", "u3"]


@pytest.mark.asyncio
async def test_teardown_mid_batch_discards_completion():
    log = []
    gate = asyncio.Event()

    async def mutate(entity):
        log.append(("call", entity.key))
        await gate.wait()

    mutator, sink = _make_mutator(mutate, log)
    mutator.submit([U1, U2])
    await asyncio.sleep(0)

    mutator.teardown()
    gate.set()
    job = await mutator.join()

    assert log == [("call", "u1")]
    assert job.cursor == 0
    assert sink.last_error is None
    assert mutator.submit([U3]) is None


@pytest.mark.asyncio
async def test_raising_committed_listener_does_not_stall_the_batch():
    calls = []

    async def mutate(entity):
        calls.append(entity.key)

    def on_committed(_entity):
        raise RuntimeError("parent blew up")

    sink = ErrorSink(owner="test")
    mutator = SequentialBatchMutator(mutate, error_sink=sink, on_committed=on_committed)
    mutator.submit([U1, U2])
    job = await mutator.join()

    assert calls == ["u1", "u2"]
    assert job.status is BatchStatus.DONE
    assert job.cursor == 2
    assert not mutator.is_busy()

    again = mutator.submit([U3])
    assert again is not None
    assert (await mutator.join()).status is BatchStatus.DONE


@pytest.mark.asyncio
async def test_raising_error_listener_still_ends_the_job():
    def on_error(_error):
        raise RuntimeError("parent blew up")

    async def mutate(entity):
        raise NetworkError("denied")

    sink = ErrorSink(on_error)
    mutator = SequentialBatchMutator(mutate, error_sink=sink)
    mutator.submit([U1, U2])
    job = await mutator.join()

    assert job.status is BatchStatus.FAILED
    assert sink.last_error.message == "denied"
    assert mutator.submit([U2]) is not None
    await mutator.join()
