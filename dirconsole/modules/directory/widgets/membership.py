"""
Membership editors: add one user to many groups, or many users to one group.

A MembershipWidget composes:
- an AsyncTask that loads the candidate list,
- a SearchableMultiSelect (multi mode) over the candidates that are not
  already members,
- a SequentialBatchMutator that applies the per-entity mutation,
- an ErrorSink shared by all of the above.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Optional

import structlog

from dirconsole.modules.directory.domain.batch import BatchJob, SequentialBatchMutator
from dirconsole.modules.directory.domain.models import (
    Entity,
    SelectionOption,
    exclude_existing,
    to_options,
)
from dirconsole.modules.directory.domain.picker import SearchableMultiSelect
from dirconsole.shared.core.async_task import AsyncTask, TaskOutcome
from dirconsole.shared.core.async_utils import call_listener
from dirconsole.shared.core.error_sink import ErrorSink
from dirconsole.shared.core.exceptions import ConsoleError, ValidationError
from dirconsole.shared.core.logging import audit_log

logger = structlog.get_logger()


class MembershipWidget:
    """Base for the two membership directions; subclasses supply the I/O and wording."""

    name = "membership"
    placeholder = "Search..."
    empty_message = "Nothing left to add."
    list_error_message = "Error trying to fetch the candidate list"
    add_error_message = "Error trying to add the membership"

    def __init__(
        self,
        existing: Iterable[Entity] = (),
        *,
        on_entity_committed: Optional[Callable[[Entity], Any]] = None,
        on_error: Optional[Callable[[ConsoleError], Any]] = None,
        on_batch_done: Optional[Callable[[], Any]] = None,
        on_selection_changed: Optional[Callable[[list[Entity]], Any]] = None,
    ):
        self._on_entity_committed = on_entity_committed
        self._on_batch_done = on_batch_done
        self._on_selection_changed = on_selection_changed
        self._existing: dict[str, Entity] = {entity.key: entity for entity in existing}
        # None until the list operation answered.
        self._candidates: Optional[list[Entity]] = None
        self._selected: list[Entity] = []
        self._picker: Optional[SearchableMultiSelect] = None

        self.error_sink = ErrorSink(on_error, owner=self.name)
        self._list_task: AsyncTask[None, list[Entity]] = AsyncTask(
            self._load_candidates,
            self._on_list_complete,
            name=f"{self.name}.list",
            error_message=self.list_error_message,
        )
        self._mutator = SequentialBatchMutator(
            self._add,
            error_sink=self.error_sink,
            on_committed=self._on_committed,
            on_done=self._on_done,
            on_failed=self._on_failed,
            name=f"{self.name}.add",
            error_message=self.add_error_message,
        )

    # I/O supplied by subclasses

    async def _list_candidates(self) -> list[Entity]:
        raise NotImplementedError()

    async def _add(self, entity: Entity) -> Any:
        raise NotImplementedError()

    def _describe_target(self, entity: Entity) -> dict[str, Any]:
        raise NotImplementedError()

    def submit_label(self) -> str:
        raise NotImplementedError()

    # State

    @property
    def loaded(self) -> bool:
        return self._candidates is not None

    @property
    def picker(self) -> Optional[SearchableMultiSelect]:
        return self._picker

    @property
    def existing(self) -> list[Entity]:
        return list(self._existing.values())

    @property
    def selected(self) -> list[Entity]:
        return list(self._selected)

    @property
    def job(self) -> Optional[BatchJob]:
        return self._mutator.job

    @property
    def last_error(self) -> Optional[ConsoleError]:
        return self.error_sink.last_error

    def selectable_entities(self) -> list[Entity]:
        if self._candidates is None:
            return []
        return exclude_existing(self._candidates, self._existing.values())

    def options(self) -> list[SelectionOption]:
        return to_options(self.selectable_entities())

    def is_busy(self) -> bool:
        return self._list_task.is_busy() or self._mutator.is_busy()

    def can_submit(self) -> bool:
        return bool(self._selected) and not self.is_busy()

    def is_exhausted(self) -> bool:
        """Loaded, and every candidate is already a member."""
        return self.loaded and not self.selectable_entities()

    # Lifecycle

    def start(self) -> None:
        self._list_task.start(None)

    async def load(self) -> None:
        self.start()
        await self._list_task.wait_idle()

    def set_existing(self, existing: Iterable[Entity]) -> None:
        """Parent swapped in a new member list: rebuild the picker from scratch."""
        self._existing = {entity.key: entity for entity in existing}
        if self._candidates is not None:
            self._rebuild_picker()

    def submit(self) -> Optional[BatchJob]:
        if not self._selected:
            self.error_sink.report(
                ValidationError("Nothing selected", code="empty_selection")
            )
            return None
        if self._mutator.is_running:
            self.error_sink.report(
                ValidationError("A batch is already running", code="batch_in_progress")
            )
            return None
        self.error_sink.clear()
        return self._mutator.submit(self._selected)

    async def join(self) -> Optional[BatchJob]:
        return await self._mutator.join()

    def teardown(self) -> None:
        self._list_task.teardown()
        self._mutator.teardown()
        logger.debug("membership_widget_torn_down", widget=self.name)

    # Completions

    async def _load_candidates(self, _request: None) -> list[Entity]:
        return await self._list_candidates()

    def _on_list_complete(self, outcome: TaskOutcome[None, list[Entity]]) -> None:
        error = outcome.error
        if error is not None:
            self.error_sink.report(error)
            return
        self._candidates = list(outcome.value or [])
        logger.info(
            "membership_candidates_loaded",
            widget=self.name,
            candidates=len(self._candidates),
            selectable=len(self.selectable_entities()),
        )
        self._rebuild_picker()

    def _rebuild_picker(self) -> None:
        self._selected = []
        self._picker = SearchableMultiSelect(
            self.options(),
            self._on_picker_selection,
            multiple=True,
            placeholder=self.placeholder,
        )

    def _on_picker_selection(self, options: list[SelectionOption]) -> None:
        by_key = {entity.key: entity for entity in self._candidates or []}
        self._selected = [by_key[option.value] for option in options if option.value in by_key]
        call_listener(self._on_selection_changed, list(self._selected))

    def _on_committed(self, entity: Entity) -> None:
        self._existing[entity.key] = entity
        audit_log(f"{self.name}_committed", actor=self.name, details=self._describe_target(entity))
        call_listener(self._on_entity_committed, entity)

    def _on_done(self, _job: BatchJob) -> None:
        self._rebuild_picker()
        call_listener(self._on_batch_done)

    def _on_failed(self, job: BatchJob) -> None:
        # Committed entities left the pool; the failed one stays selectable.
        if job.committed:
            self._rebuild_picker()
