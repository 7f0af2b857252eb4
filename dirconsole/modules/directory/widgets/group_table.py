from __future__ import annotations

from collections.abc import Callable
from typing import Any, Optional

import structlog

from dirconsole.modules.directory.api.catalog import DirectoryCatalog
from dirconsole.modules.directory.domain.models import Group
from dirconsole.shared.core.async_task import AsyncTask, TaskOutcome
from dirconsole.shared.core.async_utils import call_listener
from dirconsole.shared.core.error_sink import ErrorSink
from dirconsole.shared.core.exceptions import ConsoleError
from dirconsole.shared.core.logging import audit_log

logger = structlog.get_logger()


class GroupTable:
    """Group listing. The group query takes no filter, so search is client-side."""

    name = "group_table"
    placeholder = "Search by group name"
    no_results_message = "No groups found matching your search criteria."

    def __init__(
        self,
        catalog: DirectoryCatalog,
        *,
        on_error: Optional[Callable[[ConsoleError], Any]] = None,
        on_group_deleted: Optional[Callable[[int], Any]] = None,
    ):
        self.catalog = catalog
        self.error_sink = ErrorSink(on_error, owner=self.name)
        self._on_group_deleted = on_group_deleted
        self.groups: Optional[list[Group]] = None
        self.search_query = ""
        self._list_task: AsyncTask[None, list[Group]] = AsyncTask(
            self._fetch_groups,
            self._on_list_complete,
            name=f"{self.name}.list",
            error_message="Error trying to fetch groups",
        )
        self._delete_tasks: dict[int, AsyncTask[int, None]] = {}

    def start(self) -> None:
        self._list_task.start(None)

    def search(self) -> None:
        self._list_task.start(None)

    def clear_search(self) -> None:
        self.search_query = ""
        self.search()

    def set_search_query(self, query: str) -> None:
        self.search_query = query

    def is_busy(self) -> bool:
        return self._list_task.is_busy()

    def visible_groups(self) -> list[Group]:
        if self.groups is None:
            return []
        if not self.search_query:
            return list(self.groups)
        needle = self.search_query.lower()
        return [group for group in self.groups if needle in group.display_name.lower()]

    @property
    def no_results(self) -> bool:
        return self.groups is not None and bool(self.search_query) and not self.visible_groups()

    def delete_group(self, group_id: int) -> None:
        task = self._delete_tasks.get(group_id)
        if task is None:
            task = AsyncTask(
                self.catalog.delete_group,
                self._on_delete_complete,
                name=f"{self.name}.delete",
                error_message=f"Error trying to delete group {group_id}",
            )
            self._delete_tasks[group_id] = task
        elif task.is_busy():
            return
        task.start(group_id)

    def on_group_deleted(self, group_id: int) -> None:
        if self.groups is None:
            return
        self.groups = [group for group in self.groups if group.id != group_id]
        call_listener(self._on_group_deleted, group_id)

    async def wait_idle(self) -> None:
        await self._list_task.wait_idle()
        for task in list(self._delete_tasks.values()):
            await task.wait_idle()

    def teardown(self) -> None:
        self._list_task.teardown()
        for task in self._delete_tasks.values():
            task.teardown()

    def rows(self) -> list[tuple[int, str, str]]:
        return [
            (
                int(group.id),
                group.display_name,
                group.creation_date.date().isoformat() if group.creation_date else "",
            )
            for group in self.visible_groups()
        ]

    async def _fetch_groups(self, _request: None) -> list[Group]:
        return await self.catalog.list_groups()

    def _on_list_complete(self, outcome: TaskOutcome[None, list[Group]]) -> None:
        error = outcome.error
        if error is not None:
            self.error_sink.report(error)
            return
        self.groups = list(outcome.value or [])
        logger.info("group_table_loaded", count=len(self.groups))

    def _on_delete_complete(self, outcome: TaskOutcome[int, None]) -> None:
        error = outcome.error
        if error is not None:
            self.error_sink.report(error)
            return
        self._delete_tasks.pop(outcome.request, None)
        audit_log("group_deleted", actor=self.name, details={"group_id": outcome.request})
        self.on_group_deleted(outcome.request)
