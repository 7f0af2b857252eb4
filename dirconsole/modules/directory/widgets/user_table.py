from __future__ import annotations

from collections.abc import Callable
from typing import Any, Optional

import structlog

from dirconsole.modules.directory.api.catalog import DirectoryCatalog
from dirconsole.modules.directory.api.filters import RequestFilter, build_user_search_filter
from dirconsole.modules.directory.domain.models import User
from dirconsole.shared.core.async_task import AsyncTask, TaskOutcome
from dirconsole.shared.core.async_utils import call_listener
from dirconsole.shared.core.error_sink import ErrorSink
from dirconsole.shared.core.exceptions import ConsoleError
from dirconsole.shared.core.logging import audit_log

logger = structlog.get_logger()


class UserTable:
    """User listing with server-side search and per-row deletion."""

    name = "user_table"
    placeholder = "Search by ID, email, or display name"
    no_results_message = "No users found matching your search criteria."

    def __init__(
        self,
        catalog: DirectoryCatalog,
        *,
        on_error: Optional[Callable[[ConsoleError], Any]] = None,
        on_user_deleted: Optional[Callable[[str], Any]] = None,
    ):
        self.catalog = catalog
        self.error_sink = ErrorSink(on_error, owner=self.name)
        self._on_user_deleted = on_user_deleted
        self.users: Optional[list[User]] = None
        self.search_query = ""
        self._list_task: AsyncTask[Optional[RequestFilter], list[User]] = AsyncTask(
            catalog.list_users,
            self._on_list_complete,
            name=f"{self.name}.list",
            error_message="Error trying to fetch users",
        )
        # One task per row, like one delete button per row.
        self._delete_tasks: dict[str, AsyncTask[str, None]] = {}

    def start(self) -> None:
        self._list_task.start(None)

    def is_busy(self) -> bool:
        return self._list_task.is_busy()

    @property
    def no_results(self) -> bool:
        return self.users is not None and not self.users and bool(self.search_query)

    def set_search_query(self, query: str) -> None:
        self.search_query = query

    def search(self) -> None:
        self._list_task.start(build_user_search_filter(self.search_query))

    def clear_search(self) -> None:
        self.search_query = ""
        self.search()

    def delete_user(self, user_id: str) -> None:
        task = self._delete_tasks.get(user_id)
        if task is None:
            task = AsyncTask(
                self.catalog.delete_user,
                self._on_delete_complete,
                name=f"{self.name}.delete",
                error_message=f"Error trying to delete user {user_id}",
            )
            self._delete_tasks[user_id] = task
        elif task.is_busy():
            return
        task.start(user_id)

    def on_user_deleted(self, user_id: str) -> None:
        if self.users is None:
            return
        self.users = [user for user in self.users if user.key != user_id]
        call_listener(self._on_user_deleted, user_id)

    async def wait_idle(self) -> None:
        await self._list_task.wait_idle()
        for task in list(self._delete_tasks.values()):
            await task.wait_idle()

    def teardown(self) -> None:
        self._list_task.teardown()
        for task in self._delete_tasks.values():
            task.teardown()

    def rows(self) -> list[tuple[str, str, str, str, str, str]]:
        rows = []
        for user in self.users or []:
            created = user.creation_date.date().isoformat() if user.creation_date else ""
            rows.append(
                (user.key, user.email, user.display_name, user.first_name, user.last_name, created)
            )
        return rows

    def _on_list_complete(self, outcome: TaskOutcome[Optional[RequestFilter], list[User]]) -> None:
        error = outcome.error
        if error is not None:
            self.error_sink.report(error)
            return
        self.users = list(outcome.value or [])
        logger.info(
            "user_table_loaded", count=len(self.users), filtered=outcome.request is not None
        )

    def _on_delete_complete(self, outcome: TaskOutcome[str, None]) -> None:
        error = outcome.error
        if error is not None:
            self.error_sink.report(error)
            return
        self._delete_tasks.pop(outcome.request, None)
        audit_log("user_deleted", actor=self.name, details={"user_id": outcome.request})
        self.on_user_deleted(outcome.request)
