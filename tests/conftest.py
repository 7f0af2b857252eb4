"""
Global pytest fixtures for the directory console test suite.

Provides:
- Test environment variables (set before any dirconsole import)
- Settings cache isolation
- An in-memory directory catalog with call recording and failure injection
"""
import asyncio
import os
from typing import Any, Optional

import pytest
import structlog

# Set test environment BEFORE any dirconsole imports
os.environ["DIRCONSOLE_TESTING"] = "true"
os.environ["DIRCONSOLE_GRAPHQL_URL"] = "http://directory.test/api/graphql"
os.environ.pop("DIRCONSOLE_API_TOKEN", None)

from dirconsole.modules.directory.domain.models import Group, User  # noqa: E402
from dirconsole.shared.core.config import get_settings  # noqa: E402
from dirconsole.shared.core.exceptions import NetworkError  # noqa: E402
from dirconsole.shared.core.logging import secret_redactor  # noqa: E402

# Log events are returned, not printed, so captured stdout only holds command output.
structlog.configure(
    processors=[secret_redactor, structlog.processors.KeyValueRenderer()],
    logger_factory=structlog.ReturnLoggerFactory(),
)


@pytest.fixture(autouse=True)
def _isolate_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeCatalog:
    """
    In-memory DirectoryCatalog.

    Every call is appended to `log` as ("call", op, *args). Tests append their
    own notifications to the same list to check interleaving. `fail` maps an
    entity key to the error the add call should raise. `gate`, when set, makes
    add calls wait for the event before answering.
    """

    def __init__(
        self,
        users: Optional[list[User]] = None,
        groups: Optional[list[Group]] = None,
    ):
        self.users = list(users or [])
        self.groups = list(groups or [])
        self.memberships: set[tuple[str, int]] = set()
        self.log: list[tuple[Any, ...]] = []
        self.fail: dict[str, Exception] = {}
        self.list_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def add_calls(self) -> list[tuple[str, int]]:
        return [(entry[2], entry[3]) for entry in self.log if entry[:2] == ("call", "add")]

    async def list_users(self, filters=None) -> list[User]:
        self.log.append(("call", "list_users", filters))
        await asyncio.sleep(0)
        if self.list_error is not None:
            raise self.list_error
        if filters is not None and filters.member_of_id is not None:
            return [u for u in self.users if (u.key, filters.member_of_id) in self.memberships]
        return list(self.users)

    async def list_groups(self) -> list[Group]:
        self.log.append(("call", "list_groups"))
        await asyncio.sleep(0)
        if self.list_error is not None:
            raise self.list_error
        return list(self.groups)

    async def list_groups_of_user(self, user_id: str) -> list[Group]:
        self.log.append(("call", "list_groups_of_user", user_id))
        await asyncio.sleep(0)
        return [g for g in self.groups if (user_id, int(g.id)) in self.memberships]

    async def add_user_to_group(self, user_id: str, group_id: int) -> None:
        self.log.append(("call", "add", user_id, group_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            key = user_id if user_id in self.fail else str(group_id)
            if key in self.fail:
                raise self.fail[key]
            if (user_id, group_id) in self.memberships:
                raise NetworkError("already a member")
            self.memberships.add((user_id, group_id))
        finally:
            self.in_flight -= 1

    async def delete_user(self, user_id: str) -> None:
        self.log.append(("call", "delete_user", user_id))
        await asyncio.sleep(0)
        if user_id in self.fail:
            raise self.fail[user_id]
        self.users = [u for u in self.users if u.key != user_id]

    async def delete_group(self, group_id: int) -> None:
        self.log.append(("call", "delete_group", group_id))
        await asyncio.sleep(0)
        if str(group_id) in self.fail:
            raise self.fail[str(group_id)]
        self.groups = [g for g in self.groups if g.id != group_id]


@pytest.fixture
def sample_users() -> list[User]:
    return [
        User(id="alice", display_name="Alice Liddell", email="alice@example.com"),
        User(id="bob", display_name="Bob Builder", email="bob@example.com"),
        User(id="carol", display_name="", email="carol@example.com"),
        User(id="dave", display_name="Dave Grohl", email="dave@example.com"),
    ]


@pytest.fixture
def sample_groups() -> list[Group]:
    return [
        Group(id=1, display_name="admins"),
        Group(id=2, display_name="developers"),
        Group(id=3, display_name="Design"),
    ]


@pytest.fixture
def make_catalog(sample_users, sample_groups):
    def _make(users=None, groups=None) -> FakeCatalog:
        return FakeCatalog(
            users=sample_users if users is None else users,
            groups=sample_groups if groups is None else groups,
        )

    return _make


@pytest.fixture
def catalog(make_catalog) -> FakeCatalog:
    return make_catalog()
