from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from dirconsole.modules.directory.api.catalog import DirectoryCatalog
from dirconsole.modules.directory.domain.models import Entity, User
from dirconsole.modules.directory.widgets.membership import MembershipWidget


class AddGroupMemberWidget(MembershipWidget):
    """Adds the selected users to one group."""

    name = "add_group_member"
    placeholder = "Search for users..."
    empty_message = "All users are already members of this group."
    list_error_message = "Error trying to fetch user list"
    add_error_message = "Error trying to initiate adding the user to a group"

    def __init__(
        self,
        catalog: DirectoryCatalog,
        group_id: int,
        members: Iterable[User] = (),
        **listeners: Any,
    ):
        self.catalog = catalog
        self.group_id = group_id
        super().__init__(members, **listeners)

    async def _list_candidates(self) -> list[Entity]:
        return list(await self.catalog.list_users())

    async def _add(self, entity: Entity) -> Any:
        return await self.catalog.add_user_to_group(entity.key, self.group_id)

    def _describe_target(self, entity: Entity) -> dict[str, Any]:
        return {"user_id": entity.key, "group_id": self.group_id}

    def submit_label(self) -> str:
        count = len(self.selected)
        if count > 1:
            return f"Add {count} members"
        return "Add member"
