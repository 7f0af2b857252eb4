from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from dirconsole.modules.directory.api.catalog import DirectoryCatalog
from dirconsole.modules.directory.domain.models import Entity, Group
from dirconsole.modules.directory.widgets.membership import MembershipWidget
from dirconsole.shared.core.exceptions import ValidationError


def _group_id(entity: Entity) -> int:
    try:
        return int(entity.id)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Invalid group id: {entity.id!r}", code="invalid_group_id"
        ) from exc


class AddUserToGroupWidget(MembershipWidget):
    """Adds one user to each of the selected groups."""

    name = "add_user_to_group"
    placeholder = "Search for groups..."
    empty_message = "User is already a member of all available groups."
    list_error_message = "Error trying to fetch group list"
    add_error_message = "Error trying to initiate adding the user to a group"

    def __init__(
        self,
        catalog: DirectoryCatalog,
        user_id: str,
        groups: Iterable[Group] = (),
        **listeners: Any,
    ):
        self.catalog = catalog
        self.user_id = user_id
        super().__init__(groups, **listeners)

    async def _list_candidates(self) -> list[Entity]:
        return list(await self.catalog.list_groups())

    async def _add(self, entity: Entity) -> Any:
        return await self.catalog.add_user_to_group(self.user_id, _group_id(entity))

    def _describe_target(self, entity: Entity) -> dict[str, Any]:
        return {"user_id": self.user_id, "group_id": entity.id}

    def submit_label(self) -> str:
        count = len(self.selected)
        if count > 1:
            return f"Add to {count} groups"
        return "Add to group"
