from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

EntityId = Union[str, int]


@dataclass(frozen=True, eq=False)
class Entity:
    """A user or a group, interchangeable for selection purposes. Identity is `id`."""

    id: EntityId
    display_name: str = ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def key(self) -> str:
        """String form of the id, as used for option values."""
        return str(self.id)

    @property
    def label(self) -> str:
        return self.display_name or self.key

    def to_option(self) -> SelectionOption:
        return SelectionOption(value=self.key, text=self.label)


@dataclass(frozen=True, eq=False)
class User(Entity):
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    creation_date: Optional[datetime] = None


@dataclass(frozen=True, eq=False)
class Group(Entity):
    creation_date: Optional[datetime] = None


@dataclass(frozen=True)
class SelectionOption:
    value: str
    text: str


def exclude_existing(
    candidates: Iterable[Entity], existing: Iterable[Entity]
) -> list[Entity]:
    """Candidates that are not already members, in candidate order."""
    existing_keys = {entity.key for entity in existing}
    return [entity for entity in candidates if entity.key not in existing_keys]


def to_options(entities: Iterable[Entity]) -> list[SelectionOption]:
    return [entity.to_option() for entity in entities]
