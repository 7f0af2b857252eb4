from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# Fields matched by the user table's free-text search.
SEARCHABLE_USER_FIELDS = ("id", "email", "displayName")


class EqualityConstraint(BaseModel):
    field: str = Field(min_length=1)
    value: str

    model_config = ConfigDict(extra="forbid")


class RequestFilter(BaseModel):
    """Recursive user filter accepted by the ListUsersQuery operation."""

    any: Optional[list["RequestFilter"]] = None
    all: Optional[list["RequestFilter"]] = None
    not_: Optional["RequestFilter"] = Field(default=None, alias="not")
    eq: Optional[EqualityConstraint] = None
    member_of: Optional[str] = Field(default=None, alias="memberOf")
    member_of_id: Optional[int] = Field(default=None, alias="memberOfId")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def to_variables(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


RequestFilter.model_rebuild()


def build_user_search_filter(query: str) -> Optional[RequestFilter]:
    """Any-of equality on id, email and display name; None for an empty query."""
    if not query:
        return None
    return RequestFilter(
        any=[
            RequestFilter(eq=EqualityConstraint(field=name, value=query))
            for name in SEARCHABLE_USER_FIELDS
        ]
    )


def member_of_group_filter(group_id: int) -> RequestFilter:
    return RequestFilter(member_of_id=group_id)
