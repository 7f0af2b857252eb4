from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field

from dirconsole.modules.directory.api.filters import RequestFilter
from dirconsole.modules.directory.domain.models import Group, User
from dirconsole.shared.adapters.graphql import GraphQLClient
from dirconsole.shared.core.exceptions import NetworkError

logger = structlog.get_logger()


LIST_USERS_QUERY = """
query ListUsersQuery($filters: RequestFilter) {
  users(filters: $filters) {
    id
    email
    displayName
    firstName
    lastName
    creationDate
  }
}
"""

GET_GROUP_LIST_QUERY = """
query GetGroupList {
  groups {
    id
    displayName
    creationDate
  }
}
"""

GET_USER_GROUPS_QUERY = """
query GetUserGroups($id: String!) {
  user(userId: $id) {
    id
    groups {
      id
      displayName
    }
  }
}
"""

ADD_USER_TO_GROUP_MUTATION = """
mutation AddUserToGroup($user: String!, $group: Int!) {
  addUserToGroup(userId: $user, groupId: $group) {
    ok
  }
}
"""

DELETE_USER_MUTATION = """
mutation DeleteUserQuery($user: String!) {
  deleteUser(userId: $user) {
    ok
  }
}
"""

DELETE_GROUP_MUTATION = """
mutation DeleteGroupQuery($groupId: Int!) {
  deleteGroup(groupId: $groupId) {
    ok
  }
}
"""


class UserRow(BaseModel):
    id: str
    email: Optional[str] = None
    displayName: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    creationDate: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    def to_user(self) -> User:
        return User(
            id=self.id,
            display_name=self.displayName or "",
            email=self.email or "",
            first_name=self.firstName or "",
            last_name=self.lastName or "",
            creation_date=self.creationDate,
        )


class GroupRow(BaseModel):
    id: int
    displayName: Optional[str] = None
    creationDate: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    def to_group(self) -> Group:
        return Group(
            id=self.id, display_name=self.displayName or "", creation_date=self.creationDate
        )


class UsersPayload(BaseModel):
    users: list[UserRow] = Field(default_factory=list)


class GroupsPayload(BaseModel):
    groups: list[GroupRow] = Field(default_factory=list)


class UserGroupsRow(BaseModel):
    id: str
    groups: list[GroupRow] = Field(default_factory=list)


class UserGroupsPayload(BaseModel):
    user: UserGroupsRow


class DirectoryCatalog(Protocol):
    """Network operations the console consumes. Wire shapes belong to the server."""

    async def list_users(self, filters: Optional[RequestFilter] = None) -> list[User]: ...

    async def list_groups(self) -> list[Group]: ...

    async def list_groups_of_user(self, user_id: str) -> list[Group]: ...

    async def add_user_to_group(self, user_id: str, group_id: int) -> None: ...

    async def delete_user(self, user_id: str) -> None: ...

    async def delete_group(self, group_id: int) -> None: ...


def _parse(model: type[BaseModel], data: dict[str, Any], operation: str) -> Any:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        logger.warning(
            "graphql_payload_malformed", operation=operation, errors=exc.error_count()
        )
        raise NetworkError(
            f"{operation} returned a malformed payload",
            details={"operation": operation},
        ) from exc


class GraphQLDirectoryCatalog:
    """DirectoryCatalog backed by the directory server's GraphQL endpoint."""

    def __init__(self, client: GraphQLClient):
        self._client = client

    async def list_users(self, filters: Optional[RequestFilter] = None) -> list[User]:
        variables = {"filters": filters.to_variables() if filters is not None else None}
        data = await self._client.execute(
            LIST_USERS_QUERY, variables, operation_name="ListUsersQuery"
        )
        payload: UsersPayload = _parse(UsersPayload, data, "ListUsersQuery")
        return [row.to_user() for row in payload.users]

    async def list_groups(self) -> list[Group]:
        data = await self._client.execute(
            GET_GROUP_LIST_QUERY, operation_name="GetGroupList"
        )
        payload: GroupsPayload = _parse(GroupsPayload, data, "GetGroupList")
        return [row.to_group() for row in payload.groups]

    async def list_groups_of_user(self, user_id: str) -> list[Group]:
        data = await self._client.execute(
            GET_USER_GROUPS_QUERY, {"id": user_id}, operation_name="GetUserGroups"
        )
        payload: UserGroupsPayload = _parse(UserGroupsPayload, data, "GetUserGroups")
        return [row.to_group() for row in payload.user.groups]

    async def add_user_to_group(self, user_id: str, group_id: int) -> None:
        await self._client.execute(
            ADD_USER_TO_GROUP_MUTATION,
            {"user": user_id, "group": group_id},
            operation_name="AddUserToGroup",
        )

    async def delete_user(self, user_id: str) -> None:
        await self._client.execute(
            DELETE_USER_MUTATION, {"user": user_id}, operation_name="DeleteUserQuery"
        )

    async def delete_group(self, group_id: int) -> None:
        await self._client.execute(
            DELETE_GROUP_MUTATION, {"groupId": group_id}, operation_name="DeleteGroupQuery"
        )
