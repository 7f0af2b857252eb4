#!/usr/bin/env python3
"""
Directory console command line.

Drives the console widgets headlessly against a directory server:

- list-users / list-groups: tables, optionally searched;
- add-members / add-to-groups: picker + sequential batch, one line printed
  per committed membership, halting on the first failure;
- delete-user / delete-group: per-row deletion.

Exit status is 0 on success and 1 when any error was surfaced.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from typing import Any, Optional

import structlog

from dirconsole.modules.directory.api.catalog import GraphQLDirectoryCatalog
from dirconsole.modules.directory.api.filters import member_of_group_filter
from dirconsole.modules.directory.domain.batch import BatchStatus
from dirconsole.modules.directory.domain.models import Entity
from dirconsole.modules.directory.widgets.add_group_member import AddGroupMemberWidget
from dirconsole.modules.directory.widgets.add_user_to_group import AddUserToGroupWidget
from dirconsole.modules.directory.widgets.group_table import GroupTable
from dirconsole.modules.directory.widgets.membership import MembershipWidget
from dirconsole.modules.directory.widgets.user_table import UserTable
from dirconsole.shared.adapters.graphql import GraphQLClient
from dirconsole.shared.core.async_utils import drain_listeners
from dirconsole.shared.core.config import get_settings, load_settings
from dirconsole.shared.core.exceptions import ConfigurationError, ConsoleError
from dirconsole.shared.core.http import close_http_client, get_http_client, init_http_client
from dirconsole.shared.core.logging import setup_logging

logger = structlog.get_logger()


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="dirconsole",
        description="Administer directory users and groups.",
    )
    parser.add_argument(
        "--url",
        dest="url",
        default=None,
        help="GraphQL endpoint (defaults to DIRCONSOLE_GRAPHQL_URL)",
    )
    parser.add_argument(
        "--token",
        dest="token",
        default=None,
        help="Bearer token (defaults to DIRCONSOLE_API_TOKEN)",
    )
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Print results as JSON",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    list_users = sub.add_parser("list-users", help="List users")
    list_users.add_argument("--search", default="", help="Match id, email or display name")

    list_groups = sub.add_parser("list-groups", help="List groups")
    list_groups.add_argument("--search", default="", help="Match group name")

    add_members = sub.add_parser("add-members", help="Add users to a group")
    add_members.add_argument("group_id", type=int)
    add_members.add_argument("user_ids", nargs="+")

    add_to_groups = sub.add_parser("add-to-groups", help="Add a user to groups")
    add_to_groups.add_argument("user_id")
    add_to_groups.add_argument("group_ids", nargs="+", type=int)

    delete_user = sub.add_parser("delete-user", help="Delete a user")
    delete_user.add_argument("user_id")

    delete_group = sub.add_parser("delete-group", help="Delete a group")
    delete_group.add_argument("group_id", type=int)

    return parser.parse_args(argv)


def _print_error(error: ConsoleError) -> None:
    print(f"Error: {error.message}", file=sys.stderr)


def _emit(rows: list[dict[str, Any]], *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(rows, indent=2, default=str))
        return
    for row in rows:
        print("\t".join(str(value) for value in row.values()))


def _select(widget: MembershipWidget, wanted: Sequence[str]) -> list[str]:
    """Toggle the wanted values in the widget's picker and submit it; returns values not offered."""
    picker = widget.picker
    if picker is None:
        return list(wanted)
    by_value = {option.value: option for option in picker.options}
    missing: list[str] = []
    for value in wanted:
        option = by_value.get(value)
        if option is None:
            missing.append(value)
        elif not picker.is_selected(option):
            picker.toggle(option)
    picker.submit()
    return missing


async def _run_membership(widget: MembershipWidget, wanted: Sequence[str]) -> int:
    await widget.load()
    if widget.last_error is not None:
        return 1
    if widget.is_exhausted():
        print(widget.empty_message)
        return 0

    for value in _select(widget, wanted):
        print(f"Skipping {value}: not offered (unknown or already a member)", file=sys.stderr)
    if not widget.selected:
        return 0

    widget.submit()
    job = await widget.join()
    if job is None or job.status is not BatchStatus.DONE:
        return 1
    return 0


async def _run(args: argparse.Namespace, catalog: GraphQLDirectoryCatalog) -> int:
    def committed(entity: Entity) -> None:
        print(f"added {entity.label} ({entity.key})")

    if args.command == "list-users":
        table = UserTable(catalog, on_error=_print_error)
        table.set_search_query(args.search)
        table.search()
        await table.wait_idle()
        if table.error_sink.last_error is not None:
            return 1
        if table.no_results:
            print(table.no_results_message)
            return 0
        columns = ("id", "email", "display_name", "first_name", "last_name", "created")
        _emit([dict(zip(columns, row)) for row in table.rows()], as_json=args.as_json)
        return 0

    if args.command == "list-groups":
        groups = GroupTable(catalog, on_error=_print_error)
        groups.set_search_query(args.search)
        groups.start()
        await groups.wait_idle()
        if groups.error_sink.last_error is not None:
            return 1
        if groups.no_results:
            print(groups.no_results_message)
            return 0
        columns = ("id", "display_name", "created")
        _emit([dict(zip(columns, row)) for row in groups.rows()], as_json=args.as_json)
        return 0

    if args.command == "add-members":
        members = await catalog.list_users(member_of_group_filter(args.group_id))
        widget: MembershipWidget = AddGroupMemberWidget(
            catalog,
            args.group_id,
            members,
            on_entity_committed=committed,
            on_error=_print_error,
        )
        return await _run_membership(widget, args.user_ids)

    if args.command == "add-to-groups":
        current = await catalog.list_groups_of_user(args.user_id)
        widget = AddUserToGroupWidget(
            catalog,
            args.user_id,
            current,
            on_entity_committed=committed,
            on_error=_print_error,
        )
        return await _run_membership(widget, [str(gid) for gid in args.group_ids])

    if args.command == "delete-user":
        table = UserTable(
            catalog,
            on_error=_print_error,
            on_user_deleted=lambda user_id: print(f"deleted user {user_id}"),
        )
        table.users = []
        table.delete_user(args.user_id)
        await table.wait_idle()
        return 1 if table.error_sink.last_error is not None else 0

    if args.command == "delete-group":
        groups = GroupTable(
            catalog,
            on_error=_print_error,
            on_group_deleted=lambda group_id: print(f"deleted group {group_id}"),
        )
        groups.groups = []
        groups.delete_group(args.group_id)
        await groups.wait_idle()
        return 1 if groups.error_sink.last_error is not None else 0

    raise SystemExit(f"Unknown command: {args.command}")


async def _main_async(args: argparse.Namespace) -> int:
    settings = get_settings()
    url = args.url or settings.GRAPHQL_URL
    token = args.token or settings.API_TOKEN
    await init_http_client()
    try:
        catalog = GraphQLDirectoryCatalog(
            GraphQLClient(url, client=get_http_client(), token=token)
        )
        return await _run(args, catalog)
    except ConsoleError as exc:
        _print_error(exc)
        return 1
    finally:
        await drain_listeners()
        await close_http_client()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        load_settings()
    except ConfigurationError as exc:
        _print_error(exc)
        return 1
    setup_logging()
    logger.debug("cli_command_started", command=args.command)
    return asyncio.run(_main_async(args))


if __name__ == "__main__":
    raise SystemExit(main())
