"""
Searchable multi-select picker.

The picker keeps the full candidate list, a live text filter and a selection
set that is independent of what the filter currently shows. In multi mode the
ordered selection is emitted on explicit submit(); in single mode every click
emits immediately.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any, Optional

import structlog

from dirconsole.modules.directory.domain.events import (
    Command,
    EmitSelection,
    Event,
    ListReceived,
    OptionToggled,
    QueryChanged,
    SubmitRequested,
)
from dirconsole.modules.directory.domain.models import SelectionOption, to_options
from dirconsole.shared.core.async_utils import call_listener

logger = structlog.get_logger()

DEFAULT_PLACEHOLDER = "Search..."


def filter_options(
    full_set: Sequence[SelectionOption], query: str
) -> tuple[SelectionOption, ...]:
    """Order-preserving subsequence whose text contains `query`, case-folded."""
    if not query:
        return tuple(full_set)
    needle = query.casefold()
    return tuple(option for option in full_set if needle in option.text.casefold())


@dataclass(frozen=True)
class PickerState:
    full_set: tuple[SelectionOption, ...]
    multiple: bool = False
    query: str = ""
    # Derived from full_set and query; only set through filter_options.
    filtered_set: tuple[SelectionOption, ...] = ()
    selected: frozenset[str] = frozenset()

    @classmethod
    def create(
        cls, options: Iterable[SelectionOption], *, multiple: bool = False
    ) -> "PickerState":
        full_set = tuple(options)
        return cls(full_set=full_set, multiple=multiple, filtered_set=full_set)

    @property
    def can_submit(self) -> bool:
        return self.multiple and bool(self.selected)

    def is_selected(self, option: SelectionOption) -> bool:
        return option.value in self.selected

    def ordered_selection(self) -> tuple[SelectionOption, ...]:
        """Selected options in full_set order, not click order."""
        return tuple(option for option in self.full_set if option.value in self.selected)


def reduce_picker(state: PickerState, event: Event) -> tuple[PickerState, list[Command]]:
    if isinstance(event, QueryChanged):
        return (
            replace(
                state,
                query=event.query,
                filtered_set=filter_options(state.full_set, event.query),
            ),
            [],
        )

    if isinstance(event, OptionToggled):
        value = event.option.value
        turning_on = value not in state.selected
        if state.multiple:
            selected = state.selected | {value} if turning_on else state.selected - {value}
            return replace(state, selected=selected), []

        if turning_on:
            return (
                replace(state, selected=frozenset({value})),
                [EmitSelection(options=(event.option,))],
            )
        return replace(state, selected=frozenset()), [EmitSelection(options=())]

    if isinstance(event, SubmitRequested):
        if not state.can_submit:
            return state, []
        return state, [EmitSelection(options=state.ordered_selection())]

    if isinstance(event, ListReceived):
        return PickerState.create(to_options(event.entities), multiple=state.multiple), []

    raise TypeError(f"Unsupported picker event: {event!r}")


class SearchableMultiSelect:
    """Runtime wrapper that holds a PickerState and emits selections to a listener."""

    def __init__(
        self,
        options: Iterable[SelectionOption],
        on_selection_change: Optional[Callable[[list[SelectionOption]], Any]] = None,
        *,
        multiple: bool = False,
        placeholder: str = DEFAULT_PLACEHOLDER,
    ):
        self.placeholder = placeholder
        self._on_selection_change = on_selection_change
        self._state = PickerState.create(options, multiple=multiple)

    @property
    def state(self) -> PickerState:
        return self._state

    @property
    def multiple(self) -> bool:
        return self._state.multiple

    @property
    def query(self) -> str:
        return self._state.query

    @property
    def options(self) -> tuple[SelectionOption, ...]:
        return self._state.full_set

    @property
    def filtered_options(self) -> tuple[SelectionOption, ...]:
        return self._state.filtered_set

    @property
    def selected_values(self) -> frozenset[str]:
        return self._state.selected

    @property
    def can_submit(self) -> bool:
        return self._state.can_submit

    @property
    def disabled(self) -> bool:
        return not self._state.full_set

    def is_selected(self, option: SelectionOption) -> bool:
        return self._state.is_selected(option)

    def dispatch(self, event: Event) -> None:
        self._state, commands = reduce_picker(self._state, event)
        for command in commands:
            if isinstance(command, EmitSelection):
                logger.debug(
                    "picker_selection_emitted",
                    count=len(command.options),
                    multiple=self._state.multiple,
                )
                call_listener(self._on_selection_change, list(command.options))

    def set_query(self, query: str) -> None:
        self.dispatch(QueryChanged(query=query))

    def toggle(self, option: SelectionOption) -> None:
        self.dispatch(OptionToggled(option=option))

    def submit(self) -> None:
        self.dispatch(SubmitRequested())
