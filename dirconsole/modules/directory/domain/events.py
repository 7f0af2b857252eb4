"""
Event and command vocabulary of the picker and batch state machines.

Reducers fold an event over the current state and return the next state plus
the side-effect commands to run. Reducers never perform I/O; the runtime
objects (SearchableMultiSelect, SequentialBatchMutator) execute commands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from dirconsole.modules.directory.domain.models import Entity, SelectionOption
from dirconsole.shared.core.exceptions import ConsoleError

if TYPE_CHECKING:
    from dirconsole.modules.directory.domain.batch import BatchJob


# Events


@dataclass(frozen=True)
class ListReceived:
    entities: tuple[Entity, ...]


@dataclass(frozen=True)
class QueryChanged:
    query: str


@dataclass(frozen=True)
class OptionToggled:
    option: SelectionOption


@dataclass(frozen=True)
class SubmitRequested:
    # Picker submissions carry no items; batch submissions carry the snapshot.
    items: tuple[Entity, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StepSucceeded:
    job_id: int
    index: int


@dataclass(frozen=True)
class StepFailed:
    job_id: int
    index: int
    error: ConsoleError


Event = Union[
    ListReceived, QueryChanged, OptionToggled, SubmitRequested, StepSucceeded, StepFailed
]


# Commands


@dataclass(frozen=True)
class IssueMutation:
    job_id: int
    index: int
    entity: Entity


@dataclass(frozen=True)
class EmitCommitted:
    entity: Entity


@dataclass(frozen=True)
class EmitSelection:
    options: tuple[SelectionOption, ...]


@dataclass(frozen=True)
class EmitBatchDone:
    job: "BatchJob"


@dataclass(frozen=True)
class ReportError:
    error: ConsoleError


Command = Union[IssueMutation, EmitCommitted, EmitSelection, EmitBatchDone, ReportError]
