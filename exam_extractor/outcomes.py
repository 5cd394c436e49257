"""
Unit Outcomes
=============
Closed set of terminal states for one unit:

    Items         questions were extracted
    UnitSkip      the service asked to skip only this unit
    DocumentSkip  the service judged the whole document out of scope
    UnitError     transport / parse failure after all retries
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NoReturn, Union

from .models import Question, Unit


@dataclass(frozen=True)
class Items:
    unit: Unit
    questions: list[Question] = field(default_factory=list)


@dataclass(frozen=True)
class UnitSkip:
    unit: Unit
    reason: str


@dataclass(frozen=True)
class DocumentSkip:
    unit: Unit
    reason: str


@dataclass(frozen=True)
class UnitError:
    unit: Unit
    message: str


UnitOutcome = Union[Items, UnitSkip, DocumentSkip, UnitError]


def unhandled_outcome(outcome: object) -> NoReturn:
    """Raise for an outcome kind a caller does not handle."""
    raise TypeError(f"Unhandled unit outcome: {type(outcome).__name__}")
