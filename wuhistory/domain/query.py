"""
Query model: a named conjunction of column predicates over the history store.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, Field, ValidationError

from wuhistory.errors import QueryTranslationError

SELECT_ALL_NAME = "*** SELECT ALL ***"


class HistoryColumn(str, Enum):
    """Filterable columns, named as they appear in the fetch view."""

    ID = "ID"
    PROJECT_ID = "ProjectID"
    PROJECT_RUN = "ProjectRun"
    PROJECT_CLONE = "ProjectClone"
    PROJECT_GEN = "ProjectGen"
    NAME = "Name"
    PATH = "Path"
    USERNAME = "Username"
    TEAM = "Team"
    CORE_VERSION = "CoreVersion"
    FRAMES_COMPLETED = "FramesCompleted"
    FRAME_TIME = "FrameTime"
    RESULT = "Result"
    ASSIGNED = "Assigned"
    FINISHED = "Finished"
    WORK_UNIT_NAME = "WorkUnitName"
    K_FACTOR = "KFactor"
    CORE = "Core"
    FRAMES = "Frames"
    ATOMS = "Atoms"
    BASE_CREDIT = "BaseCredit"
    PREFERRED_DAYS = "PreferredDays"
    MAXIMUM_DAYS = "MaximumDays"
    SLOT_TYPE = "SlotType"


class QueryOperator(str, Enum):
    EQUAL = "Equal"
    NOT_EQUAL = "NotEqual"
    GREATER_THAN = "GreaterThan"
    GREATER_THAN_OR_EQUAL = "GreaterThanOrEqual"
    LESS_THAN = "LessThan"
    LESS_THAN_OR_EQUAL = "LessThanOrEqual"
    LIKE = "Like"
    NOT_LIKE = "NotLike"


_OPERATOR_SYMBOLS = {
    "=": QueryOperator.EQUAL,
    "==": QueryOperator.EQUAL,
    "!=": QueryOperator.NOT_EQUAL,
    "<>": QueryOperator.NOT_EQUAL,
    ">": QueryOperator.GREATER_THAN,
    ">=": QueryOperator.GREATER_THAN_OR_EQUAL,
    "<": QueryOperator.LESS_THAN,
    "<=": QueryOperator.LESS_THAN_OR_EQUAL,
    "like": QueryOperator.LIKE,
    "notlike": QueryOperator.NOT_LIKE,
}

_PREDICATE_RE = re.compile(
    r"^\s*(?P<column>\w+)\s*(?P<op>==|!=|<>|>=|<=|=|>|<|\s(?:not\s*like|like)\s)\s*(?P<value>.*?)\s*$",
    re.IGNORECASE,
)


class Predicate(BaseModel):
    """
    One comparison: `<column> <operator> <value>`.

    The value is kept as given; conversion to the column's stored kind happens
    during translation.
    """

    column: HistoryColumn
    operator: QueryOperator
    value: Any = None

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, text: str) -> "Predicate":
        """
        Parse the textual form, e.g. `ProjectID >= 2669` or `Name like %Slot%`.

        Raises QueryTranslationError for text that does not name a known
        column and operator.
        """
        match = _PREDICATE_RE.match(text)
        if match is None:
            raise QueryTranslationError(
                f"Cannot parse predicate {text!r}", metadata={"predicate": text}
            )
        symbol = re.sub(r"\s+", "", match.group("op")).lower()
        try:
            return cls(
                column=HistoryColumn(match.group("column")),
                operator=_OPERATOR_SYMBOLS[symbol],
                value=match.group("value"),
            )
        except (ValueError, ValidationError) as exc:
            raise QueryTranslationError(
                f"Cannot parse predicate {text!r}: {exc}", metadata={"predicate": text}
            ) from exc

    def __str__(self) -> str:
        return f"{self.column.value} {self.operator.value} {self.value!r}"


class Query(BaseModel):
    """A named, ordered conjunction of predicates. No predicates selects everything."""

    name: str
    predicates: List[Predicate] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def select_all(cls) -> "Query":
        return cls(name=SELECT_ALL_NAME)

    @property
    def is_select_all(self) -> bool:
        return not self.predicates


__all__ = ["HistoryColumn", "Predicate", "Query", "QueryOperator", "SELECT_ALL_NAME"]
