"""
Domain package for the work-unit history store.

Exports the models, the row mapper, the query model and the production-view
seams. Keep this package free of I/O.
"""

from wuhistory.domain.mapping import map_event
from wuhistory.domain.models import (
    BonusCalculation,
    ClientIdentity,
    CompletionEvent,
    FrameSample,
    HistoryRecord,
    NaturalKey,
    ProjectMetadata,
    SlotType,
    WorkUnitResult,
)
from wuhistory.domain.production import (
    ProductionCalculator,
    ProteinCatalog,
    ProteinService,
    StandardProductionCalculator,
)
from wuhistory.domain.query import HistoryColumn, Predicate, Query, QueryOperator

__all__ = [
    "BonusCalculation",
    "ClientIdentity",
    "CompletionEvent",
    "FrameSample",
    "HistoryColumn",
    "HistoryRecord",
    "NaturalKey",
    "Predicate",
    "ProductionCalculator",
    "ProjectMetadata",
    "ProteinCatalog",
    "ProteinService",
    "Query",
    "QueryOperator",
    "SlotType",
    "StandardProductionCalculator",
    "WorkUnitResult",
    "map_event",
]
