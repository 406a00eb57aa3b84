"""
Work-unit history store.

A durable, versioned, deduplicated record store for completed and failed
distributed-computing work units, backed by a single SQLite file:

- concurrent completion events are persisted once per natural key
- a legacy 15-column store is migrated in place to the current schema
- conjunctive filter queries return records with read-time credit and PPD
"""

from __future__ import annotations

__version__ = "0.9.2"
__license__ = "MIT"

# Public API exports
from wuhistory.config import Settings, get_settings
from wuhistory.domain import (
    BonusCalculation,
    ClientIdentity,
    CompletionEvent,
    FrameSample,
    HistoryColumn,
    HistoryRecord,
    Predicate,
    ProjectMetadata,
    ProteinCatalog,
    Query,
    QueryOperator,
    SlotType,
    StandardProductionCalculator,
    WorkUnitResult,
    map_event,
)
from wuhistory.errors import (
    HistoryError,
    HistoryMigrationError,
    HistoryOpenError,
    QueryTranslationError,
    UpgradeRequiredError,
)
from wuhistory.infrastructure import HistoryPage, WorkUnitRepository
from wuhistory.query_library import QueryLibrary
from wuhistory.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "BonusCalculation",
    "ClientIdentity",
    "CompletionEvent",
    "FrameSample",
    "HistoryColumn",
    "HistoryRecord",
    "Predicate",
    "ProjectMetadata",
    "ProteinCatalog",
    "Query",
    "QueryOperator",
    "SlotType",
    "StandardProductionCalculator",
    "WorkUnitResult",
    "map_event",
    # Errors
    "HistoryError",
    "HistoryMigrationError",
    "HistoryOpenError",
    "QueryTranslationError",
    "UpgradeRequiredError",
    # Store
    "HistoryPage",
    "QueryLibrary",
    "WorkUnitRepository",
    # Logging
    "configure_logging",
    "get_logger",
]
