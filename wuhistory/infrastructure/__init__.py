"""
Infrastructure package: SQLite schema, connection factory, schema manager,
query translation and the repository façade.
"""

from wuhistory.infrastructure.db_factory import backup_database, open_connection
from wuhistory.infrastructure.migrator import MigrationResult, SchemaManager
from wuhistory.infrastructure.query_translator import TranslatedQuery, translate
from wuhistory.infrastructure.repository import HistoryPage, WorkUnitRepository

__all__ = [
    "HistoryPage",
    "MigrationResult",
    "SchemaManager",
    "TranslatedQuery",
    "WorkUnitRepository",
    "backup_database",
    "open_connection",
    "translate",
]
