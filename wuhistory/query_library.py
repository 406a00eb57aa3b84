"""
Saved history queries, persisted as a JSON array of Query objects.

The select-all query is always present, always first, and cannot be removed
or redefined.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from wuhistory.domain.query import SELECT_ALL_NAME, Query
from wuhistory.errors import QueryLibraryError
from wuhistory.utils.logging import get_logger

logger = get_logger(__name__)

_QUERIES = TypeAdapter(List[Query])


def _atomic_write_json(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.name + ".", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class QueryLibrary:
    """Named queries kept in a JSON file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._queries: List[Query] = [Query.select_all()]

    @classmethod
    def load(cls, path: Path | str) -> "QueryLibrary":
        """
        Read the library at `path`. A missing file yields just the select-all query.

        Raises QueryLibraryError when the file is not a valid query list.
        """
        library = cls(path)
        if not library.path.exists():
            return library
        try:
            loaded = _QUERIES.validate_json(library.path.read_bytes())
        except (OSError, ValidationError) as exc:
            raise QueryLibraryError(
                f"Cannot read saved queries from {library.path}: {exc}",
                metadata={"path": str(library.path)},
            ) from exc
        for query in loaded:
            if query.name != SELECT_ALL_NAME:
                library._queries.append(query)
        logger.debug("Saved queries loaded", extra={"path": str(library.path), "count": len(library)})
        return library

    @property
    def queries(self) -> List[Query]:
        return list(self._queries)

    def __len__(self) -> int:
        return len(self._queries)

    def names(self) -> List[str]:
        return [q.name for q in self._queries]

    def get(self, name: str) -> Optional[Query]:
        for query in self._queries:
            if query.name == name:
                return query
        return None

    def upsert(self, query: Query) -> None:
        """Add `query`, replacing any saved query with the same name."""
        if query.name == SELECT_ALL_NAME:
            raise ValueError(f"{SELECT_ALL_NAME!r} is reserved")
        for i, existing in enumerate(self._queries):
            if existing.name == query.name:
                self._queries[i] = query
                return
        self._queries.append(query)

    def remove(self, name: str) -> bool:
        if name == SELECT_ALL_NAME:
            raise ValueError(f"{SELECT_ALL_NAME!r} cannot be removed")
        before = len(self._queries)
        self._queries = [q for q in self._queries if q.name != name]
        return len(self._queries) < before

    def save(self) -> None:
        try:
            _atomic_write_json(self.path, _QUERIES.dump_python(self._queries, mode="json"))
        except OSError as exc:
            raise QueryLibraryError(
                f"Cannot write saved queries to {self.path}: {exc}",
                metadata={"path": str(self.path)},
            ) from exc
        logger.info("Saved queries written", extra={"path": str(self.path), "count": len(self)})


__all__ = ["QueryLibrary"]
