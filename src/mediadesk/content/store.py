"""JSON-backed record store.

Persists every table in a single JSON file, loaded on init and saved after
every write operation.  Stands in for the relational store in local setups
and provides the same row-level contract as the PostgREST adapter.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from mediadesk.errors import EntityNotFoundError
from mediadesk.integrations.base import RecordStore

logger = logging.getLogger(__name__)

STORE_FILENAME = ".mediadesk-records.json"


class _StoreData(BaseModel):
    """Internal wrapper for JSON serialization."""

    tables: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)


class JsonRecordStore(RecordStore):
    """JSON-backed row store.

    Loads the store file on init and saves after every mutation.  A lock
    makes each row operation atomic when several operations run on
    different threads.
    """

    def __init__(self, directory: Path) -> None:
        self._path = Path(directory) / STORE_FILENAME
        self._lock = threading.Lock()
        self._data = self._load()

    # ── Private helpers ──────────────────────────────────────────

    def _load(self) -> _StoreData:
        if not self._path.exists():
            return _StoreData()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return _StoreData.model_validate(raw)
        except (json.JSONDecodeError, ValueError, KeyError):
            logger.warning("Corrupt record store at %s, starting fresh", self._path)
            return _StoreData()

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            self._data.model_dump_json(indent=2),
            encoding="utf-8",
        )

    def _rows(self, table: str) -> list[dict[str, Any]]:
        return self._data.tables.setdefault(table, [])

    def _find(self, table: str, row_id: str) -> dict[str, Any] | None:
        for row in self._rows(table):
            if row.get("id") == row_id:
                return row
        return None

    # ── Write operations ─────────────────────────────────────────

    def create_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert or replace a row by id."""
        with self._lock:
            rows = [r for r in self._rows(table) if r.get("id") != row["id"]]
            rows.append(dict(row))
            self._data.tables[table] = rows
            self._save()
            return dict(row)

    def update_row(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Merge *changes* into a row and bump ``updated_at``.

        Raises EntityNotFoundError if the row does not exist.
        """
        with self._lock:
            row = self._find(table, row_id)
            if row is None:
                raise EntityNotFoundError(row_id)
            row.update(changes)
            row["updated_at"] = datetime.now(tz=UTC).isoformat()
            self._save()
            return dict(row)

    def delete_row(self, table: str, row_id: str) -> bool:
        with self._lock:
            rows = self._rows(table)
            remaining = [r for r in rows if r.get("id") != row_id]
            if len(remaining) == len(rows):
                return False
            self._data.tables[table] = remaining
            self._save()
            return True

    # ── Read operations ──────────────────────────────────────────

    def get_row(self, table: str, row_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._find(table, row_id)
            return dict(row) if row is not None else None

    def list_rows(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching *filters*, sorted on *order_by*."""
        with self._lock:
            results = [dict(r) for r in self._rows(table)]
        for key, value in (filters or {}).items():
            results = [r for r in results if r.get(key) == value]
        results.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        end = None if limit is None else offset + limit
        return results[offset:end]
