"""
Durable record of which steps have been applied, and with what parameters.

Two stores share one contract:
- SqliteStateStore: one row per step in the execution_records table
- JsonFileStateStore: a JSON document replaced atomically on every write

Both keep at most one record per step name. ``get`` only returns a record
whose hash matches, so a changed step is never mistaken for an applied one.
Neither store locks; runs on the same host must be serialized by the caller.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from core.models import ExecutionRecord
from db.repository import ExecutionRecordRepository

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Lookup and persistence of ExecutionRecords."""

    @abstractmethod
    def get(self, step_name: str, param_hash: str) -> Optional[ExecutionRecord]:
        ...

    @abstractmethod
    def put(self, record: ExecutionRecord) -> None:
        ...

    @abstractmethod
    def all(self) -> List[ExecutionRecord]:
        ...

    @abstractmethod
    def clear(self, step_name: Optional[str] = None) -> int:
        """Forget one step (or every step). Returns how many records went away."""
        ...


class SqliteStateStore(StateStore):
    """StateStore backed by an embedded SQLite table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.repo = ExecutionRecordRepository()

    def get(self, step_name: str, param_hash: str) -> Optional[ExecutionRecord]:
        record = self.repo.get(self.conn, step_name)
        if record is None or record.param_hash != param_hash:
            return None
        return record

    def put(self, record: ExecutionRecord) -> None:
        self.repo.upsert(self.conn, record)

    def all(self) -> List[ExecutionRecord]:
        return self.repo.list_all(self.conn)

    def clear(self, step_name: Optional[str] = None) -> int:
        return self.repo.delete(self.conn, step_name)


class JsonFileStateStore(StateStore):
    """StateStore kept in a single JSON file.

    Writes go to a temporary file in the same directory which is then renamed
    over the original, so readers only ever see a complete document.
    """

    VERSION = 1

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: Optional[Dict[str, ExecutionRecord]] = None

    @property
    def records(self) -> Dict[str, ExecutionRecord]:
        if self._records is None:
            self._records = self._load()
        return self._records

    def _load(self) -> Dict[str, ExecutionRecord]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return {
                name: ExecutionRecord.from_dict(raw)
                for name, raw in data.get("records", {}).items()
            }
        except (json.JSONDecodeError, KeyError, ValueError, AttributeError, TypeError) as e:
            # Every step re-runs; providers are idempotent.
            logger.warning("Corrupted state file %s, starting empty: %s", self.path, e)
            return {}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": self.VERSION,
            "records": {name: r.to_dict() for name, r in self.records.items()},
        }
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=".hostplan-state-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, self.path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def get(self, step_name: str, param_hash: str) -> Optional[ExecutionRecord]:
        record = self.records.get(step_name)
        if record is None or record.param_hash != param_hash:
            return None
        return record

    def put(self, record: ExecutionRecord) -> None:
        previous = self.records.get(record.step_name)
        self.records[record.step_name] = record
        try:
            self._save()
        except Exception:
            if previous is None:
                self.records.pop(record.step_name, None)
            else:
                self.records[record.step_name] = previous
            raise

    def all(self) -> List[ExecutionRecord]:
        return sorted(self.records.values(), key=lambda r: r.completed_at)

    def clear(self, step_name: Optional[str] = None) -> int:
        if step_name is None:
            removed = len(self.records)
            self.records.clear()
        else:
            removed = 1 if self.records.pop(step_name, None) else 0
        if removed:
            self._save()
        return removed
