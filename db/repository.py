"""Repository pattern for database access.

Each repository handles CRUD for one table family.
All methods take a sqlite3.Connection parameter for testability.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.models import ExecutionRecord, HostFacts, OutcomeKind


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# ExecutionRecordRepository
# ---------------------------------------------------------------------------

class ExecutionRecordRepository:
    """CRUD for execution_records table (one row per step name)."""

    def upsert(self, conn: sqlite3.Connection, record: ExecutionRecord) -> None:
        with conn:
            conn.execute(
                """INSERT INTO execution_records
                   (step_name, param_hash, outcome, detail, completed_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(step_name) DO UPDATE SET
                       param_hash = excluded.param_hash,
                       outcome = excluded.outcome,
                       detail = excluded.detail,
                       completed_at = excluded.completed_at""",
                (record.step_name, record.param_hash, record.outcome.value,
                 record.detail, record.completed_at),
            )

    def get(self, conn: sqlite3.Connection, step_name: str) -> Optional[ExecutionRecord]:
        row = conn.execute(
            "SELECT * FROM execution_records WHERE step_name = ?", (step_name,)
        ).fetchone()
        return self._to_record(row) if row else None

    def list_all(self, conn: sqlite3.Connection) -> List[ExecutionRecord]:
        rows = conn.execute(
            "SELECT * FROM execution_records ORDER BY completed_at ASC"
        ).fetchall()
        return [self._to_record(r) for r in rows]

    def delete(self, conn: sqlite3.Connection, step_name: Optional[str] = None) -> int:
        with conn:
            if step_name is None:
                cur = conn.execute("DELETE FROM execution_records")
            else:
                cur = conn.execute(
                    "DELETE FROM execution_records WHERE step_name = ?", (step_name,)
                )
        return cur.rowcount

    @staticmethod
    def _to_record(row: sqlite3.Row) -> ExecutionRecord:
        return ExecutionRecord(
            step_name=row["step_name"],
            param_hash=row["param_hash"],
            outcome=OutcomeKind(row["outcome"]),
            completed_at=row["completed_at"],
            detail=row["detail"] or "",
        )


# ---------------------------------------------------------------------------
# RunRepository
# ---------------------------------------------------------------------------

class RunRepository:
    """CRUD for provision_runs table."""

    def create_run(
        self,
        conn: sqlite3.Connection,
        manifest_name: str,
        facts: Optional[HostFacts] = None,
        total_steps: int = 0,
        run_id: Optional[str] = None,
    ) -> str:
        run_id = run_id or _uuid()
        conn.execute(
            """INSERT INTO provision_runs
               (id, manifest_name, status, started_at, os_codename, architecture,
                total_steps)
               VALUES (?, ?, 'running', ?, ?, ?, ?)""",
            (run_id, manifest_name, _now(),
             facts.os_codename if facts else None,
             facts.architecture if facts else None,
             total_steps),
        )
        conn.commit()
        return run_id

    def update_run(
        self,
        conn: sqlite3.Connection,
        run_id: str,
        status: Optional[str] = None,
        total_steps: Optional[int] = None,
        counts: Optional[Dict[str, int]] = None,
        aborted_by: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        updates = []
        params: list = []
        if status:
            updates.append("status = ?")
            params.append(status)
        if total_steps is not None:
            updates.append("total_steps = ?")
            params.append(total_steps)
        if counts is not None:
            updates.append("applied_steps = ?")
            params.append(counts.get("success", 0))
            updates.append("skipped_steps = ?")
            params.append(counts.get("skipped", 0))
            updates.append("failed_steps = ?")
            params.append(counts.get("failed", 0) + counts.get("failed_non_critical", 0))
        if aborted_by is not None:
            updates.append("aborted_by = ?")
            params.append(aborted_by)
        if error_message is not None:
            updates.append("error_message = ?")
            params.append(error_message)
        if status in ("completed", "failed", "cancelled"):
            updates.append("finished_at = ?")
            params.append(_now())

        if updates:
            params.append(run_id)
            conn.execute(
                f"UPDATE provision_runs SET {', '.join(updates)} WHERE id = ?",
                params,
            )
            conn.commit()

    def get_run(self, conn: sqlite3.Connection, run_id: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            "SELECT * FROM provision_runs WHERE id = ?", (run_id,)
        ).fetchone()
        return dict(row) if row else None

    def list_runs(self, conn: sqlite3.Connection, limit: int = 50) -> List[Dict[str, Any]]:
        rows = conn.execute(
            "SELECT * FROM provision_runs ORDER BY started_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# StepResultRepository
# ---------------------------------------------------------------------------

class StepResultRepository:
    """CRUD for step_results table."""

    def save_many(self, conn: sqlite3.Connection, run_id: str, entries: List[Any]) -> None:
        """Store the per-step entries of a Report, keeping plan order."""
        rows = [
            (_uuid(), run_id, position, e.step_name, e.outcome.kind.value,
             e.outcome.detail, e.attempts, 1 if e.outcome.fallback_used else 0,
             e.started_at or None, e.finished_at)
            for position, e in enumerate(entries)
        ]
        conn.executemany(
            """INSERT INTO step_results
               (id, run_id, position, step_name, outcome, detail, attempts,
                fallback_used, started_at, finished_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        conn.commit()

    def get_for_run(self, conn: sqlite3.Connection, run_id: str) -> List[Dict[str, Any]]:
        rows = conn.execute(
            "SELECT * FROM step_results WHERE run_id = ? ORDER BY position ASC",
            (run_id,),
        ).fetchall()
        return [dict(r) for r in rows]
