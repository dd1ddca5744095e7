"""Reporter: accumulates one Outcome per planned step into a final Report."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.errors import CriticalActionError
from core.models import Outcome, OutcomeKind, RunStatus


@dataclass
class StepReport:
    """What happened to one step in this run."""
    step_name: str
    outcome: Outcome
    attempts: int = 0
    started_at: str = ""
    finished_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        data = {"step_name": self.step_name, "attempts": self.attempts,
                "started_at": self.started_at, "finished_at": self.finished_at}
        data.update(self.outcome.to_dict())
        return data


@dataclass
class Report:
    """Run summary in plan order."""
    entries: List[StepReport] = field(default_factory=list)
    aborted_by: Optional[str] = None
    cancelled: bool = False

    @property
    def counts(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in OutcomeKind}
        counts["fallback"] = 0
        for entry in self.entries:
            counts[entry.outcome.kind.value] += 1
            if entry.outcome.fallback_used:
                counts["fallback"] += 1
        return counts

    @property
    def status(self) -> RunStatus:
        if self.aborted_by is not None:
            return RunStatus.FAILED
        if self.cancelled:
            return RunStatus.CANCELLED
        return RunStatus.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def outcome_for(self, step_name: str) -> Optional[Outcome]:
        for entry in self.entries:
            if entry.step_name == step_name:
                return entry.outcome
        return None

    def failures(self) -> List[StepReport]:
        return [e for e in self.entries if e.outcome.is_failure]

    def raise_for_status(self) -> None:
        """Raise the critical error that aborted the run, if any."""
        if self.aborted_by is None:
            return
        outcome = self.outcome_for(self.aborted_by)
        error = outcome.error if outcome else None
        if isinstance(error, CriticalActionError):
            raise error
        raise CriticalActionError(self.aborted_by, error or RuntimeError("failed"))

    def render(self) -> List[str]:
        """Plain-text summary lines, one per step plus a totals line."""
        labels = {
            OutcomeKind.SUCCESS: "OK",
            OutcomeKind.SKIPPED: "SKIP",
            OutcomeKind.FAILED: "FAIL",
            OutcomeKind.FAILED_NON_CRITICAL: "WARN",
        }
        lines = []
        for entry in self.entries:
            outcome = entry.outcome
            suffix = " (fallback)" if outcome.fallback_used else ""
            detail = f": {outcome.detail}" if outcome.detail else ""
            lines.append(f" - [{labels[outcome.kind]}] {entry.step_name}{suffix}{detail}")
        c = self.counts
        lines.append(
            f"{self.status.value}: {c['success']} applied, {c['skipped']} skipped, "
            f"{c['failed']} failed, {c['failed_non_critical']} failed (non-critical), "
            f"{c['fallback']} via fallback"
        )
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "aborted_by": self.aborted_by,
            "cancelled": self.cancelled,
            "counts": self.counts,
            "steps": [e.to_dict() for e in self.entries],
        }


class Reporter:
    """Collects outcomes during execution; no side effects beyond accumulation."""

    def __init__(self) -> None:
        self._report = Report()

    def collect(self, step_name: str, outcome: Outcome, attempts: int = 0,
                started_at: str = "") -> StepReport:
        entry = StepReport(step_name=step_name, outcome=outcome,
                           attempts=attempts, started_at=started_at)
        self._report.entries.append(entry)
        return entry

    def mark_aborted(self, step_name: str) -> None:
        self._report.aborted_by = step_name

    def mark_cancelled(self) -> None:
        self._report.cancelled = True

    def summary(self) -> Report:
        return self._report
