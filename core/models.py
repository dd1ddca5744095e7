"""
Core data models for the provisioning engine.

These dataclasses define the shared vocabulary used across all modules:
- Outcome: the single result every step yields in a run
- ExecutionRecord: durable proof that a step was applied with given parameters
- HostFacts: what the platform probe learned about the target host
- ProvisionContext: explicit handles passed into every provider action
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    FAILED_NON_CRITICAL = "failed_non_critical"


@dataclass
class Outcome:
    """Result of one step in one run.

    Exactly one of these is produced per planned step. ``detail`` holds the
    success message or skip reason; ``error`` holds the exception for both
    failure kinds.
    """
    kind: OutcomeKind
    detail: str = ""
    error: Optional[BaseException] = None
    fallback_used: bool = False

    @classmethod
    def success(cls, detail: str = "", fallback_used: bool = False) -> Outcome:
        return cls(OutcomeKind.SUCCESS, detail=detail, fallback_used=fallback_used)

    @classmethod
    def skipped(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.SKIPPED, detail=reason)

    @classmethod
    def failed(cls, error: BaseException) -> Outcome:
        return cls(OutcomeKind.FAILED, detail=str(error), error=error)

    @classmethod
    def failed_non_critical(cls, error: BaseException) -> Outcome:
        return cls(OutcomeKind.FAILED_NON_CRITICAL, detail=str(error), error=error)

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.kind in (OutcomeKind.FAILED, OutcomeKind.FAILED_NON_CRITICAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "detail": self.detail,
            "fallback_used": self.fallback_used,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ExecutionRecord:
    """Persisted marker that ``step_name`` was applied with ``param_hash``."""
    step_name: str
    param_hash: str
    outcome: OutcomeKind = OutcomeKind.SUCCESS
    completed_at: str = field(default_factory=_now)
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_name": self.step_name,
            "param_hash": self.param_hash,
            "outcome": self.outcome.value,
            "completed_at": self.completed_at,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ExecutionRecord:
        return cls(
            step_name=data["step_name"],
            param_hash=data["param_hash"],
            outcome=OutcomeKind(data.get("outcome", "success")),
            completed_at=data.get("completed_at") or _now(),
            detail=data.get("detail") or "",
        )


@dataclass(frozen=True)
class HostFacts:
    """Platform facts used to pick providers before planning."""
    os_codename: str
    architecture: str
    os_version: str = ""

    def as_template_vars(self) -> Dict[str, str]:
        return {
            "codename": self.os_codename,
            "arch": self.architecture,
            "os_version": self.os_version,
        }


@dataclass
class ProvisionContext:
    """Explicit state handed to every provider action.

    runner: the command runner (owns privilege escalation).
    facts: host facts from the platform probe.
    config: manifest defaults, available to providers that need tunables.
    """
    runner: Any
    facts: HostFacts
    config: Dict[str, Any] = field(default_factory=dict)
