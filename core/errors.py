"""Custom exceptions for the provisioning engine."""

from __future__ import annotations

from typing import List, Optional, Sequence


class ManifestError(Exception):
    """Invalid or missing manifest definition."""


class CycleError(Exception):
    """The dependency graph has at least one cycle; nothing can be planned."""

    def __init__(self, participants: Sequence[str]):
        self.participants: List[str] = list(participants)
        super().__init__(
            f"Dependency cycle between steps: {', '.join(self.participants)}"
        )


class UnknownStepError(Exception):
    """A step (or the provider bound to it) cannot be found."""

    def __init__(self, name: str, available: Optional[Sequence[str]] = None,
                 referenced_by: Optional[str] = None):
        self.name = name
        self.available = list(available or [])
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"Step '{referenced_by}' depends on unknown step '{name}'"
        else:
            message = f"Unknown step: '{name}'. Available: {self.available}"
        super().__init__(message)


class TransientActionError(Exception):
    """A provider action failed in a way that may succeed on a later attempt."""


class ActionError(Exception):
    """A step's action failed after all of its attempts."""

    def __init__(self, step_name: str, cause: BaseException, attempts: int = 1):
        self.step_name = step_name
        self.cause = cause
        self.attempts = attempts
        super().__init__(
            f"Step '{step_name}' failed after {attempts} attempt(s): {cause}"
        )


class CriticalActionError(ActionError):
    """A critical step failed; the rest of the plan was aborted."""


class NonCriticalActionError(ActionError):
    """A best-effort step failed; execution continued."""


class CommandError(Exception):
    """An external command exited non-zero or timed out."""

    def __init__(self, cmd: Sequence[str], returncode: Optional[int], stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        if returncode is None:
            message = f"Command timed out: {' '.join(self.cmd)}"
        else:
            message = f"Command {' '.join(self.cmd)!r} exited {returncode}: {detail}"
        super().__init__(message)
