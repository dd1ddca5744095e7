"""Executor: runs a plan one step at a time.

Responsibilities:
1. Skip steps whose ExecutionRecord matches their current parameter hash
2. Call the bound provider, retrying retryable steps with exponential backoff
3. Persist an ExecutionRecord after each successful apply
4. Abort on a critical failure, continue past best-effort failures
5. Skip steps whose dependencies did not complete
6. Stop between steps when cancellation is requested
7. Report exactly one Outcome per planned step
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Set, Tuple

from core.errors import CriticalActionError, NonCriticalActionError
from core.models import ExecutionRecord, Outcome, OutcomeKind, ProvisionContext
from core.planner import Plan
from core.providers import Provider, ProviderRegistry
from core.reporter import Report, Reporter, StepReport
from core.state import StateStore
from core.steps import Step

logger = logging.getLogger(__name__)

# Type for the progress callback
StepCallback = Optional[Callable[[StepReport], None]]
Sleep = Callable[[float], Awaitable[None]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Executor:
    """Executes a plan against a state store."""

    def __init__(
        self,
        registry: ProviderRegistry,
        context: ProvisionContext,
        on_step_update: StepCallback = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.registry = registry
        self.context = context
        self.on_step_update = on_step_update
        self._sleep = sleep
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop before the next step; the in-flight step is allowed to finish."""
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    async def execute(self, plan: Plan, store: StateStore) -> Report:
        """Run every step of ``plan`` in order and return the Report."""
        reporter = Reporter()
        incomplete: Set[str] = set()
        steps = list(plan)

        for position, step in enumerate(steps):
            if self._cancel_requested:
                logger.warning("Run cancelled before step", extra={"step": step.name})
                reporter.mark_cancelled()
                self._skip_rest(reporter, steps[position:], "run cancelled")
                break

            blocked_by = next((d for d in step.depends_on if d in incomplete), None)
            if blocked_by is not None:
                incomplete.add(step.name)
                self._collect(reporter, step.name, Outcome.skipped(
                    f"dependency '{blocked_by}' did not complete"))
                continue

            provider = self.registry.resolve(step.name)
            param_hash = step.param_hash(provider.settings())

            record = store.get(step.name, param_hash)
            if record is not None and record.outcome == OutcomeKind.SUCCESS:
                logger.info("Already applied", extra={"step": step.name})
                self._collect(reporter, step.name, Outcome.skipped("already applied"))
                continue

            started_at = _now()
            logger.info("Applying step", extra={"step": step.name})
            outcome, attempts = await self._apply(step, provider)

            if outcome.is_success:
                store.put(ExecutionRecord(
                    step_name=step.name,
                    param_hash=param_hash,
                    outcome=OutcomeKind.SUCCESS,
                    detail=outcome.detail,
                ))
                self._collect(reporter, step.name, outcome, attempts, started_at)
                continue

            if outcome.kind == OutcomeKind.SKIPPED:
                # Provider found the post-condition already true.
                self._collect(reporter, step.name, outcome, attempts, started_at)
                continue

            cause = outcome.error or RuntimeError(outcome.detail or "provider reported failure")
            if step.critical:
                error = CriticalActionError(step.name, cause, attempts)
                logger.error("Critical step failed: %s", error, extra={"step": step.name})
                self._collect(reporter, step.name, Outcome.failed(error), attempts, started_at)
                reporter.mark_aborted(step.name)
                self._skip_rest(reporter, steps[position + 1:],
                                f"aborted: critical step '{step.name}' failed")
                break

            error = NonCriticalActionError(step.name, cause, attempts)
            logger.warning("Best-effort step failed: %s", error, extra={"step": step.name})
            incomplete.add(step.name)
            self._collect(reporter, step.name, Outcome.failed_non_critical(error),
                          attempts, started_at)

        return reporter.summary()

    async def _apply(self, step: Step, provider: Provider) -> Tuple[Outcome, int]:
        """Call the provider, retrying on exceptions while attempts remain."""
        max_attempts = step.max_attempts
        attempt = 0
        while True:
            attempt += 1
            try:
                outcome = await provider.apply(self.context, step.params)
            except Exception as exc:
                logger.warning(
                    "Attempt %d/%d failed: %s", attempt, max_attempts, exc,
                    extra={"step": step.name},
                )
                if attempt >= max_attempts:
                    return Outcome.failed(exc), attempt
                await self._sleep(step.retry.delay_for(attempt))
                continue
            return outcome, attempt

    def _skip_rest(self, reporter: Reporter, steps, reason: str) -> None:
        for step in steps:
            self._collect(reporter, step.name, Outcome.skipped(reason))

    def _collect(self, reporter: Reporter, step_name: str, outcome: Outcome,
                 attempts: int = 0, started_at: str = "") -> None:
        entry = reporter.collect(step_name, outcome, attempts, started_at)
        if self.on_step_update:
            self.on_step_update(entry)
