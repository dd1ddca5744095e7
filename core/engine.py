"""Provisioner: the entry point that ties a manifest to a host.

Responsibilities:
1. Bind every manifest step to a provider chosen for the host facts
2. Plan (all validation errors surface here, before any side effect)
3. Execute the plan against the state store
4. Record the run and its per-step results to the database, when one is given
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import List, Optional, Tuple

from core.executor import Executor, StepCallback
from core.manifest import Manifest
from core.models import ProvisionContext, RunStatus
from core.planner import Plan, Planner
from core.providers import ProviderRegistry
from core.reporter import Report
from core.state import StateStore
from core.steps import Step
from db.repository import RunRepository, StepResultRepository

# Ensure provider types are registered when the engine is imported
import providers  # noqa: F401

logger = logging.getLogger(__name__)


class Provisioner:
    """Runs a manifest against one host."""

    def __init__(
        self,
        manifest: Manifest,
        store: StateStore,
        context: ProvisionContext,
        registry: Optional[ProviderRegistry] = None,
        conn: Optional[sqlite3.Connection] = None,
    ):
        self.manifest = manifest
        self.store = store
        self.context = context
        self._registry = registry
        self.conn = conn
        self.planner = Planner()
        self.executor: Optional[Executor] = None
        self._cancel_requested = False

        self.run_repo = RunRepository()
        self.result_repo = StepResultRepository()

    @property
    def registry(self) -> ProviderRegistry:
        if self._registry is None:
            self._registry = self.build_registry()
        return self._registry

    def build_registry(self) -> ProviderRegistry:
        """Bind each step to a provider of its declared type for this host."""
        return ProviderRegistry.from_steps(self.manifest.steps, self.context.facts)

    def plan(self) -> Plan:
        return self.planner.plan(self.manifest.steps, self.registry)

    def preview(self) -> List[Tuple[Step, bool]]:
        """The plan, with whether each step already has a matching record."""
        rows = []
        for step in self.plan():
            provider = self.registry.resolve(step.name)
            record = self.store.get(step.name, step.param_hash(provider.settings()))
            rows.append((step, record is not None))
        return rows

    def cancel(self) -> None:
        """Request a cooperative stop (safe to call before ``run`` starts executing)."""
        self._cancel_requested = True
        if self.executor is not None:
            self.executor.cancel()

    async def run(self, on_step_update: StepCallback = None) -> Report:
        """Plan and execute the manifest.

        Plan errors (cycles, unknown steps or providers) and errors raised while
        executing propagate after the failed run has been recorded.
        """
        run_id = None
        if self.conn is not None:
            run_id = self.run_repo.create_run(
                self.conn, self.manifest.name, self.context.facts,
                total_steps=len(self.manifest.steps),
            )

        try:
            plan = self.plan()
        except Exception as e:
            logger.error("Cannot plan %s: %s", self.manifest.name, e)
            if run_id is not None:
                self.run_repo.update_run(self.conn, run_id,
                                         status=RunStatus.FAILED.value, error_message=str(e))
            raise

        logger.info("Plan: %s", " -> ".join(plan.step_names))
        self.executor = Executor(self.registry, self.context, on_step_update=on_step_update)
        if self._cancel_requested:
            self.executor.cancel()
        try:
            report = await self.executor.execute(plan, self.store)
        except (Exception, asyncio.CancelledError, KeyboardInterrupt) as e:
            message = str(e) or type(e).__name__
            logger.error("Run of %s stopped: %s", self.manifest.name, message)
            if run_id is not None:
                status = RunStatus.FAILED if isinstance(e, Exception) else RunStatus.CANCELLED
                self.run_repo.update_run(self.conn, run_id, status=status.value,
                                         error_message=message)
            raise

        if run_id is not None:
            self.result_repo.save_many(self.conn, run_id, report.entries)
            aborted = report.outcome_for(report.aborted_by) if report.aborted_by else None
            self.run_repo.update_run(
                self.conn, run_id,
                status=report.status.value,
                counts=report.counts,
                aborted_by=report.aborted_by,
                error_message=aborted.detail if aborted else None,
            )
        return report

    async def verify(self) -> List[Tuple[str, str]]:
        """Ask each provider to describe its post-condition on the host."""
        results = []
        for step in self.plan():
            provider = self.registry.resolve(step.name)
            detail = await provider.verify(self.context, step.params)
            if detail is not None:
                results.append((step.name, detail))
        return results
