"""Planner: orders steps so every dependency runs before its dependents.

Kahn's algorithm with a declaration-order tie-break: among the steps whose
dependencies are all emitted, the one declared first goes next. The same
declaration therefore always yields the same plan.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence

from core.errors import CycleError, ManifestError, UnknownStepError
from core.steps import Step


@dataclass(frozen=True)
class Plan:
    """A dependency-respecting total order over a set of steps."""
    steps: tuple

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def step_names(self) -> List[str]:
        return [s.name for s in self.steps]

    def get(self, name: str) -> Optional[Step]:
        for step in self.steps:
            if step.name == name:
                return step
        return None


class Planner:
    """Validates a step set and produces an execution order."""

    def plan(self, steps: Sequence[Step], registry=None) -> Plan:
        """Order ``steps`` topologically.

        Raises ManifestError for duplicate names, UnknownStepError for a
        dependency (or provider binding) that does not exist, and CycleError
        naming the steps that could not be ordered.
        """
        index: Dict[str, int] = {}
        for position, step in enumerate(steps):
            if step.name in index:
                raise ManifestError(f"Duplicate step name: '{step.name}'")
            index[step.name] = position

        for step in steps:
            for dep in step.depends_on:
                if dep not in index:
                    raise UnknownStepError(dep, list(index), referenced_by=step.name)

        if registry is not None:
            for step in steps:
                registry.resolve(step.name)

        in_degree = {step.name: len(set(step.depends_on)) for step in steps}
        dependents: Dict[str, List[str]] = {step.name: [] for step in steps}
        for step in steps:
            for dep in set(step.depends_on):
                dependents[dep].append(step.name)

        ready = [index[name] for name, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        ordered: List[Step] = []
        while ready:
            step = steps[heapq.heappop(ready)]
            ordered.append(step)
            for child in dependents[step.name]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    heapq.heappush(ready, index[child])

        if len(ordered) != len(steps):
            emitted = {s.name for s in ordered}
            unresolved = {s.name for s in steps if s.name not in emitted}
            participants = self._cycle_members(unresolved, dependents)
            raise CycleError([s.name for s in steps if s.name in participants])

        return Plan(steps=tuple(ordered))

    @staticmethod
    def _cycle_members(unresolved: set, dependents: Dict[str, List[str]]) -> set:
        """Steps that can reach themselves; steps only wedged between cycles are left out."""
        members = set()
        for start in unresolved:
            seen = set()
            stack = [c for c in dependents[start] if c in unresolved]
            while stack:
                name = stack.pop()
                if name == start:
                    members.add(start)
                    break
                if name in seen:
                    continue
                seen.add(name)
                stack.extend(c for c in dependents[name] if c in unresolved)
        return members or unresolved
