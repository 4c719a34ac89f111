"""
planning.py - Group descriptor steps into dependency-ordered phases.

A phase is the set of steps whose dependencies are all satisfied by earlier
phases. The execution engine runs phases in order; the steps of one phase may
run together unless one of them opts out with `parallel: false`.

Unknown dependency names are ignored here (the parser already warned about
them). Within a phase, steps keep their declaration order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence

from .errors import CircularStepDependencyError
from .parser import find_dependency_cycle
from .types import Step


@dataclass(frozen=True)
class StepPhase:
    """One layer of the step plan."""
    index: int
    steps: tuple

    @property
    def step_names(self) -> List[str]:
        return [s.name for s in self.steps]

    @property
    def parallel(self) -> bool:
        if len(self.steps) < 2:
            return False
        return all(s.parallel is not False for s in self.steps)


def plan_step_phases(steps: Sequence[Step]) -> List[StepPhase]:
    """Order steps into phases with Kahn's algorithm, one layer at a time.

    Raises:
        CircularStepDependencyError: If dependsOn forms a cycle.
    """
    names = {s.name for s in steps}
    pending: Dict[str, int] = {}
    dependents: Dict[str, List[str]] = {s.name: [] for s in steps}

    for step in steps:
        known = [d for d in step.depends_on if d in names]
        pending[step.name] = len(set(known))
        for dep in set(known):
            dependents[dep].append(step.name)

    phases: List[StepPhase] = []
    ready = [s for s in steps if pending[s.name] == 0]
    placed = 0

    while ready:
        phases.append(StepPhase(index=len(phases), steps=tuple(ready)))
        placed += len(ready)
        unlocked = set()
        for step in ready:
            for child in dependents[step.name]:
                pending[child] -= 1
                if pending[child] == 0:
                    unlocked.add(child)
        ready = [s for s in steps if s.name in unlocked]

    if placed != len(steps):
        graph = {s.name: [d for d in s.depends_on if d in names] for s in steps}
        cycle = find_dependency_cycle(graph) or sorted(n for n, c in pending.items() if c > 0)
        raise CircularStepDependencyError(cycle)

    return phases
