"""
Dependency planner.

Orders resources so every resource comes after all of its dependencies.
Kahn's algorithm; among resources that are ready at the same time the one
declared first wins, so the plan is deterministic for a given input.

Pure: no I/O, nothing is deployed if planning fails.
"""

import heapq
import logging
from collections import defaultdict
from typing import Iterable, Sequence

from chainorch.errors import DependencyError
from chainorch.schemas import ResourceSpec

logger = logging.getLogger(__name__)


def plan_deployment(
    specs: Sequence[ResourceSpec],
    known: Iterable[str] = (),
) -> list[ResourceSpec]:
    """
    Produce a dependency-respecting order for specs.

    Args:
        specs: Resource specs in declaration order
        known: Names already deployed outside this spec set (legacy targets in
            the deployment record). They satisfy dependencies but are not planned.

    Returns:
        Specs in deployment order

    Raises:
        DependencyError: Duplicate name, unknown dependency or cycle
    """
    position: dict[str, int] = {}
    for index, spec in enumerate(specs):
        if spec.name in position:
            raise DependencyError(f"Duplicate resource name: {spec.name}", [spec.name])
        position[spec.name] = index

    known_names = set(known) - set(position)

    unknown = sorted({
        f"{spec.name} -> {dep}"
        for spec in specs
        for dep in spec.dependencies
        if dep not in position and dep not in known_names
    })
    if unknown:
        raise DependencyError(
            f"Unknown dependencies: {', '.join(unknown)}",
            [entry.split(" -> ")[1] for entry in unknown],
        )

    indegree = {spec.name: 0 for spec in specs}
    edges: dict[str, list[str]] = defaultdict(list)
    for spec in specs:
        for dep in spec.dependencies:
            if dep in position:
                indegree[spec.name] += 1
                edges[dep].append(spec.name)

    ready = [position[name] for name, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: list[ResourceSpec] = []
    while ready:
        current = specs[heapq.heappop(ready)]
        ordered.append(current)
        for nxt in edges[current.name]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                heapq.heappush(ready, position[nxt])

    if len(ordered) != len(specs):
        cyclic = sorted(name for name, degree in indegree.items() if degree > 0)
        raise DependencyError(
            f"Dependency cycle among: {', '.join(cyclic)}",
            cyclic,
        )

    logger.debug(f"Planned {len(ordered)} resources: {[s.name for s in ordered]}")
    return ordered
