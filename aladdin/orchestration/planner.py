from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from ..agents.contracts import default_dependencies, department_priority, list_contracts
from ..core.exceptions import DependencyCycleError, UnknownDepartmentError
from ..core.logging import get_logger
from ..schemas.departments import DepartmentNode

logger = get_logger(name=__name__)


@dataclass(slots=True)
class ExecutionPlan:
    """Departments grouped into tiers; every dependency sits in an earlier tier."""

    tiers: list[list[str]] = field(default_factory=list)
    nodes: dict[str, DepartmentNode] = field(default_factory=dict)
    dependencies: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def departments(self) -> list[str]:
        return [department for tier in self.tiers for department in tier]

    def tier_of(self, department: str) -> int:
        for index, tier in enumerate(self.tiers):
            if department in tier:
                return index
        raise KeyError(department)

    def __len__(self) -> int:
        return sum(len(tier) for tier in self.tiers)


def _find_cycle(remaining: Sequence[str], edges: Mapping[str, tuple[str, ...]]) -> tuple[str, ...]:
    pending = set(remaining)
    for start in sorted(pending, key=department_priority):
        path: list[str] = []
        position: dict[str, int] = {}
        current: str | None = start
        while current is not None and current not in position:
            position[current] = len(path)
            path.append(current)
            current = next((dep for dep in edges.get(current, ()) if dep in pending), None)
        if current is not None:
            cycle = path[position[current]:]
            return tuple(cycle + [current])
    return tuple(sorted(pending))


def build_plan(
    selected: Iterable[DepartmentNode | str],
    dependencies: Mapping[str, Sequence[str]] | None = None,
) -> ExecutionPlan:
    """Layer ``selected`` departments into dependency tiers.

    Dependencies on known departments that were not selected are ignored, and a catalog
    department missing from ``dependencies`` has none. Referencing a department that
    neither ``dependencies`` nor the catalog knows raises ``UnknownDepartmentError``; a
    cycle raises ``DependencyCycleError``. No partial plan is returned in either case.
    """
    graph = {name: tuple(deps) for name, deps in (dependencies or default_dependencies()).items()}
    known = set(graph) | {contract.department.value for contract in list_contracts()}

    nodes: dict[str, DepartmentNode] = {}
    for item in selected:
        node = item if isinstance(item, DepartmentNode) else DepartmentNode(department_id=item)
        if node.department_id not in known:
            raise UnknownDepartmentError(node.department_id)
        nodes[node.department_id] = node

    edges: dict[str, tuple[str, ...]] = {}
    for name, node in nodes.items():
        declared = node.dependencies or graph.get(name, ())
        for dependency in declared:
            if dependency not in known:
                raise UnknownDepartmentError(dependency, referenced_by=name)
        edges[name] = tuple(dependency for dependency in declared if dependency in nodes)
        node.dependencies = edges[name]

    tiers: list[list[str]] = []
    placed: set[str] = set()
    remaining = set(nodes)
    while remaining:
        ready = [name for name in remaining if all(dep in placed for dep in edges[name])]
        if not ready:
            cycle = _find_cycle(sorted(remaining), edges)
            logger.error("dependency_cycle_detected", cycle=list(cycle))
            raise DependencyCycleError(cycle)
        ready.sort(key=lambda name: (department_priority(name), name))
        tiers.append(ready)
        placed.update(ready)
        remaining.difference_update(ready)

    logger.debug("execution_plan_built", tiers=tiers)
    return ExecutionPlan(tiers=tiers, nodes=nodes, dependencies=edges)
