from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Set

from .hierarchy_graph import HierarchyGraph


@dataclass(frozen=True)
class CascadePreview:
    """
    What a demotion or removal of `node_id` would touch.

    - direct_ids: nodes that would need a new supervisor
    - all_ids: every transitive subordinate (reporting only)
    - depth_by_id: 1 = direct report, 2 = report-of-report, etc.
    """
    node_id: int
    direct_ids: FrozenSet[int]
    all_ids: FrozenSet[int]
    depth_by_id: Dict[int, int] = field(default_factory=dict)

    @property
    def requires_reassignment(self) -> bool:
        return bool(self.direct_ids)

    @property
    def cascade_size(self) -> int:
        return len(self.all_ids)


class SubordinateDiscovery:
    """
    Read-only traversal of reporting edges, from a node down.
    Results are sets: callers must not depend on ordering.
    """

    def __init__(self, graph: HierarchyGraph) -> None:
        self.graph = graph

    def direct_subordinates(self, node_id: int) -> Set[int]:
        return {n.id for n in self.graph.get_direct_subordinates(node_id)}

    def all_subordinates(self, node_id: int) -> Set[int]:
        return set(self._walk(node_id))

    def cascade_preview(self, node_id: int) -> CascadePreview:
        depths = self._walk(node_id)
        direct = frozenset(i for i, d in depths.items() if d == 1)
        return CascadePreview(
            node_id=node_id,
            direct_ids=direct,
            all_ids=frozenset(depths),
            depth_by_id=depths,
        )

    def _walk(self, node_id: int) -> Dict[int, int]:
        """
        Breadth-first from the node's direct reports. The visited set (seeded
        with the start node) guards against duplicate or looping edges.
        """
        depths: Dict[int, int] = {}
        visited: Set[int] = {node_id}
        queue = deque((child, 1) for child in self.direct_subordinates(node_id))

        while queue:
            current, depth = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            depths[current] = depth
            for child in self.direct_subordinates(current):
                if child not in visited:
                    queue.append((child, depth + 1))

        return depths
