from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .errors import CyclicGraphError


@dataclass(frozen=True)
class GraphOrder:
    """Result of ordering an action graph.

    ``order`` holds every node Kahn's algorithm could release. When the graph
    has a cycle the nodes on (or behind) it never reach in-degree zero, so
    ``order`` comes up short of ``node_count``.
    """

    order: list[str]
    node_count: int
    unknown_edges: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_acyclic(self) -> bool:
        return len(self.order) == self.node_count


def order_nodes(node_ids: Sequence[str], edges: Iterable[tuple[str, str]]) -> GraphOrder:
    """Topologically order ``node_ids`` using Kahn's algorithm.

    Edges naming a node outside ``node_ids`` are returned in ``unknown_edges``
    and otherwise ignored, so one bad edge cannot hide an order elsewhere.
    Duplicate node ids collapse to their first occurrence. Zero in-degree nodes
    are released in declaration order.
    """
    known = list(dict.fromkeys(node_ids))
    indegree = {node_id: 0 for node_id in known}
    outgoing: dict[str, list[str]] = defaultdict(list)
    unknown_edges: list[tuple[str, str]] = []

    for source, target in edges:
        if source not in indegree or target not in indegree:
            unknown_edges.append((source, target))
            continue
        outgoing[source].append(target)
        indegree[target] += 1

    queue = deque(node_id for node_id in known if indegree[node_id] == 0)
    ordered: list[str] = []
    while queue:
        current = queue.popleft()
        ordered.append(current)
        for nxt in outgoing[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)

    return GraphOrder(order=ordered, node_count=len(known), unknown_edges=unknown_edges)


def topological_sort(node_ids: Sequence[str], edges: Iterable[tuple[str, str]]) -> list[str]:
    result = order_nodes(node_ids, edges)
    if not result.is_acyclic:
        raise CyclicGraphError("Graph contains a cycle; cannot execute event.")
    return result.order
