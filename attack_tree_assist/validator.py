"""
Structure Analysis for attack tree snapshots.

Checks the shape of the tree the user is drawing:
- Which node acts as the root (scenario goal, else the best-connected node)
- How much of the tree is reachable from it (undirected BFS) and how deep
- Gate health: AND / OR gates need at least two branches
- Step nodes with no links at all
- Directed cycles (reported as warnings; the editor allows them)

Used by both the prune engine (structural flags) and the evaluator
(structure subscore).
"""

from collections import deque
from typing import Any, Dict, List, Optional, Set

from .core.graph import TreeGraph


class StructureReport:
    """Result of structure analysis."""

    def __init__(self):
        self.total_nodes = 0
        self.total_links = 0
        self.root_id: Optional[str] = None
        self.reachable_nodes = 0
        self.max_depth = 0
        self.depths: Dict[str, int] = {}
        self.and_count = 0
        self.or_count = 0
        self.and_ok = 0
        self.or_ok = 0
        self.empty_gates: List[str] = []
        self.unary_gates: List[str] = []
        self.unlinked: List[str] = []
        self.cycles: List[List[str]] = []
        self.warnings: List[str] = []

    def add_warning(self, msg: str):
        self.warnings.append(msg)

    @property
    def connected_pct(self) -> float:
        return self.reachable_nodes / self.total_nodes if self.total_nodes else 1.0

    @property
    def valid_and_pct(self) -> float:
        return self.and_ok / self.and_count if self.and_count else 1.0

    @property
    def valid_or_pct(self) -> float:
        return self.or_ok / self.or_count if self.or_count else 1.0

    @property
    def depth_ok(self) -> float:
        """Full credit from depth 2 on, linear below."""
        return 1.0 if self.max_depth >= 2 else self.max_depth / 2.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': self.total_nodes,
            'edges': self.total_links,
            'root': self.root_id,
            'reachable_nodes': self.reachable_nodes,
            'connected_pct': round(self.connected_pct, 4),
            'max_depth': self.max_depth,
            'gates': {
                'and_count': self.and_count,
                'or_count': self.or_count,
                'valid_and_pct': round(self.valid_and_pct, 4),
                'valid_or_pct': round(self.valid_or_pct, 4),
            },
            'empty_gates': self.empty_gates,
            'unary_gates': self.unary_gates,
            'unlinked': self.unlinked,
            'cycles': self.cycles,
            'warnings': self.warnings,
        }


def choose_root(graph: TreeGraph, goal: Optional[str] = None) -> Optional[str]:
    """
    Pick the node BFS starts from.

    The scenario goal node when the tree contains it, else the node with the
    highest undirected degree (earliest node wins ties).
    """
    if len(graph) == 0:
        return None
    if goal:
        node = graph.find_by_label(goal)
        if node is not None:
            return node.id

    adj = graph.adjacency()
    best_id, best_deg = None, -1
    for node in graph.nodes:
        deg = len(adj[node.id])
        if deg > best_deg:
            best_id, best_deg = node.id, deg
    return best_id


def bfs_depths(graph: TreeGraph, root_id: str) -> Dict[str, int]:
    """Undirected BFS distances from ``root_id`` to every reachable node."""
    adj = graph.adjacency()
    if root_id not in adj:
        return {}
    depths = {root_id: 0}
    queue = deque([root_id])
    while queue:
        current = queue.popleft()
        for nxt in adj[current]:
            if nxt not in depths:
                depths[nxt] = depths[current] + 1
                queue.append(nxt)
    return depths


def detect_cycles(graph: TreeGraph) -> List[List[str]]:
    """
    Directed cycles over parent -> child links.

    Iterative DFS with an explicit stack, so long chains are fine.

    Returns:
        List of cycles (each cycle is a list of node ids, first id repeated last)
    """
    cycles = []
    done: Set[str] = set()

    for start in graph.nodes:
        if start.id in done:
            continue
        path = [start.id]
        on_path = {start.id}
        stack = [iter(graph.children(start.id))]
        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                node_id = path.pop()
                on_path.discard(node_id)
                done.add(node_id)
            elif child in on_path:
                cycles.append(path[path.index(child):] + [child])
            elif child not in done:
                path.append(child)
                on_path.add(child)
                stack.append(iter(graph.children(child)))

    return cycles


def analyze_structure(graph: TreeGraph, goal: Optional[str] = None) -> StructureReport:
    """
    Analyze connectivity, depth and gate health of a tree snapshot.

    Args:
        graph: Tree snapshot
        goal: Scenario goal label, used to pick the root

    Returns:
        StructureReport
    """
    report = StructureReport()
    report.total_nodes = len(graph)
    report.total_links = len(graph.links)
    if report.total_nodes == 0:
        return report

    adj = graph.adjacency()
    report.root_id = choose_root(graph, goal)
    report.depths = bfs_depths(graph, report.root_id)
    report.reachable_nodes = len(report.depths)
    report.max_depth = max(report.depths.values()) if report.depths else 0

    for node in graph.nodes:
        degree = len(adj[node.id])
        if node.is_gate:
            # Gate health for scoring counts every branch, in or out
            if node.gate == 'AND':
                report.and_count += 1
                report.and_ok += 1 if degree >= 2 else 0
            else:
                report.or_count += 1
                report.or_ok += 1 if degree >= 2 else 0

            child_count = len(set(graph.children(node.id)))
            if child_count == 0:
                report.empty_gates.append(node.id)
            elif child_count == 1:
                report.unary_gates.append(node.id)
        elif degree == 0:
            report.unlinked.append(node.id)

    report.cycles = detect_cycles(graph)
    if report.cycles:
        report.add_warning(f"{len(report.cycles)} cycle(s) in parent -> child links")
    unreachable = report.total_nodes - report.reachable_nodes
    if unreachable:
        report.add_warning(f"{unreachable} node(s) not connected to the root")

    return report
