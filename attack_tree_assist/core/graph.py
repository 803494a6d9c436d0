"""
Graph model for attack tree snapshots.

Each node is either a step (free-text label) or a gate (AND / OR):
- Identity and label text
- Gate kind, when the node is a gate
- Position on the canvas (for acceptance placement and export)

Links are directed parent -> child. Topology queries used by the engines
(degree, neighbours, connected links) treat them as undirected.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

GATE_KINDS = ('AND', 'OR')


def _gate_kind(value: Any) -> Optional[str]:
    if not value:
        return None
    kind = str(value).strip().upper()
    return kind if kind in GATE_KINDS else None


@dataclass
class GraphNode:
    """A node on the canvas."""

    id: str
    label: str = ""
    gate: Optional[str] = None

    # Top-left corner, canvas pixels
    position: Tuple[float, float] = (0.0, 0.0)

    @property
    def is_gate(self) -> bool:
        return self.gate is not None

    @property
    def display_label(self) -> str:
        """Label text, or ``"AND gate"`` style text for unlabeled gates."""
        if self.label:
            return self.label
        if self.gate:
            return f"{self.gate} gate"
        return "node"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'GraphNode':
        """Create a node from ``{id, label, gate|gateKind|isGate, position}``."""
        gate = _gate_kind(d.get('gate') or d.get('gateKind') or d.get('gate_kind'))
        if gate is None and d.get('isGate'):
            gate = _gate_kind(d.get('label')) or 'OR'
        pos = d.get('position') or {}
        if isinstance(pos, dict):
            position = (float(pos.get('x', 0) or 0), float(pos.get('y', 0) or 0))
        else:
            position = (float(pos[0]), float(pos[1]))
        label = d.get('label')
        return cls(
            id=str(d.get('id') or uuid.uuid4()),
            label='' if label is None else str(label),
            gate=gate,
            position=position,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'label': self.label,
            'position': {'x': self.position[0], 'y': self.position[1]},
        }
        if self.gate:
            result['gate'] = self.gate
        return result

    def __repr__(self) -> str:
        kind = f", gate={self.gate}" if self.gate else ""
        return f"GraphNode({self.id}, label={self.label!r}{kind})"


@dataclass
class GraphLink:
    """A directed parent -> child link."""
    source: str
    target: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'source': self.source, 'target': self.target}


class TreeGraph:
    """
    Node and link storage with the topology queries the engines need.

    Node order is insertion order; it defines what "earlier" means for
    duplicate detection.
    """

    def __init__(self, nodes: Optional[List[GraphNode]] = None, links: Optional[List[GraphLink]] = None):
        self._nodes: Dict[str, GraphNode] = {}
        self._links: List[GraphLink] = []
        for node in nodes or []:
            self._nodes[node.id] = node
        for link in links or []:
            self.add_link(link.source, link.target, link.id)

    # ---- queries ----------------------------------------------------------

    @property
    def nodes(self) -> List[GraphNode]:
        return list(self._nodes.values())

    @property
    def links(self) -> List[GraphLink]:
        return list(self._links)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    def find_by_label(self, label: Optional[str]) -> Optional[GraphNode]:
        """First node whose label matches case-insensitively after trimming."""
        if label is None:
            return None
        wanted = str(label).strip().lower()
        if not wanted:
            return None
        for node in self._nodes.values():
            if node.label.strip().lower() == wanted:
                return node
        return None

    def connected_links(self, node_id: str) -> List[GraphLink]:
        return [l for l in self._links if l.source == node_id or l.target == node_id]

    def children(self, node_id: str) -> List[str]:
        return [l.target for l in self._links if l.source == node_id]

    def parents(self, node_id: str) -> List[str]:
        return [l.source for l in self._links if l.target == node_id]

    def neighbors(self, node_id: str) -> List[str]:
        """Undirected neighbours, each listed once."""
        seen = []
        for link in self.connected_links(node_id):
            other = link.target if link.source == node_id else link.source
            if other != node_id and other not in seen:
                seen.append(other)
        return seen

    def degree(self, node_id: str) -> int:
        """Undirected degree (number of connected links)."""
        return len(self.connected_links(node_id))

    def adjacency(self) -> Dict[str, List[str]]:
        """Undirected adjacency over all nodes."""
        adj: Dict[str, List[str]] = {node_id: [] for node_id in self._nodes}
        for link in self._links:
            if link.source == link.target:
                continue
            if link.target not in adj[link.source]:
                adj[link.source].append(link.target)
            if link.source not in adj[link.target]:
                adj[link.target].append(link.source)
        return adj

    # ---- mutation (suggestion acceptance) ---------------------------------

    def add_node(self, label: str, position: Tuple[float, float] = (0.0, 0.0),
                 gate: Optional[str] = None, node_id: Optional[str] = None) -> GraphNode:
        node = GraphNode(
            id=node_id or str(uuid.uuid4()),
            label=label,
            gate=_gate_kind(gate),
            position=(float(position[0]), float(position[1])),
        )
        self._nodes[node.id] = node
        return node

    def add_link(self, source: str, target: str, link_id: Optional[str] = None) -> Optional[GraphLink]:
        """Link two existing nodes; links to unknown nodes are ignored."""
        if source not in self._nodes or target not in self._nodes:
            return None
        link = GraphLink(source, target, link_id or str(uuid.uuid4()))
        self._links.append(link)
        return link

    def remove_node(self, node_id: str) -> bool:
        if node_id not in self._nodes:
            return False
        del self._nodes[node_id]
        self._links = [l for l in self._links if l.source != node_id and l.target != node_id]
        return True

    # ---- serialization ----------------------------------------------------

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TreeGraph':
        """
        Build a graph from a snapshot.

        Accepts ``{"nodes": [...], "links": [...]}`` or a JointJS
        ``graph.toJSON()`` document (``{"cells": [...]}``) as saved by the
        browser editor. Unknown link endpoints are dropped.
        """
        data = data or {}
        if 'cells' in data:
            return cls._from_cells(data.get('cells') or [])

        graph = cls()
        for raw in data.get('nodes') or []:
            if isinstance(raw, dict):
                node = GraphNode.from_dict(raw)
                graph._nodes[node.id] = node
        for raw in data.get('links') or data.get('edges') or []:
            if not isinstance(raw, dict):
                continue
            source, target = _endpoint(raw.get('source')), _endpoint(raw.get('target'))
            if source and target:
                graph.add_link(source, target, raw.get('id'))
        return graph

    @classmethod
    def _from_cells(cls, cells: List[Dict[str, Any]]) -> 'TreeGraph':
        graph = cls()
        link_cells = []
        for cell in cells:
            if not isinstance(cell, dict):
                continue
            if 'source' in cell and 'target' in cell:
                link_cells.append(cell)
                continue
            gate = _gate_kind(cell.get('gate'))
            text = ((cell.get('attrs') or {}).get('label') or {}).get('text', '')
            pos = cell.get('position') or {}
            node = GraphNode(
                id=str(cell.get('id') or uuid.uuid4()),
                # a gate's label text is just its kind
                label='' if gate else str(text or ''),
                gate=gate,
                position=(float(pos.get('x', 0) or 0), float(pos.get('y', 0) or 0)),
            )
            graph._nodes[node.id] = node
        for cell in link_cells:
            source, target = _endpoint(cell.get('source')), _endpoint(cell.get('target'))
            if source and target:
                graph.add_link(source, target, cell.get('id'))
        return graph

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': [n.to_dict() for n in self._nodes.values()],
            'links': [l.to_dict() for l in self._links],
        }

    def __repr__(self) -> str:
        return f"TreeGraph(nodes={len(self._nodes)}, links={len(self._links)})"


def _endpoint(value: Any) -> Optional[str]:
    """Link endpoints may be bare ids or JointJS ``{"id": ...}`` objects."""
    if isinstance(value, dict):
        value = value.get('id')
    return str(value) if value else None
