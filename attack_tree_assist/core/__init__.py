"""Core data structures for attack tree snapshots."""

from .graph import GraphNode, GraphLink, TreeGraph, GATE_KINDS

__all__ = ['GraphNode', 'GraphLink', 'TreeGraph', 'GATE_KINDS']
