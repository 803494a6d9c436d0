"""
Suggest Engine - ranks KB entries the user could add next.

Candidates come from four pools:
- parent:   declared children of the selected parent's KB entry
- scenario: every entry tagged for the active scenario
- common:   a fixed list of cross-scenario fallbacks
- semantic: oracle neighbours of a parent label the KB does not know

Each candidate gets a severity base score plus pool bonuses, a must-have
boost and a synergy boost. Pools are merged by id (best score wins),
filtered by ``min_score``, deduplicated against labels already on the
canvas, ranked, and split into ``top`` / ``more``.

When a Wizard-of-Oz feed is configured its matching entries boost
candidates of the same name or are injected as ``woz`` suggestions, and the
merged list is capped at ``matching.max_returned``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .config import AssistConfig, DEFAULT_CONFIG
from .core.graph import GraphNode, TreeGraph
from .kb import KBEntry, KBIndex, severity_weight
from .resolver import Resolver
from .scenario import Scenario, in_scenario, phrase_ids
from .similarity import similarity
from .text_normalizer import canonical_key
from .woz import matching_entries

logger = logging.getLogger(__name__)

MUST_HAVE_REASON = "Must-have path for this scenario."
MUST_HAVE_BADGE = "must-have"
WOZ_REASON = "Suggested by the study facilitator."

# Placement of accepted suggestions, canvas pixels
CHILD_OFFSET_X = 240
ROOT_POSITION = (160, 120)
ROOT_CHILD_SPACING_Y = 70


@dataclass
class Suggestion:
    """One ranked candidate node."""
    id: str
    name: str
    source: str  # 'parent' | 'scenario' | 'common' | 'semantic' | 'woz'
    reason: str
    score: float
    badge: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'name': self.name,
            'source': self.source,
            'reason': self.reason,
            'score': round(self.score, 4),
        }
        if self.badge:
            result['badge'] = self.badge
        return result


@dataclass
class SuggestResult:
    top: List[Suggestion] = field(default_factory=list)
    more: List[Suggestion] = field(default_factory=list)
    parent_id: Optional[str] = None
    parent_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'top': [s.to_dict() for s in self.top],
            'more': [s.to_dict() for s in self.more],
            'parent_id': self.parent_id,
            'parent_label': self.parent_label,
        }


class SuggestEngine:
    """Scenario-aware next-node recommendations."""

    def __init__(self, index: KBIndex, resolver: Resolver, config: Optional[AssistConfig] = None,
                 neighbours: Optional[Callable[[str, int], List[Dict[str, Any]]]] = None,
                 feed: Optional[Callable[[], Optional[Dict[str, Any]]]] = None):
        """
        Args:
            index: KB index
            resolver: Label resolver over the same index
            config: Assistant configuration
            neighbours: Optional semantic lookup ``(text, k) -> [{id, score}]``
            feed: Optional getter for the latest Wizard-of-Oz feed document
        """
        self.index = index
        self.resolver = resolver
        self.config = config or DEFAULT_CONFIG
        self.neighbours = neighbours
        self.feed = feed

    def existing_ids(self, graph: TreeGraph) -> Set[str]:
        """KB ids already represented on the canvas (step nodes only)."""
        ids = set()
        for node in graph.nodes:
            if node.is_gate or not node.label.strip():
                continue
            entry_id = self.resolver.resolve_id(node.label, self.config.t_high)
            if entry_id:
                ids.add(entry_id)
        return ids

    def suggest(self, graph: TreeGraph, parent_label: Optional[str] = None,
                scenario: Optional[Scenario] = None,
                limit_top: Optional[int] = None, limit_more: Optional[int] = None) -> SuggestResult:
        """
        Rank candidate nodes for the current tree.

        Args:
            graph: Current tree snapshot
            parent_label: Label of the selected node, if any
            scenario: Active scenario (None behaves like the sandbox)
            limit_top: Size of ``top`` (default ``suggest.top_k``)
            limit_more: Size of ``more`` (default ``suggest.more_k``)

        Returns:
            SuggestResult
        """
        cfg = self.config.suggest
        limit_top = cfg['top_k'] if limit_top is None else max(0, int(limit_top))
        limit_more = cfg['more_k'] if limit_more is None else max(0, int(limit_more))
        scenario_id = scenario.id if scenario else ''

        existing = self.existing_ids(graph)
        golds = phrase_ids(scenario.gold_must_have, scenario, self.resolver, self.config.t_high) if scenario else set()

        parent_id = None
        if parent_label and parent_label.strip():
            parent_id = self.resolver.resolve_id(parent_label, self.config.t_med)

        def make(entry: KBEntry, source: str, base: float, reason: str) -> Suggestion:
            score = base
            badge = None
            if entry.id in golds:
                score += cfg['gold_bonus']
                reason = MUST_HAVE_REASON
                badge = MUST_HAVE_BADGE
            for pair in self.config.synergy_pairs:
                other = pair['b'] if entry.id == pair['a'] else (pair['a'] if entry.id == pair['b'] else None)
                if other and other in existing:
                    score += cfg['synergy_bonus']
                    reason = pair['text'] or reason
                    break
            return Suggestion(entry.id, entry.name or entry.id, source, reason, score, badge)

        weights = self.config.severity_weights
        candidates: List[Suggestion] = []

        # 1) typical children of the parent
        parent = self.index.get(parent_id)
        if parent is not None:
            for ref in parent.children:
                kid = self.index.get(ref)
                if kid is None:
                    res = self.resolver.match(ref, self.config.t_high)
                    kid = res.entry if res else None
                if kid is None or kid.id in existing:
                    continue
                base = severity_weight(kid.severity, weights) + cfg['parent_bonus']
                if in_scenario(kid, scenario_id):
                    base += cfg['parent_scenario_bonus']
                candidates.append(make(kid, 'parent', base, f'Typical child of "{parent_label}".'))

        # 2) scenario-tagged entries
        for entry in self.index.entries:
            if entry.id in existing or not in_scenario(entry, scenario_id):
                continue
            base = severity_weight(entry.severity, weights) + cfg['scenario_bonus']
            candidates.append(make(entry, 'scenario', base, "Relevant to the chosen scenario."))

        # 3) global fallbacks
        for entry_id in self.config.common_ids:
            entry = self.index.get(entry_id)
            if entry is None or entry.id in existing:
                continue
            base = severity_weight(entry.severity, weights)
            if in_scenario(entry, scenario_id):
                base += cfg['common_scenario_bonus']
            candidates.append(make(entry, 'common', base, "Common in many attack trees."))

        # 4) semantic neighbours of a parent the KB does not know
        if parent_id is None and parent_label and self.neighbours is not None:
            candidates.extend(self._semantic_pool(parent_label, existing, make))

        merged: Dict[str, Suggestion] = {}
        for cand in candidates:
            prev = merged.get(cand.id)
            if prev is None or cand.score > prev.score:
                merged[cand.id] = cand

        labels = [n.label for n in graph.nodes if not n.is_gate and n.label.strip()]
        ranked = []
        for cand in merged.values():
            if cand.score < cfg['min_score']:
                continue
            if any(similarity(cand.name, label, self.config.weights) >= self.config.t_high for label in labels):
                continue
            ranked.append(cand)
        ranked.sort(key=lambda s: (-s.score, s.name.casefold()))
        if self.feed is not None:
            ranked = self._merge_feed(ranked, scenario_id, parent_label, labels)

        result = SuggestResult(
            top=ranked[:limit_top],
            more=ranked[limit_top:limit_top + limit_more],
            parent_id=parent_id,
            parent_label=parent_label,
        )
        logger.debug("Suggest for %r (%s): %d ranked, %d top, %d more",
                     parent_label, scenario_id or 'sandbox', len(ranked), len(result.top), len(result.more))
        return result

    def _merge_feed(self, ranked: List[Suggestion], scenario_id: str,
                    parent_label: Optional[str], labels: List[str]) -> List[Suggestion]:
        """Boost or inject facilitator picks, then re-rank and cap at ``matching.max_returned``."""
        entries = matching_entries(self.feed(), scenario_id, parent_label)
        if not entries:
            return ranked

        default_boost = self.config.woz['score_boost']
        by_name = {s.name.casefold(): s for s in ranked}
        merged = list(ranked)
        for entry in entries:
            what = entry['what']
            text = str(what['text']).strip()
            boost = float(what.get('score_boost') or default_boost)
            cand = by_name.get(text.casefold())
            if cand is not None:
                cand.score += boost
                cand.reason = f"{cand.reason} (boosted)"
                continue
            if any(similarity(text, label, self.config.weights) >= self.config.t_high for label in labels):
                continue
            why = what.get('why')
            if isinstance(why, list):
                why = ' '.join(str(w) for w in why)
            entry_id = str(entry.get('id') or '') or 'woz:' + (canonical_key(text).replace(' ', '_') or text.casefold())
            cand = Suggestion(entry_id, text, 'woz', str(why or WOZ_REASON), boost)
            merged.append(cand)
            by_name[text.casefold()] = cand

        merged.sort(key=lambda s: (-s.score, s.name.casefold()))
        return merged[:self.config.matching['max_returned']]

    def _semantic_pool(self, parent_label: str, existing: Set[str], make) -> List[Suggestion]:
        semantic = self.config.get_semantic_config()
        threshold = semantic['threshold']
        pool = []
        for hit in self.neighbours(parent_label, semantic['top_k']) or []:
            entry = self.index.get(hit.get('id'))
            score = float(hit.get('score', 0.0))
            if entry is None or entry.id in existing or score < threshold:
                continue
            base = severity_weight(entry.severity, self.config.severity_weights) + self.config.suggest['semantic_bonus']
            reason = f'Semantically close to "{parent_label}" ({round(score * 100)}%).'
            pool.append(make(entry, 'semantic', base, reason))
        return pool


@dataclass
class AcceptResult:
    """Nodes and links created when a suggestion is accepted."""
    node: GraphNode
    parent_id: Optional[str] = None
    children: List[GraphNode] = field(default_factory=list)
    link_ids: List[str] = field(default_factory=list)
    as_root: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node': self.node.to_dict(),
            'parent_id': self.parent_id,
            'children': [c.to_dict() for c in self.children],
            'link_ids': list(self.link_ids),
            'as_root': self.as_root,
        }


def accept_suggestion(graph: TreeGraph, suggestion: Union[Suggestion, Dict[str, Any], str],
                      parent_label: Optional[str] = None, index: Optional[KBIndex] = None,
                      child_cap: int = 4) -> AcceptResult:
    """
    Add an accepted suggestion to the graph.

    The new node goes 240px to the right of the parent and is linked
    parent -> child. On an empty canvas it is planted as the root and up to
    ``child_cap`` of its declared KB children are attached beside it.
    A parent label that is not on a non-empty canvas adds the node unlinked
    next to the most recent node.

    Args:
        graph: Graph to mutate
        suggestion: Suggestion, suggestion dict, or plain name
        parent_label: Label of the node to attach under
        index: KB index, used to look up children when planting a root
        child_cap: Maximum children attached to a planted root

    Returns:
        AcceptResult describing what was created
    """
    if isinstance(suggestion, Suggestion):
        name, entry_id = suggestion.name, suggestion.id
    elif isinstance(suggestion, dict):
        name, entry_id = str(suggestion.get('name') or suggestion.get('id') or ''), suggestion.get('id')
    else:
        name, entry_id = str(suggestion), None

    parent = graph.find_by_label(parent_label) if parent_label else None

    if parent is None and len(graph) == 0:
        root = graph.add_node(name, ROOT_POSITION)
        result = AcceptResult(node=root, as_root=True)

        entry = index.get(entry_id) if index is not None else None
        if entry is None and index is not None:
            key = index.lookup_key(name)
            entry = index.get(key.id) if key else None
        if entry is not None:
            for i, ref in enumerate(entry.children[:max(0, child_cap)]):
                kid = index.get(ref)
                if kid is None:
                    key = index.lookup_key(ref)
                    kid = index.get(key.id) if key else None
                child_name = kid.name if kid else ref
                pos = (ROOT_POSITION[0] + CHILD_OFFSET_X, ROOT_POSITION[1] + i * ROOT_CHILD_SPACING_Y)
                child = graph.add_node(child_name, pos)
                link = graph.add_link(root.id, child.id)
                result.children.append(child)
                result.link_ids.append(link.id)
        return result

    anchor = parent or graph.nodes[-1]
    node = graph.add_node(name, (anchor.position[0] + CHILD_OFFSET_X, anchor.position[1]))
    result = AcceptResult(node=node)
    if parent is not None:
        link = graph.add_link(parent.id, node.id)
        result.parent_id = parent.id
        result.link_ids.append(link.id)
    return result
