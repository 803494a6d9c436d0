"""
Prune Engine - flags nodes that probably should not stay in the tree.

Structural checks (any node):
    gate with no children, gate with one child, AND over alternatives,
    step node with no links

Content checks (step nodes), first decisive hit wins:
    near-duplicate of an earlier node
    recognized + relevant + high/medium severity   -> never flagged
    scenario distractor (gold low-value)
    low value given scenario and severity
    unrecognized and off-topic
    too vague

The scenario goal node and gold-matched nodes are never flagged. Each node
keeps only its most severe flag (lowest score); the result is sorted most
severe first and capped.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .config import AssistConfig, DEFAULT_CONFIG
from .core.graph import GraphNode, TreeGraph
from .kb import severity_weight
from .resolver import Resolver
from .scenario import Scenario, in_scenario, phrase_ids
from .similarity import similarity, vocabulary_score
from .text_normalizer import normalize, tokenize
from .validator import analyze_structure

logger = logging.getLogger(__name__)


@dataclass
class PruneFlag:
    element_id: str
    label: str
    reason: str
    score: float
    kind: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'elementId': self.element_id,
            'label': self.label,
            'reason': self.reason,
            'score': round(self.score, 4),
            'kind': self.kind,
        }


class KeptLabels:
    """
    Session cooldown: nodes the user chose to keep are never flagged again.

    Step nodes are matched by label (case-insensitive, trimmed). Gates all
    share the same display label, so they are matched by element id only.
    """

    def __init__(self, labels: Optional[Iterable[str]] = None):
        self._labels: Set[str] = set()
        self._elements: Set[str] = set()
        for label in labels or []:
            self.add(label)

    @staticmethod
    def _key(label: Optional[str]) -> str:
        return str(label or '').strip().casefold()

    def add(self, label: str) -> None:
        key = self._key(label)
        if key:
            self._labels.add(key)

    def add_element(self, element_id: str) -> None:
        if element_id:
            self._elements.add(str(element_id))

    def __contains__(self, label: str) -> bool:
        return self._key(label) in self._labels

    def __len__(self) -> int:
        return len(self._labels) + len(self._elements)

    def suppresses(self, flag: PruneFlag, is_gate: bool = False) -> bool:
        if flag.element_id in self._elements:
            return True
        return not is_gate and flag.label in self

    def clear(self) -> None:
        self._labels.clear()
        self._elements.clear()

    def to_list(self) -> List[str]:
        return sorted(self._labels)

    def element_ids(self) -> List[str]:
        return sorted(self._elements)


class PruneEngine:
    """Structural and content checks over a tree snapshot."""

    def __init__(self, resolver: Resolver, config: Optional[AssistConfig] = None,
                 neighbours: Optional[Callable[[str, int], List[Dict[str, Any]]]] = None):
        self.resolver = resolver
        self.index = resolver.index
        self.config = config or DEFAULT_CONFIG
        self.neighbours = neighbours

    def _flag(self, node: GraphNode, kind: str, reason: str, score: Optional[float] = None) -> PruneFlag:
        return PruneFlag(
            element_id=node.id,
            label=node.display_label,
            reason=reason,
            score=self.config.prune_score(kind) if score is None else score,
            kind=kind,
        )

    def prune(self, graph: TreeGraph, scenario: Optional[Scenario] = None,
              max_visible: Optional[int] = None,
              kept: Optional[KeptLabels] = None) -> List[PruneFlag]:
        """
        Flag low-value, duplicate and structurally broken nodes.

        Args:
            graph: Current tree snapshot
            scenario: Active scenario (None behaves like the sandbox)
            max_visible: Output cap (default ``prune.max_visible``)
            kept: Labels the user already kept this session

        Returns:
            Flags sorted by ascending score, at most ``max_visible`` long
        """
        cap = self.config.prune['max_visible'] if max_visible is None else max(0, int(max_visible))
        t_high, t_med = self.config.t_high, self.config.t_med

        scenario_id = scenario.id if scenario else ''
        gold_ids = phrase_ids(scenario.gold_must_have, scenario, self.resolver, t_high) if scenario else set()
        gold_phrases = self._expanded(scenario.gold_must_have, scenario) if scenario else []
        low_ids = phrase_ids(scenario.gold_low_value, scenario, self.resolver, t_high) if scenario else set()
        low_phrases = self._expanded(scenario.gold_low_value, scenario) if scenario else []

        # node id -> resolved KB id (None when below t_high)
        resolved: Dict[str, Optional[str]] = {}
        protected: Set[str] = set()
        for node in graph.nodes:
            if node.is_gate or not node.label.strip():
                continue
            resolved[node.id] = self.resolver.resolve_id(node.label, t_high)
            if scenario is not None and scenario.is_goal(node.label):
                protected.add(node.id)
            elif resolved[node.id] in gold_ids or self._near_any(node.label, gold_phrases, t_med):
                protected.add(node.id)

        flags: List[PruneFlag] = []
        flags.extend(self._structural(graph, scenario, resolved, protected))
        flags.extend(self._content(graph, scenario_id, resolved, protected, low_ids, low_phrases))

        best: Dict[str, PruneFlag] = {}
        for flag in flags:
            if flag.element_id in protected:
                continue
            if kept is not None and kept.suppresses(flag, graph.get(flag.element_id).is_gate):
                continue
            prev = best.get(flag.element_id)
            if prev is None or flag.score < prev.score:
                best[flag.element_id] = flag

        result = sorted(best.values(), key=lambda f: (f.score, f.label.casefold()))[:cap]
        logger.debug("Prune (%s): %d candidate flags, %d shown", scenario_id or 'sandbox', len(best), len(result))
        return result

    # ---- structural -------------------------------------------------------

    def _structural(self, graph: TreeGraph, scenario: Optional[Scenario],
                    resolved: Dict[str, Optional[str]], protected: Set[str]) -> List[PruneFlag]:
        report = analyze_structure(graph, scenario.goal if scenario else None)
        flags = []
        for node_id in report.empty_gates:
            flags.append(self._flag(graph.get(node_id), 'empty_gate',
                                    "Gate has no children: incomplete structure."))
        for node_id in report.unary_gates:
            flags.append(self._flag(graph.get(node_id), 'unary_gate',
                                    "Gate has only one child: remove the gate or add a sibling."))
        for node_id in report.unlinked:
            if node_id in protected:
                continue
            flags.append(self._flag(graph.get(node_id), 'unlinked',
                                    "Unlinked node: connect it to the tree or remove it."))

        categories = (scenario.and_alternatives if scenario and scenario.and_alternatives is not None
                      else self.config.and_alternatives)
        category_of = {}
        for category, ids in categories.items():
            for entry_id in ids:
                category_of.setdefault(entry_id, category)

        for node in graph.nodes:
            if node.gate != 'AND':
                continue
            groups = defaultdict(set)
            for child_id in set(graph.children(node.id)):
                entry_id = resolved.get(child_id)
                if entry_id and entry_id in category_of:
                    groups[category_of[entry_id]].add(entry_id)
            shared = sorted(cat for cat, ids in groups.items() if len(ids) >= 2)
            if shared:
                label = shared[0].replace('_', ' ')
                flags.append(self._flag(node, 'and_alternatives',
                                        f"AND groups alternatives ({label}) that usually belong under OR."))
        return flags

    # ---- content ----------------------------------------------------------

    def _content(self, graph: TreeGraph, scenario_id: str, resolved: Dict[str, Optional[str]],
                 protected: Set[str], low_ids: Set[str], low_phrases: List[str]) -> List[PruneFlag]:
        t_high, t_med = self.config.t_high, self.config.t_med
        semantic = self.config.get_semantic_config()
        generic = {normalize(t) for t in self.config.generic_terms}

        # (node, resolved id, oracle top-1 id) of nodes seen so far
        seen = []
        flags = []
        for node in graph.nodes:
            if node.id not in resolved:
                continue
            label = node.label
            entry_id = resolved[node.id]
            top1 = None
            if entry_id is None and self.neighbours is not None and node.id not in protected:
                hits = self.neighbours(label, 1) or []
                if hits and float(hits[0].get('score', 0.0)) >= semantic['threshold']:
                    top1 = hits[0].get('id')

            earlier = self._duplicate_of(label, entry_id, top1, seen, t_high)
            if earlier is not None:
                if node.id not in protected:
                    flags.append(self._flag(node, 'duplicate',
                                            f'Looks like a duplicate of "{earlier.display_label}".'))
                continue
            seen.append((node, entry_id, top1))

            if node.id in protected:
                continue

            entry = self.index.get(entry_id)
            relevant = entry is not None and in_scenario(entry, scenario_id)
            if relevant and entry.severity in ('high', 'medium'):
                continue

            if (entry_id is not None and entry_id in low_ids) or self._near_any(label, low_phrases, t_med):
                flags.append(self._flag(node, 'distractor',
                                        "Distractor for this scenario: rarely a useful step toward the goal."))
                continue

            if entry is not None:
                keep = severity_weight(entry.severity, self.config.severity_weights)
                keep += 0.15 if relevant else -0.15
                if keep < self.config.prune['flag_threshold']:
                    flags.append(self._flag(
                        node, 'low_value',
                        f"Low value here given the current scenario and severity ({entry.severity}).",
                        score=round(keep, 4)))
                    continue
            elif vocabulary_score(label, self.config.security_vocabulary) < self.config.matching['vocabulary_fuzzy_min']:
                flags.append(self._flag(node, 'off_topic', "Doesn't look related to the objective."))
                continue

            words = set(normalize(label).split())
            if len(tokenize(label)) < 2 or words & generic:
                flags.append(self._flag(node, 'vague', "Too generic: rename it to a concrete step."))
        return flags

    def _duplicate_of(self, label: str, entry_id: Optional[str], top1: Optional[str],
                      seen, t_high: float) -> Optional[GraphNode]:
        for other, other_id, other_top1 in seen:
            if entry_id is not None and entry_id == other_id:
                return other
            if similarity(label, other.label, self.config.weights) >= t_high:
                return other
            if top1 is not None and other_id is None and top1 == other_top1:
                return other
        return None

    def _expanded(self, phrases: List[str], scenario: Scenario) -> List[str]:
        result = []
        for phrase in phrases:
            result.extend(scenario.expand(phrase))
        return result

    def _near_any(self, label: str, phrases: List[str], threshold: float) -> bool:
        return any(similarity(label, phrase, self.config.weights) >= threshold for phrase in phrases)
