"""
Objective tree scoring against a scenario's gold standard.

    coverage    50   must-have coverage (0.85) + nice-to-have coverage (0.15)
    structure   20   connectivity, gate health, depth
    duplicates  15   near-duplicate labels
    low_value   15   known low-value items present

Labels are compared with stop-word-free token Jaccard at ``t_match``.
Every band is rounded half up to an integer; ``overall`` is their sum.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from .config import AssistConfig, DEFAULT_CONFIG
from .core.graph import TreeGraph
from .scenario import Scenario
from .similarity import jaccard
from .text_normalizer import tokenize
from .validator import StructureReport, analyze_structure

logger = logging.getLogger(__name__)

WEIGHTS = {'coverage': 50, 'structure': 20, 'duplicates': 15, 'low_value': 15}


def _round(x: float) -> int:
    """Round half up."""
    return int(math.floor(x + 0.5))


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def label_similarity(a: str, b: str) -> float:
    """Token Jaccard; labels without meaningful tokens match nothing."""
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return jaccard(tokens_a, tokens_b)


def best_gold_match(label: str, gold: List[str], scenario: Optional[Scenario],
                    threshold: float) -> Optional[Tuple[str, str, float]]:
    """
    Best gold phrase for a label, trying each phrase and its aliases.

    Returns:
        ``(gold_phrase, matched_variant, score)`` or None below ``threshold``
    """
    best = None
    for phrase in gold:
        variants = scenario.expand(phrase) if scenario else [phrase]
        for variant in variants:
            score = label_similarity(label, variant)
            if best is None or score > best[2]:
                best = (phrase, variant, score)
    if best is None or best[2] < threshold:
        return None
    return best


def find_duplicate_clusters(labels: List[str], threshold: float) -> List[List[int]]:
    """
    Greedy clustering: each unclustered label absorbs every later
    unclustered label at or above ``threshold``.

    Returns:
        Clusters (as label indices) with more than one member
    """
    token_sets = [set(tokenize(label)) for label in labels]
    used = [False] * len(labels)
    clusters = []
    for i, base in enumerate(token_sets):
        if used[i]:
            continue
        used[i] = True
        cluster = [i]
        if not base:
            continue
        for j in range(i + 1, len(labels)):
            if not used[j] and token_sets[j] and jaccard(base, token_sets[j]) >= threshold:
                used[j] = True
                cluster.append(j)
        if len(cluster) > 1:
            clusters.append(cluster)
    return clusters


def _empty_result(scenario: Optional[Scenario]) -> Dict[str, Any]:
    must = list(scenario.gold_must_have) if scenario else []
    return {
        'score': {'coverage': 0, 'structure': 0, 'duplicates': 0, 'low_value': 0, 'overall': 0},
        'coverage': {
            'must_have_total': len(must), 'must_have_hit': 0,
            'nice_to_have_total': len(scenario.gold_nice_to_have) if scenario else 0, 'nice_to_have_hit': 0,
            'matched_must': [], 'missed_must': must,
        },
        'structure': StructureReport().to_dict(),
        'penalties': {'low_value_hits': 0, 'low_value_matched': [],
                      'duplicate_clusters': [], 'duplicate_count': 0},
        'matched': {'label_to_must': [], 'label_to_nice': []},
    }


def evaluate(graph: TreeGraph, scenario: Optional[Scenario] = None,
             config: Optional[AssistConfig] = None) -> Dict[str, Any]:
    """
    Score a finished tree from 0 to 100 with a transparent breakdown.

    An empty tree scores zero in every band. Empty gold lists give full
    credit for the matching part of coverage.

    Args:
        graph: Tree snapshot
        scenario: Scenario with the gold standard (None = nothing to cover)
        config: Assistant configuration (``matching.t_match``)

    Returns:
        Dict with ``score``, ``coverage``, ``structure``, ``penalties`` and ``matched``
    """
    config = config or DEFAULT_CONFIG
    if len(graph) == 0:
        return _empty_result(scenario)

    t_match = config.matching['t_match']
    must = list(scenario.gold_must_have) if scenario else []
    nice = list(scenario.gold_nice_to_have) if scenario else []
    low = list(scenario.gold_low_value) if scenario else []

    labels = [n.label for n in graph.nodes if not n.is_gate and n.label.strip()]

    matched_must, matched_nice = [], []
    label_to_must, label_to_nice = [], []
    low_matched = []
    for label in labels:
        m = best_gold_match(label, must, scenario, t_match)
        if m:
            label_to_must.append([label, m[0]])
            if m[0] not in matched_must:
                matched_must.append(m[0])
        n = best_gold_match(label, nice, scenario, t_match)
        if n:
            label_to_nice.append([label, n[0]])
            if n[0] not in matched_nice:
                matched_nice.append(n[0])
        lv = best_gold_match(label, low, scenario, t_match)
        if lv:
            low_matched.append({'label': label, 'hit': lv[0]})

    clusters = find_duplicate_clusters(labels, t_match)
    dup_count = sum(len(c) - 1 for c in clusters)

    report = analyze_structure(graph, scenario.goal if scenario else None)

    cov_must = len(matched_must) / len(must) if must else 1.0
    cov_nice = len(matched_nice) / len(nice) if nice else 1.0
    coverage_sub = _clamp01(0.85 * cov_must + 0.15 * cov_nice)

    struct_sub = _clamp01(0.5 * report.connected_pct + 0.25 * report.valid_and_pct
                          + 0.15 * report.valid_or_pct + 0.10 * report.depth_ok)

    dup_rate = dup_count / report.total_nodes if report.total_nodes else 0.0
    dup_sub = _clamp01(1 - min(1.0, 1.5 * dup_rate))
    lv_sub = _clamp01(1 - min(1.0, 0.3 * len(low_matched)))

    score = {
        'coverage': _round(WEIGHTS['coverage'] * coverage_sub),
        'structure': _round(WEIGHTS['structure'] * struct_sub),
        'duplicates': _round(WEIGHTS['duplicates'] * dup_sub),
        'low_value': _round(WEIGHTS['low_value'] * lv_sub),
    }
    score['overall'] = max(0, min(100, sum(score.values())))

    logger.info("Evaluation: overall %d (coverage %d, structure %d, duplicates %d, low value %d)",
                score['overall'], score['coverage'], score['structure'], score['duplicates'], score['low_value'])

    return {
        'score': score,
        'coverage': {
            'must_have_total': len(must),
            'must_have_hit': len(matched_must),
            'nice_to_have_total': len(nice),
            'nice_to_have_hit': len(matched_nice),
            'matched_must': matched_must,
            'missed_must': [m for m in must if m not in matched_must],
        },
        'structure': report.to_dict(),
        'penalties': {
            'low_value_hits': len(low_matched),
            'low_value_matched': low_matched,
            'duplicate_clusters': [[labels[i] for i in c] for c in clusters],
            'duplicate_count': dup_count,
        },
        'matched': {
            'label_to_must': label_to_must,
            'label_to_nice': label_to_nice,
        },
    }
