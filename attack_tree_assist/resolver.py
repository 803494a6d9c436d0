"""
Resolver: maps arbitrary labels onto KB entries, and explains them.

Resolution order:
    1. exact entry id                       -> score 1, method 'id'
    2. canonical name / alias key           -> score 1, method 'canon' / 'alias'
    3. scenario alias registered at runtime -> score 1, method 'scenario_alias'
    4. best fuzzy match over names+aliases  -> similarity score, method 'fuzzy'

No threshold is applied by ``resolve``; callers use ``match(label, min_score)``
and treat anything below ``t_med`` as a "closest match" hint only.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import AssistConfig, DEFAULT_CONFIG
from .kb import KBEntry, KBIndex
from .scenario import Scenario
from .text_normalizer import canonical_key, normalize

logger = logging.getLogger(__name__)

NO_EXPLANATION = "No explanation available."
NO_NARRATIVE = "This item appears in the knowledge base but lacks a narrative."

EXACT_METHODS = ('id', 'canon', 'alias', 'scenario_alias')


@dataclass
class Resolution:
    id: str
    entry: KBEntry
    score: float
    method: str
    matched: str = ""

    @property
    def exact(self) -> bool:
        return self.method in EXACT_METHODS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.entry.name,
            'score': round(self.score, 4),
            'method': self.method,
            'matched': self.matched,
        }


@dataclass
class Explanation:
    title: str
    severity: str
    summary: str
    why: str = ""
    id: Optional[str] = None
    method: Optional[str] = None
    score: float = 0.0
    closest: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'title': self.title,
            'severity': self.severity,
            'summary': self.summary,
            'why': self.why,
        }
        if self.id:
            result['id'] = self.id
            result['method'] = self.method
            result['score'] = round(self.score, 4)
        if self.closest:
            result['closest'] = self.closest
        return result


class Resolver:
    """Label -> KB entry resolution over an immutable index plus runtime aliases."""

    def __init__(self, index: KBIndex, config: Optional[AssistConfig] = None):
        self.index = index
        self.config = config or DEFAULT_CONFIG
        # canonical key -> entry id, added by scenario setup
        self._scenario_aliases: Dict[str, str] = {}

    def resolve(self, label_or_id: Optional[str]) -> Optional[Resolution]:
        """Best KB entry for a label, or None for empty input / empty KB."""
        if label_or_id is None or not str(label_or_id).strip():
            return None

        entry_id = self.index.lookup_id(label_or_id)
        if entry_id:
            return Resolution(entry_id, self.index.get(entry_id), 1.0, 'id', str(label_or_id))

        key = self.index.lookup_key(label_or_id)
        if key is not None:
            return Resolution(key.id, self.index.get(key.id), 1.0, key.method, key.text)

        alias_id = self._scenario_aliases.get(canonical_key(label_or_id))
        if alias_id:
            return Resolution(alias_id, self.index.get(alias_id), 1.0, 'scenario_alias', str(label_or_id))

        best = self.index.fuzzy_best(label_or_id, self.config.weights)
        if best is None:
            return None
        entry_id, score, text = best
        return Resolution(entry_id, self.index.get(entry_id), score, 'fuzzy', text)

    def match(self, label: Optional[str], min_score: Optional[float] = None) -> Optional[Resolution]:
        """``resolve`` with a threshold; defaults to ``t_high`` (same concept)."""
        threshold = self.config.t_high if min_score is None else min_score
        res = self.resolve(label)
        if res is None or res.score < threshold:
            return None
        return res

    def resolve_id(self, label: Optional[str], min_score: Optional[float] = None) -> Optional[str]:
        res = self.match(label, min_score)
        return res.id if res else None

    def clear_aliases(self) -> None:
        """Drop every scenario alias; called when the active scenario changes."""
        self._scenario_aliases.clear()

    def add_aliases(self, mapping: Dict[str, Any]) -> int:
        """
        Register scenario aliases on top of the KB index.

        Accepts ``{alias: canonical}`` or ``{canonical: [aliases]}``. The
        canonical side must resolve to a KB entry at ``t_high``; keys that the
        index or an earlier alias already owns are left alone.

        Returns:
            Number of aliases registered
        """
        added = 0
        for alias, canonical in _alias_pairs(mapping):
            target = self.match(canonical)
            if target is None:
                logger.debug("Scenario alias %r -> %r: canonical not in KB", alias, canonical)
                continue
            key = canonical_key(alias)
            if not key or self.index.lookup_key(alias) is not None or key in self._scenario_aliases:
                continue
            self._scenario_aliases[key] = target.id
            added += 1
        return added

    def explain(self, label: Optional[str], scenario: Optional[Scenario] = None,
                closest: Optional[Callable[[str, int], List[Dict[str, Any]]]] = None,
                k: int = 3) -> Explanation:
        """
        Plain-language explanation for a node label; never raises.

        Args:
            label: Node label or KB id
            scenario: Active scenario (its goal gets a dedicated explanation)
            closest: Optional nearest-neighbour lookup ``(text, k) -> [{id, score}]``
                consulted only when the label does not resolve
            k: Number of neighbours to show

        Returns:
            Explanation
        """
        if scenario is not None and scenario.is_goal(label):
            return Explanation(
                title=f"Goal: {scenario.goal}",
                severity='info',
                summary=scenario.goal_text(),
                why='Root objective',
            )

        res = self.resolve(label)
        if res is not None and (res.exact or res.score >= self.config.t_med):
            entry = res.entry
            summary = entry.narrative() or NO_NARRATIVE
            if not res.exact:
                summary = f"{summary} (closest match: {entry.name})"
            return Explanation(
                title=entry.name or str(label),
                severity=entry.severity or 'unknown',
                summary=summary,
                why=entry.why,
                id=entry.id,
                method=res.method,
                score=res.score,
            )

        neighbours = []
        if closest is not None and normalize(label):
            for hit in closest(str(label), k) or []:
                entry = self.index.get(hit.get('id'))
                if entry is None:
                    continue
                neighbours.append({
                    'id': entry.id,
                    'name': entry.name,
                    'score': round(float(hit.get('score', 0.0)), 4),
                    'percent': f"{round(float(hit.get('score', 0.0)) * 100)}%",
                })

        # a weak fuzzy match is only shown as a hint
        summary = NO_EXPLANATION
        if res is not None and res.score >= self.config.matching['t_hint']:
            summary = f"{NO_EXPLANATION} (closest match: {res.entry.name})"
            if all(n['id'] != res.id for n in neighbours):
                neighbours.insert(0, {
                    'id': res.id,
                    'name': res.entry.name,
                    'score': round(res.score, 4),
                    'percent': f"{round(res.score * 100)}%",
                })

        return Explanation(
            title=str(label).strip() if label and str(label).strip() else '—',
            severity='unknown',
            summary=summary,
            closest=neighbours,
        )


def _alias_pairs(mapping: Dict[str, Any]):
    """Yield (alias, canonical) from either alias-map shape."""
    for key, value in (mapping or {}).items():
        if isinstance(value, str):
            yield key, value
        elif isinstance(value, (list, tuple)):
            for alias in value:
                if alias:
                    yield alias, key
