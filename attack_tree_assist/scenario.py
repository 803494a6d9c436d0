"""
Scenario model.

A scenario supplies the study context for one session: the root goal, the
gold standard (must-have / nice-to-have / low-value phrases) and scenario
specific aliases. It is passed explicitly into every engine call.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from .text_normalizer import normalize

SANDBOX = 'sandbox'

DEFAULT_GOAL_EXPLANATION = (
    "This is the attacker's overall objective. Every branch below it "
    "should describe a way to reach it."
)


def in_scenario(entry, scenario_id: Optional[str]) -> bool:
    """An empty or 'sandbox' scenario puts every entry in scope."""
    if not scenario_id or scenario_id == SANDBOX:
        return True
    return scenario_id in (getattr(entry, 'scenarios', None) or [])


def _parse_aliases(raw: Any) -> Dict[str, List[str]]:
    """
    Accept both alias shapes found in scenario files.

    ``{"alias": "Canonical"}`` (alias -> canonical) and
    ``{"Canonical": ["alias 1", "alias 2"]}`` (canonical -> aliases) both
    become canonical -> [aliases].
    """
    result: Dict[str, List[str]] = {}
    if not isinstance(raw, dict):
        return result
    for key, value in raw.items():
        if not key:
            continue
        if isinstance(value, str):
            if value:
                result.setdefault(value, []).append(str(key))
        elif isinstance(value, (list, tuple)):
            result.setdefault(str(key), []).extend(str(v) for v in value if v)
    return result


@dataclass
class Scenario:
    """Scenario context: goal, gold standard, aliases and briefing text."""

    id: str = ""
    goal: str = ""
    gold_must_have: List[str] = field(default_factory=list)
    gold_low_value: List[str] = field(default_factory=list)
    gold_nice_to_have: List[str] = field(default_factory=list)

    # canonical phrase -> alias phrases
    aliases: Dict[str, List[str]] = field(default_factory=dict)

    brief: str = ""
    guide_text: str = ""
    goal_explain: str = ""

    # Optional per-scenario override of the AND-alternatives category map
    and_alternatives: Optional[Dict[str, List[str]]] = None

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]], scenario_id: str = "") -> 'Scenario':
        """Create a scenario from JSON, tolerating any missing field."""
        d = d or {}

        def _list(key):
            value = d.get(key) or []
            return [str(v) for v in value if v] if isinstance(value, (list, tuple)) else []

        alternatives = d.get('and_alternatives')
        return cls(
            id=str(d.get('id') or scenario_id or ''),
            goal=str(d.get('goal') or ''),
            gold_must_have=_list('gold_must_have'),
            gold_low_value=_list('gold_low_value'),
            gold_nice_to_have=_list('gold_nice_to_have'),
            aliases=_parse_aliases(d.get('aliases')),
            brief=str(d.get('brief') or ''),
            guide_text=str(d.get('guideText') or d.get('guide_text') or ''),
            goal_explain=str(d.get('goal_explain') or d.get('goalExplain') or ''),
            and_alternatives=alternatives if isinstance(alternatives, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'goal': self.goal,
            'gold_must_have': list(self.gold_must_have),
            'gold_low_value': list(self.gold_low_value),
            'gold_nice_to_have': list(self.gold_nice_to_have),
            'aliases': {k: list(v) for k, v in self.aliases.items()},
            'brief': self.brief,
            'guideText': self.guide_text,
        }
        if self.goal_explain:
            result['goal_explain'] = self.goal_explain
        if self.and_alternatives is not None:
            result['and_alternatives'] = self.and_alternatives
        return result

    def add_aliases(self, mapping: Dict[str, Any]) -> None:
        """Merge more aliases in either accepted shape."""
        for canonical, extra in _parse_aliases(mapping).items():
            current = self.aliases.setdefault(canonical, [])
            for alias in extra:
                if alias not in current:
                    current.append(alias)

    def expand(self, phrase: str) -> List[str]:
        """A gold phrase followed by all of its scenario aliases."""
        return [phrase] + list(self.aliases.get(phrase, []))

    def is_goal(self, label: Optional[str]) -> bool:
        """Case-insensitive, whitespace-trimmed comparison with the goal."""
        if not self.goal or label is None:
            return False
        return str(label).strip().lower() == self.goal.strip().lower()

    def goal_text(self) -> str:
        return self.goal_explain or self.brief or self.guide_text or DEFAULT_GOAL_EXPLANATION


def phrase_ids(phrases: Iterable[str], scenario: Optional[Scenario], resolver, min_score: float) -> Set[str]:
    """
    KB ids for a list of gold phrases (each expanded through scenario aliases).

    Args:
        phrases: Gold phrases, e.g. ``scenario.gold_must_have``
        scenario: Scenario providing aliases (may be None)
        resolver: Anything with ``match(label, min_score)`` returning a resolution or None
        min_score: Minimum resolution score to accept a fuzzy mapping

    Returns:
        Set of KB entry ids
    """
    ids: Set[str] = set()
    for phrase in phrases:
        if not normalize(phrase):
            continue
        variants = scenario.expand(phrase) if scenario else [phrase]
        for variant in variants:
            res = resolver.match(variant, min_score)
            if res is not None:
                ids.add(res.id)
    return ids
