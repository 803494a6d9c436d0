"""
Knowledge base entries and the in-memory KB index.

The index is built once per KB load and never mutated afterwards:

    BY_ID      id        -> KBEntry
    KEYS       canonical -> IndexKey(id, method)   (names and aliases)

A canonical key maps to at most one id; the first entry to register a key
keeps it. Duplicate ids in the source data are resolved the same way.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .similarity import similarity
from .text_normalizer import canonical_key, normalize

logger = logging.getLogger(__name__)

SEVERITIES = ('high', 'medium', 'low', 'unknown')

DEFAULT_SEVERITY_WEIGHTS = {'high': 0.7, 'medium': 0.5, 'low': 0.3, 'unknown': 0.4}


def severity_weight(severity: Optional[str], weights: Optional[Dict[str, float]] = None) -> float:
    """Base score for a severity label; anything unrecognized weighs as 'unknown'."""
    table = weights or DEFAULT_SEVERITY_WEIGHTS
    key = str(severity or '').strip().lower()
    if key in table:
        return table[key]
    return table.get('unknown', 0.4)


def _child_ref(child: Union[str, Dict[str, Any], None]) -> Optional[str]:
    if isinstance(child, str):
        return child.strip() or None
    if isinstance(child, dict):
        ref = child.get('id') or child.get('name')
        return str(ref).strip() if ref else None
    return None


@dataclass
class KBEntry:
    """One attack pattern in the knowledge base."""

    id: str
    name: str = ""
    aliases: List[str] = field(default_factory=list)
    severity: str = "unknown"
    scenarios: List[str] = field(default_factory=list)

    # Typical follow-on steps, as ids or names
    children: List[str] = field(default_factory=list)

    # Narrative fields
    description: str = ""
    comms: str = ""
    why: str = ""
    lay_explain: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'KBEntry':
        """Build an entry from loader JSON, defaulting every optional field."""
        entry_id = str(d.get('id', '')).strip()
        severity = str(d.get('severity') or 'unknown').strip().lower()
        if severity not in SEVERITIES:
            severity = 'unknown'
        return cls(
            id=entry_id,
            name=str(d.get('name') or entry_id),
            aliases=[str(a) for a in (d.get('aliases') or []) if a],
            severity=severity,
            scenarios=[str(s) for s in (d.get('scenarios') or []) if s],
            children=[ref for ref in (_child_ref(c) for c in (d.get('children') or [])) if ref],
            description=str(d.get('description') or ''),
            comms=str(d.get('comms') or ''),
            why=str(d.get('why') or ''),
            lay_explain=d.get('lay_explain') or None,
        )

    def narrative(self) -> str:
        """The best available plain-language text for this entry."""
        for text in (self.description, self.comms, self.lay_explain, self.why):
            if text:
                return text
        return ""

    def search_text(self) -> str:
        """Name, aliases and narratives joined for vector-space indexing."""
        parts = [self.name, ' ; '.join(self.aliases), self.lay_explain or '', self.narrative()]
        return ' | '.join(p for p in parts if p)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'name': self.name,
            'aliases': list(self.aliases),
            'severity': self.severity,
            'scenarios': list(self.scenarios),
            'children': list(self.children),
            'description': self.description,
            'comms': self.comms,
            'why': self.why,
        }
        if self.lay_explain:
            result['lay_explain'] = self.lay_explain
        return result


@dataclass(frozen=True)
class IndexKey:
    """Where a canonical key points and whether it came from a name or an alias."""
    id: str
    method: str  # 'canon' | 'alias'
    text: str


class KBIndex:
    """Read-only lookup structures over a list of KB entries."""

    def __init__(self, entries: Iterable[KBEntry]):
        self._by_id: Dict[str, KBEntry] = {}
        self._keys: Dict[str, IndexKey] = {}
        self._entries: List[KBEntry] = []

        duplicates = []
        for entry in entries:
            if not entry.id:
                continue
            if entry.id in self._by_id:
                duplicates.append(entry.id)
                continue
            self._by_id[entry.id] = entry
            self._entries.append(entry)
            self._register(entry.name or entry.id, entry.id, 'canon')
            for alias in entry.aliases:
                self._register(alias, entry.id, 'alias')

        if duplicates:
            logger.warning("KB has %d duplicate id(s), first kept: %s", len(duplicates), duplicates[:5])
        logger.debug("KB index built: %d entries, %d keys", len(self._entries), len(self._keys))

    def _register(self, text: str, entry_id: str, method: str) -> None:
        key = canonical_key(text)
        if key and key not in self._keys:
            self._keys[key] = IndexKey(entry_id, method, text)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._by_id

    @property
    def entries(self) -> List[KBEntry]:
        return list(self._entries)

    def get(self, entry_id: Optional[str]) -> Optional[KBEntry]:
        if not entry_id:
            return None
        return self._by_id.get(entry_id)

    def lookup_key(self, text: str) -> Optional[IndexKey]:
        """Exact canonical/alias lookup after normalization."""
        key = canonical_key(text)
        if not key:
            return None
        return self._keys.get(key)

    def lookup_id(self, text: str) -> Optional[str]:
        """Exact id match; ids are also tried in their raw stripped form."""
        if text is None:
            return None
        raw = str(text).strip()
        if raw in self._by_id:
            return raw
        return None

    def candidates(self) -> List[Tuple[str, str]]:
        """Every (text, id) pair that fuzzy matching may compare against."""
        pairs = []
        for entry in self._entries:
            pairs.append((entry.name or entry.id, entry.id))
            for alias in entry.aliases:
                pairs.append((alias, entry.id))
        return pairs

    def fuzzy_top_k(self, label: str, k: int = 5,
                    weights: Optional[Dict[str, float]] = None) -> List[Tuple[str, float, str]]:
        """
        Score ``label`` against every name and alias.

        Returns:
            Up to ``k`` ``(entry_id, score, matched_text)`` tuples, best
            first, one per entry (an entry's best name/alias wins).
        """
        if not normalize(label):
            return []
        best_per_id: Dict[str, Tuple[float, str]] = {}
        for text, entry_id in self.candidates():
            score = similarity(label, text, weights)
            prev = best_per_id.get(entry_id)
            if prev is None or score > prev[0]:
                best_per_id[entry_id] = (score, text)
        ranked = sorted(best_per_id.items(), key=lambda kv: (-kv[1][0], kv[0]))
        return [(entry_id, score, text) for entry_id, (score, text) in ranked[:k]]

    def fuzzy_best(self, label: str,
                   weights: Optional[Dict[str, float]] = None) -> Optional[Tuple[str, float, str]]:
        top = self.fuzzy_top_k(label, k=1, weights=weights)
        return top[0] if top else None


def build_index(entries: Iterable[Union[KBEntry, Dict[str, Any]]]) -> KBIndex:
    """Build the KB index from entries or raw entry dicts."""
    parsed = []
    for e in entries or []:
        if isinstance(e, KBEntry):
            parsed.append(e)
        elif isinstance(e, dict):
            parsed.append(KBEntry.from_dict(e))
    return KBIndex(parsed)
