"""
Text Normalizer for the Attack Tree Assistant.

Turns free-text node labels into a canonical form used as a matching key:

    "Intercept the Reset-Emails!"  ->  normalize -> "intercept the reset emails"
                                   ->  tokenize  -> ['intercept', 'reset', 'email']

Everything here is pure and deterministic; no module state is mutated.
"""

import re
from typing import List

# Articles, prepositions, conjunctions, auxiliaries and filler nouns that
# carry no meaning for matching attack steps against each other.
STOP_WORDS = frozenset([
    # Articles / determiners
    'a', 'an', 'the', 'this', 'that', 'these', 'those', 'any', 'all', 'some',
    'its', 'their', 'your', 'his', 'her', 'our', 'my',
    # Prepositions
    'of', 'to', 'in', 'on', 'for', 'with', 'by', 'at', 'from', 'into', 'via',
    'over', 'under', 'after', 'before', 'through', 'about', 'against', 'as',
    # Conjunctions
    'and', 'or', 'but', 'nor', 'then', 'than', 'so',
    # Auxiliaries
    'be', 'is', 'are', 'was', 'were', 'can', 'may', 'it',
    # Filler nouns common to every scenario
    'user', 'users', 'account', 'accounts', 'system', 'systems',
])

_SEPARATORS = re.compile(r'[_\-/\\|.,;:]+')
_NON_ALNUM = re.compile(r'[^a-z0-9 ]+')
_WHITESPACE = re.compile(r'\s+')

# Checked in order; the first match wins.
_SUFFIXES = ('ing', 'ers', 'ies', 'ed', 'er', 's')


def normalize(text) -> str:
    """Lowercase, turn separators into spaces, drop punctuation, collapse whitespace."""
    if text is None:
        return ''
    s = str(text).lower()
    s = _SEPARATORS.sub(' ', s)
    s = _NON_ALNUM.sub(' ', s)
    s = _WHITESPACE.sub(' ', s)
    return s.strip()


def stem(token: str) -> str:
    """
    Light suffix stemming.

    Tokens of length 3 or less are returned untouched. ``-ion``/``-ions``
    collapse to ``-ion``; otherwise one trailing ``ing|ers|ies|ed|er|s``
    is stripped. A double ``ss`` is never reduced (``access`` stays put).
    """
    if len(token) <= 3:
        return token
    if token.endswith('ions'):
        return token[:-1]
    if token.endswith('ion'):
        return token
    for suffix in _SUFFIXES:
        if token.endswith(suffix):
            if suffix == 's' and token.endswith('ss'):
                return token
            return token[:-len(suffix)]
    return token


def tokenize(text) -> List[str]:
    """
    Split a label into stemmed, stop-word-free tokens.

    Args:
        text: Any label text (None and whitespace yield an empty list)

    Returns:
        Token list in original order (duplicates preserved)
    """
    tokens = []
    for word in normalize(text).split():
        if word in STOP_WORDS:
            continue
        stemmed = stem(word)
        if stemmed in STOP_WORDS:
            continue
        tokens.append(stemmed)
    return tokens


def canonical_key(text) -> str:
    """Tokens joined by single spaces; the key stored in the KB index."""
    return ' '.join(tokenize(text))
