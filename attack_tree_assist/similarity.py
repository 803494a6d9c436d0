"""
Similarity Engine for the Attack Tree Assistant.

One similarity function is used everywhere (resolver, suggestion dedup,
prune duplicate detection):

    similarity(a, b) = 0.6 * token Jaccard
                     + 0.3 * character-trigram Jaccard
                     + 0.1 * normalized edit similarity

Token overlap carries meaning and trigrams catch morphological variants
("phish" / "phishing"). Edit distance rewards near-identical spelling.

The vocabulary scorer uses thefuzz partial matching: a label is "about" a
term when the term appears in it, even with a typo.
"""

from typing import Dict, Iterable, Optional, Set

from rapidfuzz.distance import Levenshtein
from thefuzz import fuzz

from .text_normalizer import normalize, tokenize, stem

DEFAULT_WEIGHTS = {'token': 0.6, 'trigram': 0.3, 'edit': 0.1}


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Set Jaccard; two empty sets count as identical."""
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 1.0
    union = set_a | set_b
    return len(set_a & set_b) / len(union)


def token_jaccard(a: str, b: str) -> float:
    """Jaccard overlap of the stop-word-free token sets."""
    return jaccard(tokenize(a), tokenize(b))


def char_ngrams(text: str, n: int = 3) -> Set[str]:
    """
    Character n-grams of already-normalized text.

    Strings shorter than ``n`` yield themselves as a single gram so that
    very short labels ("2fa", "ap") still compare meaningfully.
    """
    if not text:
        return set()
    if len(text) < n:
        return {text}
    return {text[i:i + n] for i in range(len(text) - n + 1)}


def char_ngram_similarity(a: str, b: str, n: int = 3) -> float:
    """Jaccard similarity of character n-grams of the normalized strings."""
    return jaccard(char_ngrams(normalize(a), n), char_ngrams(normalize(b), n))


def levenshtein(a: str, b: str) -> int:
    """Unit-cost insert/delete/substitute edit distance."""
    return Levenshtein.distance(a, b)


def edit_similarity(a: str, b: str) -> float:
    """1 - levenshtein / max(len), computed on normalized strings."""
    norm_a, norm_b = normalize(a), normalize(b)
    longest = max(len(norm_a), len(norm_b), 1)
    return 1.0 - levenshtein(norm_a, norm_b) / longest


def similarity(a: str, b: str, weights: Optional[Dict[str, float]] = None) -> float:
    """
    Blend of token, trigram and edit similarity in [0, 1].

    Both sides empty after normalization -> 1.0; exactly one empty -> 0.0.

    Args:
        a: First label
        b: Second label
        weights: Optional override of the ``token``/``trigram``/``edit`` weights

    Returns:
        Similarity score in [0, 1]
    """
    norm_a, norm_b = normalize(a), normalize(b)
    if not norm_a and not norm_b:
        return 1.0
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    w = DEFAULT_WEIGHTS if weights is None else {**DEFAULT_WEIGHTS, **weights}
    total = w['token'] + w['trigram'] + w['edit']
    if total <= 0:
        return 0.0

    token_part = jaccard(tokenize(norm_a), tokenize(norm_b))
    trigram_part = jaccard(char_ngrams(norm_a), char_ngrams(norm_b))
    edit_part = 1.0 - levenshtein(norm_a, norm_b) / max(len(norm_a), len(norm_b), 1)

    score = (w['token'] * token_part + w['trigram'] * trigram_part + w['edit'] * edit_part) / total
    return max(0.0, min(1.0, score))


def vocabulary_score(label: str, vocabulary: Iterable[str], fuzzy_min_length: int = 5) -> int:
    """
    How strongly a label mentions any term of a domain vocabulary (0-100).

    Exact token hits (after stemming) score 100. Longer terms are also
    matched with thefuzz ``partial_ratio`` so a misspelled "pasword reset"
    still counts as password-related.

    Args:
        label: Node label
        vocabulary: Domain terms (single words)
        fuzzy_min_length: Terms shorter than this only match exactly

    Returns:
        Best score across the vocabulary, 0 when nothing matches
    """
    text = normalize(label)
    if not text:
        return 0
    words = set(text.split())
    stems = {stem(w) for w in words}

    best = 0
    for term in vocabulary:
        term = normalize(term)
        if not term:
            continue
        if term in words or stem(term) in stems:
            return 100
        if len(term) >= fuzzy_min_length:
            score = fuzz.partial_ratio(term, text)
            if score > best:
                best = score
    return best
