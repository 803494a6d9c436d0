"""
Semantic Oracle - vector-space nearest neighbours over the KB.

Builds a TF-IDF index over every entry's ``name | aliases | lay_explain |
narrative`` text (character n-grams inside word boundaries, so morphology
and small typos still land near each other) and answers top-k cosine
queries against it.

The oracle is advisory. Callers go through ``OracleClient``, which runs
queries on a single background worker, tags each with a generation number
and silently drops results that time out or were superseded.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import linear_kernel

from .kb import KBEntry
from .text_normalizer import normalize

logger = logging.getLogger(__name__)


class SemanticOracle:
    """Lazily-built TF-IDF index with top-k cosine lookups."""

    def __init__(self, entries: List[KBEntry], ngram_range=(3, 5)):
        self._entries = [e for e in entries if e.id]
        self._ngram_range = ngram_range
        self._vectorizer: Optional[TfidfVectorizer] = None
        self._matrix = None
        self._ids: List[str] = []
        self._failed = False
        self._lock = threading.Lock()

    def ready(self) -> bool:
        """Build the index on first use; False when there is nothing to search."""
        with self._lock:
            if self._matrix is not None:
                return True
            if self._failed or not self._entries:
                return False

            corpus, ids = [], []
            for entry in self._entries:
                text = normalize(entry.search_text())
                if text:
                    corpus.append(text)
                    ids.append(entry.id)
            if not corpus:
                self._failed = True
                return False

            try:
                vectorizer = TfidfVectorizer(
                    analyzer='char_wb',
                    ngram_range=self._ngram_range,
                    sublinear_tf=True,
                )
                self._matrix = vectorizer.fit_transform(corpus)
            except ValueError as e:
                # empty vocabulary
                logger.warning("Semantic index build failed: %s", e)
                self._failed = True
                return False

            self._vectorizer = vectorizer
            self._ids = ids
            logger.debug("Semantic index ready: %d documents, %d features",
                         len(ids), len(vectorizer.vocabulary_))
            return True

    def top_k(self, query: str, k: int = 3) -> List[Dict[str, Any]]:
        """
        Nearest KB entries to ``query`` by cosine similarity.

        Args:
            query: Free-text label
            k: Maximum number of results

        Returns:
            List of ``{'id', 'score'}`` sorted best first, zero scores dropped
        """
        text = normalize(query)
        if not text or k <= 0 or not self.ready():
            return []

        vec = self._vectorizer.transform([text])
        # rows are L2-normalized, so the linear kernel is the cosine
        scores = linear_kernel(vec, self._matrix).ravel()
        order = np.argsort(-scores, kind='stable')[:k]

        results = []
        for idx in order:
            score = float(scores[idx])
            if score <= 0.0:
                break
            results.append({'id': self._ids[idx], 'score': score})
        return results

    def best(self, query: str, k: int = 1, min_score: float = 0.0) -> List[Dict[str, Any]]:
        return [hit for hit in self.top_k(query, k) if hit['score'] >= min_score]


class OracleClient:
    """
    Background access to a SemanticOracle.

    Every query bumps a generation counter. A result is delivered only if
    no newer query was issued while it was running.
    """

    def __init__(self, oracle: SemanticOracle, timeout: float = 0.25):
        self.oracle = oracle
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='semantic-oracle')
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def _next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def warm(self) -> None:
        """Start building the index without waiting for it."""
        self._executor.submit(self.oracle.ready)

    def query(self, text: str, k: int = 3, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """
        Blocking top-k query bounded by a timeout.

        Returns:
            ``[{'id', 'score'}]``, or ``[]`` on timeout, failure or when a newer
            query superseded this one
        """
        generation = self._next_generation()
        future = self._executor.submit(self.oracle.top_k, text, k)
        try:
            result = future.result(timeout=self.timeout if timeout is None else timeout)
        except FutureTimeout:
            logger.debug("Oracle query %d timed out: %r", generation, text)
            return []
        except Exception as e:
            logger.debug("Oracle query %d failed: %s", generation, e)
            return []

        if not self._is_current(generation):
            logger.debug("Oracle query %d superseded, result dropped", generation)
            return []
        return result

    def submit(self, text: str, k: int,
               callback: Callable[[List[Dict[str, Any]]], None]) -> int:
        """
        Fire-and-forget query; ``callback`` runs only for the newest generation.

        Returns:
            The generation number assigned to this query
        """
        generation = self._next_generation()
        future = self._executor.submit(self.oracle.top_k, text, k)

        def _done(f):
            if not self._is_current(generation):
                logger.debug("Oracle query %d superseded, result dropped", generation)
                return
            if f.exception() is not None:
                logger.debug("Oracle query %d failed: %s", generation, f.exception())
                return
            callback(f.result())

        future.add_done_callback(_done)
        return generation

    def close(self) -> None:
        self._executor.shutdown(wait=False)
