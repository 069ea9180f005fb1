from __future__ import annotations

"""
Cosine ranking of the full corpus against a query vector.

Scoring is brute force over the corpus matrix; the corpus is small and
static.  Ties keep corpus order (stable sort) so results are
reproducible run to run.
"""

from dataclasses import dataclass
from typing import List

import numpy as np

from .corpus_store import Corpus, CorpusEntry
from .errors import NoDataError
from .vectors import cosine_scores, sanitize_vector


@dataclass(frozen=True)
class ScoredResult:
    entry: CorpusEntry
    score: float


def rank(query: np.ndarray, corpus: Corpus, k: int) -> List[ScoredResult]:
    """
    Return the ``min(k, len(corpus))`` best entries by cosine similarity,
    highest first.  Raises :class:`DimensionMismatchError` if ``query``
    does not match the corpus dimension.
    """
    if k <= 0:
        raise ValueError("k must be positive")
    if corpus is None or len(corpus) == 0:
        raise NoDataError("Cannot rank against an empty corpus")
    q = sanitize_vector(query)
    scores = cosine_scores(q, corpus.matrix)
    order = np.argsort(-scores, kind="stable")[: min(k, len(corpus))]
    return [ScoredResult(entry=corpus[int(i)], score=float(scores[i])) for i in order]
