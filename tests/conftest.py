"""
Pytest configuration and shared fixtures.

Nothing here touches the network or downloads a model: corpora are
written to ``tmp_path`` or served through ``httpx.MockTransport`` and
the embedders are small deterministic fakes.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pytest

from recipe_search.cache import MemoryCache
from recipe_search.corpus_store import Corpus, CorpusStore, parse_records


# =============================================================================
# Sample data
# =============================================================================

ITALIAN = {"id": 1, "cuisine": "italian", "ingredients": ["tomato", "basil"], "embedding": [1.0, 0.0]}
FRENCH = {"id": 2, "cuisine": "french", "ingredients": ["butter", "cream"], "embedding": [0.0, 1.0]}


def make_records(n: int, start: int = 1, dim: int = 2) -> List[dict]:
    """``n`` distinct records with ids ``start..start+n-1``."""
    records = []
    for i in range(start, start + n):
        vec = [0.0] * dim
        vec[i % dim] = float(i)
        records.append({
            "id": i,
            "cuisine": f"cuisine{i}",
            "ingredients": [f"ingredient{i}"],
            "embedding": vec,
        })
    return records


def write_json(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.fixture
def sample_records() -> List[dict]:
    return [dict(ITALIAN), dict(FRENCH)]


@pytest.fixture
def sample_corpus(sample_records) -> Corpus:
    return Corpus(parse_records(sample_records))


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_store(tmp_path, memory_cache, clock):
    """Factory for a store reading from ``tmp_path/chunks`` with a memory cache."""

    def _make(**kwargs) -> CorpusStore:
        params = dict(
            base_url=str(tmp_path / "chunks"),
            cache=memory_cache,
            total_shards=3,
            clock=clock,
            strategy_timeout=5.0,
        )
        params.update(kwargs)
        return CorpusStore(**params)

    return _make


# =============================================================================
# Fake embedders
# =============================================================================

class FakePooledEmbedder:
    """Returns canned vectors by wrapped text, zeros otherwise."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dimension: int = 2) -> None:
        self.vectors = vectors or {}
        self.dimension = dimension
        self.calls: List[str] = []

    def encode(self, text: str) -> np.ndarray:
        self.calls.append(text)
        return np.asarray(self.vectors.get(text, [0.0] * self.dimension), dtype=np.float32)


class WordLengthTokenizer:
    """One token per whitespace word; the id is the word's length."""

    cls_id = 101
    pad_id = 0
    sep_id = None

    def tokenize(self, text: str) -> List[int]:
        return [len(w) for w in text.split()]


class FakeRawEmbedder:
    """
    Hidden state for a valid position ``i`` is ``[token_id, i, 1]``.
    Padding positions get ``1000`` everywhere so any leak into the
    pooled vector is obvious.
    """

    dimension = 3

    def __init__(self, max_length: int = 8) -> None:
        self.max_length = max_length
        self.tokenizer = WordLengthTokenizer()
        self.last_ids = None
        self.last_mask = None

    def run(self, token_ids: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
        self.last_ids = np.array(token_ids)
        self.last_mask = np.array(attention_mask)
        hidden = np.full((len(token_ids), 3), 1000.0, dtype=np.float32)
        for i, (tid, m) in enumerate(zip(token_ids, attention_mask)):
            if m:
                hidden[i] = [float(tid), float(i), 1.0]
        return hidden
