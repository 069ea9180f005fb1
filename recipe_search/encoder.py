from __future__ import annotations

"""
Query text -> vector in the corpus embedding space.

The query is cleaned and wrapped in the template the corpus was
embedded with before it reaches the model.  With a raw backend this
module also owns tokenisation, padding and masked mean pooling; that
step has no visible failure mode when done wrong (every component just
drifts a little), so it is kept in one place and pinned by a golden
vector test.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from loguru import logger

from .config import MAX_SEQ_LENGTH, QUERY_LOWERCASE, QUERY_PREFIX
from .embedder import Embedder, Tokenizer, is_raw
from .errors import DimensionMismatchError, EmptyQueryError, EncoderNotReadyError
from .normalize import basic_clean, wrap_query
from .vectors import check_dimension, sanitize_vector


@dataclass(frozen=True)
class TokenBatch:
    token_ids: np.ndarray
    attention_mask: np.ndarray
    actual_length: int


def build_token_batch(
    token_ids: List[int],
    *,
    cls_id: int,
    pad_id: int,
    max_length: int = MAX_SEQ_LENGTH,
    sep_id: Optional[int] = None,
) -> TokenBatch:
    """
    Turn content token ids into a fixed-length model input.

    ``cls_id`` is prepended; ``sep_id``, when the tokenizer has one, is
    appended after truncation so it always survives.  The sequence is
    cut to ``max_length`` and right-padded with ``pad_id``; the mask is
    1 on the first ``actual_length`` positions and 0 after.
    """
    if max_length < 2:
        raise ValueError("max_length must leave room for the start marker and content")
    body_budget = max_length - 1 - (1 if sep_id is not None else 0)
    ids = [cls_id] + list(token_ids[:body_budget])
    if sep_id is not None:
        ids.append(sep_id)
    actual_length = min(len(ids), max_length)

    padded = np.full(max_length, pad_id, dtype=np.int64)
    padded[:actual_length] = ids[:actual_length]
    mask = np.zeros(max_length, dtype=np.int64)
    mask[:actual_length] = 1
    return TokenBatch(token_ids=padded, attention_mask=mask, actual_length=actual_length)


def masked_mean_pool(hidden_states: np.ndarray, actual_length: int) -> np.ndarray:
    """
    Average the first ``actual_length`` rows of ``hidden_states``.
    Padding rows past ``actual_length`` never contribute.
    """
    hidden = np.asarray(hidden_states, dtype=np.float64)
    if hidden.ndim != 2:
        raise ValueError(f"Expected (sequence, dim) hidden states, got shape {hidden.shape}")
    if not 0 < actual_length <= hidden.shape[0]:
        raise ValueError(f"actual_length {actual_length} outside 1..{hidden.shape[0]}")
    hidden = np.where(np.isfinite(hidden), hidden, 0.0)
    return (hidden[:actual_length].sum(axis=0) / actual_length).astype(np.float32)


class TextEncoder:
    """
    Encodes queries with whichever embedder backend is configured.

    The embedder may be attached after construction (``embedder=None``
    until the model finishes loading); encoding before that raises
    :class:`EncoderNotReadyError`.
    """

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        *,
        prefix: str = QUERY_PREFIX,
        lowercase: bool = QUERY_LOWERCASE,
    ) -> None:
        self.embedder = embedder
        self.prefix = prefix
        self.lowercase = lowercase

    @property
    def ready(self) -> bool:
        return self.embedder is not None

    def prepare(self, text: str) -> str:
        """Clean ``text`` and wrap it in the query template."""
        cleaned = basic_clean(text)
        if not cleaned:
            raise EmptyQueryError("Query is empty")
        return wrap_query(cleaned, prefix=self.prefix, lowercase=self.lowercase)

    def encode(self, text: str, expected_dim: Optional[int] = None) -> np.ndarray:
        wrapped = self.prepare(text)
        embedder = self.embedder
        if embedder is None:
            raise EncoderNotReadyError("Embedding model is not loaded yet")

        if is_raw(embedder):
            vec = self._encode_raw(embedder, wrapped)
        else:
            vec = sanitize_vector(embedder.encode(wrapped))

        check_dimension(vec, expected_dim, "query vector")
        return vec

    def _encode_raw(self, embedder, wrapped: str) -> np.ndarray:
        tokenizer: Tokenizer = embedder.tokenizer
        batch = build_token_batch(
            tokenizer.tokenize(wrapped),
            cls_id=tokenizer.cls_id,
            pad_id=tokenizer.pad_id,
            sep_id=getattr(tokenizer, "sep_id", None),
            max_length=embedder.max_length,
        )
        hidden = np.asarray(embedder.run(batch.token_ids, batch.attention_mask))
        if hidden.ndim != 2 or hidden.shape[0] != batch.token_ids.shape[0]:
            raise DimensionMismatchError(
                int(batch.token_ids.shape[0]),
                int(hidden.shape[0]) if hidden.ndim else 0,
                "hidden state sequence",
            )
        logger.debug("Pooling {} of {} positions", batch.actual_length, hidden.shape[0])
        return sanitize_vector(masked_mean_pool(hidden, batch.actual_length))
