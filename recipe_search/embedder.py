from __future__ import annotations

"""
Embedding backends.

Two interchangeable capabilities are supported and exactly one is
selected by ``EMBEDDER_BACKEND``:

* ``pooled``: a sentence-transformers model that returns one pooled,
  L2-normalised vector per text.
* ``raw``: a plain transformers encoder that returns per-token hidden
  states for a fixed-length, padded token sequence.  Turning those into
  one vector (masked mean pooling) is the job of
  :class:`~recipe_search.encoder.TextEncoder`, never of the backend.

Loading either model is slow and blocking; callers run
:func:`load_embedder` in a worker thread.
"""

import os
from typing import List, Optional, Protocol, Union, runtime_checkable

import numpy as np
from loguru import logger

from .config import EMBEDDER_BACKEND, EMBEDDING_MODEL, HF_ENV_VARS, MAX_SEQ_LENGTH


@runtime_checkable
class PooledEmbedder(Protocol):
    dimension: int

    def encode(self, text: str) -> np.ndarray: ...


@runtime_checkable
class Tokenizer(Protocol):
    cls_id: int
    pad_id: int
    sep_id: Optional[int]

    def tokenize(self, text: str) -> List[int]: ...


@runtime_checkable
class RawEmbedder(Protocol):
    dimension: int
    max_length: int
    tokenizer: Tokenizer

    def run(self, token_ids: np.ndarray, attention_mask: np.ndarray) -> np.ndarray: ...


Embedder = Union[PooledEmbedder, RawEmbedder]


def _ensure_hf_env() -> None:
    """
    Set HuggingFace environment hints unless the user already did.
    """
    for key, val in HF_ENV_VARS.items():
        if key not in os.environ:
            os.environ[key] = val


# -----------------------------------------------------------------------------
# Pooled backend (sentence-transformers)
# -----------------------------------------------------------------------------

class SentenceTransformerEmbedder:
    """Pooled backend; the model applies mean pooling and L2 normalisation."""

    def __init__(self, model_name: str = EMBEDDING_MODEL, max_length: int = MAX_SEQ_LENGTH) -> None:
        from sentence_transformers import SentenceTransformer

        _ensure_hf_env()
        logger.info("Loading pooled encoder model: {}", model_name)
        self.model_name = model_name
        self.max_length = max_length
        self.model = SentenceTransformer(model_name)
        # truncate at the same length as the raw backend and the encoding contract
        self.model.max_seq_length = max_length
        self.dimension = int(self.model.get_sentence_embedding_dimension())

    def encode(self, text: str) -> np.ndarray:
        vec = self.model.encode([text], convert_to_numpy=True, normalize_embeddings=True)[0]
        return np.asarray(vec, dtype=np.float32)


# -----------------------------------------------------------------------------
# Raw backend (transformers)
# -----------------------------------------------------------------------------

class HFTokenizer:
    """Adapter exposing the ids the encoder needs from a HF tokenizer."""

    def __init__(self, hf_tokenizer) -> None:
        self._tok = hf_tokenizer
        cls_id = hf_tokenizer.cls_token_id
        if cls_id is None:
            cls_id = hf_tokenizer.bos_token_id
        if cls_id is None:
            raise ValueError("Tokenizer defines neither a CLS nor a BOS token")
        self.cls_id = int(cls_id)
        self.pad_id = int(hf_tokenizer.pad_token_id or 0)
        sep_id = hf_tokenizer.sep_token_id
        self.sep_id = int(sep_id) if sep_id is not None else None

    def tokenize(self, text: str) -> List[int]:
        return list(self._tok(text, add_special_tokens=False)["input_ids"])


class TransformersRawEmbedder:
    """
    Raw backend: runs the bare transformer and returns the last hidden
    state, shape ``(sequence_length, hidden_size)``.
    """

    def __init__(self, model_name: str = EMBEDDING_MODEL, max_length: int = MAX_SEQ_LENGTH) -> None:
        from transformers import AutoModel, AutoTokenizer

        _ensure_hf_env()
        logger.info("Loading raw encoder model: {}", model_name)
        self.model_name = model_name
        self.max_length = max_length
        self.tokenizer = HFTokenizer(AutoTokenizer.from_pretrained(model_name))
        self.model = AutoModel.from_pretrained(model_name)
        self.model.eval()
        self.dimension = int(self.model.config.hidden_size)

    def run(self, token_ids: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
        import torch

        ids = torch.as_tensor(np.asarray(token_ids, dtype=np.int64)).unsqueeze(0)
        mask = torch.as_tensor(np.asarray(attention_mask, dtype=np.int64)).unsqueeze(0)
        with torch.no_grad():
            out = self.model(input_ids=ids, attention_mask=mask)
        return out.last_hidden_state[0].detach().cpu().numpy()


def is_raw(embedder: Embedder) -> bool:
    return hasattr(embedder, "run") and hasattr(embedder, "tokenizer")


def load_embedder(backend: str = EMBEDDER_BACKEND, model_name: str = EMBEDDING_MODEL) -> Embedder:
    """Instantiate the configured backend.  Blocking."""
    if backend == "pooled":
        return SentenceTransformerEmbedder(model_name)
    if backend == "raw":
        return TransformersRawEmbedder(model_name)
    raise ValueError(f"Unknown embedder backend {backend!r}; expected 'pooled' or 'raw'")
