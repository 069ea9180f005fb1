from __future__ import annotations

"""
Process-level wiring of the retrieval pipeline.

:class:`QueryOrchestrator` is the one object that knows whether the
system is usable.  It owns the corpus store and the text encoder,
initialises both concurrently, and checks every precondition before a
query touches them:

    orchestrator = QueryOrchestrator.from_config()
    await orchestrator.initialize()
    matches = await orchestrator.query("tomato, basil, garlic")
"""

import asyncio
from typing import Callable, List, Optional

from loguru import logger

from .config import DEFAULT_TOP_K, EMBEDDER_BACKEND, HealthResponse, RecipeMatch, default_contract
from .corpus_store import Corpus, CorpusStore
from .embedder import Embedder, load_embedder
from .encoder import TextEncoder
from .errors import (
    CorpusNotLoadedError,
    DimensionMismatchError,
    EmptyQueryError,
    EncoderNotReadyError,
)
from .explain import explain
from .normalize import basic_clean
from .ranking import rank

STATUS_IDLE = "idle"
STATUS_LOADING = "loading"
STATUS_READY = "ready"
STATUS_ERROR = "error"


class QueryOrchestrator:
    """
    Context object holding the loaded corpus and the ready embedder.

    ``embedder_factory`` is called (in a worker thread) during
    :meth:`initialize`; pass a prebuilt embedder through the encoder
    instead to skip model loading entirely.
    """

    def __init__(
        self,
        store: CorpusStore,
        encoder: Optional[TextEncoder] = None,
        embedder_factory: Optional[Callable[[], Embedder]] = None,
        default_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.store = store
        self.encoder = encoder or TextEncoder()
        self.embedder_factory = embedder_factory
        self.default_k = default_k
        self.corpus: Optional[Corpus] = None
        self.status = STATUS_IDLE
        self.status_detail: Optional[str] = None

    @classmethod
    def from_config(cls, backend: str = EMBEDDER_BACKEND, **store_kwargs) -> "QueryOrchestrator":
        store = CorpusStore(contract=default_contract(backend), **store_kwargs)
        return cls(store, embedder_factory=lambda: load_embedder(backend))

    @property
    def ready(self) -> bool:
        return self.status == STATUS_READY

    async def initialize(self) -> str:
        """
        Load the corpus and the embedder side by side.  Ends in
        ``ready`` or in ``error`` with ``status_detail`` naming the
        blocking condition; never raises for a load failure.
        """
        self.status = STATUS_LOADING
        self.status_detail = None
        logger.info("Initialising recipe search...")
        corpus_result, embedder_result = await asyncio.gather(
            self.store.load(),
            self._load_embedder(),
            return_exceptions=True,
        )

        problems: List[str] = []
        if isinstance(corpus_result, BaseException):
            if not isinstance(corpus_result, Exception):
                raise corpus_result
            logger.error("Corpus load failed: {}", corpus_result)
            problems.append(f"corpus: {type(corpus_result).__name__}: {corpus_result}")
        else:
            self.corpus = corpus_result

        if isinstance(embedder_result, BaseException):
            if not isinstance(embedder_result, Exception):
                raise embedder_result
            logger.error("Embedder load failed: {}", embedder_result)
            problems.append(f"embedder: {type(embedder_result).__name__}: {embedder_result}")
        elif embedder_result is not None:
            self.encoder.embedder = embedder_result

        if not problems and not self.encoder.ready:
            problems.append("embedder: no embedder configured")

        if not problems:
            embedder_dim = getattr(self.encoder.embedder, "dimension", None)
            if embedder_dim is not None and int(embedder_dim) != self.corpus.dimension:
                mismatch = DimensionMismatchError(self.corpus.dimension, int(embedder_dim), "embedder output")
                logger.error("Embedder does not match corpus: {}", mismatch)
                problems.append(f"{type(mismatch).__name__}: {mismatch}")

        if problems:
            self.status = STATUS_ERROR
            self.status_detail = "; ".join(problems)
        else:
            self.status = STATUS_READY
            logger.info("Ready: {} recipes, dim={}", len(self.corpus), self.corpus.dimension)
        return self.status

    async def _load_embedder(self) -> Optional[Embedder]:
        if self.encoder.ready:
            return self.encoder.embedder
        if self.embedder_factory is None:
            return None
        return await asyncio.to_thread(self.embedder_factory)

    async def query(self, text: str, k: Optional[int] = None) -> List[RecipeMatch]:
        """Top-``k`` recipes for ``text`` with explanations."""
        if self.corpus is None:
            raise CorpusNotLoadedError(self.status_detail or "Corpus is not loaded")
        if not self.encoder.ready:
            raise EncoderNotReadyError(self.status_detail or "Embedding model is not ready")
        if not basic_clean(text):
            raise EmptyQueryError("Query is empty")
        k = self.default_k if k is None else k
        if k <= 0:
            raise ValueError("k must be positive")

        corpus = self.corpus
        vector = await asyncio.to_thread(self.encoder.encode, text, corpus.dimension)
        scored = rank(vector, corpus, k)
        matches = [
            RecipeMatch(
                id=r.entry.id,
                cuisine=r.entry.cuisine,
                ingredients=list(r.entry.ingredients),
                score=r.score,
                explanation=explain(text, r.entry, r.score),
            )
            for r in scored
        ]
        logger.info("Query {!r} -> {}", text, [m.id for m in matches])
        return matches

    def status_report(self) -> HealthResponse:
        return HealthResponse(
            status=self.status,
            detail=self.status_detail,
            recipes=len(self.corpus) if self.corpus is not None else 0,
            source=self.store.source,
        )
