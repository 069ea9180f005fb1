from __future__ import annotations

"""
Acquisition and caching of the static recipe corpus.

The corpus is a list of records ``{id, cuisine, ingredients, embedding}``
whose embeddings were computed offline.  :class:`CorpusStore` loads it
once per process through an ordered ladder of strategies:

1. ``cache``         a fresh snapshot from the key-value cache
2. ``consolidated``  one bulk ``corpus.json``
3. ``sharded``       ``part1.json`` .. ``partN.json`` fetched concurrently

Each strategy runs under its own deadline.  A failure or timeout moves
on to the next one; when the last one produces nothing the load fails
with :class:`NoDataError`.  A successful network load is written back
to the cache.

Example::

    store = CorpusStore(base_url="https://example.org/chunks")
    corpus = asyncio.run(store.load())
    print(len(corpus), corpus.dimension)
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import httpx
import numpy as np
from loguru import logger

from .cache import CacheBackend, JsonFileCache
from .config import (
    CACHE_KEY,
    CACHE_TTL_SECONDS,
    CONSOLIDATED_NAME,
    CORPUS_BASE_URL,
    CORPUS_STRATEGY_TIMEOUT,
    SHARD_CONCURRENCY,
    SHARD_NAME_TEMPLATE,
    TOTAL_SHARDS,
    EncodingContract,
    default_contract,
)
from .errors import AcquisitionError, DimensionMismatchError, NoDataError, ParseError
from .fetch import fetch_json, join_location, make_client
from .vectors import sanitize_vector

RecipeId = Union[int, str]


# -----------------------------------------------------------------------------
# Data model
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Recipe:
    id: RecipeId
    cuisine: str
    ingredients: Tuple[str, ...]


@dataclass(frozen=True, eq=False)
class CorpusEntry:
    recipe: Recipe
    vector: np.ndarray

    @property
    def id(self) -> RecipeId:
        return self.recipe.id

    @property
    def cuisine(self) -> str:
        return self.recipe.cuisine

    @property
    def ingredients(self) -> Tuple[str, ...]:
        return self.recipe.ingredients

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.recipe.id,
            "cuisine": self.recipe.cuisine,
            "ingredients": list(self.recipe.ingredients),
            "embedding": [float(x) for x in self.vector],
        }


class Corpus:
    """
    Ordered, read-only collection of corpus entries.

    Entry order is the order the records arrived in and doubles as the
    ranking tie-break.  The stacked ``(N, D)`` matrix is built once and
    flagged non-writeable.
    """

    def __init__(self, entries: Sequence[CorpusEntry]) -> None:
        if not entries:
            raise NoDataError("Corpus is empty")
        dim = int(entries[0].vector.shape[0])
        for entry in entries:
            if entry.vector.shape[0] != dim:
                raise DimensionMismatchError(dim, int(entry.vector.shape[0]), f"recipe {entry.id!r}")
        self._entries: Tuple[CorpusEntry, ...] = tuple(entries)
        matrix = np.stack([e.vector for e in self._entries]).astype(np.float32, copy=False)
        matrix.setflags(write=False)
        self._matrix = matrix

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CorpusEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> CorpusEntry:
        return self._entries[index]

    @property
    def entries(self) -> Tuple[CorpusEntry, ...]:
        return self._entries

    @property
    def dimension(self) -> int:
        return int(self._matrix.shape[1])

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    def to_records(self) -> List[Dict[str, Any]]:
        return [e.to_record() for e in self._entries]


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

def parse_record(raw: Any, location: str = "<memory>") -> CorpusEntry:
    """Validate one raw record and sanitize its embedding."""
    if not isinstance(raw, dict):
        raise ParseError(f"{location}: record is not an object")
    try:
        rid = raw["id"]
        cuisine = raw["cuisine"]
        ingredients = raw["ingredients"]
        embedding = raw["embedding"]
    except KeyError as e:
        raise ParseError(f"{location}: record missing field {e}") from e
    if not isinstance(rid, (int, str)) or isinstance(rid, bool):
        raise ParseError(f"{location}: invalid id {rid!r}")
    if not isinstance(ingredients, list) or not all(isinstance(i, str) for i in ingredients):
        raise ParseError(f"{location}: ingredients of {rid!r} must be a list of strings")
    if not isinstance(embedding, list) or not embedding:
        raise ParseError(f"{location}: embedding of {rid!r} must be a non-empty list")
    try:
        vector = sanitize_vector(embedding)
    except (TypeError, ValueError) as e:
        raise ParseError(f"{location}: embedding of {rid!r} is not numeric") from e
    vector.setflags(write=False)
    recipe = Recipe(id=rid, cuisine=str(cuisine), ingredients=tuple(ingredients))
    return CorpusEntry(recipe=recipe, vector=vector)


def parse_records(payload: Any, location: str = "<memory>") -> List[CorpusEntry]:
    """
    Parse a resource body (a JSON array of records).  All embeddings in
    one resource must share a dimension.
    """
    if not isinstance(payload, list):
        raise ParseError(f"{location}: expected a list of records, got {type(payload).__name__}")
    entries = [parse_record(raw, location) for raw in payload]
    if entries:
        dim = entries[0].vector.shape[0]
        for e in entries:
            if e.vector.shape[0] != dim:
                raise ParseError(
                    f"{location}: recipe {e.id!r} has dimension {e.vector.shape[0]}, expected {dim}"
                )
    return entries


# -----------------------------------------------------------------------------
# Strategy ladder
# -----------------------------------------------------------------------------

Strategy = Callable[[], Awaitable[Optional[List[CorpusEntry]]]]


async def first_success(
    strategies: Sequence[Tuple[str, Strategy]],
    timeout: Optional[float] = None,
) -> Tuple[str, List[CorpusEntry]]:
    """
    Run ``strategies`` in order and return ``(name, entries)`` from the
    first one that yields a non-empty result.

    A strategy signals "not applicable" by returning ``None`` or an
    empty list, and failure by raising :class:`AcquisitionError`; a
    strategy exceeding ``timeout`` counts as a failure.  Any other
    exception propagates.
    """
    for name, strategy in strategies:
        try:
            entries = await asyncio.wait_for(strategy(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Corpus strategy '{}' timed out after {}s", name, timeout)
            continue
        except AcquisitionError as e:
            logger.warning("Corpus strategy '{}' failed: {}", name, e)
            continue
        if entries:
            logger.info("Corpus strategy '{}' produced {} recipes", name, len(entries))
            return name, entries
        logger.info("Corpus strategy '{}' produced nothing", name)
    raise NoDataError("All corpus loading strategies failed")


class CorpusStore:
    """
    Loads the corpus once and memoizes it.

    Parameters
    ----------
    base_url:
        ``http(s)`` base URL or local directory holding ``corpus.json``
        and the ``part{i}.json`` shards.
    cache:
        Any :class:`CacheBackend`.  Freshness (TTL and encoding
        contract) is checked here, not by the backend.  Reads and writes
        run in a worker thread so the cache rung honours its deadline.
    clock:
        Returns the current time in seconds; injectable for tests.
    transport:
        Optional ``httpx`` transport, used by tests to avoid the network.
    """

    def __init__(
        self,
        base_url: str = CORPUS_BASE_URL,
        cache: Optional[CacheBackend] = None,
        *,
        total_shards: int = TOTAL_SHARDS,
        consolidated_name: str = CONSOLIDATED_NAME,
        cache_key: str = CACHE_KEY,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        strategy_timeout: Optional[float] = CORPUS_STRATEGY_TIMEOUT,
        contract: Optional[EncodingContract] = None,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.cache = cache if cache is not None else JsonFileCache()
        self.total_shards = total_shards
        self.consolidated_name = consolidated_name
        self.cache_key = cache_key
        self.ttl_seconds = ttl_seconds
        self.strategy_timeout = strategy_timeout
        self.contract = contract or default_contract()
        self.clock = clock
        self._transport = transport
        self._corpus: Optional[Corpus] = None
        self._lock = asyncio.Lock()
        self.source: Optional[str] = None

    @property
    def corpus(self) -> Optional[Corpus]:
        return self._corpus

    async def load(self) -> Corpus:
        """Return the corpus, loading it on first call."""
        if self._corpus is not None:
            return self._corpus
        async with self._lock:
            if self._corpus is not None:
                return self._corpus
            started = time.perf_counter()
            async with make_client(self._transport) as client:
                strategies: List[Tuple[str, Strategy]] = [
                    ("cache", self._from_cache),
                    ("consolidated", lambda: self._from_consolidated(client)),
                    ("sharded", lambda: self._from_shards(client)),
                ]
                source, entries = await first_success(strategies, self.strategy_timeout)
            corpus = Corpus(entries)
            if source != "cache":
                await self._persist(corpus)
            self._corpus = corpus
            self.source = source
            logger.info(
                "Loaded {} recipes (dim={}) from {} in {:.2f}s",
                len(corpus),
                corpus.dimension,
                source,
                time.perf_counter() - started,
            )
            return corpus

    def invalidate(self) -> None:
        """Forget the memoized corpus and drop the cache entry."""
        self._corpus = None
        self.source = None
        self.cache.delete(self.cache_key)

    # -- strategies -----------------------------------------------------------

    async def _from_cache(self) -> Optional[List[CorpusEntry]]:
        snapshot = await asyncio.to_thread(self.cache.get, self.cache_key)
        if snapshot is None:
            logger.info("No cached corpus snapshot")
            return None
        if not isinstance(snapshot, dict) or "data" not in snapshot or "timestamp" not in snapshot:
            logger.warning("Cached corpus snapshot has unexpected shape; ignoring")
            return None
        try:
            age = self.clock() - float(snapshot["timestamp"])
        except (TypeError, ValueError):
            logger.warning("Cached corpus snapshot has invalid timestamp; ignoring")
            return None
        if age >= self.ttl_seconds:
            logger.info("Cached corpus snapshot is stale ({:.0f}s old)", age)
            return None
        fingerprint = self.contract.fingerprint()
        if snapshot.get("contract") != fingerprint:
            logger.warning(
                "Cached corpus was built for encoding contract {}, current is {}; ignoring",
                snapshot.get("contract"),
                fingerprint,
            )
            return None
        return parse_records(snapshot["data"], f"cache:{self.cache_key}")

    async def _from_consolidated(self, client: httpx.AsyncClient) -> List[CorpusEntry]:
        location = join_location(self.base_url, self.consolidated_name)
        payload = await fetch_json(location, client)
        return parse_records(payload, location)

    async def _from_shards(self, client: httpx.AsyncClient) -> List[CorpusEntry]:
        semaphore = asyncio.Semaphore(SHARD_CONCURRENCY)

        async def fetch_shard(index: int) -> List[CorpusEntry]:
            location = join_location(self.base_url, SHARD_NAME_TEMPLATE.format(index=index))
            async with semaphore:
                payload = await fetch_json(location, client)
            return parse_records(payload, location)

        indices = list(range(1, self.total_shards + 1))
        results = await asyncio.gather(*(fetch_shard(i) for i in indices), return_exceptions=True)

        # gather preserves argument order, so this join is in shard order
        entries: List[CorpusEntry] = []
        dim: Optional[int] = None
        for index, result in zip(indices, results):
            if isinstance(result, AcquisitionError):
                logger.warning("Shard {}/{} skipped: {}", index, self.total_shards, result)
                continue
            if isinstance(result, BaseException):
                raise result
            if not result:
                continue
            shard_dim = int(result[0].vector.shape[0])
            if dim is None:
                dim = shard_dim
            elif shard_dim != dim:
                logger.warning(
                    "Shard {}/{} skipped: dimension {} differs from {}",
                    index, self.total_shards, shard_dim, dim,
                )
                continue
            entries.extend(result)
            logger.debug("Shard {}/{} contributed {} recipes", index, self.total_shards, len(result))

        if not entries:
            raise NoDataError(f"None of the {self.total_shards} shards produced any recipes")
        return entries

    # -- persistence ----------------------------------------------------------

    async def _persist(self, corpus: Corpus) -> None:
        snapshot = {
            "data": corpus.to_records(),
            "timestamp": self.clock(),
            "contract": self.contract.fingerprint(),
        }
        try:
            await asyncio.to_thread(self.cache.put, self.cache_key, snapshot)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not persist corpus snapshot: {}", e)
