"""
Tests for corpus loading
========================

Covers the cache -> consolidated -> sharded ladder, TTL handling,
shard failure tolerance and ordering, and embedding sanitization.
"""

import asyncio
import json
import time

import httpx
import numpy as np
import pytest

from conftest import ITALIAN, FRENCH, make_records, write_json
from recipe_search.cache import MemoryCache
from recipe_search.config import CACHE_KEY, CACHE_TTL_SECONDS, EncodingContract
from recipe_search.corpus_store import Corpus, CorpusStore, first_success, parse_record, parse_records
from recipe_search.errors import AcquisitionError, NoDataError, ParseError


def _ids(corpus):
    return [e.id for e in corpus]


# =============================================================================
# Parsing
# =============================================================================

class TestParsing:
    def test_parses_valid_record(self):
        entry = parse_record(ITALIAN)
        assert entry.id == 1
        assert entry.cuisine == "italian"
        assert entry.ingredients == ("tomato", "basil")
        assert entry.vector.tolist() == [1.0, 0.0]

    def test_sanitizes_non_finite_components(self):
        entry = parse_record({**ITALIAN, "embedding": [float("nan"), float("inf"), 0.5]})
        assert entry.vector.tolist() == [0.0, 0.0, 0.5]

    @pytest.mark.parametrize("bad", [
        {"cuisine": "x", "ingredients": [], "embedding": [1.0]},
        {"id": 1, "cuisine": "x", "ingredients": "tomato", "embedding": [1.0]},
        {"id": 1, "cuisine": "x", "ingredients": [], "embedding": []},
        {"id": 1, "cuisine": "x", "ingredients": [], "embedding": ["a", "b"]},
        ["not", "a", "record"],
    ])
    def test_malformed_record_raises_parse_error(self, bad):
        with pytest.raises(ParseError):
            parse_record(bad)

    def test_resource_must_be_list(self):
        with pytest.raises(ParseError):
            parse_records({"records": []})

    def test_mixed_dimensions_in_one_resource(self):
        with pytest.raises(ParseError):
            parse_records([ITALIAN, {**FRENCH, "embedding": [0.0, 1.0, 0.0]}])

    def test_empty_corpus_rejected(self):
        with pytest.raises(NoDataError):
            Corpus([])


# =============================================================================
# Ladder combinator
# =============================================================================

class TestFirstSuccess:
    def test_skips_failures_and_empty_results(self):
        entries = parse_records([ITALIAN])

        async def fails():
            raise AcquisitionError("boom")

        async def empty():
            return None

        async def works():
            return entries

        name, got = asyncio.run(first_success([("a", fails), ("b", empty), ("c", works)]))
        assert name == "c"
        assert got is entries

    def test_timeout_advances_ladder(self):
        entries = parse_records([ITALIAN])

        async def slow():
            await asyncio.sleep(5)
            return entries

        async def fast():
            return entries

        name, _ = asyncio.run(first_success([("slow", slow), ("fast", fast)], timeout=0.05))
        assert name == "fast"

    def test_exhausted_ladder_raises_no_data(self):
        async def fails():
            raise ParseError("bad")

        with pytest.raises(NoDataError):
            asyncio.run(first_success([("a", fails)]))


# =============================================================================
# Loading from local files
# =============================================================================

class TestLocalLoading:
    def test_consolidated_source_and_cache_write(self, tmp_path, make_store, memory_cache, sample_records):
        write_json(tmp_path / "chunks" / "corpus.json", sample_records)
        store = make_store()
        corpus = asyncio.run(store.load())
        assert _ids(corpus) == [1, 2]
        assert store.source == "consolidated"
        snapshot = memory_cache.get(CACHE_KEY)
        assert snapshot["data"][0]["id"] == 1
        assert snapshot["contract"] == store.contract.fingerprint()

    def test_falls_back_to_shards_in_shard_order(self, tmp_path, make_store):
        chunks = tmp_path / "chunks"
        write_json(chunks / "part1.json", make_records(2, start=1))
        write_json(chunks / "part2.json", make_records(3, start=3))
        write_json(chunks / "part3.json", make_records(1, start=6))
        store = make_store()
        corpus = asyncio.run(store.load())
        assert _ids(corpus) == [1, 2, 3, 4, 5, 6]
        assert store.source == "sharded"

    def test_malformed_consolidated_forces_sharded(self, tmp_path, make_store):
        chunks = tmp_path / "chunks"
        (chunks).mkdir(parents=True)
        (chunks / "corpus.json").write_text("{not json", encoding="utf-8")
        write_json(chunks / "part1.json", make_records(2))
        store = make_store(total_shards=1)
        corpus = asyncio.run(store.load())
        assert store.source == "sharded"
        assert len(corpus) == 2

    def test_missing_and_broken_shards_are_tolerated(self, tmp_path, make_store):
        chunks = tmp_path / "chunks"
        write_json(chunks / "part1.json", make_records(2, start=1))
        (chunks / "part2.json").write_text("[{]", encoding="utf-8")
        write_json(chunks / "part3.json", make_records(2, start=10))
        store = make_store(total_shards=4)
        corpus = asyncio.run(store.load())
        assert _ids(corpus) == [1, 2, 10, 11]

    def test_no_shards_is_fatal(self, tmp_path, make_store):
        store = make_store()
        with pytest.raises(NoDataError):
            asyncio.run(store.load())

    def test_nan_embeddings_in_file_are_zeroed(self, tmp_path, make_store):
        chunks = tmp_path / "chunks"
        chunks.mkdir(parents=True)
        (chunks / "corpus.json").write_text(
            '[{"id": 1, "cuisine": "thai", "ingredients": ["lime"], "embedding": [NaN, 1.0, Infinity]}]',
            encoding="utf-8",
        )
        corpus = asyncio.run(make_store().load())
        assert corpus[0].vector.tolist() == [0.0, 1.0, 0.0]

    def test_load_is_memoized(self, tmp_path, make_store, sample_records):
        path = write_json(tmp_path / "chunks" / "corpus.json", sample_records)
        store = make_store()
        first = asyncio.run(store.load())
        path.unlink()
        second = asyncio.run(store.load())
        assert first is second

    def test_invalidate_drops_memo_and_cache(self, tmp_path, make_store, memory_cache, sample_records):
        write_json(tmp_path / "chunks" / "corpus.json", sample_records)
        store = make_store()
        asyncio.run(store.load())
        store.invalidate()
        assert store.corpus is None
        assert memory_cache.get(CACHE_KEY) is None


# =============================================================================
# Cache round trip and TTL
# =============================================================================

class TestCache:
    def test_round_trip_within_ttl(self, tmp_path, make_store, sample_records, clock):
        write_json(tmp_path / "chunks" / "corpus.json", sample_records + make_records(3, start=10))
        original = asyncio.run(make_store().load())

        (tmp_path / "chunks" / "corpus.json").unlink()
        clock.now += CACHE_TTL_SECONDS - 1
        store = make_store()
        reloaded = asyncio.run(store.load())

        assert store.source == "cache"
        assert len(reloaded) == len(original)
        for a, b in zip(original, reloaded):
            assert a.recipe == b.recipe
            assert np.array_equal(a.vector, b.vector)

    def test_stale_snapshot_triggers_reacquisition(self, tmp_path, make_store, sample_records, clock):
        path = write_json(tmp_path / "chunks" / "corpus.json", sample_records)
        asyncio.run(make_store().load())

        write_json(path, [ITALIAN])
        clock.now += CACHE_TTL_SECONDS
        store = make_store()
        corpus = asyncio.run(store.load())
        assert store.source == "consolidated"
        assert _ids(corpus) == [1]

    def test_contract_change_invalidates_snapshot(self, tmp_path, make_store, sample_records):
        path = write_json(tmp_path / "chunks" / "corpus.json", sample_records)
        asyncio.run(make_store().load())

        write_json(path, [FRENCH])
        store = make_store(contract=EncodingContract(query_prefix="Recipe: "))
        corpus = asyncio.run(store.load())
        assert store.source == "consolidated"
        assert _ids(corpus) == [2]

    def test_corrupt_snapshot_is_a_miss(self, tmp_path, make_store, memory_cache, sample_records):
        memory_cache.put(CACHE_KEY, {"unexpected": True})
        write_json(tmp_path / "chunks" / "corpus.json", sample_records)
        store = make_store()
        asyncio.run(store.load())
        assert store.source == "consolidated"

    def test_slow_cache_read_times_out_to_next_strategy(self, tmp_path, make_store, sample_records):
        class SlowCache(MemoryCache):
            delay = 0.0

            def get(self, key):
                time.sleep(self.delay)
                return super().get(key)

        cache = SlowCache()
        path = write_json(tmp_path / "chunks" / "corpus.json", sample_records)
        asyncio.run(make_store(cache=cache).load())
        assert cache.get(CACHE_KEY) is not None

        write_json(path, [FRENCH])
        cache.delay = 0.5
        store = make_store(cache=cache, strategy_timeout=0.1)
        corpus = asyncio.run(store.load())
        assert store.source == "consolidated"
        assert _ids(corpus) == [2]


# =============================================================================
# Loading over HTTP
# =============================================================================

BASE = "https://recipes.example/chunks"


def _shard_handler(shards, delays=None, fail=()):
    delays = delays or {}
    requested = []

    async def handler(request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        requested.append(name)
        if name in delays:
            await asyncio.sleep(delays[name])
        if name in fail:
            return httpx.Response(500)
        if name in shards:
            return httpx.Response(200, content=json.dumps(shards[name]).encode())
        return httpx.Response(404)

    return handler, requested


class TestHttpLoading:
    def test_consolidated_over_http(self, make_store, sample_records):
        handler, requested = _shard_handler({"corpus.json": sample_records})
        store = make_store(base_url=BASE, transport=httpx.MockTransport(handler))
        corpus = asyncio.run(store.load())
        assert _ids(corpus) == [1, 2]
        assert requested == ["corpus.json"]

    def test_shard_join_follows_index_not_completion_order(self, make_store):
        shards = {
            "part1.json": make_records(2, start=1),
            "part2.json": make_records(2, start=3),
            "part3.json": make_records(2, start=5),
        }
        # part1 arrives last, part3 first
        delays = {"part1.json": 0.06, "part2.json": 0.03, "part3.json": 0.0}
        handler, _ = _shard_handler(shards, delays=delays)
        store = make_store(base_url=BASE, transport=httpx.MockTransport(handler))
        corpus = asyncio.run(store.load())
        assert _ids(corpus) == [1, 2, 3, 4, 5, 6]

    def test_failed_shard_does_not_cancel_others(self, make_store):
        shards = {
            "part1.json": make_records(1, start=1),
            "part3.json": make_records(1, start=3),
        }
        handler, requested = _shard_handler(shards, delays={"part3.json": 0.05}, fail={"part2.json"})
        store = make_store(base_url=BASE, transport=httpx.MockTransport(handler))
        corpus = asyncio.run(store.load())
        assert _ids(corpus) == [1, 3]
        assert sorted(requested) == ["corpus.json", "part1.json", "part2.json", "part3.json"]

    def test_slow_consolidated_times_out_to_shards(self, make_store, sample_records):
        shards = {"corpus.json": sample_records, "part1.json": [FRENCH]}
        handler, _ = _shard_handler(shards, delays={"corpus.json": 1.0})
        store = make_store(
            base_url=BASE,
            total_shards=1,
            strategy_timeout=0.2,
            transport=httpx.MockTransport(handler),
        )
        corpus = asyncio.run(store.load())
        assert store.source == "sharded"
        assert _ids(corpus) == [2]
