from __future__ import annotations
"""
Configuration for the recipe search service.

Everything tunable lives here as a module constant; values that differ
between deployments can be overridden from the environment.
"""

import hashlib
import json
import os
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field

# Paths
PROJECT_ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = PROJECT_ROOT / "data"
CHUNKS_DIR = DATA_DIR / "chunks"
CACHE_DIR = Path(os.getenv("RECIPE_CACHE_DIR", str(DATA_DIR / "cache")))
MODELS_DIR = PROJECT_ROOT / "models"
LOG_DIR = PROJECT_ROOT / "logs"
LOG_FILE = LOG_DIR / "recipe_search.log"

# Corpus sources.  Either an http(s) base URL or a local directory.
CORPUS_BASE_URL = os.getenv("RECIPE_CORPUS_BASE_URL", str(CHUNKS_DIR))
CONSOLIDATED_NAME = os.getenv("RECIPE_CORPUS_FILE", "corpus.json")
SHARD_NAME_TEMPLATE = "part{index}.json"
TOTAL_SHARDS = int(os.getenv("RECIPE_TOTAL_SHARDS", "17"))
SHARD_CONCURRENCY = 8

# Cache
CACHE_KEY = "recipe_corpus_v1"
CACHE_TTL_SECONDS = 7 * 24 * 60 * 60

# Each rung of the loading ladder gets its own deadline (seconds)
CORPUS_STRATEGY_TIMEOUT = float(os.getenv("CORPUS_STRATEGY_TIMEOUT", "60"))

# Models
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
# "pooled" -> sentence-transformers, "raw" -> transformers hidden states + masked mean
EMBEDDER_BACKEND = os.getenv("EMBEDDER_BACKEND", "pooled").strip().lower()

HF_ENV_VARS = {
    "TRANSFORMERS_CACHE": str(MODELS_DIR),
    "HF_HUB_OFFLINE": os.getenv("HF_HUB_OFFLINE", "0"),
    "TOKENIZERS_PARALLELISM": "false",
}

# Query template: must match what produced the corpus vectors offline
QUERY_PREFIX = "Ingredients: "
QUERY_LOWERCASE = True
MAX_SEQ_LENGTH = 128
MAX_INPUT_CHARS = 2_000

# Result policy
DEFAULT_TOP_K = int(os.getenv("RECIPE_TOP_K", "3"))
MAX_TOP_K = 50

# HTTP hardening
HTTP_CONNECT_TIMEOUT = 5.0
HTTP_READ_TIMEOUT = 30.0
HTTP_MAX_REDIRECTS = 2
HTTP_MAX_BYTES = 200_000_000
HTTP_USER_AGENT = "recipe-search/1.0"


class EncodingContract(BaseModel):
    """
    Numeric contract shared by the offline corpus builder and the
    online query encoder.  Any change to these fields changes the
    vectors, so the fingerprint is stored next to cached corpora.
    """

    version: int = 1
    model_name: str = EMBEDDING_MODEL
    query_prefix: str = QUERY_PREFIX
    lowercase: bool = QUERY_LOWERCASE
    max_length: int = MAX_SEQ_LENGTH
    pooling: str = "model"

    def fingerprint(self) -> str:
        payload = json.dumps(self.model_dump(), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def default_contract(backend: str = EMBEDDER_BACKEND) -> EncodingContract:
    pooling = "masked-mean" if backend == "raw" else "model"
    return EncodingContract(pooling=pooling)


# Pydantic schemas
class RecipeMatch(BaseModel):
    id: Union[int, str]
    cuisine: str
    ingredients: List[str]
    score: float = Field(ge=-1.0, le=1.0)
    explanation: str


class RecommendResponse(BaseModel):
    results: List[RecipeMatch]


class HealthResponse(BaseModel):
    status: str
    detail: Optional[str] = None
    recipes: int = 0
    source: Optional[str] = None


class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1)
    k: int = Field(DEFAULT_TOP_K, ge=1, le=MAX_TOP_K)
