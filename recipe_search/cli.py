# recipe_search/cli.py
"""
Command line entry point for recipe search.

    python -m recipe_search.cli query "tomato, basil, mozzarella" --k 3
    python -m recipe_search.cli batch --in queries.csv --out predictions.csv
    python -m recipe_search.cli warm
    python -m recipe_search.cli clear-cache

``batch`` reads a CSV/XLSX with a ``Query`` column, runs every unique
query once and writes one row per (query, recipe) in rank order.
"""

from __future__ import annotations
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger

from recipe_search.config import DEFAULT_TOP_K, LOG_DIR, LOG_FILE, RecipeMatch
from recipe_search.errors import RecipeSearchError
from recipe_search.normalize import basic_clean
from recipe_search.orchestrator import QueryOrchestrator


def configure_logging(verbose: bool = False, log_file: bool = False) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")
    if log_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        logger.add(str(LOG_FILE), rotation="10 MB", retention=5, level="DEBUG")


def load_queries(path: Path) -> List[str]:
    ext = path.suffix.lower()
    df = pd.read_excel(path) if ext in {".xlsx", ".xls"} else pd.read_csv(path)
    cols = {c.lower(): c for c in df.columns}
    qcol = cols.get("query")
    if not qcol:
        raise ValueError(f"Expected column 'Query' in {path}. Found: {list(df.columns)}")
    return df[qcol].astype(str).map(basic_clean).tolist()


def _dedup_preserve_order(seq: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for s in seq:
        if s not in seen:
            seen.add(s)
            out.append(s)
    return out


def write_predictions_csv(preds: Dict[str, List[RecipeMatch]], out_path: Path) -> int:
    """Write columns Query, Rank, Recipe_id, Cuisine, Score; returns row count."""
    rows = []
    for q, matches in preds.items():
        for rank_pos, m in enumerate(matches, 1):
            rows.append((q, rank_pos, m.id, m.cuisine, round(m.score, 6)))
    df = pd.DataFrame(rows, columns=["Query", "Rank", "Recipe_id", "Cuisine", "Score"])
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False)
    return len(rows)


async def _init(orch: QueryOrchestrator) -> None:
    status = await orch.initialize()
    if status != "ready":
        raise SystemExit(f"Recipe search is not ready: {orch.status_detail}")


async def run_query(orch: QueryOrchestrator, text: str, k: int) -> List[RecipeMatch]:
    await _init(orch)
    return await orch.query(text, k)


async def run_batch(orch: QueryOrchestrator, queries: List[str], k: int) -> Dict[str, List[RecipeMatch]]:
    await _init(orch)
    unique_queries = _dedup_preserve_order(queries)
    print(f"Unique queries to evaluate: {len(unique_queries)}")
    preds: Dict[str, List[RecipeMatch]] = {}
    for i, uq in enumerate(unique_queries, 1):
        try:
            preds[uq] = await orch.query(uq, k)
        except RecipeSearchError as e:
            print(f"[WARN] {i}/{len(unique_queries)} failed: {e}")
            preds[uq] = []
        if i % 10 == 0 or i == len(unique_queries):
            print(f"Processed {i}/{len(unique_queries)} unique queries")
    return preds


def print_matches(matches: List[RecipeMatch]) -> None:
    if not matches:
        print("No recipes found.")
        return
    for pos, m in enumerate(matches, 1):
        print(f"{pos}. [{m.id}] {m.cuisine.upper()}  score={m.score:.4f}")
        print(f"   Ingredients: {', '.join(m.ingredients)}")
        print(f"   {m.explanation}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="recipe-search")
    ap.add_argument("--verbose", action="store_true")
    ap.add_argument("--log-file", action="store_true", help="also log to logs/recipe_search.log")
    sub = ap.add_subparsers(dest="command", required=True)

    q = sub.add_parser("query", help="find recipes for one ingredient list")
    q.add_argument("text")
    q.add_argument("--k", type=int, default=DEFAULT_TOP_K)

    b = sub.add_parser("batch", help="run every query in a CSV/XLSX file")
    b.add_argument("--in", dest="inp", required=True)
    b.add_argument("--out", dest="out", default="artifacts/predictions.csv")
    b.add_argument("--k", type=int, default=DEFAULT_TOP_K)

    sub.add_parser("warm", help="load the corpus and write it to the cache")
    sub.add_parser("clear-cache", help="delete the cached corpus snapshot")
    return ap


def main(argv: Optional[List[str]] = None, orchestrator: Optional[QueryOrchestrator] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.log_file)
    orch = orchestrator or QueryOrchestrator.from_config()

    if args.command == "clear-cache":
        orch.store.invalidate()
        print("Corpus cache cleared.")
        return 0

    if args.command == "warm":
        try:
            corpus = asyncio.run(orch.store.load())
        except RecipeSearchError as e:
            print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
            return 1
        print(f"Loaded {len(corpus)} recipes from {orch.store.source}")
        return 0

    if args.command == "query":
        try:
            matches = asyncio.run(run_query(orch, args.text, args.k))
        except RecipeSearchError as e:
            print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
            return 1
        print_matches(matches)
        return 0

    inp = Path(args.inp)
    queries = load_queries(inp)
    print(f"Loaded {len(queries)} queries from {inp}")
    preds = asyncio.run(run_batch(orch, queries, args.k))
    total_rows = write_predictions_csv(preds, Path(args.out))
    print(f"Wrote {total_rows} rows to {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
