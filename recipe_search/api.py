from __future__ import annotations

"""
FastAPI application for recipe search.

- GET  /health     readiness plus the blocking condition, if any
- POST /recommend  top-k recipes for an ingredient query

The orchestrator is created by :func:`create_app` and kept on
``app.state``; initialisation runs on startup.
"""

import warnings
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .config import HealthResponse, QueryRequest, RecommendResponse
from .errors import (
    CorpusNotLoadedError,
    DimensionMismatchError,
    EmptyQueryError,
    EncoderNotReadyError,
    NoDataError,
)
from .orchestrator import QueryOrchestrator

warnings.filterwarnings("ignore", category=FutureWarning, message=".*resume_download.*")


def _orchestrator(request: Request) -> QueryOrchestrator:
    return request.app.state.orchestrator


def create_app(orchestrator: Optional[QueryOrchestrator] = None) -> FastAPI:
    app = FastAPI(title="recipe-search")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.orchestrator = orchestrator

    @app.on_event("startup")
    async def startup_event() -> None:
        if app.state.orchestrator is None:
            app.state.orchestrator = QueryOrchestrator.from_config()
        orch = app.state.orchestrator
        if not orch.ready:
            logger.info("Starting app warmup...")
            status = await orch.initialize()
            if status != "ready":
                logger.warning("Warmup finished in state {}: {}", status, orch.status_detail)
            else:
                logger.info("Warmup complete.")

    @app.get("/health", response_model=HealthResponse)
    def health(request: Request) -> HealthResponse:
        return _orchestrator(request).status_report()

    @app.post("/recommend", response_model=RecommendResponse)
    async def recommend(req: QueryRequest, request: Request) -> RecommendResponse:
        orch = _orchestrator(request)
        try:
            results = await orch.query(req.query, req.k)
        except EmptyQueryError as e:
            raise HTTPException(status_code=422, detail=str(e) or "Query must be non-empty")
        except (CorpusNotLoadedError, EncoderNotReadyError, NoDataError) as e:
            raise HTTPException(status_code=503, detail=f"{type(e).__name__}: {e}")
        except DimensionMismatchError as e:
            logger.error("Dimension mismatch for query {!r}: {}", req.query, e)
            raise HTTPException(status_code=500, detail=f"DimensionMismatchError: {e}")
        return RecommendResponse(results=results)

    return app


app = create_app()
