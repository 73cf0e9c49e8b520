"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator

from screener.config import (
    DEFAULT_LIMIT,
    DEFAULT_ORDER_BY,
    MAX_LIMIT,
    MAX_SYMBOLS_HARD_CAP,
    MAX_SYMBOLS_TO_CHECK,
)
from screener.db import close_db, init_db
from screener.errors import CandidateDiscoveryFailure, InvalidRequest
from screener.jobs.scheduler import start_scheduler, stop_scheduler
from screener.jobs.update_stocks import MODES, run_update
from screener.models import Comparison, FilterSpec, public_quote
from screener.services.enrichment import EnrichmentPipeline, create_pipeline
from screener.services.monitor import get_monitor_report

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup, clean up on shutdown."""
    await init_db()
    app.state.pipeline = create_pipeline()
    app.state.scheduler = start_scheduler(app.state.pipeline)
    logger.info("Screener started")
    yield

    stop_scheduler()
    await app.state.pipeline.close()
    await close_db()
    logger.info("Screener stopped")


app = FastAPI(title="Stock Screener", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected faults become a 500 carrying the error message."""
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EnrichRequest(BaseModel):
    symbols: list[str] | None = None
    filters: FilterSpec | None = None
    limit: int = Field(DEFAULT_LIMIT, ge=0, le=MAX_LIMIT)

    @model_validator(mode="after")
    def _symbols_or_filters(self) -> "EnrichRequest":
        if self.symbols is None and self.filters is None:
            raise ValueError("Provide either symbols or filters")
        return self


class ScreenerOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exchange: str = "ALL"
    max_symbols: int = Field(MAX_SYMBOLS_TO_CHECK, ge=1, le=MAX_SYMBOLS_HARD_CAP, alias="maxSymbols")
    order_by: str = Field(DEFAULT_ORDER_BY, alias="orderBy")
    offset: int = Field(0, ge=0)
    limit: int = Field(DEFAULT_LIMIT, ge=0, le=MAX_LIMIT)


class ScreenerRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)
    comparisons: list[Comparison] = Field(default_factory=list)
    options: ScreenerOptions = Field(default_factory=ScreenerOptions)


class UpdateRequest(BaseModel):
    mode: str | None = None
    symbols: list[str] | None = None


def _pipeline(request: Request) -> EnrichmentPipeline:
    return request.app.state.pipeline


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def health() -> dict:
    """Return service health status."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/api/enrich")
async def enrich(body: EnrichRequest, request: Request) -> dict:
    """Resolve explicit symbols, or screen a discovered sample by filters."""
    pipeline = _pipeline(request)
    try:
        if body.symbols is not None:
            result = await pipeline.enrich(body.symbols)
            stocks = result["quotes"]
        else:
            result = await pipeline.screen(body.filters, limit=body.limit)
            stocks = result["stocks"]
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CandidateDiscoveryFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return {
        "stocks": [public_quote(q) for q in stocks],
        "count": len(stocks),
        "source": result["source"],
        "stats": result["stats"],
    }


@app.post("/api/screener")
async def screener(body: ScreenerRequest, request: Request) -> dict:
    """Filter, rank and page a candidate sample."""
    opts = body.options
    try:
        result = await _pipeline(request).screen(
            body.filters,
            body.comparisons,
            exchange=opts.exchange,
            max_symbols=opts.max_symbols,
            order_by=opts.order_by,
            offset=opts.offset,
            limit=opts.limit,
        )
    except (InvalidRequest, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CandidateDiscoveryFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return {
        "success": True,
        "count": result["count"],
        "total_matched": result["total_matched"],
        "total_checked": result["total_checked"],
        "results": [public_quote(q) for q in result["stocks"]],
        "source": result["source"],
        "stats": result["stats"],
    }


@app.post("/api/update-stocks")
async def update_stocks(
    request: Request,
    body: UpdateRequest | None = None,
    mode: str | None = Query(None),
) -> dict:
    """Trigger a refresh: ``full``, ``delta`` (default) or ``manual`` with symbols."""
    body = body or UpdateRequest()
    if body.symbols:
        mode = "manual"
    else:
        mode = body.mode or mode or "delta"
    if mode not in MODES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid mode: {mode!r}. Must be one of: {', '.join(MODES)}",
        )
    if mode == "manual" and not body.symbols:
        raise HTTPException(status_code=400, detail="Manual mode requires symbols")

    return await run_update(_pipeline(request), mode=mode, symbols=body.symbols)


@app.get("/api/quote")
async def quote(request: Request, symbol: str = Query(..., min_length=1)) -> dict:
    """Resolve one symbol through the cache and provider cascade."""
    symbol = symbol.strip().upper()
    if not symbol:
        raise HTTPException(status_code=400, detail="Symbol is required")

    result = await _pipeline(request).enrich([symbol])
    if not result["quotes"]:
        raise HTTPException(status_code=404, detail=f"No quote available for {symbol}")
    return {
        "quote": public_quote(result["quotes"][0]),
        "source": result["source"],
    }


@app.get("/api/monitor")
async def monitor(request: Request) -> dict:
    """Return table freshness, top movers and provider state."""
    return await get_monitor_report(_pipeline(request).registry)


@app.post("/api/providers/{name}/reset")
async def reset_provider(name: str, request: Request) -> dict:
    """Manually close a provider's circuit breaker."""
    registry = _pipeline(request).registry
    if not registry.reset(name):
        raise HTTPException(status_code=404, detail=f"Unknown provider: {name}")
    logger.info("Breaker for %s reset by request", name)
    return {"provider": name, "state": registry.snapshot()[name]}
