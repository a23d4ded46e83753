"""Pricing endpoints: single-item compare, session budget, server-side runs.

Runs are held in memory for the life of the process and each is driven by
one background asyncio task running a sequential pricing pipeline.
"""

from __future__ import annotations

import asyncio
import functools
import uuid

import structlog
from fastapi import APIRouter, Depends, Response

from prospec.activities.pricing import compare_prices
from prospec.activities.pricing_pipeline import PricingPipeline, PricingRun
from prospec.api.deps import get_rate_limiter, get_session_key, require_access_password
from prospec.config import settings
from prospec.errors import NoProductsFoundError, RunNotFoundError
from prospec.models.contracts import (
    CompareRequest,
    CompareResponse,
    PricingContext,
    PricingItemRequest,
    PricingRunState,
    ProductOption,
    SessionStats,
    StartPricingRunRequest,
)
from prospec.utils.rate_limiter import RateLimiter

logger = structlog.get_logger()

router = APIRouter(tags=["pricing"], dependencies=[Depends(require_access_password)])

_pricing_runs: dict[str, PricingRun] = {}
_run_tasks: dict[str, asyncio.Task] = {}

MAX_RETAINED_RUNS = 200


def _run_state(
    run_id: str,
    run: PricingRun,
    limiter: RateLimiter,
    session_key: str,
) -> PricingRunState:
    return PricingRunState(
        run_id=run_id,
        status="running" if run.status == "pending" else run.status,
        items=list(run.results),
        api_usage_stats=limiter.get_session_stats(session_key),
    )


def _on_run_done(run_id: str, task: asyncio.Task) -> None:
    _run_tasks.pop(run_id, None)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "pricing_run_failed",
            run_id=run_id,
            error_type=type(exc).__name__,
            exc_info=exc,
        )


def _evict_finished_runs() -> None:
    """Drop the oldest finished runs once more than MAX_RETAINED_RUNS are held."""
    excess = len(_pricing_runs) - MAX_RETAINED_RUNS
    if excess <= 0:
        return
    finished = [run_id for run_id in _pricing_runs if run_id not in _run_tasks]
    for run_id in finished[:excess]:
        del _pricing_runs[run_id]
    logger.info("pricing_runs_evicted", count=min(excess, len(finished)))


def _get_run(run_id: str) -> PricingRun:
    run = _pricing_runs.get(run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run


@router.post("/pricing/compare", response_model=CompareResponse)
async def compare(
    body: CompareRequest,
    session_key: str = Depends(get_session_key),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> CompareResponse:
    """Rank shopping offers for one item.

    Each accepted call counts against the caller's session budget; an
    exhausted budget is a 429 before any search is made.
    """
    return await compare_prices(
        body.item_name,
        body.quantity,
        body.context,
        limiter,
        session_key,
        body.client_session_data,
    )


@router.get("/rate-limit", response_model=SessionStats)
async def get_rate_limit(
    session_key: str = Depends(get_session_key),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> SessionStats:
    return limiter.get_session_stats(session_key)


@router.delete("/rate-limit", status_code=204)
async def reset_rate_limit(
    session_key: str = Depends(get_session_key),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Response:
    limiter.reset_session(session_key)
    return Response(status_code=204)


@router.post("/pricing/runs", status_code=201, response_model=PricingRunState)
async def start_pricing_run(
    body: StartPricingRunRequest,
    session_key: str = Depends(get_session_key),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> PricingRunState:
    """Start pricing a list of items; the response carries every placeholder."""
    if body.client_session_data is not None:
        limiter.sync_with_client_session(session_key, body.client_session_data)

    run_id = str(uuid.uuid4())
    context = PricingContext(
        project_description=body.project_description,
        price_scale=body.price_scale,
        location=body.location,
    )
    run = PricingRun(items=list(body.items), context=context)

    async def fetch(item: PricingItemRequest, ctx: PricingContext) -> list[ProductOption]:
        try:
            result = await compare_prices(item.name, item.quantity, ctx, limiter, session_key)
        except NoProductsFoundError:
            return []
        return result.product_options

    pipeline = PricingPipeline(
        fetch,
        delay_seconds=settings.pricing_item_delay_seconds,
        stop_on_rate_limit=body.stop_on_rate_limit,
    )
    _pricing_runs[run_id] = run
    task = asyncio.create_task(pipeline.run(run))
    _run_tasks[run_id] = task
    task.add_done_callback(functools.partial(_on_run_done, run_id))
    _evict_finished_runs()

    logger.info("pricing_run_created", run_id=run_id, items=len(run.items), session_key=session_key)
    return _run_state(run_id, run, limiter, session_key)


@router.get("/pricing/runs/{run_id}", response_model=PricingRunState)
async def get_pricing_run(
    run_id: str,
    session_key: str = Depends(get_session_key),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> PricingRunState:
    return _run_state(run_id, _get_run(run_id), limiter, session_key)


@router.post("/pricing/runs/{run_id}/stop", response_model=PricingRunState)
async def stop_pricing_run(
    run_id: str,
    session_key: str = Depends(get_session_key),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> PricingRunState:
    """Request a stop; the run halts at its next check, after any in-flight search."""
    run = _get_run(run_id)
    run.cancel_token.cancel()
    logger.info("pricing_run_stop_requested", run_id=run_id)
    return _run_state(run_id, run, limiter, session_key)
