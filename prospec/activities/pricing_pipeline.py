"""Sequential pricing pipeline.

Prices an ordered item list one search at a time. Placeholders for the
whole list are published before the first search; each line item then
settles in place (priced, unpriced, or with an error) and is published
again. A ``CancelToken`` is polled before and after every search; an
in-flight search is never aborted, its result is discarded instead.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from prospec.activities.pricing import line_item_from_options
from prospec.errors import RateLimitExceededError
from prospec.models.contracts import (
    PricingContext,
    PricingItemRequest,
    PricingLineItem,
    ProductOption,
)

log = structlog.get_logger("pricing_pipeline")

DEFAULT_ITEM_DELAY_SECONDS = 0.5

FetchOptions = Callable[[PricingItemRequest, PricingContext], Awaitable[list[ProductOption]]]
RunStatus = Literal["pending", "running", "completed", "stopped"]


class CancelToken:
    """Polled stop flag; set from outside the running loop."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class PricingRun:
    items: list[PricingItemRequest]
    context: PricingContext = field(default_factory=PricingContext)
    cancel_token: CancelToken = field(default_factory=CancelToken)
    results: list[PricingLineItem] = field(init=False)
    status: RunStatus = field(default="pending", init=False)

    def __post_init__(self) -> None:
        self.results = [
            PricingLineItem(item_name=item.name, quantity=item.quantity, is_loading=True)
            for item in self.items
        ]

    def settle_remaining(self) -> None:
        """Mark every still-loading line item as finished without a price."""
        for i, result in enumerate(self.results):
            if result.is_loading:
                self.results[i] = result.model_copy(update={"is_loading": False})


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class PricingPipeline:
    def __init__(
        self,
        fetch: FetchOptions,
        *,
        delay_seconds: float = DEFAULT_ITEM_DELAY_SECONDS,
        on_update: Callable[[PricingRun], Any] | None = None,
        on_stats: Callable[[], Any] | None = None,
        stop_on_rate_limit: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetch = fetch
        self.delay_seconds = delay_seconds
        self.on_update = on_update
        self.on_stats = on_stats
        self.stop_on_rate_limit = stop_on_rate_limit
        self._sleep = sleep

    async def _publish(self, run: PricingRun) -> None:
        if self.on_update is not None:
            await _maybe_await(self.on_update(run))

    async def _stop(self, run: PricingRun, index: int) -> PricingRun:
        run.settle_remaining()
        run.status = "stopped"
        log.info(
            "pricing_run_stopped",
            stopped_at=index,
            total=len(run.items),
        )
        await self._publish(run)
        return run

    async def run(self, run: PricingRun) -> PricingRun:
        """Price every item of ``run`` in order; never raises for per-item failures."""
        run.status = "running"
        await self._publish(run)
        log.info("pricing_run_start", items=len(run.items))

        for i, item in enumerate(run.items):
            if run.cancel_token.cancelled:
                return await self._stop(run, i)

            try:
                options = await self.fetch(item, run.context)
            except RateLimitExceededError as exc:
                if run.cancel_token.cancelled:
                    return await self._stop(run, i)
                log.warning("pricing_item_rate_limited", item=item.name, index=i)
                run.results[i] = run.results[i].model_copy(
                    update={"is_loading": False, "error": exc.message}
                )
                if self.stop_on_rate_limit:
                    run.cancel_token.cancel()
                    return await self._stop(run, i + 1)
                await self._publish(run)
            except Exception as exc:
                if run.cancel_token.cancelled:
                    return await self._stop(run, i)
                log.warning(
                    "pricing_item_failed",
                    item=item.name,
                    index=i,
                    error_type=type(exc).__name__,
                    error=str(exc)[:200],
                )
                run.results[i] = run.results[i].model_copy(
                    update={"is_loading": False, "error": str(exc) or type(exc).__name__}
                )
                await self._publish(run)
            else:
                if run.cancel_token.cancelled:
                    return await self._stop(run, i)
                run.results[i] = line_item_from_options(item.name, item.quantity, options)
                log.info(
                    "pricing_item_complete",
                    item=item.name,
                    index=i,
                    priced=run.results[i].price is not None,
                )
                await self._publish(run)

            if self.on_stats is not None:
                await _maybe_await(self.on_stats())

            if i < len(run.items) - 1 and not run.cancel_token.cancelled:
                await self._sleep(self.delay_seconds)

        run.status = "completed"
        log.info("pricing_run_complete", items=len(run.items))
        await self._publish(run)
        return run
