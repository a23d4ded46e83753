"""Tests for the sequential pricing pipeline.

The fetch callable is faked; nothing touches the network.
"""

from __future__ import annotations

import asyncio

import pytest

from prospec.activities.pricing_pipeline import CancelToken, PricingPipeline, PricingRun
from prospec.errors import RateLimitExceededError, SearchProviderError
from prospec.models.contracts import PricingContext, PricingItemRequest, ProductOption

ITEMS = [
    PricingItemRequest(name="2x4 lumber", quantity=10),
    PricingItemRequest(name="wood screws", quantity=2),
    PricingItemRequest(name="deck stain", quantity=1),
]


def _option(rank: int, price: float, quantity: int = 1) -> ProductOption:
    return ProductOption(
        rank=rank,
        price=price,
        total_cost=round(price * quantity, 2),
        product_title=f"Product {rank}",
        link=f"https://shop.example.com/{rank}",
        source="Example Store",
    )


class Recorder:
    """Captures every published snapshot and the order of fetches."""

    def __init__(self) -> None:
        self.snapshots: list[list[dict]] = []
        self.fetched: list[str] = []
        self.stats_calls = 0

    def on_update(self, run: PricingRun) -> None:
        self.snapshots.append([r.model_dump() for r in run.results])

    def on_stats(self) -> None:
        self.stats_calls += 1


async def _no_sleep(_seconds: float) -> None:
    return None


def _pipeline(fetch, recorder: Recorder, **kwargs) -> PricingPipeline:
    return PricingPipeline(
        fetch,
        on_update=recorder.on_update,
        on_stats=recorder.on_stats,
        sleep=_no_sleep,
        **kwargs,
    )


# === Placeholders & Ordering ===


class TestPlaceholders:
    def test_run_starts_with_loading_placeholders(self):
        run = PricingRun(items=ITEMS)
        assert [r.item_name for r in run.results] == [i.name for i in ITEMS]
        assert all(r.is_loading and r.price is None for r in run.results)

    @pytest.mark.asyncio
    async def test_all_placeholders_published_before_any_result(self):
        """3 loading entries are emitted before any item reaches a terminal state."""
        recorder = Recorder()

        async def fetch(item, ctx):
            recorder.fetched.append(item.name)
            return [_option(1, 4.0, item.quantity)]

        await _pipeline(fetch, recorder).run(PricingRun(items=ITEMS))

        first = recorder.snapshots[0]
        assert len(first) == 3
        assert all(entry["is_loading"] for entry in first)
        assert recorder.fetched == [i.name for i in ITEMS]

    @pytest.mark.asyncio
    async def test_items_fetched_in_order_one_at_a_time(self):
        in_flight = 0
        max_in_flight = 0
        order = []

        async def fetch(item, ctx):
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0)
            order.append(item.name)
            in_flight -= 1
            return []

        await PricingPipeline(fetch, sleep=_no_sleep).run(PricingRun(items=ITEMS))
        assert max_in_flight == 1
        assert order == [i.name for i in ITEMS]

    @pytest.mark.asyncio
    async def test_context_forwarded_unchanged(self):
        seen = []
        context = PricingContext(project_description="Backyard deck", price_scale="$$$", location="OR")

        async def fetch(item, ctx):
            seen.append(ctx)
            return []

        await PricingPipeline(fetch, sleep=_no_sleep).run(PricingRun(items=ITEMS, context=context))
        assert seen == [context, context, context]

    @pytest.mark.asyncio
    async def test_empty_list_completes_immediately(self):
        recorder = Recorder()

        async def fetch(item, ctx):
            raise AssertionError("no fetch expected")

        run = await _pipeline(fetch, recorder).run(PricingRun(items=[]))
        assert run.status == "completed"
        assert run.results == []
        assert recorder.stats_calls == 0


# === Per-Item Outcomes ===


class TestItemOutcomes:
    @pytest.mark.asyncio
    async def test_success_takes_top_ranked_option(self):
        async def fetch(item, ctx):
            return [_option(1, 3.5, item.quantity), _option(2, 2.0, item.quantity)]

        run = await PricingPipeline(fetch, sleep=_no_sleep).run(PricingRun(items=ITEMS[:1]))
        result = run.results[0]
        assert result.price == 3.5
        assert result.total_cost == 35.0
        assert result.product_title == "Product 1"
        assert result.has_more_options is True
        assert result.is_loading is False
        assert result.error is None

    @pytest.mark.asyncio
    async def test_zero_candidates_leaves_null_price(self):
        """No usable candidates: unpriced, no error, nothing raised."""

        async def fetch(item, ctx):
            return []

        run = await PricingPipeline(fetch, sleep=_no_sleep).run(PricingRun(items=ITEMS[:1]))
        assert run.status == "completed"
        assert run.results[0].price is None
        assert run.results[0].is_loading is False
        assert run.results[0].error is None

    @pytest.mark.asyncio
    async def test_error_recorded_and_run_continues(self):
        async def fetch(item, ctx):
            if item.name == "wood screws":
                raise SearchProviderError("API request failed: 500", status_code=500)
            return [_option(1, 1.0)]

        run = await PricingPipeline(fetch, sleep=_no_sleep).run(PricingRun(items=ITEMS))
        assert run.status == "completed"
        assert run.results[0].price == 1.0
        assert run.results[1].price is None
        assert run.results[1].error == "API request failed: 500"
        assert run.results[2].price == 1.0
        assert not any(r.is_loading for r in run.results)

    @pytest.mark.asyncio
    async def test_rate_limit_is_a_per_item_error_by_default(self):
        async def fetch(item, ctx):
            raise RateLimitExceededError(remaining_calls=0, max_calls=50)

        run = await PricingPipeline(fetch, sleep=_no_sleep).run(PricingRun(items=ITEMS))
        assert run.status == "completed"
        assert all("rate limit" in (r.error or "") for r in run.results)

    @pytest.mark.asyncio
    async def test_stop_on_rate_limit(self):
        calls = []

        async def fetch(item, ctx):
            calls.append(item.name)
            raise RateLimitExceededError(remaining_calls=0, max_calls=50)

        run = await PricingPipeline(fetch, sleep=_no_sleep, stop_on_rate_limit=True).run(
            PricingRun(items=ITEMS)
        )
        assert calls == ["2x4 lumber"]
        assert run.status == "stopped"
        assert run.results[0].error is not None
        assert run.results[1].price is None and run.results[1].is_loading is False
        assert run.results[2].is_loading is False

    @pytest.mark.asyncio
    async def test_stats_hook_after_each_completed_call(self):
        recorder = Recorder()

        async def fetch(item, ctx):
            return []

        await _pipeline(fetch, recorder).run(PricingRun(items=ITEMS))
        assert recorder.stats_calls == 3

    @pytest.mark.asyncio
    async def test_async_hooks_awaited(self):
        updates = []

        async def on_update(run):
            updates.append(run.status)

        async def fetch(item, ctx):
            return []

        await PricingPipeline(fetch, on_update=on_update, sleep=_no_sleep).run(
            PricingRun(items=ITEMS[:1])
        )
        assert updates[0] == "running"
        assert updates[-1] == "completed"


# === Pacing ===


class TestPacing:
    @pytest.mark.asyncio
    async def test_delay_between_items_not_after_last(self):
        delays = []

        async def sleep(seconds):
            delays.append(seconds)

        async def fetch(item, ctx):
            return []

        await PricingPipeline(fetch, delay_seconds=0.5, sleep=sleep).run(PricingRun(items=ITEMS))
        assert delays == [0.5, 0.5]


# === Cancellation ===


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_between_items(self):
        """Cancelled after item 1: items 2 and 3 end unpriced, item 3 never fetched."""
        token = CancelToken()
        calls = []

        async def fetch(item, ctx):
            calls.append(item.name)
            return [_option(1, 2.0)]

        async def sleep(_seconds):
            token.cancel()

        run = await PricingPipeline(fetch, sleep=sleep).run(
            PricingRun(items=ITEMS, cancel_token=token)
        )
        assert calls == ["2x4 lumber"]
        assert run.status == "stopped"
        assert run.results[0].price == 2.0
        for result in run.results[1:]:
            assert result.is_loading is False
            assert result.price is None

    @pytest.mark.asyncio
    async def test_cancel_during_call_discards_result(self):
        token = CancelToken()
        calls = []

        async def fetch(item, ctx):
            calls.append(item.name)
            token.cancel()
            return [_option(1, 9.99)]

        recorder = Recorder()
        run = await _pipeline(fetch, recorder).run(PricingRun(items=ITEMS, cancel_token=token))
        assert calls == ["2x4 lumber"]
        assert run.results[0].price is None
        assert not any(r.is_loading for r in run.results)
        assert recorder.stats_calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_failing_call(self):
        token = CancelToken()

        async def fetch(item, ctx):
            token.cancel()
            raise SearchProviderError("timeout")

        run = await PricingPipeline(fetch, sleep=_no_sleep).run(
            PricingRun(items=ITEMS, cancel_token=token)
        )
        assert run.status == "stopped"
        assert run.results[0].error is None
        assert not any(r.is_loading for r in run.results)

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        token = CancelToken()
        token.cancel()

        async def fetch(item, ctx):
            raise AssertionError("no fetch expected")

        run = await PricingPipeline(fetch, sleep=_no_sleep).run(
            PricingRun(items=ITEMS, cancel_token=token)
        )
        assert run.status == "stopped"
        assert all(not r.is_loading and r.price is None for r in run.results)
