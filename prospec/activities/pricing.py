"""Price comparison service: one budgeted search -> ranked product options.

Every call that passes the rate-limit gate counts against the session,
whether or not the search then finds anything.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from google import genai

from prospec.activities.product_selection import select_top_products, to_product_options
from prospec.activities.shopping import build_search_query, filter_candidates, search_shopping
from prospec.config import settings
from prospec.errors import NoProductsFoundError, ProspecError, RateLimitExceededError
from prospec.models.contracts import (
    CompareResponse,
    PricingContext,
    PricingLineItem,
    ProductOption,
    SessionRecord,
)
from prospec.utils.rate_limiter import RateLimiter

log = structlog.get_logger("pricing")


async def compare_prices(
    item_name: str,
    quantity: int,
    context: PricingContext,
    limiter: RateLimiter,
    session_key: str,
    client_record: SessionRecord | dict[str, Any] | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    genai_client: genai.Client | None = None,
) -> CompareResponse:
    """Search, filter and rank offers for one item within the session budget.

    Raises RateLimitExceededError before any search when the budget is spent,
    NoProductsFoundError when nothing usable comes back, and lets
    SearchProviderError / AIProviderError propagate.
    """
    if client_record is not None:
        limiter.sync_with_client_session(session_key, client_record)

    if not limiter.can_make_call(session_key):
        log.warning("pricing_rate_limited", session_key=session_key, item=item_name)
        raise RateLimitExceededError(
            remaining_calls=limiter.get_remaining_calls(session_key),
            max_calls=limiter.max_calls_per_session,
        )
    if not limiter.record_call(session_key):
        raise RateLimitExceededError(
            remaining_calls=0,
            max_calls=limiter.max_calls_per_session,
        )

    try:
        options = await _search_and_select(
            item_name, quantity, context, http_client=http_client, genai_client=genai_client
        )
    except ProspecError as exc:
        # The search is already counted; report the usage with the error.
        exc.details["api_usage_stats"] = limiter.get_session_stats(session_key)
        raise

    stats = limiter.get_session_stats(session_key)
    log.info(
        "pricing_search_complete",
        item=item_name,
        options=len(options),
        calls_used=stats.calls_used,
        calls_remaining=stats.calls_remaining,
    )
    return CompareResponse(
        item_name=item_name,
        quantity=quantity,
        product_options=options,
        api_usage_stats=stats,
    )


async def _search_and_select(
    item_name: str,
    quantity: int,
    context: PricingContext,
    *,
    http_client: httpx.AsyncClient | None,
    genai_client: genai.Client | None,
) -> list[ProductOption]:
    query = build_search_query(item_name)
    log.info("pricing_search_start", item=item_name, query=query, quantity=quantity)

    if http_client is None:
        async with httpx.AsyncClient() as owned_client:
            results = await search_shopping(owned_client, query, settings.serpapi_api_key)
    else:
        results = await search_shopping(http_client, query, settings.serpapi_api_key)

    if not results:
        raise NoProductsFoundError(item_name, "No products found")

    candidates = filter_candidates(results)
    if not candidates:
        raise NoProductsFoundError(item_name, "No suitable products found")

    selected = await select_top_products(
        candidates, item_name, quantity, context, client=genai_client
    )
    options = to_product_options(selected, quantity)
    if not options:
        raise NoProductsFoundError(item_name, "No suitable products found")
    return options


def line_item_from_options(
    item_name: str,
    quantity: int,
    options: list[ProductOption],
) -> PricingLineItem:
    """Settle a line item on the top-ranked option (no price when empty)."""
    if not options:
        return PricingLineItem(item_name=item_name, quantity=quantity)

    best = options[0]
    return PricingLineItem(
        item_name=item_name,
        quantity=quantity,
        price=best.price,
        total_cost=round(best.price * quantity, 2),
        product_title=best.product_title,
        brand=best.brand,
        rating=best.rating,
        reviews=best.reviews,
        link=best.link,
        source=best.source,
        condition=best.condition,
        has_more_options=len(options) > 1,
    )
