"""Product selection: ask Gemini to rank the best 3 shopping candidates.

A single scored call per item. Indices in the reply are 1-based into the
submitted list; out-of-range indices are skipped. Provider failures and
empty or unparseable replies fall back to the first 3 candidates in input
order.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from google import genai

from prospec.activities.shopping import candidate_price, ensure_valid_url
from prospec.config import settings
from prospec.errors import AIProviderError
from prospec.models.contracts import PricingContext, ProductOption
from prospec.utils.gemini import generate_text
from prospec.utils.json_extract import extract_json

log = structlog.get_logger("product_selection")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

MAX_CANDIDATES = 15
TOP_N = 3

PRICE_SCALE_LABELS = {
    "$": "Budget/Economy",
    "$$": "Mid-Range/Standard",
    "$$$": "Premium/High-End",
}

_prompt_cache: str | None = None


def _format_candidate(index: int, product: dict[str, Any]) -> str:
    rating = product.get("rating")
    rating_text = f"{rating}/5 ({product.get('reviews', 0)} reviews)" if rating else "No rating"
    return (
        f"{index}. {product.get('title', 'Unknown')}\n"
        f"   Price: ${candidate_price(product)}\n"
        f"   Brand: {product.get('brand') or 'Unknown'}\n"
        f"   Rating: {rating_text}\n"
        f"   Source: {product.get('source') or 'Unknown'}\n"
        f"   Condition: {product.get('condition') or 'Unknown'}\n"
        f"   Link: {product.get('product_link') or product.get('link') or ''}"
    )


def build_ranking_prompt(
    candidates: list[dict[str, Any]],
    item_name: str,
    quantity: int,
    context: PricingContext,
) -> str:
    global _prompt_cache  # noqa: PLW0603
    if _prompt_cache is None:
        _prompt_cache = (PROMPTS_DIR / "product_ranking.txt").read_text()

    price_scale = context.price_scale or "$$"
    return _prompt_cache.format(
        project_description=context.project_description or "No specific project context provided",
        price_scale=price_scale,
        price_scale_label=PRICE_SCALE_LABELS[price_scale],
        location=context.location or "US",
        item_name=item_name,
        quantity=quantity,
        product_list="\n".join(_format_candidate(i, p) for i, p in enumerate(candidates, 1)),
        product_count=len(candidates),
    )


def parse_ranking_response(
    text: str,
    candidates: list[dict[str, Any]],
) -> list[dict[str, Any]] | None:
    """Map the reply's ``top3Products`` onto ``candidates``.

    Returns None when the reply is unparseable or lists nothing (callers
    fall back), otherwise the selected candidates in reply order, which may
    be empty if every index was invalid.
    """
    data = extract_json(text)
    selections = data.get("top3Products")
    if not isinstance(selections, list) or not selections:
        return None

    selected: list[dict[str, Any]] = []
    used: set[int] = set()
    for selection in selections:
        index = selection.get("productIndex") if isinstance(selection, dict) else None
        if isinstance(index, bool) or not isinstance(index, int):
            log.warning("ranking_invalid_index", index=index)
            continue
        if index < 1 or index > len(candidates) or index in used:
            log.warning("ranking_invalid_index", index=index, candidates=len(candidates))
            continue
        used.add(index)
        selected.append(candidates[index - 1])
        log.debug(
            "ranking_selected",
            rank=selection.get("rank"),
            title=candidates[index - 1].get("title"),
            confidence=selection.get("confidence"),
        )
        if len(selected) == TOP_N:
            break
    return selected


async def select_top_products(
    candidates: list[dict[str, Any]],
    item_name: str,
    quantity: int,
    context: PricingContext,
    client: genai.Client | None = None,
) -> list[dict[str, Any]]:
    """Pick up to 3 of the (already filtered) candidates, best first."""
    if not candidates:
        return []

    top = candidates[:MAX_CANDIDATES]
    fallback = candidates[:TOP_N]
    prompt = build_ranking_prompt(top, item_name, quantity, context)

    try:
        text = await generate_text(prompt, settings.ranking_model, client=client)
    except AIProviderError as exc:
        log.warning("ranking_provider_failed_using_fallback", item=item_name, error=exc.message)
        return fallback

    selected = parse_ranking_response(text, top)
    if selected is None:
        log.info("ranking_empty_using_fallback", item=item_name, response_preview=text[:200])
        return fallback

    log.info("ranking_complete", item=item_name, selected=len(selected), candidates=len(top))
    return selected


def to_product_options(products: list[dict[str, Any]], quantity: int) -> list[ProductOption]:
    """Project selected shopping results to ranked options with totals."""
    options = []
    for rank, product in enumerate(products, 1):
        price = candidate_price(product) or 0.0
        options.append(
            ProductOption(
                rank=rank,
                price=price,
                total_cost=round(price * quantity, 2),
                product_title=product.get("title", ""),
                brand=product.get("brand"),
                rating=product.get("rating"),
                reviews=product.get("reviews"),
                link=ensure_valid_url(product.get("product_link") or product.get("link")),
                source=product.get("source"),
                condition=product.get("condition"),
            )
        )
    return options
