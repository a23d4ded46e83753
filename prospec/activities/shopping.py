"""Shopping search: SerpAPI Google Shopping query and candidate filtering.

Candidates without a parseable positive price, or explicitly marked out of
stock / unavailable, never reach ranking.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx
import structlog

from prospec.errors import SearchProviderError

log = structlog.get_logger("shopping")

SERPAPI_BASE_URL = "https://serpapi.com"
SEARCH_TIMEOUT = 30.0
DEFAULT_NUM_RESULTS = 20
SEARCH_MAX_RETRIES = 1
SEARCH_RETRY_DELAY = 1.0

FILLER_WORDS = frozenset({"for", "the", "a", "an", "with", "of", "in", "on", "at"})
TERM_MAP = {
    "lumber": "wood lumber",
    "posts": "post",
    "rails": "rail",
    "boards": "board",
    "concrete": "concrete mix",
    "gravel": "gravel aggregate",
    "nails": "nail",
    "screws": "screw",
    "bolts": "bolt",
}

_CURRENCY_RE = re.compile(r"[$,€£¥]")
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(\d+(?:\.\d*)?|\.\d+)")
_UNAVAILABLE_MARKERS = ("out of stock", "unavailable")


def build_search_query(item_name: str) -> str:
    """Normalize an item name into a shopping query.

    Lower-cases, drops filler words and maps plural/generic construction
    terms to the forms retailers index ("concrete" -> "concrete mix").
    """
    words = [w for w in item_name.strip().lower().split() if w not in FILLER_WORDS]
    return " ".join(TERM_MAP.get(w, w) for w in words)


def parse_price(value: Any) -> float | None:
    """Parse 12.5, "$1,299.00" or "£8.49 now"; None when no number is present."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _LEADING_NUMBER_RE.match(_CURRENCY_RE.sub("", value).strip())
        if match:
            return float(match.group(0))
    return None


def candidate_price(candidate: dict[str, Any]) -> float | None:
    """Prefer SerpAPI's ``extracted_price``, fall back to parsing ``price``."""
    extracted = parse_price(candidate.get("extracted_price"))
    if extracted:
        return extracted
    return parse_price(candidate.get("price"))


def is_available(candidate: dict[str, Any]) -> bool:
    if candidate.get("in_stock") is False:
        return False
    availability = str(candidate.get("availability") or "").lower()
    return not any(marker in availability for marker in _UNAVAILABLE_MARKERS)


def filter_candidates(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep candidates with a positive price that are not marked unavailable."""
    valid = []
    for candidate in results:
        price = candidate_price(candidate)
        if price is None or price <= 0 or not is_available(candidate):
            continue
        valid.append(candidate)

    if len(valid) < len(results):
        log.info(
            "shopping_candidates_filtered",
            raw=len(results),
            valid=len(valid),
            dropped=len(results) - len(valid),
        )
    return valid


def ensure_valid_url(link: str | None) -> str:
    """Make shopping links absolute (relative Google links get the Google host)."""
    if not link:
        return ""
    if link.startswith(("http://", "https://")):
        return link
    if link.startswith("/"):
        return f"https://www.google.com{link}"
    if "google.com/shopping" in link:
        return f"https://{link}"
    return link


async def search_shopping(
    http_client: httpx.AsyncClient,
    query: str,
    api_key: str,
    num_results: int = DEFAULT_NUM_RESULTS,
) -> list[dict[str, Any]]:
    """Run one Google Shopping query through SerpAPI.

    Retries once on timeouts, 429 and 5xx. Any remaining failure raises
    SearchProviderError.
    """
    if not api_key:
        raise SearchProviderError("SERPAPI_API_KEY not set")

    params = {
        "engine": "google_shopping",
        "q": query,
        "api_key": api_key,
        "gl": "us",
        "hl": "en",
        "num": str(num_results),
        "safe": "active",
    }

    for attempt in range(1 + SEARCH_MAX_RETRIES):
        try:
            resp = await http_client.get(
                f"{SERPAPI_BASE_URL}/search.json",
                params=params,
                timeout=SEARCH_TIMEOUT,
            )
        except httpx.TimeoutException as exc:
            if attempt < SEARCH_MAX_RETRIES:
                log.warning("shopping_search_timeout", query=query[:80], attempt=attempt + 1)
                await asyncio.sleep(SEARCH_RETRY_DELAY)
                continue
            raise SearchProviderError(f"Shopping search timed out for {query[:80]!r}") from exc
        except httpx.RequestError as exc:
            raise SearchProviderError(
                f"Network error during shopping search: {type(exc).__name__}"
            ) from exc

        if resp.status_code == 200:
            data = resp.json()
            results: list[dict[str, Any]] = data.get("shopping_results") or []
            log.info(
                "shopping_search_complete",
                query=query[:80],
                status=(data.get("search_metadata") or {}).get("status"),
                results=len(results),
            )
            return results

        if resp.status_code in (429, 500, 502, 503) and attempt < SEARCH_MAX_RETRIES:
            log.warning(
                "shopping_search_retrying",
                status=resp.status_code,
                query=query[:80],
                attempt=attempt + 1,
            )
            await asyncio.sleep(SEARCH_RETRY_DELAY)
            continue

        log.warning("shopping_search_failed", status=resp.status_code, query=query[:80])
        raise SearchProviderError(
            f"API request failed: {resp.status_code}", status_code=resp.status_code
        )

    raise SearchProviderError("Shopping search failed after retries")
