"""Estimation request builder: project description -> supplies/equipment lists.

One Gemini call per estimate. The reply is expected to hold
``{"supplies": [...], "equipment": [...]}``; anything unusable falls back to
a static list so the caller always gets a renderable estimate.
"""

from __future__ import annotations

import math
import re
from pathlib import Path
from typing import Any

import structlog
from google import genai
from pydantic import ValidationError

from prospec.config import settings
from prospec.errors import AIProviderError
from prospec.models.contracts import EstimationItem, EstimationResponse, ProjectDescription
from prospec.utils.gemini import generate_text
from prospec.utils.json_extract import extract_json

log = structlog.get_logger("estimation")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

MAX_TOTAL_ITEMS = 50
MAX_SUPPLIES_WHEN_TRIMMED = 35

QUALITY_LABELS = {
    "$": "Budget/Economy grade materials",
    "$$": "Mid-Range/Standard quality materials",
    "$$$": "Premium/Professional grade materials",
}
_QUALITY_GUIDANCE = {
    "$": "cost-effective but reliable options",
    "$$": "standard industry-grade materials and tools",
    "$$$": "professional-grade, high-performance materials and equipment",
}

COMMON_BRANDS = (
    "fluidmaster",
    "dewalt",
    "milwaukee",
    "makita",
    "ryobi",
    "black & decker",
    "craftsman",
    "home depot",
    "lowes",
    "kobalt",
    "husky",
    "ridgid",
    "porter cable",
    "bosch",
    "stanley",
    "irwin",
    "klein",
    "crescent",
    "channellock",
    "grk",
    "simpson strong-tie",
)
_BRAND_RES = [re.compile(rf"\b{re.escape(b)}\b", re.IGNORECASE) for b in COMMON_BRANDS]
# Model numbers: upper-case tokens mixing letters and digits (DCD771C2), not
# plain acronyms like PVC or GFCI.
_MODEL_NUMBER_RE = re.compile(r"\b(?=[A-Z0-9-]*\d)(?=[A-Z0-9-]*[A-Z])[A-Z0-9-]{5,}\b")
_WHITESPACE_RE = re.compile(r"\s+")


def _fallback_estimation() -> EstimationResponse:
    return EstimationResponse(
        supplies=[
            EstimationItem(
                id="supply-1",
                name="Concrete Mix",
                description="Ready-mix concrete for foundation",
                unit="cubic yards",
                quantity=15,
                base_quantity=15,
            )
        ],
        equipment=[
            EstimationItem(
                id="equipment-1",
                name="Excavator",
                description="Mini excavator for site preparation",
                unit="days",
                quantity=3,
                base_quantity=3,
            )
        ],
    )


_prompt_cache: str | None = None


def build_estimation_prompt(project: ProjectDescription) -> str:
    """Fill the estimation prompt template (template cached after first read)."""
    global _prompt_cache  # noqa: PLW0603
    if _prompt_cache is None:
        _prompt_cache = (PROMPTS_DIR / "estimation.txt").read_text()

    size = project.project_size.strip() or "TBD"
    if project.project_size.strip() and project.project_size_unit.lower() != "tbd":
        size = f"{size} {project.project_size_unit}"

    return _prompt_cache.format(
        project_description=project.project_description,
        project_type=project.project_type,
        project_size=size,
        price_scale=project.price_scale,
        quality_label=QUALITY_LABELS[project.price_scale],
        quality_guidance=_QUALITY_GUIDANCE[project.price_scale],
        location=project.location or "CA",
    )


def make_brand_neutral(text: str) -> str:
    """Strip known brand names and model numbers, then collapse whitespace."""
    for brand_re in _BRAND_RES:
        text = brand_re.sub("", text)
    text = _MODEL_NUMBER_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def _coerce_quantity(value: Any) -> float:
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(quantity):
        return 1.0
    return max(quantity, 0.0)


def _normalize_items(
    raw_items: Any,
    id_prefix: str,
    seen_names: set[str],
) -> list[EstimationItem]:
    """Clean one category: brand-neutral names, no duplicates across categories."""
    if not isinstance(raw_items, list):
        return []

    items: list[EstimationItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            log.warning("estimation_item_dropped", reason="missing name", category=id_prefix)
            continue

        name = make_brand_neutral(raw["name"])
        if not name:
            continue
        description = make_brand_neutral(str(raw.get("description") or ""))
        key = name.lower()
        if key in seen_names:
            log.info("estimation_duplicate_removed", name=name, category=id_prefix)
            continue

        quantity = _coerce_quantity(raw.get("quantity"))
        try:
            item = EstimationItem(
                id=str(raw.get("id") or f"{id_prefix}-{len(items) + 1}"),
                name=name,
                description=description,
                unit=str(raw.get("unit") or ""),
                quantity=quantity,
                base_quantity=quantity,
            )
        except ValidationError as exc:
            log.warning(
                "estimation_item_dropped",
                reason="invalid",
                category=id_prefix,
                name=name,
                errors=exc.error_count(),
            )
            continue
        seen_names.add(key)
        items.append(item)
    return items


def parse_estimation_response(text: str) -> EstimationResponse | None:
    """Parse the model reply; None when it holds no usable estimate."""
    data = extract_json(text)
    if not data or ("supplies" not in data and "equipment" not in data):
        return None

    seen: set[str] = set()
    supplies = _normalize_items(data.get("supplies"), "supply", seen)
    equipment = _normalize_items(data.get("equipment"), "equipment", seen)

    total = len(supplies) + len(equipment)
    if total > MAX_TOTAL_ITEMS:
        max_supplies = min(len(supplies), MAX_SUPPLIES_WHEN_TRIMMED)
        max_equipment = min(len(equipment), MAX_TOTAL_ITEMS - max_supplies)
        log.warning(
            "estimation_trimmed",
            total=total,
            supplies=max_supplies,
            equipment=max_equipment,
        )
        supplies = supplies[:max_supplies]
        equipment = equipment[:max_equipment]

    return EstimationResponse(supplies=supplies, equipment=equipment)


async def generate_project_estimation(
    project: ProjectDescription,
    client: genai.Client | None = None,
) -> EstimationResponse:
    """Ask Gemini for a bill of materials and equipment for ``project``.

    Never raises for provider or parsing failures: those return the static
    fallback estimate.
    """
    prompt = build_estimation_prompt(project)
    log.info(
        "estimation_start",
        project_type=project.project_type,
        price_scale=project.price_scale,
        location=project.location,
    )

    try:
        text = await generate_text(prompt, settings.estimation_model, client=client)
    except AIProviderError as exc:
        log.warning("estimation_provider_failed_using_fallback", error=exc.message)
        return _fallback_estimation()

    estimation = parse_estimation_response(text)
    if estimation is None:
        log.warning("estimation_unparseable_using_fallback", response_preview=text[:200])
        return _fallback_estimation()

    log.info(
        "estimation_complete",
        supplies=len(estimation.supplies),
        equipment=len(estimation.equipment),
    )
    return estimation
