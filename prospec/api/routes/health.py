"""Health check endpoint.

Reports whether the provider keys are configured; it never calls the
providers, so it stays cheap and always returns 200.
"""

from __future__ import annotations

from fastapi import APIRouter

from prospec import __version__
from prospec.config import settings

router = APIRouter(tags=["health"])


def _configured(value: str) -> str:
    return "configured" if value else "missing"


@router.get("/health")
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "environment": settings.environment,
        "gemini": _configured(settings.google_ai_api_key),
        "serpapi": _configured(settings.serpapi_api_key),
    }
