"""Thin async wrapper over the Gemini text API used for estimation and ranking."""

from __future__ import annotations

import structlog
from google import genai
from google.genai import errors as genai_errors

from prospec.config import settings
from prospec.errors import AIProviderError

logger = structlog.get_logger()


def get_client() -> genai.Client:
    """Create a Gemini client using the configured API key."""
    return genai.Client(api_key=settings.google_ai_api_key)


async def generate_text(
    prompt: str,
    model: str,
    client: genai.Client | None = None,
) -> str:
    """Send a single-turn prompt and return the concatenated reply text.

    Raises AIProviderError on API or transport failures.
    """
    if client is None:
        client = get_client()

    try:
        response = await client.aio.models.generate_content(model=model, contents=prompt)
    except genai_errors.APIError as exc:
        logger.warning("gemini_request_failed", model=model, status=exc.code, error=str(exc)[:200])
        raise AIProviderError(f"Gemini request failed ({exc.code}): {exc.message}") from exc
    except Exception as exc:
        logger.warning("gemini_request_error", model=model, error_type=type(exc).__name__)
        raise AIProviderError(f"Gemini request error: {type(exc).__name__}: {exc}") from exc

    usage = getattr(response, "usage_metadata", None)
    if usage is not None:
        logger.info(
            "gemini_tokens",
            model=model,
            input_tokens=usage.prompt_token_count,
            output_tokens=usage.candidates_token_count,
        )

    return response.text or ""
