"""Prospec exceptions and error codes."""

from __future__ import annotations

from typing import Any


class ErrorCode:
    VALIDATION_ERROR = "validation_error"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    NO_PRODUCTS_FOUND = "no_products_found"
    SEARCH_PROVIDER_ERROR = "search_provider_error"
    AI_PROVIDER_ERROR = "ai_provider_error"
    RUN_NOT_FOUND = "run_not_found"
    UNAUTHORIZED = "unauthorized"
    CONNECTION_ERROR = "connection_error"
    INTERNAL_ERROR = "internal_error"


class ProspecError(Exception):
    """Base exception carrying a machine-readable code and optional details."""

    retryable = False

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class RateLimitExceededError(ProspecError):
    """The session's pricing-search budget is spent.

    Kept distinct from provider errors so callers can stop issuing calls.
    """

    def __init__(self, remaining_calls: int = 0, max_calls: int | None = None) -> None:
        limit = f"Maximum {max_calls} searches per session." if max_calls else ""
        super().__init__(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            f"API rate limit exceeded. {limit}".strip(),
            {"remaining_calls": remaining_calls},
        )
        self.remaining_calls = remaining_calls


class NoProductsFoundError(ProspecError):
    def __init__(self, item_name: str, message: str = "No products found") -> None:
        super().__init__(ErrorCode.NO_PRODUCTS_FOUND, message, {"item_name": item_name})
        self.item_name = item_name


class SearchProviderError(ProspecError):
    """Shopping-search request failed (network or non-2xx)."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(ErrorCode.SEARCH_PROVIDER_ERROR, message, {"status_code": status_code})
        self.status_code = status_code


class AIProviderError(ProspecError):
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.AI_PROVIDER_ERROR, message)


class RunNotFoundError(ProspecError):
    def __init__(self, run_id: str) -> None:
        super().__init__(ErrorCode.RUN_NOT_FOUND, "Pricing run not found", {"run_id": run_id})
        self.run_id = run_id


class UnauthorizedError(ProspecError):
    def __init__(self, message: str = "Invalid or missing access password") -> None:
        super().__init__(ErrorCode.UNAUTHORIZED, message)
