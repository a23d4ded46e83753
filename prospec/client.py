"""HTTP client for the Prospec API, holding the client-side session state.

The client keeps its own copy of the rate-limit record in a
``FileKeyValueStore`` (the analogue of browser localStorage), sends it with
every compare call, and overwrites it with the usage the server reports
back. ``ProjectStateStore`` persists form contents and item lists in the
same store.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from prospec.config import settings
from prospec.errors import (
    ErrorCode,
    NoProductsFoundError,
    ProspecError,
    RateLimitExceededError,
)
from prospec.models.contracts import (
    CompareRequest,
    CompareResponse,
    CostSummary,
    CostSummaryRequest,
    EstimationItem,
    EstimationResponse,
    PricingContext,
    PricingItemRequest,
    PricingLineItem,
    ProductOption,
    ProjectDescription,
    SessionStats,
)
from prospec.utils.kv_store import FileKeyValueStore, KeyValueStore
from prospec.utils.rate_limiter import DEFAULT_SESSION_KEY, SESSION_STORAGE_KEY, RateLimiter

log = structlog.get_logger("client")

DEFAULT_TIMEOUT = 60.0
STATE_KEY_PREFIX = "prospec-"
FORM_DATA_KEY = "prospec-form-data"
ESTIMATION_DATA_KEY = "prospec-estimation-data"
ITEM_LIST_KINDS = ("supplies", "equipment", "custom-supplies", "custom-equipment")


class ProspecClient:
    """Async client for one user session against a Prospec API server."""

    def __init__(
        self,
        base_url: str,
        *,
        session_key: str = DEFAULT_SESSION_KEY,
        access_password: str = "",
        store: KeyValueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session_key = session_key
        self.store = store if store is not None else FileKeyValueStore(settings.client_state_file)
        self.rate_limiter = RateLimiter(
            self.store,
            max_calls_per_session=settings.max_calls_per_session,
            session_timeout_ms=settings.session_timeout_seconds * 1000,
            server_side=False,
        )
        headers = {"X-Session-ID": session_key}
        if access_password:
            headers["X-Access-Password"] = access_password
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def __aenter__(self) -> ProspecClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers,
                **kwargs,
            )
        except httpx.RequestError as exc:
            raise ProspecError(
                ErrorCode.CONNECTION_ERROR,
                f"Network error calling {path}: {type(exc).__name__}",
            ) from exc

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("error", "http_error")
        message = body.get("message", resp.text[:200])
        raise ProspecError(
            code,
            f"HTTP {resp.status_code}: {message}",
            {"status_code": resp.status_code},
        )

    def _adopt_failed_call_usage(self, resp: httpx.Response) -> None:
        """Take the usage reported on a failed compare; count the call locally without one."""
        try:
            body = resp.json()
        except ValueError:
            body = {}
        usage = body.get("apiUsageStats") if isinstance(body, dict) else None
        if usage:
            try:
                stats = SessionStats.model_validate(usage)
            except ValidationError:
                log.warning("client_usage_stats_invalid", status=resp.status_code)
            else:
                self.rate_limiter.adopt_server_stats(self.session_key, stats)
                return
        self.rate_limiter.record_call(self.session_key)

    # --- rate limit ---

    def local_stats(self) -> SessionStats:
        return self.rate_limiter.get_session_stats(self.session_key)

    async def get_rate_limit(self) -> SessionStats:
        resp = await self._request("GET", "/api/v1/rate-limit")
        self._raise_for_error(resp)
        stats = SessionStats.model_validate(resp.json())
        self.rate_limiter.adopt_server_stats(self.session_key, stats)
        return stats

    async def reset_rate_limit(self) -> None:
        resp = await self._request("DELETE", "/api/v1/rate-limit")
        self._raise_for_error(resp)
        self.rate_limiter.reset_session(self.session_key)

    # --- estimation / pricing ---

    async def estimate(self, project: ProjectDescription) -> EstimationResponse:
        resp = await self._request(
            "POST",
            "/api/v1/estimates",
            json=project.model_dump(by_alias=True),
        )
        self._raise_for_error(resp)
        return EstimationResponse.model_validate(resp.json())

    async def fetch_compare_options(
        self,
        item_name: str,
        quantity: int,
        context: PricingContext | None = None,
    ) -> CompareResponse:
        """Price one item, sending this client's usage record along.

        Raises RateLimitExceededError on 429 and NoProductsFoundError on 404.
        """
        context = context or PricingContext()
        body = CompareRequest(
            item_name=item_name,
            quantity=quantity,
            project_description=context.project_description,
            price_scale=context.price_scale,
            location=context.location,
            client_session_data=self.rate_limiter.get_session(self.session_key),
        )
        resp = await self._request(
            "POST",
            "/api/v1/pricing/compare",
            json=body.model_dump(by_alias=True, exclude_none=True),
        )

        if resp.status_code == 429:
            data = resp.json()
            log.warning("client_rate_limited", item=item_name, remaining=data.get("remainingCalls"))
            raise RateLimitExceededError(
                remaining_calls=data.get("remainingCalls", 0),
                max_calls=self.rate_limiter.max_calls_per_session,
            )
        if resp.status_code == 404 or resp.status_code >= 500:
            self._adopt_failed_call_usage(resp)
        if resp.status_code == 404:
            raise NoProductsFoundError(item_name, resp.json().get("message", "No products found"))
        self._raise_for_error(resp)

        result = CompareResponse.model_validate(resp.json())
        self.rate_limiter.adopt_server_stats(self.session_key, result.api_usage_stats)
        return result

    async def price_item(
        self,
        item: PricingItemRequest,
        context: PricingContext,
    ) -> list[ProductOption]:
        """Pipeline fetch adapter: no products is an empty result, not an error."""
        try:
            result = await self.fetch_compare_options(item.name, item.quantity, context)
        except NoProductsFoundError:
            return []
        return result.product_options

    async def cost_summary(self, request: CostSummaryRequest) -> CostSummary:
        resp = await self._request(
            "POST",
            "/api/v1/costs/summary",
            json=request.model_dump(by_alias=True),
        )
        self._raise_for_error(resp)
        return CostSummary.model_validate(resp.json())


class ProjectStateStore:
    """Saved form contents, estimate and per-project item lists.

    Everything lives under ``prospec-`` keys. Clearing leaves the rate-limit
    session record alone so a cleared project does not reset the budget.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @staticmethod
    def project_key(project: ProjectDescription) -> str:
        return (
            f"{STATE_KEY_PREFIX}project-{project.project_type}"
            f"-{project.project_size or 'tbd'}-{project.project_size_unit}"
        )

    def _get_json(self, key: str) -> Any:
        raw = self.store.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            log.warning("project_state_corrupt", key=key)
            return None

    def save_form(self, form: ProjectDescription) -> None:
        self.store.set_item(FORM_DATA_KEY, form.model_dump_json(by_alias=True))

    def load_form(self) -> ProjectDescription | None:
        data = self._get_json(FORM_DATA_KEY)
        if data is None:
            return None
        try:
            return ProjectDescription.model_validate(data)
        except ValidationError:
            log.warning("project_state_corrupt", key=FORM_DATA_KEY)
            return None

    def save_estimation(self, estimation: EstimationResponse) -> None:
        self.store.set_item(ESTIMATION_DATA_KEY, estimation.model_dump_json(by_alias=True))

    def load_estimation(self) -> EstimationResponse | None:
        data = self._get_json(ESTIMATION_DATA_KEY)
        if data is None:
            return None
        try:
            return EstimationResponse.model_validate(data)
        except ValidationError:
            log.warning("project_state_corrupt", key=ESTIMATION_DATA_KEY)
            return None

    def save_items(self, project_key: str, kind: str, items: list[EstimationItem]) -> None:
        if kind not in ITEM_LIST_KINDS:
            raise ValueError(f"Unknown item list {kind!r}")
        payload = json.dumps([item.model_dump(by_alias=True) for item in items])
        self.store.set_item(f"{project_key}-{kind}", payload)

    def load_items(self, project_key: str, kind: str) -> list[EstimationItem]:
        data = self._get_json(f"{project_key}-{kind}")
        if not isinstance(data, list):
            return []
        try:
            return [EstimationItem.model_validate(item) for item in data]
        except ValidationError:
            log.warning("project_state_corrupt", key=f"{project_key}-{kind}")
            return []

    def save_pricing_results(self, project_key: str, results: list[PricingLineItem]) -> None:
        payload = json.dumps([r.model_dump(by_alias=True) for r in results])
        self.store.set_item(f"{project_key}-pricing-results", payload)

    def load_pricing_results(self, project_key: str) -> list[PricingLineItem]:
        data = self._get_json(f"{project_key}-pricing-results")
        if not isinstance(data, list):
            return []
        try:
            return [PricingLineItem.model_validate(r) for r in data]
        except ValidationError:
            log.warning("project_state_corrupt", key=f"{project_key}-pricing-results")
            return []

    def clear_project(self) -> int:
        """Remove all saved project state; returns the number of keys removed."""
        removed = 0
        for key in self.store.keys():
            if key.startswith(STATE_KEY_PREFIX) and not key.startswith(SESSION_STORAGE_KEY):
                self.store.remove_item(key)
                removed += 1
        log.info("project_state_cleared", removed=removed)
        return removed
