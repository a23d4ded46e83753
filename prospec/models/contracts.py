"""Prospec contract models.

Wire format is camelCase (the browser client's keys); Python code uses the
snake_case field names. Both are accepted on input.
"""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

PriceScale = Literal["$", "$$", "$$$"]


class _Contract(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Rate Limiting ===


class SessionRecord(_Contract):
    """Usage counters for one session, in one execution context.

    Timestamps are epoch milliseconds. Serialized as ``apiCallCount`` to stay
    readable by clients that persisted the record before the rename;
    ``callCount`` is accepted too.
    """

    call_count: int = Field(
        default=0,
        validation_alias=AliasChoices("apiCallCount", "callCount", "call_count"),
        serialization_alias="apiCallCount",
    )
    session_start_time: int = 0
    last_call_time: int = 0


class SessionStats(_Contract):
    calls_used: int
    calls_remaining: int
    max_calls: int
    session_age: int  # ms


# === Estimation ===


class ProjectDescription(_Contract):
    project_type: str = Field(min_length=1)
    project_size: str = ""
    project_size_unit: str = "tbd"
    project_description: str = Field(min_length=1)
    price_scale: PriceScale = "$$"
    location: str = "CA"

    @model_validator(mode="after")
    def _size_required_unless_tbd(self) -> ProjectDescription:
        if not self.project_size.strip() and self.project_size_unit.lower() != "tbd":
            raise ValueError("projectSize is required unless projectSizeUnit is 'tbd'")
        return self


class EstimationItem(_Contract):
    id: str
    name: str
    description: str = ""
    unit: str = ""
    quantity: float = Field(ge=0)
    base_quantity: float = Field(ge=0)
    checked: bool = False
    removed: bool = False


class EstimationResponse(_Contract):
    supplies: list[EstimationItem] = []
    equipment: list[EstimationItem] = []


# === Pricing ===


class PricingContext(_Contract):
    """Project context forwarded unchanged to every per-item search."""

    project_description: str | None = None
    price_scale: PriceScale | None = None
    location: str | None = None


class PricingItemRequest(_Contract):
    name: str = Field(min_length=1)
    quantity: int = Field(default=1, gt=0)


class ProductOption(_Contract):
    rank: int
    price: float
    total_cost: float
    product_title: str
    brand: str | None = None
    rating: float | None = None
    reviews: int | None = None
    link: str = ""
    source: str | None = None
    condition: str | None = None


class PricingLineItem(_Contract):
    item_name: str
    quantity: int = Field(gt=0)
    price: float | None = None
    total_cost: float | None = None
    product_title: str | None = None
    brand: str | None = None
    rating: float | None = None
    reviews: int | None = None
    link: str | None = None
    source: str | None = None
    condition: str | None = None
    has_more_options: bool = False
    is_loading: bool = False
    error: str | None = None


class CompareRequest(_Contract):
    item_name: str = Field(min_length=1)
    quantity: int = Field(default=1, gt=0)
    project_description: str | None = None
    price_scale: PriceScale | None = None
    location: str | None = None
    client_session_data: SessionRecord | None = None

    @property
    def context(self) -> PricingContext:
        return PricingContext(
            project_description=self.project_description,
            price_scale=self.price_scale,
            location=self.location,
        )


class CompareResponse(_Contract):
    success: bool = True
    item_name: str
    quantity: int
    product_options: list[ProductOption]
    api_usage_stats: SessionStats


class StartPricingRunRequest(_Contract):
    items: list[PricingItemRequest]
    project_description: str | None = None
    price_scale: PriceScale | None = None
    location: str | None = None
    client_session_data: SessionRecord | None = None
    stop_on_rate_limit: bool = False


class PricingRunState(_Contract):
    run_id: str
    status: Literal["running", "completed", "stopped"]
    items: list[PricingLineItem] = []
    api_usage_stats: SessionStats | None = None


# === Cost Summary ===


class LaborInputs(_Contract):
    number_of_people: int = Field(default=1, ge=0)
    cost_per_hour: float = Field(default=25.0, ge=0)
    total_hours: float = Field(default=8.0, ge=0)


class CustomFee(_Contract):
    id: str
    name: str = ""
    amount: float = 0.0


class CostSummaryRequest(_Contract):
    items: list[PricingLineItem] = []
    labor: LaborInputs = LaborInputs()
    general_markup: float = Field(default=15.0, ge=0)
    custom_fees: list[CustomFee] = []


class CostSummary(_Contract):
    material_cost: float
    labor_cost: float
    custom_fees_total: float
    markup_amount: float
    final_total: float


# === API Responses ===


class ActionResponse(_Contract):
    status: Literal["ok"] = "ok"


class ErrorResponse(_Contract):
    error: str
    message: str
    retryable: bool
    detail: str | None = None
    api_usage_stats: SessionStats | None = None


class RateLimitErrorResponse(ErrorResponse):
    rate_limit_exceeded: bool = True
    remaining_calls: int = 0
