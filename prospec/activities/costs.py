"""Cost roll-up: priced materials plus labor, custom fees and markup."""

from __future__ import annotations

from prospec.models.contracts import CostSummary, CostSummaryRequest


def summarize_costs(request: CostSummaryRequest) -> CostSummary:
    """Aggregate a cost estimate.

    Markup applies to materials only. Unpriced line items count as zero.
    """
    material_cost = sum(item.total_cost or 0.0 for item in request.items)
    labor = request.labor
    labor_cost = labor.number_of_people * labor.cost_per_hour * labor.total_hours
    custom_fees_total = sum(fee.amount for fee in request.custom_fees)
    markup_amount = material_cost * request.general_markup / 100

    return CostSummary(
        material_cost=round(material_cost, 2),
        labor_cost=round(labor_cost, 2),
        custom_fees_total=round(custom_fees_total, 2),
        markup_amount=round(markup_amount, 2),
        final_total=round(material_cost + labor_cost + custom_fees_total + markup_amount, 2),
    )
