"""Estimation and cost-summary endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from prospec.activities.costs import summarize_costs
from prospec.activities.estimation import generate_project_estimation
from prospec.api.deps import require_access_password
from prospec.models.contracts import (
    CostSummary,
    CostSummaryRequest,
    EstimationResponse,
    ProjectDescription,
)

logger = structlog.get_logger()

router = APIRouter(tags=["estimates"], dependencies=[Depends(require_access_password)])


@router.post("/estimates", response_model=EstimationResponse)
async def create_estimate(body: ProjectDescription) -> EstimationResponse:
    """Propose supplies and equipment for a project description.

    Provider failures degrade to a static fallback list, never an error.
    """
    return await generate_project_estimation(body)


@router.post("/costs/summary", response_model=CostSummary)
async def cost_summary(body: CostSummaryRequest) -> CostSummary:
    summary = summarize_costs(body)
    logger.info(
        "cost_summary_computed",
        items=len(body.items),
        final_total=summary.final_total,
    )
    return summary
