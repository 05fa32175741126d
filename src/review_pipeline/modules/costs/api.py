from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from review_pipeline.modules.costs.pricing import pricing_table_as_dict
from review_pipeline.modules.costs.schemas import (
    AllUsageStats,
    BudgetStatus,
    CostBreakdown,
    Period,
    PeriodUsage,
)
from review_pipeline.modules.costs.service import CostTracker, get_cost_tracker

router = APIRouter(tags=["costs"])


@router.get("/costs/budget", response_model=BudgetStatus)
def budget_status(
    budget_usd: float | None = Query(default=None, gt=0),
    tracker: CostTracker = Depends(get_cost_tracker),
) -> BudgetStatus:
    return tracker.check_budget_status(budget_usd)


@router.get("/costs/breakdown", response_model=CostBreakdown)
def cost_breakdown(
    period: Period = "monthly",
    key: str | None = None,
    tracker: CostTracker = Depends(get_cost_tracker),
) -> CostBreakdown:
    return tracker.get_cost_breakdown(period, key)


@router.get("/costs/usage", response_model=dict[str, PeriodUsage])
def usage(
    period: Period = "daily",
    tracker: CostTracker = Depends(get_cost_tracker),
) -> dict[str, PeriodUsage]:
    return tracker.get_usage_stats(period)


@router.get("/costs/usage/{key}", response_model=PeriodUsage)
def usage_for_key(
    key: str = Path(pattern=r"^\d{4}-\d{2}(-\d{2})?$"),
    tracker: CostTracker = Depends(get_cost_tracker),
) -> PeriodUsage:
    stats = tracker.get_usage_stats(key)
    if stats is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No usage for period")
    return stats


@router.get("/costs/stats", response_model=AllUsageStats)
def all_stats(tracker: CostTracker = Depends(get_cost_tracker)) -> AllUsageStats:
    return tracker.get_all_stats()


@router.get("/costs/pricing")
def pricing() -> dict[str, dict]:
    return pricing_table_as_dict()
