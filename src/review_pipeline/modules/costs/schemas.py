from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

Period = Literal["daily", "monthly"]


class UsageTotals(BaseModel):
    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


class PeriodUsage(UsageTotals):
    by_model: dict[str, UsageTotals] = {}


class BudgetStatus(BaseModel):
    budget: float
    spent: float
    remaining: float
    percentage_used: float
    month: str
    is_warning: bool
    is_exceeded: bool
    days_remaining_in_month: int


class ModelCostShare(BaseModel):
    name: str
    requests: int
    input_tokens: int
    output_tokens: int
    cost: float
    percentage_of_total: float


class CostBreakdown(BaseModel):
    period: Period
    target: str
    total_cost: float = 0.0
    breakdown: dict[str, ModelCostShare] = {}


class AllUsageStats(BaseModel):
    daily: dict[str, PeriodUsage]
    monthly: dict[str, PeriodUsage]
    total_cost: float
    models: dict[str, Any]
