"""
Spend accounting for reviewer calls.

Usage is aggregated per UTC day and month, overall and per model, in the shared
key-value store. Each tracked call is applied as one transactional batch of hash
increments, so concurrent workers converge on a single consistent view. Costs are
accumulated at full float precision; rounding happens only in the returned models.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime

from review_pipeline.core.config import settings
from review_pipeline.core.kv import KeyValueStore, get_kv_store
from review_pipeline.core.logging import get_logger, log_event, log_exception
from review_pipeline.core.periods import day_key, days_remaining_in_month, month_key, utc_now
from review_pipeline.modules.costs.pricing import MODEL_PRICING, ModelPricing, pricing_table_as_dict
from review_pipeline.modules.costs.schemas import (
    AllUsageStats,
    BudgetStatus,
    CostBreakdown,
    ModelCostShare,
    Period,
    PeriodUsage,
    UsageTotals,
)

logger = get_logger(__name__)

USAGE_PREFIX = "cost:usage:"
DAYS_INDEX = f"{USAGE_PREFIX}days"
MONTHS_INDEX = f"{USAGE_PREFIX}months"
TOTAL_KEY = f"{USAGE_PREFIX}total"


def _period_key(period: Period, target: str) -> str:
    kind = "day" if period == "daily" else "month"
    return f"{USAGE_PREFIX}{kind}:{target}"


def _totals(raw: Mapping[str, str]) -> UsageTotals:
    return UsageTotals(
        requests=int(float(raw.get("requests", 0))),
        input_tokens=int(float(raw.get("input_tokens", 0))),
        output_tokens=int(float(raw.get("output_tokens", 0))),
        cost=float(raw.get("cost", 0.0)),
    )


class CostTracker:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        pricing: Mapping[str, ModelPricing] = MODEL_PRICING,
        now: Callable[[], datetime] = utc_now,
    ):
        self._store = store or get_kv_store()
        self._pricing = pricing
        self._now = now

    @property
    def pricing(self) -> Mapping[str, ModelPricing]:
        return self._pricing

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        pricing = self._pricing.get(model)
        if pricing is None:
            log_event(logger, "cost.model.unknown", level=logging.WARNING, model=model)
            return 0.0
        return (
            input_tokens * pricing.input_rate_per_token
            + output_tokens * pricing.output_rate_per_token
        )

    def track_usage(
        self,
        *,
        model: str,
        input_tokens: int,
        output_tokens: int,
        user_id: str | None = None,
        submission_id: str | None = None,
    ) -> float:
        """Record one reviewer call and return its cost.

        A store failure is logged and reported as zero cost; accounting must never
        block the review itself.
        """
        cost = self.calculate_cost(model, input_tokens, output_tokens)
        moment = self._now()
        day = day_key(moment)
        month = month_key(moment)

        increments: dict[str, int | float] = {
            "requests": 1,
            "input_tokens": int(input_tokens),
            "output_tokens": int(output_tokens),
            "cost": float(cost),
        }
        day_key_ = _period_key("daily", day)
        month_key_ = _period_key("monthly", month)
        updates = {
            day_key_: increments,
            f"{day_key_}:model:{model}": increments,
            month_key_: increments,
            f"{month_key_}:model:{model}": increments,
            TOTAL_KEY: {"cost": float(cost)},
        }
        members = {
            DAYS_INDEX: [day],
            MONTHS_INDEX: [month],
            f"{day_key_}:models": [model],
            f"{month_key_}:models": [model],
        }
        try:
            self._store.hincr(updates, members=members)
        except Exception:  # noqa: BLE001
            log_exception(
                logger,
                "cost.usage.track_failure",
                model=model,
                submission_id=submission_id,
            )
            return 0.0

        log_event(
            logger,
            "cost.usage.tracked",
            level=logging.DEBUG,
            model=model,
            cost=f"{cost:.6f}",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            user_id=user_id,
            submission_id=submission_id,
        )
        return cost

    def current_period_key(self, period: Period = "monthly") -> str:
        moment = self._now()
        return day_key(moment) if period == "daily" else month_key(moment)

    def days_remaining_in_month(self) -> int:
        return days_remaining_in_month(self._now())

    def _period_usage(self, period: Period, target: str) -> PeriodUsage | None:
        key = _period_key(period, target)
        raw = self._store.hgetall(key)
        if not raw:
            return None
        totals = _totals(raw)
        by_model = {
            model: _totals(self._store.hgetall(f"{key}:model:{model}"))
            for model in sorted(self._store.smembers(f"{key}:models"))
        }
        return PeriodUsage(**totals.model_dump(), by_model=by_model)

    def _all_periods(self, period: Period) -> dict[str, PeriodUsage]:
        index = DAYS_INDEX if period == "daily" else MONTHS_INDEX
        out: dict[str, PeriodUsage] = {}
        for target in sorted(self._store.smembers(index)):
            usage = self._period_usage(period, target)
            if usage is not None:
                out[target] = usage
        return out

    def get_usage_stats(
        self, period: str = "daily"
    ) -> dict[str, PeriodUsage] | PeriodUsage | None:
        if period == "daily":
            return self._all_periods("daily")
        if period == "monthly":
            return self._all_periods("monthly")
        # A specific YYYY-MM-DD or YYYY-MM key
        if len(period) == 10:
            return self._period_usage("daily", period)
        return self._period_usage("monthly", period)

    def check_budget_status(self, budget_usd: float | None = None) -> BudgetStatus:
        budget = settings.monthly_budget_usd if budget_usd is None else budget_usd
        if budget <= 0:
            raise ValueError("budget_usd must be > 0")
        month = self.current_period_key("monthly")
        usage = self._period_usage("monthly", month)
        spent = usage.cost if usage else 0.0
        percentage = spent / budget * 100

        status = BudgetStatus(
            budget=budget,
            spent=round(spent, 4),
            remaining=round(budget - spent, 4),
            percentage_used=round(percentage, 2),
            month=month,
            is_warning=percentage >= settings.budget_warning_ratio * 100,
            is_exceeded=percentage >= 100,
            days_remaining_in_month=self.days_remaining_in_month(),
        )
        if status.is_exceeded:
            log_event(logger, "cost.budget.exceeded", level=logging.WARNING, **status.model_dump())
        elif status.is_warning:
            log_event(logger, "cost.budget.warning", level=logging.WARNING, **status.model_dump())
        return status

    def get_cost_breakdown(self, period: Period = "monthly", key: str | None = None) -> CostBreakdown:
        target = key or self.current_period_key(period)
        usage = self._period_usage(period, target)
        if usage is None:
            return CostBreakdown(period=period, target=target)

        breakdown: dict[str, ModelCostShare] = {}
        for model, data in usage.by_model.items():
            pricing = self._pricing.get(model)
            share = data.cost / usage.cost * 100 if usage.cost > 0 else 0.0
            breakdown[model] = ModelCostShare(
                name=pricing.display_name if pricing else model,
                requests=data.requests,
                input_tokens=data.input_tokens,
                output_tokens=data.output_tokens,
                cost=round(data.cost, 6),
                percentage_of_total=round(share, 2),
            )
        return CostBreakdown(
            period=period,
            target=target,
            total_cost=round(usage.cost, 4),
            breakdown=breakdown,
        )

    def get_all_stats(self) -> AllUsageStats:
        total = self._store.hgetall(TOTAL_KEY)
        return AllUsageStats(
            daily=self._all_periods("daily"),
            monthly=self._all_periods("monthly"),
            total_cost=round(float(total.get("cost", 0.0)), 4),
            models=pricing_table_as_dict(self._pricing),
        )


def get_cost_tracker() -> CostTracker:
    return CostTracker(get_kv_store())
