from __future__ import annotations

import threading
from datetime import UTC, datetime

import pytest

from review_pipeline.modules.costs.pricing import ModelPricing
from review_pipeline.modules.costs.service import CostTracker

NOW = datetime(2026, 3, 12, 15, 30, tzinfo=UTC)

# One dollar per input token keeps budget arithmetic exact.
FLAT_PRICING = {"flat-model": ModelPricing("Flat", 1.0, 0.0, "test")}


def _tracker(store, **kwargs) -> CostTracker:
    return CostTracker(store, now=lambda: NOW, **kwargs)


def test_calculate_cost_uses_per_token_rates(kv_store):
    tracker = _tracker(kv_store)

    assert tracker.calculate_cost("mixtral-8x7b-32768", 1000, 500) == pytest.approx(0.00036)
    assert tracker.calculate_cost("llama3-70b-8192", 1_000_000, 1_000_000) == pytest.approx(1.38)


def test_unknown_model_costs_nothing(kv_store):
    tracker = _tracker(kv_store)

    assert tracker.calculate_cost("gpt-unknown", 1000, 1000) == 0.0
    assert tracker.track_usage(model="gpt-unknown", input_tokens=10, output_tokens=10) == 0.0


def test_track_usage_aggregates_by_day_month_and_model(kv_store):
    tracker = _tracker(kv_store)

    first = tracker.track_usage(
        model="mixtral-8x7b-32768", input_tokens=1000, output_tokens=500, submission_id="s1"
    )
    tracker.track_usage(model="mixtral-8x7b-32768", input_tokens=1000, output_tokens=500)
    tracker.track_usage(model="llama3-8b-8192", input_tokens=100, output_tokens=100)

    assert first == pytest.approx(0.00036)

    day = tracker.get_usage_stats("2026-03-12")
    assert day.requests == 3
    assert day.input_tokens == 2100
    assert day.output_tokens == 1100
    assert day.cost == pytest.approx(0.00072 + 0.000017)
    assert day.by_model["mixtral-8x7b-32768"].requests == 2
    assert day.by_model["llama3-8b-8192"].cost == pytest.approx(0.000017)

    month = tracker.get_usage_stats("2026-03")
    assert month.requests == 3
    assert set(tracker.get_usage_stats("daily")) == {"2026-03-12"}
    assert set(tracker.get_usage_stats("monthly")) == {"2026-03"}
    assert tracker.get_usage_stats("2026-03-11") is None


def test_concurrent_tracking_loses_no_updates(kv_store):
    tracker = _tracker(kv_store)

    def _work():
        for _ in range(25):
            tracker.track_usage(model="mixtral-8x7b-32768", input_tokens=10, output_tokens=10)

    threads = [threading.Thread(target=_work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    usage = tracker.get_usage_stats("2026-03")
    assert usage.requests == 100
    assert usage.input_tokens == 1000


def test_budget_status_thresholds(kv_store):
    tracker = _tracker(kv_store, pricing=FLAT_PRICING)

    tracker.track_usage(model="flat-model", input_tokens=79, output_tokens=0)
    status = tracker.check_budget_status(100.0)
    assert status.spent == 79.0
    assert (status.is_warning, status.is_exceeded) == (False, False)

    tracker.track_usage(model="flat-model", input_tokens=1, output_tokens=0)
    status = tracker.check_budget_status(100.0)
    assert status.percentage_used == 80.0
    assert (status.is_warning, status.is_exceeded) == (True, False)

    tracker.track_usage(model="flat-model", input_tokens=20, output_tokens=0)
    status = tracker.check_budget_status(100.0)
    assert status.remaining == 0.0
    assert (status.is_warning, status.is_exceeded) == (True, True)
    assert status.month == "2026-03"
    assert status.days_remaining_in_month == 19


def test_budget_status_with_no_usage(kv_store):
    status = _tracker(kv_store).check_budget_status(50.0)

    assert status.spent == 0.0
    assert status.remaining == 50.0
    assert status.percentage_used == 0.0
    assert not status.is_warning


def test_budget_must_be_positive(kv_store):
    with pytest.raises(ValueError):
        _tracker(kv_store).check_budget_status(0)


def test_cost_breakdown_shares(kv_store):
    pricing = {
        "a": ModelPricing("Model A", 1.0, 0.0, "test"),
        "b": ModelPricing("Model B", 1.0, 0.0, "test"),
    }
    tracker = _tracker(kv_store, pricing=pricing)
    tracker.track_usage(model="a", input_tokens=3, output_tokens=0)
    tracker.track_usage(model="b", input_tokens=1, output_tokens=0)

    breakdown = tracker.get_cost_breakdown("monthly")

    assert breakdown.target == "2026-03"
    assert breakdown.total_cost == 4.0
    assert breakdown.breakdown["a"].name == "Model A"
    assert breakdown.breakdown["a"].percentage_of_total == 75.0
    assert breakdown.breakdown["b"].percentage_of_total == 25.0


def test_cost_breakdown_for_empty_period(kv_store):
    breakdown = _tracker(kv_store).get_cost_breakdown("daily", "2026-01-01")

    assert breakdown.total_cost == 0.0
    assert breakdown.breakdown == {}


def test_all_stats_include_lifetime_total_and_pricing(kv_store):
    tracker = _tracker(kv_store)
    tracker.track_usage(model="mixtral-8x7b-32768", input_tokens=1000, output_tokens=500)

    stats = tracker.get_all_stats()

    assert stats.total_cost == pytest.approx(0.0004)
    assert "2026-03-12" in stats.daily
    assert stats.models["mixtral-8x7b-32768"]["category"] == "balanced"


def test_store_failure_reports_zero_cost(broken_store):
    tracker = _tracker(broken_store)

    assert tracker.track_usage(
        model="mixtral-8x7b-32768", input_tokens=1000, output_tokens=500
    ) == 0.0
