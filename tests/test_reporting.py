"""
Unit tests for usage ledger, pricing and cost reports.
"""
from datetime import datetime, timezone

import pytest

from wizard_ai.services.usage.ledger import UsageLedger, UsageRecord
from wizard_ai.services.usage.pricing import (
    calculate_cost,
    estimate_tokens,
)
from wizard_ai.services.usage.reporting import (
    _compute_exact_percentile,
    cost_per_caller,
    optimization_opportunities,
    projected_monthly_cost,
    summarize,
)

DAY = 24 * 3600.0
# 2025-06-10 12:00:00 UTC
NOW = datetime(2025, 6, 10, 12, 0, tzinfo=timezone.utc).timestamp()


def _record(
    ts: float = NOW,
    operation: str = "analysis",
    model: str = "gemini-2.5-flash",
    source: str = "remote",
    tokens: int = 100,
    cost: float = 0.0001,
    success: bool = True,
    latency: float = 100.0,
    error_kind=None,
) -> UsageRecord:
    return UsageRecord(
        timestamp=ts,
        operation=operation,
        model=model,
        cache_hit=source == "cache",
        latency_ms=latency,
        tokens_used=tokens,
        cost_usd=cost,
        success=success,
        source=source,
        caller_id="global",
        error_kind=error_kind,
    )


class TestLedger:
    def test_append_and_filter_since(self):
        ledger = UsageLedger()
        ledger.append(_record(ts=NOW - 10))
        ledger.append(_record(ts=NOW))

        assert len(ledger) == 2
        assert len(ledger.records(since=NOW - 5)) == 1

    def test_records_returns_copy(self):
        ledger = UsageLedger()
        ledger.append(_record())

        ledger.records().clear()

        assert len(ledger) == 1

    def test_max_records_keeps_newest(self):
        ledger = UsageLedger(max_records=2)
        for i in range(3):
            ledger.append(_record(ts=NOW + i))

        assert [r.timestamp for r in ledger.records()] == [NOW + 1, NOW + 2]

    def test_record_is_frozen(self):
        record = _record()
        with pytest.raises(Exception):
            record.cost_usd = 1.0


class TestPricing:
    def test_flash_cost(self):
        # 1M input at $0.075 + 1M output at $0.30
        assert calculate_cost("gemini-2.5-flash", 1_000_000, 1_000_000) == pytest.approx(0.375)

    def test_small_call_is_not_rounded_away(self):
        assert calculate_cost("gemini-2.5-flash", 100, 50) == pytest.approx(0.0000225)

    def test_unknown_model_uses_default_pricing(self):
        assert calculate_cost("mystery", 1_000_000, 0) == pytest.approx(0.075)

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestPercentile:
    def test_linear_interpolation(self):
        assert _compute_exact_percentile([1, 2, 3, 4], 50) == pytest.approx(2.5)
        assert _compute_exact_percentile([10], 95) == 10

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            _compute_exact_percentile([], 50)


class TestEmptyLedger:
    def test_all_reports_tolerate_empty_input(self):
        per_caller = cost_per_caller([], now=NOW)
        projection = projected_monthly_cost([], now=NOW)
        summary = summarize([], now=NOW)

        assert per_caller.total_callers == 0
        assert per_caller.average == 0.0
        assert per_caller.distribution == []
        assert projection.current_cost == 0.0
        assert projection.projected_cost == 0.0
        assert projection.under_target is True
        assert optimization_opportunities([], now=NOW) == []
        assert summary.total_requests == 0
        assert summary.p95_latency_ms == 0.0


class TestCostPerCaller:
    def test_callers_estimated_per_day(self):
        # Day 1: 25 requests -> 3 callers; day 2: 5 requests -> 1 caller.
        records = [_record(ts=NOW - DAY, cost=0.001) for _ in range(25)]
        records += [_record(ts=NOW, cost=0.002) for _ in range(5)]

        result = cost_per_caller(records, now=NOW)

        assert result.total_callers == 4
        assert result.total_cost == pytest.approx(0.035)
        assert result.average == pytest.approx(0.035 / 4)
        # Per-day cost per caller: 0.025/3 and 0.010/1
        assert result.median == pytest.approx((0.025 / 3 + 0.010) / 2)
        assert sum(b.count for b in result.distribution) == 2

    def test_window_excludes_old_records(self):
        records = [_record(ts=NOW - 40 * DAY), _record(ts=NOW)]

        result = cost_per_caller(records, window=30 * DAY, now=NOW)

        assert result.total_cost == pytest.approx(0.0001)


class TestMonthlyProjection:
    def test_linear_projection(self):
        # June has 30 days; now is June 10.
        records = [_record(ts=NOW - DAY, cost=5.0), _record(ts=NOW, cost=5.0)]
        records.append(_record(ts=NOW - 20 * DAY, cost=100.0))  # previous month

        result = projected_monthly_cost(records, now=NOW, target_usd=50.0)

        assert result.current_cost == pytest.approx(10.0)
        assert result.projected_cost == pytest.approx(30.0)
        assert result.under_target is True
        assert result.percentage_of_target == pytest.approx(60.0)
        assert result.days_remaining == 20
        assert result.daily_budget_remaining == pytest.approx(2.0)

    def test_over_target(self):
        records = [_record(ts=NOW, cost=40.0)]

        result = projected_monthly_cost(records, now=NOW, target_usd=50.0)

        assert result.under_target is False
        assert result.projected_cost == pytest.approx(120.0)


class TestOptimizationOpportunities:
    def test_opportunities_sorted_by_savings_pct(self):
        records = [
            _record(model="gemini-2.5-pro", tokens=900, cost=0.005) for _ in range(6)
        ] + [_record(source="cache", model="cache", tokens=0, cost=0.0) for _ in range(4)]

        result = optimization_opportunities(records, now=NOW)

        categories = {o.category for o in result}
        assert {"caching", "model-selection", "token-usage", "rate-limiting"} <= categories
        pcts = [o.potential_savings_pct for o in result]
        assert pcts == sorted(pcts, reverse=True)

    def test_no_opportunities_for_healthy_usage(self):
        records = [_record(source="cache", model="cache", tokens=0, cost=0.0) for _ in range(9)]
        records.append(_record(tokens=200, cost=0.00001))

        assert optimization_opportunities(records, now=NOW) == []


class TestSummary:
    def test_summary_rates(self):
        records = [
            _record(source="remote", cost=0.002, latency=200.0),
            _record(source="cache", model="cache", tokens=0, cost=0.0, latency=1.0),
            _record(
                source="fallback", model="fallback", tokens=0, cost=0.0,
                success=False, error_kind="TIMEOUT_ERROR", latency=3000.0,
            ),
            _record(operation="suggestions", source="remote", cost=0.002, latency=300.0),
        ]

        summary = summarize(records, now=NOW)

        assert summary.total_requests == 4
        assert summary.total_cost == pytest.approx(0.004)
        assert summary.cache_hit_rate == pytest.approx(0.25)
        assert summary.fallback_rate == pytest.approx(0.25)
        assert summary.error_rate == pytest.approx(0.25)
        assert summary.estimated_savings_from_cache == pytest.approx(0.002)
        assert summary.requests_by_operation == {"analysis": 3, "suggestions": 1}
        assert summary.requests_by_source == {"remote": 2, "cache": 1, "fallback": 1}

    def test_reports_do_not_mutate_input(self):
        records = [_record(ts=NOW), _record(ts=NOW - DAY)]
        snapshot = list(records)

        summarize(records, now=NOW)
        cost_per_caller(records, now=NOW)
        optimization_opportunities(records, now=NOW)
        projected_monthly_cost(records, now=NOW)

        assert records == snapshot
