"""
Unit tests for usage threshold alerts.
"""
from datetime import datetime, timezone

import pytest

from wizard_ai.services.usage.alerting import AlertManager, AlertThresholds
from wizard_ai.services.usage.ledger import UsageRecord

HOUR = 3600.0
DAY = 24 * HOUR
# 2025-06-10 12:00:00 UTC
NOW = datetime(2025, 6, 10, 12, 0, tzinfo=timezone.utc).timestamp()


def _record(
    ts: float = NOW,
    source: str = "remote",
    cost: float = 0.0001,
    success: bool = True,
    latency: float = 100.0,
) -> UsageRecord:
    return UsageRecord(
        timestamp=ts,
        operation="analysis",
        model="cache" if source == "cache" else "gemini-2.5-flash",
        cache_hit=source == "cache",
        latency_ms=latency,
        tokens_used=0 if source == "cache" else 100,
        cost_usd=0.0 if source == "cache" else cost,
        success=success,
        source=source,
        caller_id="global",
        error_kind=None if success else "API_ERROR",
    )


def _manager(**kwargs) -> AlertManager:
    return AlertManager(clock=lambda: NOW, **kwargs)


class TestThresholds:
    def test_error_rate_warning_and_critical(self):
        warning = _manager().check([_record(success=False)] + [_record() for _ in range(9)])
        critical = _manager().check([_record(success=False) for _ in range(2)] + [_record() for _ in range(8)])

        assert [(a.type, a.severity) for a in warning] == [("error_rate_high", "warning")]
        assert [(a.type, a.severity) for a in critical] == [("error_rate_high", "critical")]
        assert critical[0].details["error_rate_pct"] == 20.0

    def test_too_few_requests_raise_nothing(self):
        records = [_record(success=False, latency=10_000) for _ in range(9)]

        assert _manager().check(records) == []

    def test_p95_latency(self):
        slow = _manager().check([_record(latency=3500) for _ in range(10)])
        very_slow = _manager().check([_record(latency=5000) for _ in range(10)])

        assert [(a.type, a.severity) for a in slow] == [("latency_p95_high", "warning")]
        assert [(a.type, a.severity) for a in very_slow] == [("latency_p95_high", "critical")]

    def test_cache_hit_rate_needs_twenty_requests(self):
        low = [_record(source="cache") for _ in range(12)] + [_record() for _ in range(8)]

        assert _manager().check(low[:19]) == []
        raised = _manager().check(low)
        assert [(a.type, a.severity) for a in raised] == [("cache_hit_rate_low", "warning")]
        assert raised[0].details["cache_hit_rate_pct"] == 60.0

    def test_cache_hit_rate_critical_below_half_target(self):
        records = [_record(source="cache") for _ in range(6)] + [_record() for _ in range(14)]

        raised = _manager().check(records)

        assert [(a.type, a.severity) for a in raised] == [("cache_hit_rate_low", "critical")]

    def test_records_outside_last_hour_ignored(self):
        records = [_record(ts=NOW - 2 * HOUR, success=False) for _ in range(10)]

        assert _manager().check(records) == []

    def test_cost_spike_against_weekly_baseline(self):
        records = [_record(ts=NOW - 2 * DAY, cost=0.5)] + [_record(cost=0.01) for _ in range(10)]

        raised = _manager().check(records)

        assert [(a.type, a.severity) for a in raised] == [("cost_spike", "critical")]
        assert raised[0].details["hourly_cost"] == pytest.approx(0.1)
        assert raised[0].details["daily_projection"] == pytest.approx(2.4)

    def test_cost_spike_ignores_tiny_hourly_cost(self):
        records = [_record(ts=NOW - 2 * DAY, cost=0.0001)] + [_record(cost=0.0009) for _ in range(10)]

        assert _manager().check(records) == []

    def test_cost_checked_at_most_every_fifteen_minutes(self):
        manager = _manager()
        records = [_record(ts=NOW - 2 * DAY, cost=0.5)] + [_record(cost=0.01) for _ in range(10)]
        first = manager.check(records)
        manager.acknowledge_all()

        assert manager.check(records, now=NOW + 60) == []
        again = manager.check(records, now=NOW + 900)

        assert [a.type for a in first] == ["cost_spike"]
        assert [a.type for a in again] == ["cost_spike"]

    def test_custom_thresholds(self):
        manager = _manager(thresholds=AlertThresholds(error_rate_pct=50.0))
        records = [_record(success=False) for _ in range(3)] + [_record() for _ in range(7)]

        assert manager.check(records) == []


class TestAlertLifecycle:
    def _errors(self):
        return [_record(success=False) for _ in range(10)]

    def test_unacknowledged_alert_suppresses_duplicate(self):
        manager = _manager()
        first = manager.check(self._errors())

        assert manager.check(self._errors()) == []
        assert manager.acknowledge(first[0].id) is True
        assert len(manager.check(self._errors())) == 1
        assert manager.acknowledge("missing") is False

    def test_duplicate_allowed_after_dedup_window(self):
        manager = _manager()
        manager.check(self._errors())

        later = [_record(ts=NOW + HOUR + 1, success=False) for _ in range(10)]

        assert len(manager.check(later, now=NOW + HOUR + 1)) == 1

    def test_alert_list_is_bounded(self):
        manager = _manager(max_alerts=2)
        for _ in range(3):
            manager.check(self._errors())
            manager.acknowledge_all()

        alerts = manager.alerts(include_acknowledged=True)
        assert len(alerts) == 2

    def test_filters_and_acknowledge_all(self):
        manager = _manager()
        manager.check([_record(success=False, latency=9000) for _ in range(10)])

        assert len(manager.alerts()) == 2
        assert len(manager.alerts(alert_type="latency_p95_high")) == 1
        assert len(manager.alerts(severity="critical")) == 2
        assert manager.acknowledge_all() == 2
        assert manager.alerts() == []
        assert len(manager.alerts(include_acknowledged=True)) == 2

    def test_clear_old_drops_only_acknowledged(self):
        manager = _manager()
        manager.check(self._errors())
        manager.acknowledge_all()
        later = NOW + 2 * DAY
        manager.check([_record(ts=later, success=False) for _ in range(10)], now=later)

        removed = manager.clear_old(older_than_seconds=DAY, now=later)

        assert removed == 1
        assert len(manager.alerts(include_acknowledged=True)) == 1

    def test_notify_called_and_failures_contained(self):
        seen = []
        _manager(notify=seen.append).check(self._errors())

        def broken(alert):
            raise RuntimeError("webhook down")

        raised = _manager(notify=broken).check(self._errors())

        assert [a.type for a in seen] == ["error_rate_high"]
        assert len(raised) == 1

    def test_stats(self):
        manager = _manager()
        manager.check(self._errors())

        stats = manager.stats()

        assert stats["total"] == 1
        assert stats["unacknowledged"] == 1
        assert stats["by_type"]["error_rate_high"] == 1
        assert stats["by_type"]["cost_spike"] == 0
        assert stats["by_severity"]["critical"] == 1
        assert stats["last_24_hours"] == 1
        assert manager.stats(now=NOW + 2 * DAY)["last_24_hours"] == 0
