"""
Threshold alerts over the usage ledger.

Checks (over the last hour unless noted):
- error_rate_high: failed share of calls above `error_rate_pct` (needs 10+ calls)
- latency_p95_high: p95 latency above `p95_latency_ms` (needs 10+ calls)
- cache_hit_rate_low: cache-hit share below `cache_hit_rate_pct` (needs 20+ calls)
- cost_spike: last hour's cost above `cost_spike_multiplier` x the average
  hourly cost of the past 7 days (checked every 15 minutes, ignored below
  $0.01/hour)

Severity is "critical" when the value is well past the threshold (2x for error
rate and cost, 1.5x for latency, half the target for cache hits), otherwise
"warning". An unacknowledged alert of the same type raised within the last
hour suppresses a new one.
"""
import time
import uuid
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence

from wizard_ai.core.logging import get_logger
from wizard_ai.core.metrics import record_alert
from wizard_ai.services.usage.ledger import UsageRecord
from wizard_ai.services.usage.reporting import summarize

logger = get_logger(__name__)

HOUR = 3600.0
DAY = 24 * HOUR

ALERT_TYPES = ("error_rate_high", "latency_p95_high", "cache_hit_rate_low", "cost_spike")
SEVERITIES = ("info", "warning", "critical")


@dataclass(frozen=True)
class AlertThresholds:
    error_rate_pct: float = 5.0
    p95_latency_ms: float = 3000.0
    cache_hit_rate_pct: float = 70.0
    cost_spike_multiplier: float = 2.0
    min_requests: int = 10
    min_requests_cache: int = 20
    min_hourly_cost_usd: float = 0.01


@dataclass
class Alert:
    id: str
    timestamp: float
    type: str
    severity: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    acknowledged: bool = False


class AlertManager:
    """
    Evaluates thresholds against usage records and keeps the raised alerts.

    `notify` is called with each new alert; its exceptions are logged.
    """

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        max_alerts: int = 100,
        dedup_seconds: float = HOUR,
        cost_check_interval_seconds: float = 900.0,
        notify: Optional[Callable[[Alert], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.thresholds = thresholds or AlertThresholds()
        self.max_alerts = max_alerts
        self.dedup_seconds = dedup_seconds
        self.cost_check_interval_seconds = cost_check_interval_seconds
        self._notify = notify
        self._clock = clock
        self._lock = Lock()
        self._alerts: List[Alert] = []
        self._last_cost_check: Optional[float] = None

    def check(self, records: Sequence[UsageRecord], now: Optional[float] = None) -> List[Alert]:
        """
        Evaluate every threshold and raise alerts for the ones exceeded.

        Returns:
            Alerts raised by this check (duplicates suppressed).
        """
        now = self._clock() if now is None else now
        t = self.thresholds
        hour = summarize(records, window=HOUR, now=now)
        candidates = []

        if hour.total_requests >= t.min_requests:
            error_pct = hour.error_rate * 100
            if error_pct > t.error_rate_pct:
                candidates.append((
                    "error_rate_high",
                    "critical" if error_pct > t.error_rate_pct * 2 else "warning",
                    f"High error rate: {error_pct:.1f}% (threshold: {t.error_rate_pct}%)",
                    {
                        "error_rate_pct": round(error_pct, 1),
                        "threshold": t.error_rate_pct,
                        "total_requests": hour.total_requests,
                    },
                ))

            if hour.p95_latency_ms > t.p95_latency_ms:
                candidates.append((
                    "latency_p95_high",
                    "critical" if hour.p95_latency_ms > t.p95_latency_ms * 1.5 else "warning",
                    f"Slow responses: {hour.p95_latency_ms:.0f}ms p95 (threshold: {t.p95_latency_ms:.0f}ms)",
                    {
                        "p95_latency_ms": round(hour.p95_latency_ms, 1),
                        "average_latency_ms": round(hour.average_latency_ms, 1),
                        "threshold": t.p95_latency_ms,
                    },
                ))

        if hour.total_requests >= t.min_requests_cache:
            hit_pct = hour.cache_hit_rate * 100
            if hit_pct < t.cache_hit_rate_pct:
                candidates.append((
                    "cache_hit_rate_low",
                    "critical" if hit_pct < t.cache_hit_rate_pct * 0.5 else "warning",
                    f"Low cache hit rate: {hit_pct:.1f}% (threshold: {t.cache_hit_rate_pct}%)",
                    {
                        "cache_hit_rate_pct": round(hit_pct, 1),
                        "threshold": t.cache_hit_rate_pct,
                        "total_requests": hour.total_requests,
                    },
                ))

        if (
            self._last_cost_check is None
            or now - self._last_cost_check >= self.cost_check_interval_seconds
        ):
            self._last_cost_check = now
            spike = self._cost_spike(records, hour.total_cost, now)
            if spike is not None:
                candidates.append(spike)

        raised = []
        for alert_type, severity, message, details in candidates:
            alert = self._raise(alert_type, severity, message, details, now)
            if alert is not None:
                raised.append(alert)
        return raised

    def _cost_spike(self, records: Sequence[UsageRecord], hourly_cost: float, now: float):
        t = self.thresholds
        week = summarize(records, window=7 * DAY, now=now)
        baseline = week.total_cost / (7 * 24)
        if baseline <= 0 or hourly_cost <= t.min_hourly_cost_usd:
            return None
        multiplier = hourly_cost / baseline
        if multiplier <= t.cost_spike_multiplier:
            return None
        return (
            "cost_spike",
            "critical" if multiplier > t.cost_spike_multiplier * 2 else "warning",
            f"Cost spike: {multiplier:.1f}x baseline (threshold: {t.cost_spike_multiplier}x)",
            {
                "hourly_cost": round(hourly_cost, 4),
                "baseline_hourly_cost": round(baseline, 4),
                "multiplier": round(multiplier, 1),
                "daily_projection": round(hourly_cost * 24, 2),
                "monthly_projection": round(hourly_cost * 24 * 30, 2),
            },
        )

    def _raise(
        self,
        alert_type: str,
        severity: str,
        message: str,
        details: Dict[str, Any],
        now: float,
    ) -> Optional[Alert]:
        with self._lock:
            for existing in self._alerts:
                if (
                    existing.type == alert_type
                    and not existing.acknowledged
                    and existing.timestamp > now - self.dedup_seconds
                ):
                    return None
            alert = Alert(
                id=uuid.uuid4().hex,
                timestamp=now,
                type=alert_type,
                severity=severity,
                message=message,
                details=details,
            )
            self._alerts.append(alert)
            if len(self._alerts) > self.max_alerts:
                self._alerts = self._alerts[-self.max_alerts:]

        record_alert(alert_type, severity)
        logger.warning(
            "usage_alert_raised",
            alert_type=alert_type,
            severity=severity,
            message=message,
        )
        if self._notify is not None:
            try:
                self._notify(alert)
            except Exception as e:
                logger.error(
                    "usage_alert_notify_failed",
                    alert_type=alert_type,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return alert

    def alerts(
        self,
        include_acknowledged: bool = False,
        alert_type: Optional[str] = None,
        severity: Optional[str] = None,
    ) -> List[Alert]:
        with self._lock:
            return [
                a for a in self._alerts
                if (include_acknowledged or not a.acknowledged)
                and (alert_type is None or a.type == alert_type)
                and (severity is None or a.severity == severity)
            ]

    def acknowledge(self, alert_id: str) -> bool:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.acknowledged = True
                    return True
        return False

    def acknowledge_all(self) -> int:
        with self._lock:
            count = 0
            for alert in self._alerts:
                if not alert.acknowledged:
                    alert.acknowledged = True
                    count += 1
            return count

    def clear_old(self, older_than_seconds: float = 7 * DAY, now: Optional[float] = None) -> int:
        """Drop acknowledged alerts older than the cutoff. Returns the number dropped."""
        cutoff = (self._clock() if now is None else now) - older_than_seconds
        with self._lock:
            before = len(self._alerts)
            self._alerts = [a for a in self._alerts if not a.acknowledged or a.timestamp > cutoff]
            return before - len(self._alerts)

    def stats(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = self._clock() if now is None else now
        with self._lock:
            by_type = {t: 0 for t in ALERT_TYPES}
            by_severity = {s: 0 for s in SEVERITIES}
            for alert in self._alerts:
                by_type[alert.type] = by_type.get(alert.type, 0) + 1
                by_severity[alert.severity] = by_severity.get(alert.severity, 0) + 1
            return {
                "total": len(self._alerts),
                "unacknowledged": sum(1 for a in self._alerts if not a.acknowledged),
                "by_type": by_type,
                "by_severity": by_severity,
                "last_24_hours": sum(1 for a in self._alerts if a.timestamp > now - DAY),
            }
