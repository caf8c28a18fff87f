"""
Cost and usage reports computed from UsageRecords.

All functions are pure reads over a sequence of records: they never mutate
the ledger and return zeroed results for an empty input. `now` is an epoch
timestamp in seconds; calendar arithmetic is done in UTC.
"""
import calendar
import math
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from wizard_ai.services.usage.ledger import UsageRecord

DEFAULT_WINDOW_SECONDS = 30 * 24 * 3600.0

REQUESTS_PER_CALLER_PER_DAY = 10
CACHE_HIT_RATE_TARGET = 0.8
TOKENS_PER_REQUEST_THRESHOLD = 500
TOKENS_PER_REQUEST_TARGET = 300
PRO_SHARE_THRESHOLD = 0.3
HIGH_COST_THRESHOLD_USD = 0.001
HIGH_COST_SHARE_THRESHOLD = 0.1

# (label, lower bound inclusive, upper bound exclusive)
COST_BUCKETS = [
    ("$0.000 - $0.001", 0.0, 0.001),
    ("$0.001 - $0.005", 0.001, 0.005),
    ("$0.005 - $0.010", 0.005, 0.010),
    ("$0.010 - $0.050", 0.010, 0.050),
    ("$0.050+", 0.050, math.inf),
]


@dataclass(frozen=True)
class CostBucket:
    range: str
    count: int
    percentage: float


@dataclass(frozen=True)
class CostPerCaller:
    """Cost per estimated caller over a window."""
    average: float
    median: float
    p95: float
    total_callers: int
    total_cost: float
    distribution: List[CostBucket] = field(default_factory=list)


@dataclass(frozen=True)
class MonthlyCostProjection:
    """Linear projection of this calendar month's spend against a target."""
    current_cost: float
    projected_cost: float
    target_cost: float
    under_target: bool
    percentage_of_target: float
    days_remaining: int
    daily_budget_remaining: float
    recommendation: str


@dataclass(frozen=True)
class OptimizationOpportunity:
    category: str  # caching | model-selection | token-usage | rate-limiting
    title: str
    description: str
    potential_savings: float
    potential_savings_pct: float
    priority: str  # high | medium | low


@dataclass(frozen=True)
class UsageSummary:
    total_requests: int
    total_cost: float
    total_tokens: int
    average_request_cost: float
    cache_hit_rate: float
    fallback_rate: float
    error_rate: float
    average_latency_ms: float
    p95_latency_ms: float
    estimated_savings_from_cache: float
    requests_by_operation: Dict[str, int] = field(default_factory=dict)
    requests_by_source: Dict[str, int] = field(default_factory=dict)


def _compute_exact_percentile(values: List[float], percentile: float) -> float:
    """Compute exact percentile using linear interpolation.

    Same method as numpy.percentile with the default 'linear' interpolation.

    Args:
        values: List of numeric values
        percentile: Percentile to compute (0-100)

    Returns:
        Exact percentile value
    """
    if not values:
        raise ValueError("Values list cannot be empty")
    if percentile < 0 or percentile > 100:
        raise ValueError("Percentile must be between 0 and 100")

    sorted_values = sorted(values)
    n = len(sorted_values)
    if n == 1:
        return sorted_values[0]

    rank = (percentile / 100.0) * (n - 1)
    lower = int(math.floor(rank))
    upper = int(math.ceil(rank))
    if lower == upper:
        return sorted_values[lower]
    fraction = rank - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * fraction


def _in_window(records: Sequence[UsageRecord], window: float, now: float) -> List[UsageRecord]:
    cutoff = now - window
    return [r for r in records if cutoff <= r.timestamp <= now]


def _utc_date(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def _resolve_now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def cost_per_caller(
    records: Sequence[UsageRecord],
    window: float = DEFAULT_WINDOW_SECONDS,
    now: Optional[float] = None,
) -> CostPerCaller:
    """
    Estimate cost per caller.

    Callers are not tracked individually: each UTC day contributes
    ceil(requests / 10) callers. Median and p95 are taken over the per-day
    cost-per-caller values.
    """
    recent = _in_window(records, window, _resolve_now(now))
    if not recent:
        return CostPerCaller(average=0.0, median=0.0, p95=0.0, total_callers=0, total_cost=0.0)

    total_cost = sum(r.cost_usd for r in recent)
    requests_by_day: Dict[str, int] = Counter(_utc_date(r.timestamp) for r in recent)
    cost_by_day: Dict[str, float] = defaultdict(float)
    for r in recent:
        cost_by_day[_utc_date(r.timestamp)] += r.cost_usd

    callers_by_day = {
        day: math.ceil(count / REQUESTS_PER_CALLER_PER_DAY)
        for day, count in requests_by_day.items()
    }
    total_callers = sum(callers_by_day.values())
    per_day = [cost_by_day[day] / max(1, callers) for day, callers in callers_by_day.items()]

    distribution = []
    for label, low, high in COST_BUCKETS:
        count = sum(1 for c in per_day if low <= c < high)
        distribution.append(
            CostBucket(range=label, count=count, percentage=count / len(per_day) * 100.0)
        )

    return CostPerCaller(
        average=total_cost / max(1, total_callers),
        median=_compute_exact_percentile(per_day, 50),
        p95=_compute_exact_percentile(per_day, 95),
        total_callers=total_callers,
        total_cost=total_cost,
        distribution=distribution,
    )


def _recommendation(under_target: bool, pct: float) -> str:
    if under_target:
        if pct < 50:
            return "Costs are well below target. More AI features can be enabled."
        if pct < 80:
            return "Costs are on track. Continue monitoring usage patterns."
        return "Costs are approaching target. Monitor closely and optimize if needed."
    if pct < 120:
        return "Projected costs slightly exceed target. Apply optimization strategies."
    if pct < 150:
        return "Costs significantly exceed target. Immediate optimization required."
    return "Costs far exceed target. Consider stricter rate limiting or premium-tier gating."


def projected_monthly_cost(
    records: Sequence[UsageRecord],
    now: Optional[float] = None,
    target_usd: float = 50.0,
) -> MonthlyCostProjection:
    """
    Project this month's spend: current_cost / days_elapsed * days_in_month.

    days_elapsed counts today, so the first of the month divides by 1.
    """
    if target_usd <= 0:
        raise ValueError("target_usd must be > 0")

    now = _resolve_now(now)
    today = datetime.fromtimestamp(now, tz=timezone.utc)
    month_start = today.replace(day=1, hour=0, minute=0, second=0, microsecond=0).timestamp()
    days_in_month = calendar.monthrange(today.year, today.month)[1]

    current = sum(r.cost_usd for r in records if month_start <= r.timestamp <= now)
    projected = current / today.day * days_in_month
    days_remaining = days_in_month - today.day
    daily_budget = (target_usd - current) / days_remaining if days_remaining > 0 else 0.0

    under_target = projected <= target_usd
    pct = projected / target_usd * 100.0
    return MonthlyCostProjection(
        current_cost=current,
        projected_cost=projected,
        target_cost=target_usd,
        under_target=under_target,
        percentage_of_target=pct,
        days_remaining=days_remaining,
        daily_budget_remaining=daily_budget,
        recommendation=_recommendation(under_target, pct),
    )


def optimization_opportunities(
    records: Sequence[UsageRecord],
    window: float = DEFAULT_WINDOW_SECONDS,
    now: Optional[float] = None,
) -> List[OptimizationOpportunity]:
    """Cost-saving opportunities, highest potential_savings_pct first."""
    recent = _in_window(records, window, _resolve_now(now))
    if not recent:
        return []

    total = len(recent)
    total_cost = sum(r.cost_usd for r in recent)
    total_tokens = sum(r.tokens_used for r in recent)
    cache_hit_rate = sum(1 for r in recent if r.cache_hit) / total

    def pct_of_cost(savings: float) -> float:
        return savings / total_cost * 100.0 if total_cost > 0 else 0.0

    opportunities: List[OptimizationOpportunity] = []

    if cache_hit_rate < CACHE_HIT_RATE_TARGET:
        additional_hits = total * (CACHE_HIT_RATE_TARGET - cache_hit_rate)
        savings = additional_hits * (total_cost / total)
        pct = pct_of_cost(savings)
        opportunities.append(
            OptimizationOpportunity(
                category="caching",
                title="Improve cache hit rate",
                description=(
                    f"Cache hit rate is {cache_hit_rate * 100:.1f}%. "
                    f"Raising it to {CACHE_HIT_RATE_TARGET * 100:.0f}% could save ${savings:.4f}."
                ),
                potential_savings=savings,
                potential_savings_pct=pct,
                priority="high" if pct > 20 else "medium" if pct > 10 else "low",
            )
        )

    pro_records = [r for r in recent if "pro" in r.model]
    if len(pro_records) > total * PRO_SHARE_THRESHOLD:
        savings = sum(r.cost_usd for r in pro_records) * 0.5
        pct = pct_of_cost(savings)
        opportunities.append(
            OptimizationOpportunity(
                category="model-selection",
                title="Optimize model selection",
                description=(
                    f"Pro model serves {len(pro_records) / total * 100:.1f}% of requests. "
                    "Lighter operations can use the flash model."
                ),
                potential_savings=savings,
                potential_savings_pct=pct,
                priority="high" if pct > 15 else "medium",
            )
        )

    avg_tokens = total_tokens / total
    if avg_tokens > TOKENS_PER_REQUEST_THRESHOLD:
        savings = (avg_tokens - TOKENS_PER_REQUEST_TARGET) / avg_tokens * total_cost
        pct = pct_of_cost(savings)
        opportunities.append(
            OptimizationOpportunity(
                category="token-usage",
                title="Reduce token usage",
                description=(
                    f"Average {avg_tokens:.0f} tokens per request. "
                    f"Reducing to {TOKENS_PER_REQUEST_TARGET} could save ${savings:.4f}."
                ),
                potential_savings=savings,
                potential_savings_pct=pct,
                priority="high" if pct > 10 else "medium",
            )
        )

    high_cost = [r for r in recent if r.cost_usd >= HIGH_COST_THRESHOLD_USD]
    if len(high_cost) > total * HIGH_COST_SHARE_THRESHOLD:
        savings = sum(r.cost_usd for r in high_cost) * 0.3
        pct = pct_of_cost(savings)
        opportunities.append(
            OptimizationOpportunity(
                category="rate-limiting",
                title="Apply stricter rate limiting",
                description=(
                    f"{len(high_cost)} high-cost requests detected. "
                    f"Stricter limits could save ${savings:.4f}."
                ),
                potential_savings=savings,
                potential_savings_pct=pct,
                priority="high" if pct > 15 else "medium",
            )
        )

    opportunities.sort(key=lambda o: (o.potential_savings_pct, o.potential_savings), reverse=True)
    return opportunities


def summarize(
    records: Sequence[UsageRecord],
    window: float = DEFAULT_WINDOW_SECONDS,
    now: Optional[float] = None,
) -> UsageSummary:
    """Request, cost, token, cache, fallback, error and latency figures for a window."""
    recent = _in_window(records, window, _resolve_now(now))
    if not recent:
        return UsageSummary(
            total_requests=0,
            total_cost=0.0,
            total_tokens=0,
            average_request_cost=0.0,
            cache_hit_rate=0.0,
            fallback_rate=0.0,
            error_rate=0.0,
            average_latency_ms=0.0,
            p95_latency_ms=0.0,
            estimated_savings_from_cache=0.0,
        )

    total = len(recent)
    total_cost = sum(r.cost_usd for r in recent)
    cache_hits = sum(1 for r in recent if r.cache_hit)
    remote = [r for r in recent if r.source == "remote"]
    # Each cache hit avoided roughly one average remote call.
    avg_remote_cost = sum(r.cost_usd for r in remote) / len(remote) if remote else 0.0
    latencies = [r.latency_ms for r in recent]

    return UsageSummary(
        total_requests=total,
        total_cost=total_cost,
        total_tokens=sum(r.tokens_used for r in recent),
        average_request_cost=total_cost / total,
        cache_hit_rate=cache_hits / total,
        fallback_rate=sum(1 for r in recent if r.source == "fallback") / total,
        error_rate=sum(1 for r in recent if not r.success) / total,
        average_latency_ms=sum(latencies) / total,
        p95_latency_ms=_compute_exact_percentile(latencies, 95),
        estimated_savings_from_cache=cache_hits * avg_remote_cost,
        requests_by_operation=dict(Counter(r.operation for r in recent)),
        requests_by_source=dict(Counter(r.source for r in recent)),
    )
