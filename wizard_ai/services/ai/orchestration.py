"""
AI Orchestration Layer.

Responsibilities:
- Serve repeated requests from the response cache
- Keep the remote service behind a circuit breaker and a per-caller rate limit
- Turn every remote failure into a deterministic fallback result
- Record exactly one UsageRecord per call

Per-request state machine:

    CheckCache -> Hit: return cached
               -> Miss: CheckCircuit -> Open: fallback
                                     -> Closed: CheckQueue -> Full: fallback
                                                           -> CheckRateLimit -> Limited: fallback
                                                                             -> Admitted: CallRemote
    CallRemote -> Ok: store in cache, return remote
               -> Err: fallback

The remote call itself runs inside a RequestQueue slot, so at most
`queue_max_concurrent` calls are in flight and premium callers go first.
Cache changes are flushed to the snapshot store after the outcome is known,
off the event loop's critical path.

Nothing but ConfigurationError and ValueError (empty input) escapes to the
caller. Concurrent identical misses each call the remote service.
"""
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from wizard_ai.core.cache import (
    BoundedCache,
    FileSnapshotStore,
    RedisSnapshotStore,
    SnapshotStore,
    hash_key,
)
from wizard_ai.core.circuit_breaker import CircuitBreaker
from wizard_ai.core.config import Settings
from wizard_ai.core.logging import generate_request_id, get_logger, set_caller_id, set_request_id
from wizard_ai.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_orchestration,
    record_rate_limited,
)
from wizard_ai.core.rate_limit import DEFAULT_CALLER_ID, RateLimiter, RateLimitStatus
from wizard_ai.core.request_queue import RequestQueue
from wizard_ai.services.ai.errors import (
    ClassifiedError,
    ConfigurationError,
    ErrorKind,
    RemoteCallResult,
)
from wizard_ai.services.ai.fallback import COMMON_PROJECT_ANALYSES, Fallbacks, warming_budget
from wizard_ai.services.ai.llm_client import LLMClient
from wizard_ai.services.ai.schema import (
    DesignSuggestion,
    OrchestrationOutcome,
    ProjectAnalysis,
    PromptEnhancement,
    WizardState,
)
from wizard_ai.services.usage.alerting import Alert, AlertManager, AlertThresholds
from wizard_ai.services.usage.ledger import UsageLedger, UsageRecord

logger = get_logger(__name__)

OPERATIONS = ("analysis", "suggestions", "enhancement")
CANCELLED = "CANCELLED"


@dataclass
class OrchestrationContext:
    """Shared state for one orchestration service."""

    settings: Settings
    cache: BoundedCache
    rate_limiter: RateLimiter
    circuit_breaker: CircuitBreaker
    ledger: UsageLedger
    request_queue: RequestQueue
    alerts: AlertManager
    clock: Callable[[], float] = time.time

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        snapshot_store: Optional[SnapshotStore] = None,
        clock: Callable[[], float] = time.time,
        notify: Optional[Callable[[Alert], None]] = None,
    ) -> "OrchestrationContext":
        if snapshot_store is None:
            if settings.cache_redis_url:
                snapshot_store = RedisSnapshotStore.from_url(settings.cache_redis_url)
            elif settings.cache_snapshot_path:
                snapshot_store = FileSnapshotStore(settings.cache_snapshot_path)
        return cls(
            settings=settings,
            cache=BoundedCache(
                max_size=settings.cache_max_entries,
                ttl_seconds=settings.cache_ttl_seconds,
                store=snapshot_store,
                clock=clock,
            ),
            rate_limiter=RateLimiter(
                limit=settings.rate_limit_count,
                window_seconds=settings.rate_limit_window_seconds,
                clock=clock,
            ),
            circuit_breaker=CircuitBreaker(
                name="gemini",
                failure_threshold=settings.circuit_failure_threshold,
                open_duration_seconds=settings.circuit_open_seconds,
                clock=clock,
            ),
            ledger=UsageLedger(),
            request_queue=RequestQueue(
                max_concurrent=settings.queue_max_concurrent,
                max_queue_size=settings.queue_max_size,
            ),
            alerts=AlertManager(
                thresholds=AlertThresholds(
                    error_rate_pct=settings.alert_error_rate_pct,
                    p95_latency_ms=settings.alert_p95_latency_ms,
                    cache_hit_rate_pct=settings.alert_cache_hit_rate_pct,
                    cost_spike_multiplier=settings.alert_cost_spike_multiplier,
                ),
                notify=notify,
                clock=clock,
            ),
            clock=clock,
        )


@dataclass
class _Operation:
    """Everything _run needs to know about one operation call."""

    name: str
    cache_key: str
    remote: Callable[[], Awaitable[RemoteCallResult]]
    fallback: Callable[[], Any]
    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]


def _encode_model(value: Any) -> Any:
    return value.model_dump(mode="json")


def _encode_list(values: List[Any]) -> Any:
    return [v.model_dump(mode="json") for v in values]


class AIOrchestrationService:
    """
    Cache / circuit / queue / rate-limit / remote / fallback pipeline for the
    wizard's AI operations.

    `remote_client` may be None (no API key configured); every cache miss is
    then served by the fallback.
    """

    def __init__(
        self,
        context: OrchestrationContext,
        remote_client: Optional[LLMClient] = None,
        fallbacks: Optional[Fallbacks] = None,
    ):
        self.context = context
        self._remote = remote_client
        self._remote_disabled = remote_client is None

        fallbacks = fallbacks or Fallbacks()
        self._fallbacks: Dict[str, Callable] = {}
        for operation in OPERATIONS:
            fn = fallbacks.for_operation(operation)
            if fn is None:
                raise ConfigurationError(
                    f"No fallback configured for operation '{operation}'",
                    kind=ErrorKind.API_ERROR,
                )
            self._fallbacks[operation] = fn

    @property
    def remote_enabled(self) -> bool:
        return not self._remote_disabled

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def analyze_project(
        self,
        description: str,
        caller_id: str = DEFAULT_CALLER_ID,
        premium: bool = False,
    ) -> OrchestrationOutcome:
        """Project analysis for a free-text description. value: ProjectAnalysis."""
        if not description or not description.strip():
            raise ValueError("description must not be empty")

        op = _Operation(
            name="analysis",
            cache_key=f"analysis:{description.strip().lower()}",
            remote=lambda: self._remote.analyze_project(description),
            fallback=lambda: self._fallbacks["analysis"](description),
            encode=_encode_model,
            decode=ProjectAnalysis.model_validate,
        )
        return await self._run(op, caller_id, premium)

    async def suggest_improvements(
        self,
        state: Union[WizardState, Mapping[str, Any]],
        caller_id: str = DEFAULT_CALLER_ID,
        premium: bool = False,
    ) -> OrchestrationOutcome:
        """Design suggestions for the wizard selections. value: List[DesignSuggestion]."""
        if not state:
            raise ValueError("state must not be empty")
        if not isinstance(state, WizardState):
            state = WizardState.model_validate(state)

        fingerprint = json.dumps(state.model_dump(mode="json"), sort_keys=True)
        op = _Operation(
            name="suggestions",
            cache_key=f"suggestions:{hash_key(fingerprint)}",
            remote=lambda: self._remote.suggest_improvements(state),
            fallback=lambda: self._fallbacks["suggestions"](state),
            encode=_encode_list,
            decode=lambda raw: [DesignSuggestion.model_validate(item) for item in raw],
        )
        return await self._run(op, caller_id, premium)

    async def enhance_prompt(
        self,
        prompt: str,
        caller_id: str = DEFAULT_CALLER_ID,
        premium: bool = False,
    ) -> OrchestrationOutcome:
        """Enhanced build prompt. value: PromptEnhancement."""
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")

        op = _Operation(
            name="enhancement",
            cache_key=f"enhancement:{hash_key(prompt.strip())}",
            remote=lambda: self._remote.enhance_prompt(prompt),
            fallback=lambda: self._fallbacks["enhancement"](prompt),
            encode=_encode_model,
            decode=PromptEnhancement.model_validate,
        )
        return await self._run(op, caller_id, premium)

    async def clear_cache(self) -> None:
        cache = self.context.cache
        # Restore first so a later restore cannot bring the cleared entries back.
        await cache.restore()
        cache.clear()
        await cache.flush()
        logger.info("ai_orchestration_cache_cleared")

    def rate_limit_status(
        self,
        caller_id: str = DEFAULT_CALLER_ID,
        premium: bool = False,
    ) -> RateLimitStatus:
        return self.context.rate_limiter.check_limit(caller_id, premium)

    async def warm_cache(self) -> int:
        """Pre-load common project analyses, within the warming budget."""
        cache = self.context.cache
        await cache.restore()
        budget = warming_budget(cache.max_size, len(cache))
        entries = [(key, _encode_model(value)) for key, value in COMMON_PROJECT_ANALYSES[:budget]]
        written = cache.warm(entries)
        await cache.flush()
        return written

    def check_alerts(self) -> List[Alert]:
        """Evaluate alert thresholds against the usage ledger. Returns new alerts."""
        return self.context.alerts.check(self.context.ledger.records())

    def get_stats(self) -> Dict[str, Any]:
        queue = self.context.request_queue.stats()
        return {
            "cache": self.context.cache.stats(),
            "circuit_breaker": self.context.circuit_breaker.get_metrics(),
            "queue": {
                "active": queue.active,
                "waiting": queue.waiting,
                "completed": queue.completed,
                "failed": queue.failed,
                "average_wait_ms": queue.average_wait_ms,
            },
            "alerts": self.context.alerts.stats(),
            "usage_records": len(self.context.ledger),
            "remote_enabled": self.remote_enabled,
        }

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, op: _Operation, caller_id: str, premium: bool) -> OrchestrationOutcome:
        outcome = await self._execute(op, caller_id, premium)
        cache = self.context.cache
        if cache.dirty:
            # A caller cancelled mid-flush still gets its snapshot written.
            await asyncio.shield(cache.flush())
        return outcome

    async def _execute(self, op: _Operation, caller_id: str, premium: bool) -> OrchestrationOutcome:
        set_request_id(generate_request_id())
        set_caller_id(caller_id)
        start = time.perf_counter()
        ctx = self.context
        probe_taken = False

        try:
            await ctx.cache.restore()
            value, found = ctx.cache.get(op.cache_key, decode=op.decode)
            if found:
                record_cache_hit(op.name)
                return self._finish(op.name, caller_id, start, value, "cache", model="cache")

            record_cache_miss(op.name)

            if self._remote_disabled:
                return self._fallback(op, caller_id, start, ErrorKind.INVALID_API_KEY.value)

            if not ctx.circuit_breaker.allow_request():
                logger.warning("ai_orchestration_circuit_open", operation=op.name)
                return self._fallback(op, caller_id, start, ErrorKind.CIRCUIT_OPEN.value)
            probe_taken = True

            # No await between this check and slot(), so slot() cannot refuse.
            if ctx.request_queue.is_full():
                ctx.circuit_breaker.release()
                probe_taken = False
                logger.warning(
                    "ai_orchestration_queue_full",
                    operation=op.name,
                    waiting=ctx.request_queue.waiting,
                )
                return self._fallback(op, caller_id, start, ErrorKind.QUEUE_FULL.value)

            status = ctx.rate_limiter.try_acquire(caller_id, premium)
            if status.is_limited:
                ctx.circuit_breaker.release()
                probe_taken = False
                record_rate_limited(op.name)
                logger.info(
                    "ai_orchestration_rate_limited",
                    operation=op.name,
                    reset_at=status.reset_at,
                )
                return self._fallback(op, caller_id, start, ErrorKind.RATE_LIMIT.value)

            try:
                async with ctx.request_queue.slot(caller_id, premium):
                    result = await op.remote()
            except Exception as exc:
                logger.error(
                    "ai_orchestration_remote_unexpected_error",
                    operation=op.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                result = RemoteCallResult(
                    error=ClassifiedError(ErrorKind.API_ERROR, f"Unexpected error: {exc}")
                )
            probe_taken = False
        except asyncio.CancelledError:
            if probe_taken:
                ctx.circuit_breaker.release()
            self._record(op.name, caller_id, start, "remote", "cancelled",
                         success=False, error_kind=CANCELLED)
            logger.info("ai_orchestration_cancelled", operation=op.name)
            raise

        if result.ok:
            ctx.circuit_breaker.record_success()
            ctx.cache.set(op.cache_key, op.encode(result.value))
            return self._finish(
                op.name,
                caller_id,
                start,
                result.value,
                "remote",
                model=result.model,
                tokens_used=result.tokens_used,
                cost_usd=result.cost_usd,
            )

        err = result.error
        ctx.circuit_breaker.record_failure()
        if err.kind == ErrorKind.INVALID_API_KEY:
            self._remote_disabled = True
            logger.error(
                "ai_orchestration_remote_disabled",
                operation=op.name,
                reason=str(err),
            )
        return self._fallback(op, caller_id, start, err.kind.value)

    def _fallback(
        self,
        op: _Operation,
        caller_id: str,
        start: float,
        error_kind: str,
    ) -> OrchestrationOutcome:
        try:
            value = op.fallback()
        except Exception as exc:
            self._record(op.name, caller_id, start, "fallback", "fallback",
                         success=False, error_kind=error_kind)
            logger.error(
                "ai_orchestration_fallback_failed",
                operation=op.name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        logger.info(
            "ai_orchestration_fallback_used",
            operation=op.name,
            error_kind=error_kind,
        )
        return self._finish(
            op.name, caller_id, start, value, "fallback",
            model="fallback", error_kind=error_kind,
        )

    def _finish(
        self,
        operation: str,
        caller_id: str,
        start: float,
        value: Any,
        source: str,
        model: str,
        tokens_used: int = 0,
        cost_usd: float = 0.0,
        error_kind: Optional[str] = None,
    ) -> OrchestrationOutcome:
        latency_ms = self._record(
            operation,
            caller_id,
            start,
            source,
            model,
            success=error_kind is None,
            error_kind=error_kind,
            tokens_used=tokens_used,
            cost_usd=cost_usd,
        )
        return OrchestrationOutcome(
            value=value,
            source=source,
            latency_ms=int(round(latency_ms)),
            cache_hit=source == "cache",
            error_kind=error_kind,
        )

    def _record(
        self,
        operation: str,
        caller_id: str,
        start: float,
        source: str,
        model: str,
        success: bool,
        error_kind: Optional[str] = None,
        tokens_used: int = 0,
        cost_usd: float = 0.0,
    ) -> float:
        latency_ms = (time.perf_counter() - start) * 1000.0
        self.context.ledger.append(
            UsageRecord(
                timestamp=self.context.clock(),
                operation=operation,
                model=model,
                cache_hit=source == "cache",
                latency_ms=latency_ms,
                tokens_used=tokens_used,
                cost_usd=cost_usd,
                success=success,
                source=source,
                caller_id=caller_id,
                error_kind=error_kind,
            )
        )
        record_orchestration(operation, source, latency_ms)
        logger.info(
            "ai_orchestration_completed",
            operation=operation,
            source=source,
            model=model,
            latency_ms=round(latency_ms, 2),
            error_kind=error_kind,
        )
        return latency_ms


def build_orchestration_service(
    settings: Optional[Settings] = None,
    snapshot_store: Optional[SnapshotStore] = None,
    fallbacks: Optional[Fallbacks] = None,
    alert_notify: Optional[Callable[[Alert], None]] = None,
    **client_kwargs: Any,
) -> AIOrchestrationService:
    """
    Wire an AIOrchestrationService from settings.

    Without an API key the service runs fallback-only. A malformed key raises
    ConfigurationError. `alert_notify` receives every alert raised by
    check_alerts(). Extra keyword arguments go to LLMClient (http_client,
    transport, sleep, sanitizer).
    """
    settings = settings or Settings.from_env()
    context = OrchestrationContext.from_settings(
        settings, snapshot_store=snapshot_store, notify=alert_notify
    )
    remote: Optional[LLMClient] = None
    if settings.api_key:
        remote = LLMClient(settings, **client_kwargs)
    else:
        logger.warning("ai_orchestration_no_api_key")
    return AIOrchestrationService(context, remote_client=remote, fallbacks=fallbacks)
