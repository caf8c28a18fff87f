"""
Async client for the Gemini generateContent REST endpoint.

Design constraints:
- Do NOT use cloud-specific SDKs; plain HTTP via httpx
- Every failure is returned as a classified error, never raised
- Per-attempt timeout, bounded retries with exponential backoff

Outbound request:
    POST {api_base}/models/{model}:generateContent
    x-goog-api-key: <key>
    {"contents": [...], "generationConfig": {...}}
"""
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from wizard_ai.core.config import Settings
from wizard_ai.core.logging import get_logger
from wizard_ai.core.metrics import (
    record_remote_error,
    record_retry_attempt,
    record_tokens_and_cost,
)
from wizard_ai.services.ai.errors import (
    ClassifiedError,
    ConfigurationError,
    ErrorKind,
    RemoteCallResult,
)
from wizard_ai.services.ai.prompts import (
    build_analysis_prompt,
    build_enhancement_prompt,
    build_suggestions_prompt,
)
from wizard_ai.services.ai.sanitization import is_valid_api_key, sanitize_input
from wizard_ai.services.ai.schema import (
    PromptEnhancement,
    SchemaValidationError,
    WizardState,
    parse_enhancement_text,
    validate_analysis_payload,
    validate_suggestions_payload,
)
from wizard_ai.services.usage.pricing import calculate_cost, estimate_tokens

logger = get_logger(__name__)

ENHANCEMENT_TIMEOUT_SECONDS = 8.0

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class RemoteRequest:
    """One logical call to the remote model."""

    operation: str
    prompt: str
    timeout_s: float
    json_output: bool = True
    validator: Optional[Callable[[Any], Any]] = None
    model: Optional[str] = None


def classify_status(status_code: int, body: str = "") -> Optional[ClassifiedError]:
    """Map an HTTP status to a ClassifiedError (None for 2xx)."""
    if 200 <= status_code < 300:
        return None
    detail = body[:200] if body else ""
    if status_code in (401, 403):
        return ClassifiedError(
            ErrorKind.INVALID_API_KEY,
            f"Provider rejected API key (HTTP {status_code}) {detail}".strip(),
            retryable=False,
            status_code=status_code,
        )
    if status_code == 429 or status_code >= 500:
        return ClassifiedError(
            ErrorKind.API_ERROR,
            f"Provider error (HTTP {status_code}) {detail}".strip(),
            retryable=True,
            status_code=status_code,
        )
    return ClassifiedError(
        ErrorKind.API_ERROR,
        f"Request rejected (HTTP {status_code}) {detail}".strip(),
        retryable=False,
        status_code=status_code,
    )


class LLMClient:
    """Async HTTP client for remote AI calls."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFunc = asyncio.sleep,
        sanitizer: Callable[[str], str] = sanitize_input,
    ):
        if not settings.api_key or not is_valid_api_key(settings.api_key):
            raise ConfigurationError("Gemini API key is missing or malformed")

        self.settings = settings
        self.api_base = settings.api_base.rstrip("/")
        self._api_key = settings.api_key
        self._http_client = http_client
        self._transport = transport
        self._sleep = sleep
        self._sanitize = sanitizer

    def _build_payload(self, request: RemoteRequest) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": self.settings.temperature,
            "maxOutputTokens": self.settings.max_output_tokens,
        }
        if request.json_output:
            generation_config["responseMimeType"] = "application/json"
        return {
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": generation_config,
        }

    async def _post(self, model: str, payload: Dict[str, Any], timeout: float) -> httpx.Response:
        """Low-level POST helper."""
        url = f"{self.api_base}/models/{model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self._api_key,
        }
        if self._http_client is not None:
            return await self._http_client.post(url, headers=headers, json=payload, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.post(url, headers=headers, json=payload)

    async def _attempt(self, request: RemoteRequest, model: str) -> Tuple[Any, Dict[str, Any]]:
        """
        Run a single attempt.

        Returns:
            (validated value, usage metadata dict)

        Raises:
            ClassifiedError for every failure mode.
        """
        payload = self._build_payload(request)
        try:
            response = await asyncio.wait_for(
                self._post(model, payload, request.timeout_s),
                timeout=request.timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ClassifiedError(
                ErrorKind.TIMEOUT_ERROR,
                f"Request timed out after {request.timeout_s}s",
                retryable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise ClassifiedError(
                ErrorKind.NETWORK_ERROR,
                f"Network failure: {exc}",
                retryable=True,
            ) from exc

        status_error = classify_status(response.status_code, response.text)
        if status_error is not None:
            raise status_error

        invalid_retryable = self.settings.retry_invalid_response
        try:
            data = response.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
            if not isinstance(text, str):
                raise TypeError("candidate text is not a string")
            body: Any = json.loads(text) if request.json_output else text
            value = request.validator(body) if request.validator else body
        except (ValueError, KeyError, IndexError, TypeError, SchemaValidationError) as exc:
            raise ClassifiedError(
                ErrorKind.INVALID_RESPONSE,
                f"Invalid response body: {exc}",
                retryable=invalid_retryable,
            ) from exc

        usage = data.get("usageMetadata") or {}
        if not isinstance(usage, dict):
            usage = {}
        usage = dict(usage, _text=text)
        return value, usage

    def _token_usage(self, prompt: str, usage: Dict[str, Any]) -> Tuple[int, int]:
        input_tokens = usage.get("promptTokenCount")
        output_tokens = usage.get("candidatesTokenCount")
        if input_tokens is None or output_tokens is None:
            # No usage metadata: estimate from text length.
            return estimate_tokens(prompt), estimate_tokens(usage.get("_text", ""))
        return int(input_tokens), int(output_tokens)

    async def call(self, request: RemoteRequest) -> RemoteCallResult:
        """
        Call the remote model with retries.

        At most `settings.max_retries` attempts are made; the delay before
        attempt n+1 is backoff_base * 2**(n-1). Non-retryable errors return
        immediately. asyncio.CancelledError is never caught.
        """
        model = request.model or self.settings.model
        max_attempts = self.settings.max_retries
        base_delay = self.settings.backoff_base_seconds

        for attempt in range(1, max_attempts + 1):
            start = time.time()
            try:
                value, usage = await self._attempt(request, model)
            except ClassifiedError as err:
                record_remote_error(request.operation, err.kind.value)
                logger.warning(
                    "llm_attempt_failed",
                    operation=request.operation,
                    model=model,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    kind=err.kind.value,
                    retryable=err.retryable,
                    status_code=err.status_code,
                    error=str(err),
                    duration_ms=round((time.time() - start) * 1000.0, 2),
                )
                if not err.retryable or attempt >= max_attempts:
                    return RemoteCallResult(error=err, model=model, attempts=attempt)

                delay = base_delay * (2 ** (attempt - 1))
                record_retry_attempt(request.operation, err.kind.value)
                logger.info(
                    "llm_retry_scheduled",
                    operation=request.operation,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                )
                await self._sleep(delay)
                continue

            input_tokens, output_tokens = self._token_usage(request.prompt, usage)
            tokens = input_tokens + output_tokens
            cost_usd = calculate_cost(model, input_tokens, output_tokens)
            record_tokens_and_cost(request.operation, model, tokens, cost_usd)
            logger.info(
                "llm_call_succeeded",
                operation=request.operation,
                model=model,
                attempt=attempt,
                tokens=tokens,
                cost_usd=cost_usd,
                duration_ms=round((time.time() - start) * 1000.0, 2),
            )
            return RemoteCallResult(
                value=value,
                model=model,
                tokens_used=tokens,
                cost_usd=cost_usd,
                attempts=attempt,
            )

        # max_retries >= 1 is enforced by Settings.
        raise AssertionError("unreachable")

    async def analyze_project(self, description: str) -> RemoteCallResult:
        """Classify a free-text project description into a ProjectAnalysis."""
        prompt = build_analysis_prompt(self._sanitize(description))
        return await self.call(
            RemoteRequest(
                operation="analysis",
                prompt=prompt,
                timeout_s=self.settings.timeout_seconds,
                validator=validate_analysis_payload,
            )
        )

    async def suggest_improvements(self, state: WizardState) -> RemoteCallResult:
        """Get 3-5 DesignSuggestions for the current wizard selections."""
        prompt = self._sanitize(build_suggestions_prompt(state))
        return await self.call(
            RemoteRequest(
                operation="suggestions",
                prompt=prompt,
                timeout_s=self.settings.timeout_seconds,
                validator=validate_suggestions_payload,
            )
        )

    async def enhance_prompt(self, prompt: str) -> RemoteCallResult:
        """Expand a basic build prompt with professional sections (pro model, plain text)."""
        sanitized = self._sanitize(prompt)

        def _validate(text: Any) -> PromptEnhancement:
            return parse_enhancement_text(text, prompt)

        return await self.call(
            RemoteRequest(
                operation="enhancement",
                prompt=build_enhancement_prompt(sanitized),
                timeout_s=ENHANCEMENT_TIMEOUT_SECONDS,
                json_output=False,
                validator=_validate,
                model=self.settings.pro_model,
            )
        )

