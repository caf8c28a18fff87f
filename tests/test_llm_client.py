"""
Unit tests for the Gemini remote client.

All HTTP traffic goes through httpx.MockTransport; retry delays are recorded
instead of slept.
"""
import asyncio
import json

import httpx
import pytest

from tests.conftest import (
    ANALYSIS_PAYLOAD,
    SUGGESTIONS_PAYLOAD,
    VALID_API_KEY,
    ScriptedTransport,
    gemini_response,
)
from wizard_ai.services.ai.errors import ConfigurationError, ErrorKind
from wizard_ai.services.ai.llm_client import LLMClient, RemoteRequest, classify_status
from wizard_ai.services.ai.schema import DesignSuggestion, ProjectAnalysis, PromptEnhancement


def _client(settings, script: ScriptedTransport, sleep) -> LLMClient:
    return LLMClient(settings, transport=script.transport(), sleep=sleep)


def test_client_rejects_malformed_api_key(settings_factory):
    with pytest.raises(ConfigurationError) as exc_info:
        LLMClient(settings_factory(api_key="not-a-key"))

    assert exc_info.value.kind == ErrorKind.INVALID_API_KEY
    assert exc_info.value.should_fallback is False


def test_client_rejects_missing_api_key(settings_factory):
    with pytest.raises(ConfigurationError):
        LLMClient(settings_factory(api_key=None))


@pytest.mark.parametrize(
    "status, kind, retryable",
    [
        (401, ErrorKind.INVALID_API_KEY, False),
        (403, ErrorKind.INVALID_API_KEY, False),
        (429, ErrorKind.API_ERROR, True),
        (500, ErrorKind.API_ERROR, True),
        (503, ErrorKind.API_ERROR, True),
        (400, ErrorKind.API_ERROR, False),
        (404, ErrorKind.API_ERROR, False),
    ],
)
def test_classify_status(status, kind, retryable):
    err = classify_status(status)

    assert err.kind == kind
    assert err.retryable is retryable
    assert err.status_code == status


def test_classify_status_success_is_none():
    assert classify_status(200) is None


@pytest.mark.asyncio
async def test_analyze_project_success(settings_factory, recorded_sleep):
    """A valid response is parsed into ProjectAnalysis with token usage and cost."""
    script = ScriptedTransport(gemini_response(ANALYSIS_PAYLOAD, prompt_tokens=100, output_tokens=50))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("A portfolio for my photography")

    assert result.ok
    assert isinstance(result.value, ProjectAnalysis)
    assert result.value.project_type == "Portfolio"
    assert result.value.suggested_components == ["carousel"]
    assert result.tokens_used == 150
    assert result.cost_usd > 0
    assert result.attempts == 1
    assert result.model == "gemini-2.5-flash"
    assert recorded_sleep.delays == []


@pytest.mark.asyncio
async def test_request_shape(settings_factory, recorded_sleep):
    """Outbound request hits generateContent with the key header and JSON mode."""
    script = ScriptedTransport(gemini_response(ANALYSIS_PAYLOAD))
    client = _client(settings_factory(temperature=0.3, max_output_tokens=256), script, recorded_sleep)

    await client.analyze_project("Contact me at jane@example.com about my store")

    request = script.requests[0]
    assert request.method == "POST"
    assert request.url.path.endswith("/models/gemini-2.5-flash:generateContent")
    assert request.headers["x-goog-api-key"] == VALID_API_KEY

    body = json.loads(request.content)
    assert body["generationConfig"] == {
        "temperature": 0.3,
        "maxOutputTokens": 256,
        "responseMimeType": "application/json",
    }
    prompt = body["contents"][0]["parts"][0]["text"]
    assert "[email]" in prompt
    assert "jane@example.com" not in prompt


@pytest.mark.asyncio
async def test_retry_bound_on_timeouts(settings_factory, recorded_sleep):
    """
    Always-timing-out provider: exactly 3 attempts, delays 1s then 2s, TIMEOUT_ERROR.

    Backoff runs only between attempts, so 3 attempts give exactly 2 sleeps,
    [1.0, 2.0]. The 4s step of the 1s/2s/4s series would precede a fourth
    attempt that max_retries=3 never makes; do not add it here.
    """
    script = ScriptedTransport(httpx.ReadTimeout("timed out"))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("landing page")

    assert not result.ok
    assert result.error.kind == ErrorKind.TIMEOUT_ERROR
    assert result.attempts == 3
    assert script.calls == 3
    assert recorded_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_per_attempt_timeout_enforced(settings_factory, recorded_sleep):
    """A hung provider is cut off by the per-attempt deadline."""

    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    client = LLMClient(settings_factory(timeout_ms=20, max_retries=1), sleep=recorded_sleep)
    client._post = hang

    result = await client.call(
        RemoteRequest(operation="analysis", prompt="x", timeout_s=0.02)
    )

    assert result.error.kind == ErrorKind.TIMEOUT_ERROR


@pytest.mark.asyncio
async def test_retry_then_success(settings_factory, recorded_sleep):
    script = ScriptedTransport(
        httpx.Response(503, text="unavailable"),
        httpx.ConnectError("connection refused"),
        gemini_response(ANALYSIS_PAYLOAD),
    )
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("online store")

    assert result.ok
    assert result.attempts == 3
    assert recorded_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_network_error_classified(settings_factory, recorded_sleep):
    script = ScriptedTransport(httpx.ConnectError("refused"))
    client = _client(settings_factory(max_retries=1), script, recorded_sleep)

    result = await client.analyze_project("blog")

    assert result.error.kind == ErrorKind.NETWORK_ERROR
    assert result.error.retryable is True


@pytest.mark.asyncio
async def test_invalid_api_key_not_retried(settings_factory, recorded_sleep):
    script = ScriptedTransport(httpx.Response(403, text="forbidden"))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("blog")

    assert result.error.kind == ErrorKind.INVALID_API_KEY
    assert script.calls == 1
    assert recorded_sleep.delays == []


@pytest.mark.asyncio
async def test_client_error_not_retried(settings_factory, recorded_sleep):
    script = ScriptedTransport(httpx.Response(400, text="bad request"))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("blog")

    assert result.error.kind == ErrorKind.API_ERROR
    assert script.calls == 1


@pytest.mark.asyncio
async def test_schema_invalid_response_not_retried_by_default(settings_factory, recorded_sleep):
    bad = dict(ANALYSIS_PAYLOAD, projectType="Spaceship")
    script = ScriptedTransport(gemini_response(bad))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("rocket site")

    assert result.error.kind == ErrorKind.INVALID_RESPONSE
    assert script.calls == 1


@pytest.mark.asyncio
async def test_invalid_response_retried_when_enabled(settings_factory, recorded_sleep):
    script = ScriptedTransport(
        gemini_response("not json at all"),
        gemini_response(ANALYSIS_PAYLOAD),
    )
    client = _client(settings_factory(retry_invalid_response=True), script, recorded_sleep)

    result = await client.analyze_project("blog")

    assert result.ok
    assert script.calls == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        dict(ANALYSIS_PAYLOAD, confidence=1.5),
        dict(ANALYSIS_PAYLOAD, reasoning=""),
        {"projectType": "Portfolio"},
    ],
)
async def test_analysis_validation_failures(settings_factory, recorded_sleep, payload):
    script = ScriptedTransport(gemini_response(payload))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("portfolio")

    assert result.error.kind == ErrorKind.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_missing_candidates_is_invalid_response(settings_factory, recorded_sleep):
    script = ScriptedTransport(httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.analyze_project("portfolio")

    assert result.error.kind == ErrorKind.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_suggest_improvements_success(settings_factory, recorded_sleep):
    from wizard_ai.services.ai.schema import WizardState

    script = ScriptedTransport(gemini_response(SUGGESTIONS_PAYLOAD))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.suggest_improvements(
        WizardState(project_type="Portfolio", animations=["fade-in", "slide-in"])
    )

    assert result.ok
    assert len(result.value) == 1
    assert isinstance(result.value[0], DesignSuggestion)
    assert result.value[0].auto_fixable is False
    prompt = json.loads(script.requests[0].content)["contents"][0]["parts"][0]["text"]
    assert "Animations: fade-in, slide-in" in prompt


@pytest.mark.asyncio
async def test_enhance_prompt_uses_pro_model_and_plain_text(settings_factory, recorded_sleep):
    enhanced = "Build a blog.\n\n## Accessibility\nWCAG\n\n## Security\nCSP"
    script = ScriptedTransport(gemini_response(enhanced, prompt_tokens=None, output_tokens=None))
    client = _client(settings_factory(), script, recorded_sleep)

    result = await client.enhance_prompt("Build a blog.")

    assert result.ok
    assert isinstance(result.value, PromptEnhancement)
    assert result.value.added_sections == ["Accessibility", "Security"]
    assert result.value.improvements == [
        "Added comprehensive accessibility requirements (WCAG 2.1 AA)",
        "Added security considerations",
    ]
    assert result.model == "gemini-2.5-pro"
    # No usageMetadata: tokens estimated at 4 characters per token.
    assert result.tokens_used > 0

    request = script.requests[0]
    assert request.url.path.endswith("/models/gemini-2.5-pro:generateContent")
    assert "responseMimeType" not in json.loads(request.content)["generationConfig"]


@pytest.mark.asyncio
async def test_cancellation_propagates(settings_factory):
    """CancelledError escapes the retry loop unchanged."""

    async def cancelled_sleep(seconds):
        raise asyncio.CancelledError()

    script = ScriptedTransport(httpx.Response(503, text="unavailable"))
    client = _client(settings_factory(), script, cancelled_sleep)

    with pytest.raises(asyncio.CancelledError):
        await client.analyze_project("blog")

    assert script.calls == 1
