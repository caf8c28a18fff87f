"""
Shared fixtures: controllable clock, recorded sleeps and Gemini-style
responses served through httpx.MockTransport (no real network).
"""
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from wizard_ai.core.config import Settings

VALID_API_KEY = "AIza" + "A" * 35


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordedSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def gemini_response(
    payload: Any,
    prompt_tokens: Optional[int] = 40,
    output_tokens: Optional[int] = 60,
    status_code: int = 200,
) -> httpx.Response:
    """Build a generateContent response whose candidate text is `payload`."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    body: Dict[str, Any] = {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}],
    }
    if prompt_tokens is not None and output_tokens is not None:
        body["usageMetadata"] = {
            "promptTokenCount": prompt_tokens,
            "candidatesTokenCount": output_tokens,
            "totalTokenCount": prompt_tokens + output_tokens,
        }
    return httpx.Response(status_code, json=body)


class ScriptedTransport:
    """
    Callable for httpx.MockTransport that serves responses in order.

    Items may be httpx.Response objects, exceptions (raised) or callables
    taking the request. The last item repeats once the script is exhausted.
    """

    def __init__(self, *script: Any):
        self.script = list(script)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.script) - 1)
        item = self.script[index]
        if isinstance(item, Exception):
            raise item
        if callable(item) and not isinstance(item, httpx.Response):
            return item(request)
        return item

    @property
    def calls(self) -> int:
        return len(self.requests)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


ANALYSIS_PAYLOAD = {
    "projectType": "Portfolio",
    "designStyle": "minimalist",
    "colorTheme": "monochrome-modern",
    "reasoning": "Portfolios benefit from a clean layout",
    "confidence": 0.9,
    "suggestedComponents": ["carousel"],
    "suggestedAnimations": ["fade-in"],
}

SUGGESTIONS_PAYLOAD = {
    "suggestions": [
        {
            "type": "warning",
            "message": "Too many animations",
            "reasoning": "Hurts performance",
            "autoFixable": False,
            "severity": "medium",
        }
    ]
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded_sleep() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {"api_key": VALID_API_KEY}
        values.update(overrides)
        return Settings(**values)

    return _make
