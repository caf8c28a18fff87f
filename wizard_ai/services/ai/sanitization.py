"""
PII scrubbing for text sent to the remote AI service.
"""
import re
from typing import List, Pattern, Tuple

# Applied in order: URLs and long tokens go before cards and phones so that
# digits inside them are not matched twice.
_PII_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[email]"),
    (
        re.compile(
            r"https?://\S+[?&](?:token|key|api_key|apikey|auth|secret)=[^\s&]+",
            re.IGNORECASE,
        ),
        "[url-with-token]",
    ),
    (re.compile(r"\b[a-zA-Z0-9_-]{32,}\b"), "[token]"),
    (re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"), "[card]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[ssn]"),
    (re.compile(r"(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}"), "[phone]"),
    (re.compile(r"\+\d{1,3}[-.\s]?\d{1,4}[-.\s]?\d{1,4}[-.\s]?\d{1,9}\b"), "[phone]"),
    (re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "[ip]"),
]

_API_KEY_RE = re.compile(r"^AIza[0-9A-Za-z\-_]{35}$")


def sanitize_input(text: str) -> str:
    """Replace emails, tokens, card numbers, SSNs, phone numbers and IPs with placeholders."""
    if not text:
        return text
    sanitized = text
    for pattern, placeholder in _PII_PATTERNS:
        sanitized = pattern.sub(placeholder, sanitized)
    return sanitized


def is_valid_api_key(key: str) -> bool:
    """Check Gemini API key format (AIza + 35 url-safe chars)."""
    return bool(key) and _API_KEY_RE.match(key) is not None
