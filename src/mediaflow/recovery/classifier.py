"""Error classification for tool recovery decisions.

Classifies a failed tool call into one of three categories:
- transient: Network issues, rate limits, overloaded upstreams - worth retrying
- recoverable: Tool-specific failure - apply a fallback or report
- fatal: Configuration/auth issues - cannot recover

Classification never fails: anything that matches no signature is
recoverable.
"""

from __future__ import annotations

import asyncio
import re
from enum import Enum
from typing import NamedTuple


class ErrorCategory(str, Enum):
    """Error categories for recovery decisions."""

    TRANSIENT = "transient"  # Retry with backoff
    RECOVERABLE = "recoverable"  # Fallback or report, never retried
    FATAL = "fatal"  # Abort retries immediately


class ClassificationResult(NamedTuple):
    """Result of error classification."""

    category: ErrorCategory
    reason: str
    status_code: int | None


TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
FATAL_STATUS_CODES = frozenset({401, 403})

# Each pattern is a tuple of (regex_pattern, reason)
TRANSIENT_PATTERNS: list[tuple[str, str]] = [
    (r"time(d)?\s*out|timeout|deadline\s*exceeded", "Operation timed out"),
    (r"network", "Network error"),
    (r"fetch\s*failed|failed\s*to\s*fetch", "Fetch operation failed"),
    (r"econnrefused|enotfound|econnreset|etimedout", "Network socket error"),
    (r"connection\s*(refused|reset|aborted)", "Network connection failed"),
    (r"internal", "Upstream internal error"),
    (r"temporarily\s*unavailable|service\s*unavailable", "Service unavailable"),
    (r"rate\s*limit(ed)?|too\s*many\s*requests", "Rate limited"),
    (r"quota\s*exceeded|resource\s*exhausted", "Quota exceeded"),
    (r"overloaded", "Upstream overloaded"),
]

FATAL_PATTERNS: list[tuple[str, str]] = [
    (r"unauthori[sz]ed|forbidden", "Authorization error"),
    (r"api\s*key", "Invalid or missing API key"),
    (r"authentication", "Authentication failed"),
    (r"not\s*configured", "Service not configured"),
    (r"missing\s*required", "Missing required configuration"),
    (r"invalid\s*session", "Invalid session"),
]

_STATUS_IN_MESSAGE = re.compile(r"\b(401|403|429|500|502|503|504)\b")


def _extract_status_code(error: BaseException | str) -> int | None:
    """Find an HTTP-like status code on an exception or in its message."""
    if isinstance(error, BaseException):
        for attr in ("status", "status_code", "code"):
            value = getattr(error, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
            if isinstance(value, str) and value.isdigit():
                return int(value)

    match = _STATUS_IN_MESSAGE.search(str(error))
    if match:
        return int(match.group(1))
    return None


def explain_error(error: BaseException | str, tool_name: str | None = None) -> ClassificationResult:
    """Classify an error and explain why.

    Args:
        error: The raised exception, or an error message.
        tool_name: Name of the failing tool. Accepted so per-tool rules can
            be layered on later; the built-in rules are tool-independent.

    Returns:
        ClassificationResult with category, reason, and detected status code.
    """
    message = str(error).lower().strip()
    status_code = _extract_status_code(error)

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ClassificationResult(ErrorCategory.TRANSIENT, "Operation timed out", status_code)
    if isinstance(error, ConnectionError):
        return ClassificationResult(ErrorCategory.TRANSIENT, "Network connection failed", status_code)

    # Transient signatures are checked before fatal ones.
    if status_code in TRANSIENT_STATUS_CODES:
        return ClassificationResult(ErrorCategory.TRANSIENT, f"HTTP {status_code}", status_code)
    for pattern, reason in TRANSIENT_PATTERNS:
        if re.search(pattern, message):
            return ClassificationResult(ErrorCategory.TRANSIENT, reason, status_code)

    if status_code in FATAL_STATUS_CODES:
        return ClassificationResult(ErrorCategory.FATAL, f"HTTP {status_code}", status_code)
    for pattern, reason in FATAL_PATTERNS:
        if re.search(pattern, message):
            return ClassificationResult(ErrorCategory.FATAL, reason, status_code)

    return ClassificationResult(ErrorCategory.RECOVERABLE, "Tool-specific failure", status_code)


def classify_error(error: BaseException | str, tool_name: str | None = None) -> ErrorCategory:
    """Classify an error into a recovery category.

    Args:
        error: The raised exception, or an error message.
        tool_name: Name of the failing tool.

    Returns:
        The ErrorCategory for the error. Never raises.
    """
    return explain_error(error, tool_name).category


def is_retryable_error(error: BaseException | str) -> bool:
    """Quick check if an error is worth retrying."""
    return classify_error(error) == ErrorCategory.TRANSIENT
