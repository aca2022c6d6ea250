"""Centralized retry / backoff helpers.

Provides a single small function ``run_with_retries`` that encapsulates
exponential backoff with jitter for the transient failure modes of the two
remote collaborators:

* GitHub REST responses with status 429 / 5xx, or 403 carrying a rate limit
  message (the response is returned to the caller once attempts run out),
* ``requests`` connection errors and timeouts,
* ``git`` subprocess failures whose output looks like a network hiccup.

Environment overrides:
  ISSUEFLOW_RETRY_ATTEMPTS (default 3)
  ISSUEFLOW_RETRY_BASE (seconds base, default 0.5)
  ISSUEFLOW_RETRY_MAX_SLEEP (cap in seconds, optional)

Anything else propagates immediately.
"""

from __future__ import annotations

import os
import random
import re
import subprocess  # nosec B404 - required for retrying git invocations
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import requests

from .logging import get_logger

T = TypeVar("T")

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
    "could not resolve host",
    "connection timed out",
    "connection reset",
    "temporarily unavailable",
)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
HTTP_FORBIDDEN = 403

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(os.environ.get("ISSUEFLOW_RETRY_ATTEMPTS", "3")))
    base_sleep: float = field(
        default_factory=lambda: float(os.environ.get("ISSUEFLOW_RETRY_BASE", "0.5"))
    )


def is_transient(output: str) -> bool:
    out_lower = (output or "").lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def _response_hint(response: Any) -> str:
    headers = getattr(response, "headers", None) or {}
    retry_after = headers.get("Retry-After") if hasattr(headers, "get") else None
    if retry_after:
        return f"Retry-After: {retry_after}"
    return str(getattr(response, "text", "") or "")


def should_retry_response(response: Any) -> bool:
    status = getattr(response, "status_code", None)
    if status in RETRYABLE_STATUS:
        return True
    return status == HTTP_FORBIDDEN and is_transient(str(getattr(response, "text", "") or ""))


def _compute_sleep(attempt: int, cfg: RetryConfig, out: str) -> float:
    explicit = _extract_explicit_backoff(out)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("ISSUEFLOW_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def _sleep(attempt: int, attempts: int, cfg: RetryConfig, hint: str, reason: str) -> None:
    sleep_for = _compute_sleep(attempt, cfg, hint)
    get_logger().warning(
        f"[retry] transient {reason}, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
        operation="retry",
        attempt=attempt,
    )
    time.sleep(sleep_for)


def run_with_retries(fn: Callable[[], T], *, cfg: RetryConfig | None = None) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        last = attempt >= attempts
        try:
            result = fn()
        except subprocess.CalledProcessError as exc:
            out = exc.output or ""
            if last or not is_transient(out):
                raise
            _sleep(attempt, attempts, cfg, out, "git failure")
            continue
        except (requests.ConnectionError, requests.Timeout) as exc:
            if last:
                raise
            _sleep(attempt, attempts, cfg, str(exc), exc.__class__.__name__)
            continue
        if not last and should_retry_response(result):
            status = getattr(result, "status_code", None)
            _sleep(attempt, attempts, cfg, _response_hint(result), f"HTTP {status}")
            continue
        return result
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "run_with_retries", "is_transient", "should_retry_response"]
