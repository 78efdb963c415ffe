"""
Retry/backoff and rate-limit-aware HTTP helper.
This module centralizes request retry logic so the GitHub sources and the scoring gateway share one policy.
Callers always get a result dict back; exhausted retries are logged, never raised.
"""

import os
import time
import random
import logging
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
import requests

logger = logging.getLogger(__name__)

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("DIGEST_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("DIGEST_BACKOFF_BASE", "2.0"))
DEFAULT_MAX_BACKOFF = float(os.getenv("DIGEST_MAX_BACKOFF", "120.0"))
DEFAULT_TIMEOUT = 30.0

# attempt classifications
SUCCESS = 'success'
RATE_LIMITED = 'rate_limited'
TRANSIENT = 'transient'
TERMINAL = 'terminal'
RETRYABLE = (RATE_LIMITED, TRANSIENT)

# runtime-overrides
_runtime_max_retries: Optional[int] = None
_runtime_backoff_base: Optional[float] = None
_runtime_max_backoff: Optional[float] = None


def configure_retry(max_retries: Optional[int] = None, backoff_base: Optional[float] = None, max_backoff: Optional[float] = None):
    """Configure retry/backoff defaults at runtime (e.g. from CLI)."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_max_backoff
    if max_retries is not None:
        _runtime_max_retries = int(max_retries)
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)
    if max_backoff is not None:
        _runtime_max_backoff = float(max_backoff)


def reset_retry_configuration():
    global _runtime_max_retries, _runtime_backoff_base, _runtime_max_backoff
    _runtime_max_retries = None
    _runtime_backoff_base = None
    _runtime_max_backoff = None


class RetryPolicy:
    """
    Per-call retry settings. Unset values resolve to the runtime overrides, then the environment defaults.
    ``sleep`` and ``uniform`` are injectable so tests never wait.
    """
    def __init__(
        self,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        max_backoff: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
        uniform: Optional[Callable[[float, float], float]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._max_backoff = max_backoff
        self.sleep = sleep or time.sleep
        self.uniform = uniform or random.uniform
        self.timeout = timeout

    @property
    def max_retries(self) -> int:
        if self._max_retries is not None:
            return int(self._max_retries)
        if _runtime_max_retries is not None:
            return int(_runtime_max_retries)
        return DEFAULT_MAX_RETRIES

    @property
    def backoff_base(self) -> float:
        if self._backoff_base is not None:
            return float(self._backoff_base)
        if _runtime_backoff_base is not None:
            return float(_runtime_backoff_base)
        return DEFAULT_BACKOFF_BASE

    @property
    def max_backoff(self) -> float:
        if self._max_backoff is not None:
            return float(self._max_backoff)
        if _runtime_max_backoff is not None:
            return float(_runtime_max_backoff)
        return DEFAULT_MAX_BACKOFF

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait before retry ``attempt`` (1-based)."""
        if retry_after is not None:
            return max(0.0, min(float(retry_after), self.max_backoff))
        return min(self.backoff_base ** attempt + self.uniform(0, 1), self.max_backoff)

    def __repr__(self):
        return f"RetryPolicy(max_retries={self.max_retries}, backoff_base={self.backoff_base}, max_backoff={self.max_backoff})"


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(raw_ra)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _safe_int_from_headers(headers, key: str) -> Optional[int]:
    try:
        val = headers.get(key)
        return int(val) if val is not None else None
    except (TypeError, ValueError):
        return None


def _safe_float_from_headers(headers, key: str) -> Optional[float]:
    try:
        val = headers.get(key)
        return float(val) if val is not None else None
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    rl_remaining = _safe_int_from_headers(headers, 'X-RateLimit-Remaining')
    rl_reset = _safe_float_from_headers(headers, 'X-RateLimit-Reset')
    return ra, rl_remaining, rl_reset


def _graphql_rate_limited(body: Any) -> bool:
    if not isinstance(body, dict):
        return False
    for err in body.get('errors') or []:
        if isinstance(err, dict) and str(err.get('type', '')).upper() == 'RATE_LIMITED':
            return True
    return False


def _looks_rate_limited(text: str) -> bool:
    return 'rate limit' in (text or '').lower()


def classify_response(resp, expect_json: bool = True):
    """
    Classify one HTTP response. Returns (classification, body).

    An HTML or otherwise non-JSON body on a 2xx reply is treated as transient when JSON was expected.
    """
    status = getattr(resp, 'status_code', 0)
    text = getattr(resp, 'text', '') or ''
    _, rl_remaining, _ = _parse_rate_headers(resp)

    if 200 <= status < 300:
        if not expect_json:
            return SUCCESS, text
        try:
            body = resp.json()
        except ValueError:
            return TRANSIENT, text
        if _graphql_rate_limited(body):
            return RATE_LIMITED, body
        return SUCCESS, body

    try:
        body = resp.json()
    except ValueError:
        body = text

    if status == 429:
        return RATE_LIMITED, body
    if status == 403 and ((rl_remaining is not None and rl_remaining <= 0) or _looks_rate_limited(text)):
        return RATE_LIMITED, body
    if status >= 500:
        return TRANSIENT, body
    return TERMINAL, body


def _retry_after_seconds(resp) -> Optional[float]:
    ra, rl_remaining, rl_reset = _parse_rate_headers(resp)
    if ra is not None:
        return ra
    if rl_remaining is not None and rl_remaining <= 0 and rl_reset:
        return max(0.0, rl_reset - time.time())
    return None


def _attempt_request_once(method: str, url: str, headers: Dict[str, str], params: Optional[Dict[str, Any]], json_body: Any, timeout: float, expect_json: bool) -> Dict[str, Any]:
    try:
        resp = requests.request(method, url, headers=headers or {}, params=params, json=json_body, timeout=timeout)
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as ex:
        return {'outcome': TRANSIENT, 'response': None, 'status': 0, 'error': str(ex), 'headers': {}, 'links': {}, 'retry_after': None}
    except requests.exceptions.RequestException as ex:
        return {'outcome': TERMINAL, 'response': None, 'status': 0, 'error': str(ex), 'headers': {}, 'links': {}, 'retry_after': None}

    outcome, body = classify_response(resp, expect_json=expect_json)
    return {
        'outcome': outcome,
        'response': body,
        'status': getattr(resp, 'status_code', 0),
        'error': None if outcome == SUCCESS else _short_error(body),
        'headers': dict(getattr(resp, 'headers', None) or {}),
        'links': dict(getattr(resp, 'links', None) or {}),
        'retry_after': _retry_after_seconds(resp) if outcome == RATE_LIMITED else None,
    }


def _short_error(body: Any) -> str:
    if isinstance(body, dict):
        if body.get('message'):
            return str(body['message'])
        errors = body.get('errors')
        if isinstance(errors, list) and errors:
            first = errors[0]
            return str(first.get('message') if isinstance(first, dict) else first)
    return str(body or '')[:200]


def perform_request_with_retries(
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    policy: Optional[RetryPolicy] = None,
    expect_json: bool = True,
) -> Dict[str, Any]:
    """
    Issue one HTTP request, retrying rate-limited and transient failures.

    Returns a dict with ``outcome``, ``response`` (parsed body), ``status``, ``headers``, ``links``,
    ``attempts`` and ``timestamp``. At most ``policy.max_retries`` retries follow the first attempt.
    """
    policy = policy or RetryPolicy()
    max_retries = policy.max_retries
    attempt = 0
    while True:
        result = _attempt_request_once(method, url, headers, params, json_body, policy.timeout, expect_json)
        result['attempts'] = attempt + 1
        result['timestamp'] = time.time()
        if result['outcome'] not in RETRYABLE:
            return result
        if attempt >= max_retries:
            logger.error("Giving up on %s %s after %d attempts (%s, status %s): %s", method, url, attempt + 1, result['outcome'], result['status'], result['error'])
            return result
        attempt += 1
        wait_seconds = policy.delay_for(attempt, result.get('retry_after'))
        if result['outcome'] == RATE_LIMITED:
            logger.warning("Rate limited on %s; retry %d/%d in %.1fs", url, attempt, max_retries, wait_seconds)
        else:
            logger.info("Transient failure on %s (status %s); retry %d/%d in %.1fs", url, result['status'], attempt, max_retries, wait_seconds)
        policy.sleep(wait_seconds)


def is_success(result: Dict[str, Any]) -> bool:
    return bool(result) and result.get('outcome') == SUCCESS


__all__ = [
    "RetryPolicy",
    "configure_retry",
    "reset_retry_configuration",
    "classify_response",
    "perform_request_with_retries",
    "is_success",
    "SUCCESS",
    "RATE_LIMITED",
    "TRANSIENT",
    "TERMINAL",
]
