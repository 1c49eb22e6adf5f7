"""
Retry/backoff and rate-limit-aware HTTP request helper.
All Jira and Tempo calls go through perform_request_with_retries; storage.cache layers GET caching on top.

Only GET is treated as idempotent. Other methods are sent again only when the request never
reached the server (connection failure) or the server refused it with 429.
"""

import os
import time
import random
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import requests
from loguru import logger

DEFAULT_TIMEOUT = 30.0
MAX_WAIT_SECONDS = 300.0
RETRY_STATUSES = (429, 503)


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else None


class RetryPolicy:
    """Attempt count, backoff shape and request timeout. Unset values fall back to the call's own arguments."""

    def __init__(
        self,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_jitter: Optional[float] = None,
        max_backoff: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_jitter = backoff_jitter
        self.max_backoff = max_backoff
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> 'RetryPolicy':
        """TIMESHEET_MAX_RETRIES, TIMESHEET_BACKOFF_BASE, TIMESHEET_BACKOFF_JITTER, TIMESHEET_MAX_BACKOFF and TIMESHEET_HTTP_TIMEOUT."""
        max_retries = os.getenv("TIMESHEET_MAX_RETRIES")
        return cls(
            max_retries=int(max_retries) if max_retries else None,
            backoff_base=_env_float("TIMESHEET_BACKOFF_BASE"),
            backoff_jitter=_env_float("TIMESHEET_BACKOFF_JITTER"),
            max_backoff=_env_float("TIMESHEET_MAX_BACKOFF"),
            timeout=_env_float("TIMESHEET_HTTP_TIMEOUT"),
        )

    def update(self, **overrides):
        for name, value in overrides.items():
            if value is not None:
                setattr(self, name, value)


# read again by the CLI once .env is loaded; CLI flags are applied on top through configure_retry
_policy = RetryPolicy.from_env()


def configure_retry(
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
):
    """Override the process-wide retry policy (e.g. from CLI flags); None leaves a value unchanged."""
    _policy.update(
        max_retries=int(max_retries) if max_retries is not None else None,
        backoff_base=float(backoff_base) if backoff_base is not None else None,
        backoff_jitter=float(backoff_jitter) if backoff_jitter is not None else None,
        max_backoff=float(max_backoff) if max_backoff is not None else None,
        timeout=float(timeout) if timeout is not None else None,
    )


def configure_retry_from_env():
    """Re-read the TIMESHEET_* retry variables, e.g. after a .env file has been loaded."""
    configure_retry(**vars(RetryPolicy.from_env()))


def retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Retry-After is either a number of seconds or an HTTP date."""
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _numeric_header(headers: Dict[str, Any], name: str, cast):
    try:
        value = headers.get(name)
        return cast(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _response_body(resp):
    if resp.status_code == 204:
        return None
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def _throttle_wait(resp) -> Optional[float]:
    """Seconds the server asked us to wait, or None when the response is not a throttle."""
    headers = getattr(resp, 'headers', None) or {}
    retry_after = retry_after_seconds(headers.get('Retry-After'))
    if retry_after is not None:
        return retry_after
    remaining = _numeric_header(headers, 'X-RateLimit-Remaining', int)
    reset = _numeric_header(headers, 'X-RateLimit-Reset', float)
    if remaining is not None and remaining <= 0:
        return max(0.0, reset - time.time()) if reset else 0.0
    if resp.status_code in RETRY_STATUSES:
        return 0.0
    return None


def _resend_allowed(method: str, error: Optional[requests.RequestException] = None, status: int = 0) -> bool:
    """A non-GET request may only be repeated when the server cannot have acted on it."""
    if method == 'GET':
        return True
    if error is not None:
        # a read timeout means the request was delivered and may have been applied
        return isinstance(error, requests.ConnectionError)
    return status == 429


def _result(response: Any, status: int) -> Dict[str, Any]:
    return {'response': response, 'status': status, 'timestamp': time.time()}


def perform_request_with_retries(
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    cache,
    cache_key: str,
    min_wait: float,
    max_retries: int,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    method: str = 'GET',
    json_body: Any = None,
) -> Dict[str, Any]:
    """Perform a request, retrying on transport errors, 429/503 and exhausted rate limits.

    GET is retried on any of these. Other methods are retried only on connection failures and 429,
    so a worklog is never created twice. Returns {'response': body, 'status': int, 'timestamp': float};
    status 0 means no response was received. Only successful GET responses are written to the cache.
    """
    method = method.upper()
    attempts = int(_policy.max_retries or max_retries or 3)
    backoff = float(backoff_base if backoff_base is not None else (min_wait or _policy.backoff_base or 0.5))
    if backoff_jitter is not None:
        jitter = float(backoff_jitter)
    elif _policy.backoff_jitter is not None:
        jitter = float(_policy.backoff_jitter)
    else:
        jitter = backoff
    cap = float(max_backoff if max_backoff is not None else (_policy.max_backoff or 120.0))
    timeout = float(_policy.timeout or DEFAULT_TIMEOUT)

    last = _result(None, 0)
    for attempt in range(attempts):
        if attempt > 0:
            time.sleep(min(backoff + random.uniform(0, jitter), cap))
            backoff = min(backoff * 2, cap)
        try:
            resp = requests.request(method, url, headers=headers or {}, params=params or {}, json=json_body, timeout=timeout)
        except requests.RequestException as ex:
            logger.debug("{} {} attempt {} failed: {}", method, url, attempt + 1, ex)
            last = _result(str(ex), 0)
            if not _resend_allowed(method, error=ex):
                return last
            continue

        status = resp.status_code
        if 200 <= status < 300:
            body = _response_body(resp)
            if method == 'GET' and cache is not None and cache_key:
                cache.set(cache_key, body, status)
            return _result(body, status)

        wait_for = _throttle_wait(resp)
        if wait_for is None or not _resend_allowed(method, status=status):
            return _result(_response_body(resp), status)
        wait_for = min(wait_for + random.uniform(0, jitter), MAX_WAIT_SECONDS)
        logger.debug("rate limited by {} (status {}), waiting {:.1f}s", url, status, wait_for)
        time.sleep(wait_for)
        last = _result(getattr(resp, 'text', None), status)
    return last


__all__ = ["RetryPolicy", "configure_retry", "configure_retry_from_env", "perform_request_with_retries", "retry_after_seconds"]
