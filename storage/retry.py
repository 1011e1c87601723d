"""
Retry/backoff and rate-limit-aware HTTP GET helper.
Only idempotent GETs go through here; the Jira client never retries POSTs.
"""

import os
import time
import random
import email.utils
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import requests

logger = logging.getLogger(__name__)

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("WORKLOG_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("WORKLOG_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("WORKLOG_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter is not None and _env_jitter != "" else None
DEFAULT_MAX_BACKOFF = float(os.getenv("WORKLOG_MAX_BACKOFF", "60.0"))

RETRYABLE_STATUSES = (429, 503)

# runtime-overrides
_runtime_backoff_base: Optional[float] = None
_runtime_backoff_jitter: Optional[float] = None
_runtime_max_backoff: Optional[float] = None


def configure_retry(backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None):
    """Configure backoff defaults at runtime (e.g. from CLI)."""
    global _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)
    if backoff_jitter is not None:
        _runtime_backoff_jitter = float(backoff_jitter)
    if max_backoff is not None:
        _runtime_max_backoff = float(max_backoff)


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except ValueError:
        pass
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


def _resolve_backoff_params():
    base = _runtime_backoff_base if _runtime_backoff_base is not None else DEFAULT_BACKOFF_BASE
    if _runtime_backoff_jitter is not None:
        jitter = _runtime_backoff_jitter
    elif DEFAULT_BACKOFF_JITTER is not None:
        jitter = DEFAULT_BACKOFF_JITTER
    else:
        jitter = base
    max_backoff = _runtime_max_backoff if _runtime_max_backoff is not None else DEFAULT_MAX_BACKOFF
    return float(base), float(jitter), float(max_backoff)


def _should_retry_response(resp) -> bool:
    headers = getattr(resp, 'headers', None) or {}
    if resp.status_code in RETRYABLE_STATUSES:
        return True
    if 200 <= resp.status_code < 300:
        return False
    if headers.get('Retry-After') is not None:
        return True
    remaining = _safe_int_from_headers(headers, 'X-RateLimit-Remaining')
    return remaining is not None and remaining <= 0


def _compute_wait_seconds(resp, backoff: float, jitter: float, max_backoff: float) -> float:
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    if ra is not None:
        return min(ra + random.uniform(0, jitter), max_backoff)
    return min(backoff + random.uniform(0, jitter), max_backoff)


def perform_request_with_retries(
    session: requests.Session,
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    timeout: float,
    max_retries: Optional[int] = None,
) -> requests.Response:
    """GET ``url`` with retries on 429/503, Retry-After, exhausted rate limits and transport errors.

    Returns the last response received (successful or not); the caller decides what a non-2xx means.
    Transport exceptions are re-raised once attempts are exhausted.
    """
    attempts = max(1, int(max_retries if max_retries is not None else DEFAULT_MAX_RETRIES))
    backoff, jitter, max_backoff = _resolve_backoff_params()

    for attempt in range(1, attempts + 1):
        try:
            resp = session.get(url, headers=headers, params=params, timeout=timeout)
        except requests.RequestException as ex:
            if attempt >= attempts:
                raise
            wait = _compute_wait_seconds(None, backoff, jitter, max_backoff)
            logger.warning("GET %s failed (%s); retry %d/%d in %.1fs", url, ex, attempt, attempts - 1, wait)
        else:
            if attempt >= attempts or not _should_retry_response(resp):
                return resp
            wait = _compute_wait_seconds(resp, backoff, jitter, max_backoff)
            logger.warning("GET %s returned %s; retry %d/%d in %.1fs", url, resp.status_code, attempt, attempts - 1, wait)
        time.sleep(wait)
        backoff = min(backoff * 2, max_backoff)

    raise RuntimeError("retry loop exited without a result")


__all__ = ["configure_retry", "perform_request_with_retries"]
