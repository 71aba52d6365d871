"""Network utilities for HTTP requests, rate limiting, and session management.

Provides centralized HTTP session with retries, per-source rate limiting,
and translation of transport outcomes into the archive error taxonomy
(transient, upstream, cancelled).
"""
from __future__ import annotations

import json
import logging
import random
import threading
import time
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..model import TransientNetworkError, UpstreamError
from .cancel import CancelToken
from .config import get_network_config

logger = logging.getLogger(__name__)

# Global session (lazy-initialized)
_SESSION: Optional[requests.Session] = None

# Map URL hostnames to source keys for rate limiting and policies
PROVIDER_HOST_MAP: Dict[str, tuple[str, ...]] = {
    "smithsonian": ("api.si.edu", "ids.si.edu"),
    "europeana": ("api.europeana.eu", "iiif.europeana.eu"),
}

# Statuses worth another attempt; everything else >= 400 is final
RETRYABLE_STATUSES = (429, 502, 503, 504)

# Upstream bodies are kept for warnings and logs, not in full
MAX_ERROR_BODY_CHARS = 2000


class RateLimiter:
    """Simple per-source rate limiter with jitter, using monotonic time."""

    def __init__(self, min_interval_s: float = 0.0, jitter_s: float = 0.0):
        self.min_interval_s = max(0.0, float(min_interval_s or 0.0))
        self.jitter_s = max(0.0, float(jitter_s or 0.0))
        self._last_ts = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Wait until the minimum interval has passed since the last request."""
        if self.min_interval_s <= 0 and self.jitter_s <= 0:
            return

        with self._lock:
            now = time.monotonic()
            jitter = random.uniform(0.0, self.jitter_s) if self.jitter_s > 0 else 0.0
            next_ready = self._last_ts + self.min_interval_s + jitter
            sleep_s = next_ready - now

            if sleep_s > 0:
                time.sleep(sleep_s)
                now = time.monotonic()

            self._last_ts = now


# Per-source rate limiter instances
_RATE_LIMITERS: Dict[str, RateLimiter] = {}


def get_provider_for_url(url: str) -> Optional[str]:
    """Determine the source key for a given URL.

    Args:
        url: URL to check

    Returns:
        Source key or None if not recognized
    """
    try:
        host = urlparse(url).netloc.lower()
    except Exception:
        return None

    if ":" in host:
        host = host.split(":", 1)[0]

    def _host_matches(h: str, part: str) -> bool:
        return h == part or h.endswith("." + part)

    for provider, host_parts in PROVIDER_HOST_MAP.items():
        for part in host_parts:
            if _host_matches(host, part):
                return provider

    return None


def get_rate_limiter(provider_key: Optional[str]) -> Optional[RateLimiter]:
    """Get or create a rate limiter for a source.

    Args:
        provider_key: Source identifier

    Returns:
        RateLimiter instance or None if no rate limiting configured
    """
    if not provider_key:
        return None

    net = get_network_config(provider_key)
    delay_s = float(net.get("delay_ms", 0) or 0) / 1000.0
    jitter_s = float(net.get("jitter_ms", 0) or 0) / 1000.0

    rl = _RATE_LIMITERS.get(provider_key)
    if rl is None or rl.min_interval_s != delay_s or rl.jitter_s != jitter_s:
        rl = RateLimiter(delay_s, jitter_s)
        _RATE_LIMITERS[provider_key] = rl

    return rl


def build_session() -> requests.Session:
    """Build a configured requests session with default headers.

    urllib3 retries are limited to read errors; status-based retries are
    decided in fetch_json so they can be interrupted by cancellation.

    Returns:
        Configured Session instance
    """
    session = requests.Session()

    retry = Retry(
        total=2,
        connect=0,
        read=1,
        status=0,
        backoff_factor=0.5,
        allowed_methods=frozenset(["GET", "HEAD"]),
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": "ArchiveExplorer/1.0 (+https://github.com/archive-explorer)",
        "Accept": "application/json",
        # Prefer English-language metadata where sources negotiate
        "Accept-Language": "en-US,en;q=0.9",
    })

    return session


def get_session() -> requests.Session:
    """Get the global HTTP session (lazy initialization).

    Returns:
        Configured Session instance
    """
    global _SESSION
    if _SESSION is None:
        _SESSION = build_session()
    return _SESSION


def _retry_after_seconds(resp: requests.Response) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or HTTP date."""
    retry_after = resp.headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        try:
            retry_dt = parsedate_to_datetime(retry_after)
            return max(0.0, (retry_dt - datetime.now(retry_dt.tzinfo)).total_seconds())
        except Exception:
            return None


def _truncate_body(resp: requests.Response) -> str:
    try:
        text = resp.text or ""
    except Exception:
        return ""
    return text[:MAX_ERROR_BODY_CHARS]


def fetch_json(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    provider: Optional[str] = None,
    cancel_token: Optional[CancelToken] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """HTTP GET returning a decoded JSON object, with pacing and backoff.

    Args:
        url: URL to request
        params: Query parameters
        headers: Additional headers
        provider: Source key for policies; inferred from the URL when omitted
        cancel_token: Token checked before each attempt, during back-off and
            after the response arrives
        timeout: Request timeout in seconds (provider config wins if set)

    Returns:
        Decoded JSON object

    Raises:
        CancellationError: The token was cancelled
        TransientNetworkError: Timeouts, connection errors or throttling
            persisted through all attempts
        UpstreamError: Non-retryable HTTP status or an undecodable body
    """
    token = cancel_token or CancelToken()
    session = get_session()
    provider = provider or get_provider_for_url(url)
    net = get_network_config(provider)

    max_attempts = max(1, int(net.get("max_attempts", 3) or 3))
    base_backoff = float(net.get("base_backoff_s", 1.0) or 1.0)
    backoff_mult = float(net.get("backoff_multiplier", 1.5) or 1.5)
    max_backoff = float(net.get("max_backoff_s", 30.0) or 30.0)
    net_timeout = net.get("timeout_s")
    effective_timeout = float(net_timeout) if net_timeout is not None else float(timeout or 15.0)

    rl = get_rate_limiter(provider)
    provider_headers = dict(net.get("headers", {}) or {})

    # Merge headers: session defaults < provider headers < per-call headers
    req_headers: Dict[str, str] = {}
    if provider_headers:
        req_headers.update({str(k): str(v) for k, v in provider_headers.items() if v is not None})
    if headers:
        req_headers.update(headers)

    def _backoff(attempt: int) -> float:
        return min(base_backoff * (backoff_mult ** (attempt - 1)), max_backoff)

    last_error = "unknown error"

    for attempt in range(1, max_attempts + 1):
        token.raise_if_cancelled(provider)
        if rl:
            rl.wait()

        try:
            resp = session.get(
                url,
                params=params,
                headers=req_headers or None,
                timeout=effective_timeout,
            )
        except requests.exceptions.Timeout:
            last_error = "request timed out"
            token.raise_if_cancelled(provider)
            if attempt < max_attempts:
                sleep_s = _backoff(attempt)
                logger.warning(
                    "Timeout for %s; sleeping %.1fs (attempt %d/%d)",
                    url, sleep_s, attempt, max_attempts
                )
                token.wait(sleep_s)
                continue
            break
        except requests.exceptions.RequestException as e:
            last_error = str(e)
            token.raise_if_cancelled(provider)
            if attempt < max_attempts:
                sleep_s = _backoff(attempt)
                logger.warning(
                    "Request error for %s: %s; sleeping %.1fs (attempt %d/%d)",
                    url, e, sleep_s, attempt, max_attempts
                )
                token.wait(sleep_s)
                continue
            break

        token.raise_if_cancelled(provider)

        if resp.status_code in RETRYABLE_STATUSES:
            last_error = f"HTTP {resp.status_code}"
            if attempt < max_attempts:
                sleep_s = _retry_after_seconds(resp) if resp.status_code == 429 else None
                sleep_s = min(sleep_s, max_backoff) if sleep_s is not None else _backoff(attempt)
                logger.warning(
                    "%s for %s; sleeping %.1fs (attempt %d/%d)",
                    resp.status_code, url, sleep_s, attempt, max_attempts
                )
                token.wait(sleep_s)
                continue
            break

        if resp.status_code >= 400:
            body = _truncate_body(resp)
            logger.warning("Non-retryable HTTP %s for %s; not retrying", resp.status_code, url)
            raise UpstreamError(
                f"HTTP {resp.status_code} from {url}",
                source=provider,
                status=resp.status_code,
                body=body,
            )

        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            logger.error("JSON decode error for %s: %s", url, e)
            raise UpstreamError(
                f"Invalid JSON from {url}",
                source=provider,
                status=resp.status_code,
                body=_truncate_body(resp),
            ) from e

        if not isinstance(data, dict):
            raise UpstreamError(
                f"Unexpected JSON payload from {url}",
                source=provider,
                status=resp.status_code,
            )
        return data

    token.raise_if_cancelled(provider)
    logger.error("Giving up after %d attempts for %s: %s", max_attempts, url, last_error)
    raise TransientNetworkError(f"{url} unreachable: {last_error}", source=provider)
