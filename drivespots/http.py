"""HTTP transport with timeouts, optional backoff and upstream error mapping."""
from __future__ import annotations

import json
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from . import config

logger = logging.getLogger(__name__)

T = TypeVar("T")

KINDS = ("places", "routes", "isoline")


class UpstreamError(RuntimeError):
    def __init__(self, status: Optional[int], body: str, url: Optional[str] = None) -> None:
        label = status if status is not None else "transport"
        super().__init__(f"Upstream error {label} from {url or 'upstream'}: {body[:300]}")
        self.status = status
        self.body = body
        self.url = url


class MissingApiKeyError(RuntimeError):
    pass


@dataclass
class RequestMetrics:
    network: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in KINDS})
    cache_hits: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in KINDS})
    failures: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in KINDS})
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _inc(self, bucket: Dict[str, int], kind: str) -> None:
        if kind not in bucket:
            raise ValueError(f"Unknown request kind: {kind}")
        with self._lock:
            bucket[kind] += 1

    def inc_network(self, kind: str) -> None:
        self._inc(self.network, kind)

    def inc_cache_hit(self, kind: str) -> None:
        self._inc(self.cache_hits, kind)

    def inc_failure(self, kind: str) -> None:
        self._inc(self.failures, kind)

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {
                "network": dict(self.network),
                "cache_hits": dict(self.cache_hits),
                "failures": dict(self.failures),
            }


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2


def call_with_retry(policy: RetryPolicy, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    attempts = max(1, int(policy.max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except UpstreamError as exc:
            if attempt >= attempts:
                raise
            logger.warning("Retrying after upstream failure (attempt %s): %s", attempt, exc)
    raise RuntimeError("Unexpected retry loop exit")


class HttpClient:
    def __init__(
        self,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        retry_max: int = config.HTTP_RETRY_MAX,
        backoff_base: float = config.HTTP_BACKOFF_BASE,
        backoff_max: float = config.HTTP_BACKOFF_MAX,
    ) -> None:
        self.timeout = timeout
        self.retry_max = max(1, int(retry_max))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.session = requests.Session()

    def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        merged = {"Content-Type": "application/json"}
        if headers:
            merged.update(headers)
        payload = json.dumps(body, ensure_ascii=False).encode("utf-8")
        return self._request(
            lambda: self.session.post(url, data=payload, headers=merged, timeout=self.timeout),
            url,
        )

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        merged = {"Accept": "application/json"}
        if headers:
            merged.update(headers)
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        return self._request(
            lambda: self.session.get(url, params=clean, headers=merged, timeout=self.timeout),
            url,
        )

    def _request(self, send: Callable[[], requests.Response], url: str) -> Dict[str, Any]:
        for attempt in range(1, self.retry_max + 1):
            try:
                resp = send()
            except requests.RequestException as exc:
                logger.warning("Transport failure for %s (attempt %s): %s", url, attempt, exc)
                if attempt >= self.retry_max:
                    raise UpstreamError(None, str(exc), url) from exc
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if status == 200:
                try:
                    return resp.json()
                except ValueError as exc:
                    logger.error("Non-JSON response from %s", url)
                    raise UpstreamError(status, "non-json response", url) from exc

            if status in (429, 500, 502, 503, 504):
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    raise UpstreamError(status, _safe_text(resp), url)
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable
            logger.error("HTTP %s from %s", status, url)
            raise UpstreamError(status, _safe_text(resp), url)

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True


def _safe_text(resp: requests.Response) -> str:
    try:
        return resp.text or ""
    except Exception:
        return ""
