import logging
import threading
import time
from typing import Any

import requests
from requests.adapters import HTTPAdapter

from config.settings import (
    HTTP_RETRY_BACKOFF_SECONDS,
    HTTP_RETRY_LIMIT,
    HTTP_RETRY_STATUSES,
    HTTP_TIMEOUT_SECONDS,
    USER_AGENT,
)
from engine.errors import NetworkError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

_BODY_LOG_LIMIT = 500


class FetchClient:
    """JSON-over-HTTP client with a small, fixed retry budget.

    429/503/504 responses and network failures are retried ``retry_limit``
    times with a linear backoff of ``backoff_seconds * attempt``. Every other
    non-2xx status is terminal. Nothing is cached here.
    """

    def __init__(
        self,
        *,
        retry_limit=HTTP_RETRY_LIMIT,
        backoff_seconds=HTTP_RETRY_BACKOFF_SECONDS,
        timeout_seconds=HTTP_TIMEOUT_SECONDS,
        min_interval_seconds=0.0,
        user_agent=USER_AGENT,
        session=None,
        sleep=time.sleep,
    ) -> None:
        self.retry_limit = max(0, int(retry_limit))
        self.backoff_seconds = float(backoff_seconds)
        self.timeout_seconds = float(timeout_seconds)
        self.min_interval_seconds = max(0.0, float(min_interval_seconds))
        self.user_agent = user_agent
        self._sleep = sleep
        self._rate_lock = threading.Lock()
        self._last_request_ts = 0.0
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=8, pool_maxsize=16, max_retries=0)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session

    def _sleep_for_rate_limit(self) -> None:
        if self.min_interval_seconds <= 0:
            return
        with self._rate_lock:
            now = time.monotonic()
            wait_for = self.min_interval_seconds - (now - self._last_request_ts)
            if wait_for > 0:
                logger.debug("[FETCH] rate-limit sleep %.3fs", wait_for)
                self._sleep(wait_for)
            self._last_request_ts = time.monotonic()

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * attempt

    def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
        data: Any = None,
        timeout: float | None = None,
        retry_limit: int | None = None,
    ) -> Any:
        budget = self.retry_limit if retry_limit is None else max(0, int(retry_limit))
        request_headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if headers:
            request_headers.update(headers)

        attempt = 0
        while True:
            attempt += 1
            self._sleep_for_rate_limit()
            try:
                resp = self._session.request(
                    method,
                    url,
                    params=params,
                    headers=request_headers,
                    json=json,
                    data=data,
                    timeout=timeout or self.timeout_seconds,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt <= budget:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "[FETCH] network error url=%s attempt=%s delay=%.3fs error=%s",
                        url,
                        attempt,
                        delay,
                        exc,
                    )
                    self._sleep(delay)
                    continue
                logger.error("[FETCH] network failure url=%s attempts=%s error=%s", url, attempt, exc)
                raise NetworkError(f"Network failure for {url}: {exc}", url=url) from exc

            status = int(resp.status_code)
            if status in HTTP_RETRY_STATUSES and attempt <= budget:
                delay = self._backoff(attempt)
                logger.warning(
                    "[FETCH] retry url=%s status=%s attempt=%s delay=%.3fs",
                    url,
                    status,
                    attempt,
                    delay,
                )
                self._sleep(delay)
                continue

            if status < 200 or status >= 300:
                body = resp.text or ""
                log = logger.debug if status == 404 else logger.error
                log("[FETCH] upstream error url=%s status=%s body=%s", url, status, body[:_BODY_LOG_LIMIT])
                raise UpstreamError(status, body, url=url)

            if not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as exc:
                logger.error("[FETCH] invalid json url=%s status=%s", url, status)
                raise ValidationError(f"Response from {url} is not valid JSON") from exc

    def get_json(self, url: str, **kwargs) -> Any:
        return self.fetch(url, method="GET", **kwargs)

    def post_json(self, url: str, **kwargs) -> Any:
        return self.fetch(url, method="POST", **kwargs)

    def close(self) -> None:
        self._session.close()


_CLIENT: FetchClient | None = None
_CLIENT_LOCK = threading.Lock()


def get_fetch_client() -> FetchClient:
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    with _CLIENT_LOCK:
        if _CLIENT is None:
            _CLIENT = FetchClient()
    return _CLIENT
