from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, TypeVar
import logging
import time

import aiohttp
import requests

T = TypeVar("T")

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    requests.RequestException,
    aiohttp.ClientError,
    OSError,
)


@dataclass
class RetryPolicy:
    retries: int = 2
    backoff: float = 5.0
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    retry_statuses: set[int] = field(default_factory=lambda: set(DEFAULT_RETRY_STATUSES))

    def __post_init__(self) -> None:
        self.retries = max(0, int(self.retries))
        self.backoff = max(0.0, float(self.backoff))
        if not self.retry_statuses:
            self.retry_statuses = set(DEFAULT_RETRY_STATUSES)

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    def delay_for_attempt(self, attempt: int) -> float:
        return self.backoff * attempt


class RetryableStatusError(requests.HTTPError):
    pass


def run_with_retry(
    task: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str = "",
    retry_on: Iterable[type[BaseException]] | None = None,
    on_retry: Callable[[BaseException], None] | None = None,
) -> T:
    """Run ``task``, retrying it ``policy.retries`` times on network errors.

    The last attempt is not guarded: whatever it raises reaches the caller.
    """
    errors = tuple(retry_on) if retry_on else RETRYABLE_ERRORS
    attempts = policy.retries + 1
    for attempt in range(1, attempts):
        try:
            return task()
        except errors as exc:
            _sleep_backoff(policy, attempt, attempts, exc, description)
            if on_retry is not None:
                on_retry(exc)
    return task()


def _sleep_backoff(
    policy: RetryPolicy,
    attempt: int,
    attempts: int,
    exc: BaseException,
    description: str,
) -> None:
    delay = policy.delay_for_attempt(attempt)
    logging.warning(
        "Network operation %s failed (try %s/%s): %s (sleep %.1fs)",
        description or "-",
        attempt,
        attempts,
        exc,
        delay,
    )
    if delay > 0:
        time.sleep(delay)


def build_session(user_agent: str) -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": user_agent,
            "Accept-Encoding": "gzip",
        }
    )
    return session


def check_response(response: requests.Response, policy: RetryPolicy) -> None:
    if response.status_code in policy.retry_statuses:
        raise RetryableStatusError(
            f"HTTP {response.status_code} for {response.url}", response=response
        )
    response.raise_for_status()


def get_json(
    session: requests.Session,
    url: str,
    policy: RetryPolicy,
    *,
    params: dict[str, Any] | None = None,
    on_retry: Callable[[BaseException], None] | None = None,
) -> Any:
    """GET ``url`` and decode its JSON body, retrying network and decode errors."""

    def fetch() -> Any:
        response = session.get(url, params=params, timeout=policy.timeout)
        try:
            check_response(response, policy)
            return response.json()
        finally:
            response.close()

    return run_with_retry(fetch, policy, description=url, on_retry=on_retry)


def get_text(
    session: requests.Session,
    url: str,
    policy: RetryPolicy,
    *,
    on_retry: Callable[[BaseException], None] | None = None,
) -> str:
    def fetch() -> str:
        response = session.get(url, timeout=policy.timeout)
        try:
            check_response(response, policy)
            response.encoding = response.encoding or "utf-8"
            return response.text
        finally:
            response.close()

    return run_with_retry(fetch, policy, description=url, on_retry=on_retry)
