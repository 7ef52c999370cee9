"""Retry policy for messaging transport HTTP calls.

Each transport decides which responses are transient via a RetryPolicy.
WhatsApp Cloud reports throttling as HTTP 400 with Graph error codes, so
status codes alone are not enough to classify a failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

SERVER_ERROR_STATUSES = frozenset({500, 502, 503, 504})

# Graph API throttling: app-level (4), account-level (80007), cloud API (130429)
WHATSAPP_THROTTLE_CODES = frozenset({4, 80007, 130429})


@dataclass(frozen=True)
class RetryPolicy:
    """Which transport responses are retried, and how long to wait."""

    statuses: frozenset[int] = SERVER_ERROR_STATUSES
    error_codes: frozenset[int] = field(default_factory=frozenset)
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0

    def is_transient(self, response: httpx.Response) -> bool:
        if response.status_code in self.statuses:
            return True
        if self.error_codes and response.status_code == 400:
            return _graph_error_code(response) in self.error_codes
        return False

    def delay(self, attempt: int, response: httpx.Response | None = None) -> float:
        retry_after = _retry_after_seconds(response) if response is not None else None
        if retry_after is not None:
            return min(self.max_delay, retry_after)
        delay = min(self.max_delay, self.base_delay * (2**attempt))
        if delay:
            delay = delay + random.uniform(0, delay / 2)
        return delay


WHATSAPP_CLOUD_RETRY = RetryPolicy(
    statuses=SERVER_ERROR_STATUSES | {429},
    error_codes=WHATSAPP_THROTTLE_CODES,
)
# Self-hosted bridge: 503 while the instance reconnects; no rate limiting upstream
EVOLUTION_RETRY = RetryPolicy()


def _graph_error_code(response: httpx.Response) -> int | None:
    try:
        body = response.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    code = error.get("code") if isinstance(error, dict) else None
    return code if isinstance(code, int) else None


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    transport: str,
    policy: RetryPolicy = EVOLUTION_RETRY,
) -> httpx.Response:
    """Call request_fn until it returns a non-transient response or attempts run out.

    The last response is returned even when still transient; callers turn
    it into a DispatchError. Connection errors are re-raised after the
    final attempt.
    """
    for attempt in range(policy.max_attempts):
        last_attempt = attempt >= policy.max_attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if last_attempt:
                raise
            delay = policy.delay(attempt)
            logger.warning(
                "%s send attempt %d/%d failed (%s), retrying in %.1fs",
                transport,
                attempt + 1,
                policy.max_attempts,
                type(exc).__name__,
                delay,
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        if not last_attempt and policy.is_transient(response):
            delay = policy.delay(attempt, response)
            logger.warning(
                "%s send attempt %d/%d returned %s, retrying in %.1fs",
                transport,
                attempt + 1,
                policy.max_attempts,
                response.status_code,
                delay,
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        return response
