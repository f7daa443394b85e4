# app/services/retry_transport.py
import asyncio, logging, random
from typing import Any, Awaitable, Callable, Optional

import httpx

from .errors import TransportError

log = logging.getLogger("tablextract")

Sleep = Callable[[float], Awaitable[Any]]


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600


class RetryTransport:
    """
    POSTs JSON to the model endpoint, retrying 429/5xx answers and network
    failures with exponential backoff (base_delay_ms * 2**attempt).
    Other statuses are handed back untouched for the caller to interpret.
    """

    def __init__(self, client: httpx.AsyncClient, *, max_attempts: int = 3, base_delay_ms: int = 1000,
                 jitter_ms: int = 0, sleep: Sleep = asyncio.sleep):
        self.client = client
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.jitter_ms = jitter_ms
        self._sleep = sleep

    def backoff_ms(self, attempt: int, base_delay_ms: Optional[int] = None) -> float:
        base = self.base_delay_ms if base_delay_ms is None else base_delay_ms
        delay = base * (2 ** attempt)
        if self.jitter_ms:
            delay += random.uniform(0, self.jitter_ms)
        return delay

    async def call(self, endpoint: str, payload: Any, max_attempts: Optional[int] = None,
                   base_delay_ms: Optional[int] = None) -> httpx.Response:
        # at least one request goes out whatever the setting
        attempts = max(1, self.max_attempts if max_attempts is None else max_attempts)
        last_err: Optional[BaseException] = None
        last_status: Optional[int] = None

        for attempt in range(attempts):
            final = attempt == attempts - 1
            try:
                resp = await self.client.post(endpoint, json=payload)
            except httpx.TransportError as e:
                last_err, last_status = e, None
                log.error(f"[transport] attempt {attempt + 1}/{attempts} failed: {type(e).__name__}: {e}")
                if final:
                    break
                delay = self.backoff_ms(attempt, base_delay_ms)
                log.warning(f"[transport] retrying in {delay:.0f}ms")
                await self._sleep(delay / 1000)
                continue

            if not is_retryable_status(resp.status_code):
                return resp

            last_status = resp.status_code
            if final:
                break
            delay = self.backoff_ms(attempt, base_delay_ms)
            log.warning(f"[transport] endpoint returned {resp.status_code}, retrying in {delay:.0f}ms")
            await self._sleep(delay / 1000)

        if last_status is not None:
            raise TransportError(f"Model API returned {last_status} after {attempts} attempts")
        raise TransportError(
            f"Failed to call model API after {attempts} attempts: {last_err}", last_error=last_err
        ) from last_err
