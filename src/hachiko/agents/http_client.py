"""
hachiko — shared HTTP plumbing for cloud agent backends

File: src/hachiko/agents/http_client.py
Last updated: 2026-10-19

Purpose
- One place for httpx client ownership, API-key resolution, error mapping and retries.

Functional requirements
- 401/403 map to non-retryable auth failures; 429, 5xx and transport failures are retryable.
- Every mapped failure carries ``exit_code=-1``.
- API keys are read from the environment at call time and never stored in config.
"""

from __future__ import annotations

import asyncio
import os
import random as random_module
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final, TypeAlias, TypeVar

import httpx

from hachiko.agents.base import BaseAgentAdapter
from hachiko.errors import BackendError

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]

USER_AGENT: Final[str] = "Hachiko/1.0"
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({408, 429})

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy."""

    max_retries: int = 2
    initial_delay_seconds: float = 0.5
    multiplier: float = 2.0
    max_delay_seconds: float = 8.0
    jitter_ratio: float = 0.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")

    def delay_for(self, retry_number: int, random_fn: RandomFn = random_module.random) -> float:
        if retry_number <= 0:
            raise ValueError("retry_number must be > 0")
        delay = min(
            self.initial_delay_seconds * (self.multiplier ** (retry_number - 1)),
            self.max_delay_seconds,
        )
        if self.jitter_ratio == 0.0:
            return delay
        spread = delay * self.jitter_ratio
        return max(0.0, delay - spread + (2 * spread * random_fn()))


def map_http_error(exc: Exception, *, backend: str) -> BackendError:
    """Translate an httpx failure into a ``BackendError``."""
    if isinstance(exc, BackendError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = _response_excerpt(exc.response)
        if status in {401, 403}:
            return BackendError(
                f"authentication failed ({status}): {body}",
                backend=backend,
                http_status=status,
            )
        retryable = status in _RETRYABLE_STATUS or status >= 500
        return BackendError(
            f"HTTP {status} from {exc.request.url}: {body}",
            backend=backend,
            retryable=retryable,
            http_status=status,
        )

    if isinstance(exc, httpx.TimeoutException):
        return BackendError(f"request timed out: {exc}", backend=backend, retryable=True)
    if isinstance(exc, httpx.TransportError):
        return BackendError(f"transport error: {exc}", backend=backend, retryable=True)
    if isinstance(exc, ValueError):
        return BackendError(f"malformed response: {exc}", backend=backend)
    return BackendError(f"{type(exc).__name__}: {exc}", backend=backend)


async def run_with_retries(
    operation: Callable[[], Awaitable[_T]],
    *,
    backend: str,
    backoff: BackoffConfig,
    sleep: SleepFn = asyncio.sleep,
    random_fn: RandomFn = random_module.random,
    on_retry: Callable[[int, BackendError, float], None] | None = None,
) -> _T:
    """Run ``operation``, retrying retryable ``BackendError``s with bounded backoff."""
    retry_count = 0
    while True:
        try:
            return await operation()
        except (httpx.HTTPError, BackendError, ValueError) as exc:
            mapped = map_http_error(exc, backend=backend)
            if not mapped.retryable or retry_count >= backoff.max_retries:
                if mapped is exc:
                    raise
                raise mapped from exc

            retry_count += 1
            delay = backoff.delay_for(retry_count, random_fn)
            if on_retry is not None:
                on_retry(retry_count, mapped, delay)
            await sleep(delay)


class HttpAgentAdapter(BaseAgentAdapter):
    """Base for adapters that talk to a JSON HTTP API with a bearer token."""

    def __init__(
        self,
        name: str | None = None,
        *,
        base_url: str,
        api_key_env: str,
        timeout_seconds: float,
        client: httpx.AsyncClient | None = None,
        environ: Mapping[str, str] | None = None,
        backoff: BackoffConfig | None = None,
        sleep: SleepFn = asyncio.sleep,
        random_fn: RandomFn = random_module.random,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        if not base_url.strip():
            raise ValueError("base_url must be a non-empty string")
        if not api_key_env.strip():
            raise ValueError("api_key_env must be a non-empty string")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._base_url = base_url.rstrip("/")
        self._api_key_env = api_key_env
        self._timeout_seconds = float(timeout_seconds)
        self._client = client
        self._owns_client = client is None
        self._environ = environ if environ is not None else os.environ
        self._backoff = backoff if backoff is not None else BackoffConfig()
        self._sleep = sleep
        self._random_fn = random_fn

    @property
    def has_api_key(self) -> bool:
        value = self._environ.get(self._api_key_env)
        return bool(value and value.strip())

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _resolve_api_key(self) -> str:
        value = self._environ.get(self._api_key_env)
        if value is None or not value.strip():
            raise BackendError(
                f"missing API key; set the {self._api_key_env} environment variable",
                backend=self.kind,
                http_status=401,
            )
        return value.strip()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._resolve_api_key()}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_seconds)
            self._owns_client = True
        return self._client

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        payload: Mapping[str, Any] | None = None,
        retry: bool = True,
    ) -> Any:
        url = f"{self._base_url}{path}"
        headers = self._headers()

        async def operation() -> Any:
            response = await self._ensure_client().request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            return response.json()

        backoff = self._backoff if retry else BackoffConfig(max_retries=0)
        return await run_with_retries(
            operation,
            backend=self.kind,
            backoff=backoff,
            sleep=self._sleep,
            random_fn=self._random_fn,
            on_retry=self._log_retry,
        )

    def _log_retry(self, attempt: int, error: BackendError, delay: float) -> None:
        self._logger.warning(
            "agent_http_retry",
            agent=self.name,
            attempt=attempt,
            delay_seconds=delay,
            http_status=error.http_status,
            error=error.detail,
        )


def _response_excerpt(response: httpx.Response, limit: int = 200) -> str:
    try:
        text = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return "<unreadable body>"
    text = " ".join(text.split())
    return text[:limit] if text else "<empty body>"


__all__ = [
    "BackoffConfig",
    "HttpAgentAdapter",
    "RandomFn",
    "SleepFn",
    "USER_AGENT",
    "map_http_error",
    "run_with_retries",
]
