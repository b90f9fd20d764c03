# imagegen/core/catalog.py
"""Model catalog resolution with layered caching and retry.

Two layers sit in front of the remote catalog:

- ModelCatalogAggregator talks to the upstream service, filters the list
  and caches successful answers for an hour. It never raises; on failure
  it answers with the fallback set and ``success=False``.
- ModelCatalogResolver is the consumer. It caches for 30 minutes, retries
  failed attempts with exponential backoff (1s, 2s, 4s) and, once retries
  are exhausted, settles on the fallback set and records the error.

The UI therefore always gets a non-empty model list.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from imagegen.core.models import (
    DISALLOWED_MODEL_IDS,
    FALLBACK_MODEL_IDS,
    ModelEntry,
    fallback_models,
)

logger = logging.getLogger(__name__)

CATALOG_TIMEOUT = 10.0
AGGREGATOR_TTL = 60 * 60
CONSUMER_TTL = 30 * 60
MAX_RETRIES = 3
BACKOFF_BASE = 1.0


class CatalogUnavailableError(Exception):
    """A single catalog attempt failed."""


def filter_model_ids(raw: Any) -> list[str]:
    """Validate and filter a raw catalog response.

    Non-string and blank entries are dropped, as are disallowed ids
    (compared case-insensitively). Order is preserved.

    Args:
        raw: Decoded JSON body of the catalog endpoint.

    Returns:
        Filtered ids, or the fallback set if nothing usable remains.

    Raises:
        CatalogUnavailableError: If the body is not a JSON array.
    """
    if not isinstance(raw, list):
        raise CatalogUnavailableError("Invalid response format from catalog API")

    models = [
        item
        for item in raw
        if isinstance(item, str)
        and item.strip()
        and item.lower() not in DISALLOWED_MODEL_IDS
    ]
    return models if models else list(FALLBACK_MODEL_IDS)


@dataclass
class CatalogPayload:
    """Answer of the aggregator layer (also its HTTP response body)."""

    success: bool
    models: list[str]
    cached: bool = False
    timestamp: float = field(default_factory=time.time)
    error: str | None = None
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "models": list(self.models),
            "cached": self.cached,
            "timestamp": int(self.timestamp * 1000),
        }
        if self.error is not None:
            data["error"] = self.error
        if self.fallback:
            data["fallback"] = True
        return data

    @classmethod
    def from_dict(cls, data: Any) -> CatalogPayload:
        if not isinstance(data, dict):
            raise CatalogUnavailableError("Invalid API response format")
        models = data.get("models")
        if not isinstance(models, list):
            raise CatalogUnavailableError(data.get("error") or "Invalid API response format")
        timestamp = data.get("timestamp")
        return cls(
            success=bool(data.get("success")),
            models=[m for m in models if isinstance(m, str)],
            cached=bool(data.get("cached", False)),
            timestamp=timestamp / 1000 if isinstance(timestamp, (int, float)) else time.time(),
            error=data.get("error"),
            fallback=bool(data.get("fallback", False)),
        )


class CatalogSource(Protocol):
    """Anything that can answer with an aggregator payload."""

    async def get_models(self) -> CatalogPayload: ...


class ModelCatalogAggregator:
    """Upstream catalog client with a one-hour cache.

    Args:
        client: Shared httpx client. One is created on demand if omitted.
        url: Remote catalog endpoint.
        ttl: Lifetime of a successful answer, in seconds.
        timeout: Hard bound on one upstream call, in seconds.
        user_agent: User-Agent header sent upstream.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        url: str = "https://image.pollinations.ai/models",
        ttl: float = AGGREGATOR_TTL,
        timeout: float = CATALOG_TIMEOUT,
        user_agent: str = "Pollinations-Image-Generator/1.0.0",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._url = url
        self._ttl = ttl
        self._timeout = timeout
        self._user_agent = user_agent
        self._clock = clock
        self._cached_models: list[str] | None = None
        self._cached_at: float | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _fetch_remote(self) -> list[str]:
        response = await self._get_client().get(
            self._url,
            headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            timeout=self._timeout,
        )
        if response.status_code >= 400:
            raise CatalogUnavailableError(
                f"Catalog API responded with status: {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise CatalogUnavailableError("Catalog API returned invalid JSON") from e
        return filter_model_ids(body)

    async def get_models(self) -> CatalogPayload:
        """Return the filtered catalog, from cache when fresh."""
        now = self._clock()
        if (
            self._cached_models is not None
            and self._cached_at is not None
            and now - self._cached_at < self._ttl
        ):
            logger.info("Models cache hit (aggregator level)")
            return CatalogPayload(
                success=True,
                models=list(self._cached_models),
                cached=True,
                timestamp=self._cached_at,
            )

        logger.info("Fetching fresh models from %s", self._url)
        try:
            models = await asyncio.wait_for(self._fetch_remote(), timeout=self._timeout)
        except asyncio.TimeoutError:
            error = f"Catalog request timed out after {self._timeout:g}s"
        except (httpx.HTTPError, CatalogUnavailableError) as e:
            error = str(e) or e.__class__.__name__
        else:
            self._cached_models = models
            self._cached_at = self._clock()
            logger.info("Fetched %d models: %s", len(models), ", ".join(models))
            return CatalogPayload(
                success=True, models=list(models), cached=False, timestamp=self._cached_at
            )

        logger.error("Error fetching models: %s", error)
        return CatalogPayload(
            success=False,
            models=list(FALLBACK_MODEL_IDS),
            error=error,
            fallback=True,
            timestamp=self._clock(),
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class HttpCatalogSource:
    """Reads the aggregator through its HTTP endpoint (``GET /api/models``)."""

    def __init__(self, url: str, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._client = client
        self._owns_client = client is None

    async def get_models(self) -> CatalogPayload:
        if self._client is None:
            self._client = httpx.AsyncClient()
        response = await self._client.get(
            self._url, headers={"Cache-Control": "no-cache"}
        )
        response.raise_for_status()
        return CatalogPayload.from_dict(response.json())

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class RetryPhase(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryState:
    """Where the resolver is in its fetch cycle.

    Attributes:
        phase: Current phase.
        attempt: 1-based attempt number (0 while idle).
        deadline: Clock reading when the current backoff ends.
    """

    phase: RetryPhase = RetryPhase.IDLE
    attempt: int = 0
    deadline: float | None = None


@dataclass
class CatalogResult:
    """Model list handed to the UI."""

    models: list[ModelEntry]
    cached: bool = False
    fallback: bool = False
    error: str | None = None


class ModelCatalogResolver:
    """Consumer-side catalog resolver.

    Args:
        source: Aggregator (in-process or over HTTP).
        ttl: Consumer cache lifetime in seconds.
        timeout: Bound on one attempt, in seconds.
        max_retries: Retries after the first failed attempt.
        backoff_base: Delay before the first retry; doubles each retry.
        sleep: Awaitable sleep used for backoff delays.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        source: CatalogSource,
        ttl: float = CONSUMER_TTL,
        timeout: float = CATALOG_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._sleep = sleep
        self._clock = clock

        self._state = RetryState()
        self._retry_count = 0
        self._last_error: str | None = None
        self._result: CatalogResult | None = None
        self._fetched_at: float | None = None
        self._task: asyncio.Task[CatalogResult] | None = None

    @property
    def state(self) -> RetryState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def models(self) -> list[ModelEntry]:
        """Last resolved list, or the fallback set before the first fetch."""
        return list(self._result.models) if self._result else fallback_models()

    def _cache_is_fresh(self) -> bool:
        return (
            self._result is not None
            and not self._result.fallback
            and self._fetched_at is not None
            and self._clock() - self._fetched_at < self._ttl
        )

    async def fetch(self) -> CatalogResult:
        """Resolve the model list.

        Joins an in-flight cycle if there is one, otherwise serves the
        consumer cache while fresh, otherwise starts a new cycle.
        """
        if self._task is not None and not self._task.done():
            return await self._join(self._task)

        if self._cache_is_fresh():
            logger.info("Using cached models (consumer level)")
            assert self._result is not None
            return replace(self._result, cached=True)

        return await self._start_cycle()

    async def refetch(self) -> CatalogResult:
        """Reset retry state and fetch again, bypassing the consumer cache.

        A pending attempt or backoff delay is cancelled first.
        """
        previous = self._task
        self._retry_count = 0
        self._last_error = None
        self._state = RetryState()
        self._fetched_at = None

        result = self._start_cycle()
        if previous is not None and not previous.done():
            logger.info("Cancelling pending catalog fetch for refetch")
            previous.cancel()
        return await result

    def _start_cycle(self) -> Awaitable[CatalogResult]:
        self._task = asyncio.create_task(self._run_cycle())
        return self._join(self._task)

    async def _join(self, task: asyncio.Task[CatalogResult]) -> CatalogResult:
        while True:
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                # Follow the replacement cycle if refetch() superseded this one
                if not task.cancelled() or self._task is None or self._task is task:
                    raise
                task = self._task

    def _before_attempt(self, retry_state: RetryCallState) -> None:
        attempt = retry_state.attempt_number
        self._retry_count = attempt - 1
        self._state = RetryState(RetryPhase.ATTEMPTING, attempt)
        if attempt == 1:
            logger.info("Fetching models from catalog...")
        else:
            logger.info(
                "Retrying models fetch (%d/%d)", attempt - 1, self._max_retries
            )

    def _before_backoff(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self._last_error = str(error) if error else None
        self._state = RetryState(
            RetryPhase.BACKOFF,
            retry_state.attempt_number,
            deadline=self._clock() + delay,
        )
        logger.warning(
            "Models fetch failed: %s. Retrying in %g seconds... (%d/%d)",
            self._last_error,
            delay,
            retry_state.attempt_number,
            self._max_retries,
            extra={"attempt": retry_state.attempt_number},
        )

    async def _attempt(self) -> CatalogPayload:
        try:
            payload = await asyncio.wait_for(
                self._source.get_models(), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise CatalogUnavailableError(
                f"Catalog request timed out after {self._timeout:g}s"
            ) from e
        except CatalogUnavailableError:
            raise
        except Exception as e:
            raise CatalogUnavailableError(str(e) or e.__class__.__name__) from e

        if not payload.success or not payload.models:
            raise CatalogUnavailableError(payload.error or "Invalid API response format")
        return payload

    async def _run_cycle(self) -> CatalogResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._backoff_base, exp_base=2),
            retry=retry_if_exception_type(CatalogUnavailableError),
            sleep=self._sleep,
            before=self._before_attempt,
            before_sleep=self._before_backoff,
            reraise=True,
        )

        try:
            payload: CatalogPayload | None = None
            async for attempt in retrying:
                with attempt:
                    payload = await self._attempt()
            assert payload is not None
        except CatalogUnavailableError as e:
            self._last_error = str(e)
            self._state = RetryState(RetryPhase.EXHAUSTED, self._retry_count + 1)
            logger.error("Error fetching models: %s", self._last_error)
            logger.warning("Using fallback models due to API failure")
            self._result = CatalogResult(
                models=fallback_models(), fallback=True, error=self._last_error
            )
            return self._result

        models = [ModelEntry.from_id(model_id) for model_id in payload.models]
        self._result = CatalogResult(models=models, cached=payload.cached)
        self._fetched_at = self._clock()
        self._retry_count = 0
        self._last_error = None
        self._state = RetryState()
        logger.info(
            "Successfully loaded %d models: %s",
            len(models),
            [m.id for m in models],
        )
        if payload.cached:
            logger.info("Models served from API cache")
        return self._result
