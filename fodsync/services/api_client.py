import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import httpx

from fodsync.config import Settings, settings as default_settings
from fodsync.models.record import ClassificationRecord
from fodsync.schemas.classification import (
    HealthStatus,
    StatusResponse,
    SubmitResponse,
    record_to_wire,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_VERSION_SUFFIX = re.compile(r"/v\d+(\.\d+)*$")


@dataclass
class RetryOptions:
    max_attempts: int
    delay_seconds: float
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Sleep before attempt + 1, after attempt (1-based) failed."""
        return self.delay_seconds * self.backoff_multiplier ** (attempt - 1)


class ClassificationApiError(Exception):
    """A batch call failed on every attempt. item_ids are the ids that were in flight."""

    def __init__(self, message: str, operation: str, item_ids: list[str], attempts: int) -> None:
        super().__init__(message)
        self.operation = operation
        self.item_ids = item_ids
        self.attempts = attempts


def create_batches(items: list[T], batch_size: int) -> list[list[T]]:
    return [items[i : i + batch_size] for i in range(0, len(items), batch_size)]


def health_url_for(api_endpoint: str) -> str:
    """Health endpoint lives at the service root: strip a trailing /vN from the base."""
    base = _VERSION_SUFFIX.sub("", api_endpoint.strip().rstrip("/"))
    return f"{base}/health"


class ClassificationApiClient:
    def __init__(
        self,
        api_endpoint: str,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api_endpoint = api_endpoint or ""
        self._settings = settings
        self._clock = clock
        self._health_cache: tuple[HealthStatus, float] | None = None

    def is_configured(self) -> bool:
        return bool(self._api_endpoint.strip())

    def default_retry(self) -> RetryOptions:
        return RetryOptions(
            max_attempts=self._settings.RETRY_ATTEMPTS,
            delay_seconds=self._settings.RETRY_DELAY_SECONDS,
            backoff_multiplier=self._settings.BACKOFF_MULTIPLIER,
        )

    async def submit_records(
        self, records: list[ClassificationRecord], retry: RetryOptions | None = None
    ) -> SubmitResponse:
        """
        Submit records for classification in batches of SUBMIT_BATCH_SIZE.

        Batches run in order. When a batch exhausts its retries the error propagates
        and the remaining batches are not sent; batches already accepted stay accepted.
        """
        if not records:
            raise ValueError("No records to submit")
        retry = retry or self.default_retry()

        total_submitted = 0
        batches = create_batches(records, self._settings.SUBMIT_BATCH_SIZE)
        for index, batch in enumerate(batches, start=1):
            result = await self._post_with_retries(
                operation="submit",
                path="/products/submit",
                payload={"products": [record_to_wire(r) for r in batch]},
                item_ids=[r.id for r in batch],
                retry=retry,
                parse=_parse_submit_response,
            )
            total_submitted += result.submitted_count
            logger.debug(
                "[api] submit batch accepted | batch=%d/%d | count=%d",
                index,
                len(batches),
                result.submitted_count,
            )

        return SubmitResponse(
            success=True,
            submitted_count=total_submitted,
            message=f"Successfully submitted {total_submitted} records",
        )

    async def poll_status(
        self, ids: list[str], retry: RetryOptions | None = None
    ) -> StatusResponse:
        """Query classification status in batches of POLL_BATCH_SIZE and merge the answers."""
        if not ids:
            return StatusResponse()
        retry = retry or self.default_retry()

        merged = StatusResponse()
        for batch in create_batches(ids, self._settings.POLL_BATCH_SIZE):
            result = await self._post_with_retries(
                operation="status",
                path="/products/status",
                payload={"ids": batch},
                item_ids=batch,
                retry=retry,
                parse=StatusResponse.model_validate,
            )
            merged.results.extend(result.results)
            merged.found += result.found
            merged.missing += result.missing
            merged.missing_ids.extend(result.missing_ids)
        return merged

    async def health_check(self, force: bool = False) -> HealthStatus:
        """
        Probe the service health endpoint. Results are cached: healthy answers for
        HEALTHY_CACHE_TTL_SECONDS, unhealthy ones for UNHEALTHY_CACHE_TTL_SECONDS.
        """
        if not self.is_configured():
            return HealthStatus(is_healthy=False, message="API endpoint is not configured")

        now = self._clock()
        if not force and self._health_cache is not None:
            cached, expires_at = self._health_cache
            if now < expires_at:
                return cached

        url = health_url_for(self._api_endpoint)
        try:
            async with httpx.AsyncClient(timeout=self._settings.HEALTH_TIMEOUT_SECONDS) as client:
                response = await client.get(url)
            if response.is_success:
                status = HealthStatus(is_healthy=True, message="API is healthy")
            else:
                status = HealthStatus(
                    is_healthy=False, message=f"Health check returned HTTP {response.status_code}"
                )
        except httpx.HTTPError as exc:
            status = HealthStatus(is_healthy=False, message=f"Health check failed: {exc!r}")

        ttl = (
            self._settings.HEALTHY_CACHE_TTL_SECONDS
            if status.is_healthy
            else self._settings.UNHEALTHY_CACHE_TTL_SECONDS
        )
        self._health_cache = (status, now + ttl)
        if not status.is_healthy:
            logger.warning("[api] health check failed | url=%s | reason=%s", url, status.message)
        return status

    def clear_health_cache(self) -> None:
        self._health_cache = None

    async def _post_with_retries(
        self,
        operation: str,
        path: str,
        payload: dict[str, Any],
        item_ids: list[str],
        retry: RetryOptions,
        parse: Callable[[Any], T],
    ) -> T:
        if not self.is_configured():
            raise ClassificationApiError(
                "API endpoint is not configured", operation, item_ids, attempts=0
            )

        url = f"{self._api_endpoint.strip().rstrip('/')}/{path.lstrip('/')}"
        last_exc: Exception | None = None

        for attempt in range(1, retry.max_attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self._settings.REQUEST_TIMEOUT_SECONDS) as client:
                    response = await client.post(url, json=payload)
                response.raise_for_status()
                return parse(response.json())
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                logger.warning(
                    "[api] %s attempt failed | attempt=%d/%d | items=%d | error=%s",
                    operation,
                    attempt,
                    retry.max_attempts,
                    len(item_ids),
                    exc,
                )
                if attempt < retry.max_attempts:
                    await self._sleep_backoff(retry.delay_for(attempt))

        logger.error(
            "[api] %s failed after retries | attempts=%d | items=%d",
            operation,
            retry.max_attempts,
            len(item_ids),
        )
        raise ClassificationApiError(
            f"{operation} request to {url} failed: {last_exc}",
            operation,
            item_ids,
            attempts=retry.max_attempts,
        ) from last_exc

    async def _sleep_backoff(self, delay: float) -> None:
        await asyncio.sleep(delay)


def _parse_submit_response(data: Any) -> SubmitResponse:
    result = SubmitResponse.model_validate(data)
    if not result.success:
        raise ValueError(f"submit rejected by server: {result.message or 'no message'}")
    return result
