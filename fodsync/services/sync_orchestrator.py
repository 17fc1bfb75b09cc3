"""
Submit-and-poll synchronization between the local record store and the remote
classification service.

Two cycles run on independent timers:

- submit: reopen records a previous cycle stamped but never marked PENDING,
  pick unsubmitted records, stamp ``submitted_at`` (persisted before the
  network call), submit them, then mark them PENDING and quick-poll the batch;
- poll: query the service for submitted records and reconcile the answers.
  Terminal results are written back; ids the service does not know about get
  ``submitted_at`` cleared so the submit cycle picks them up again.

Each cycle is serialized against itself with a guard flag that is set before the
first await. The two cycles may overlap each other.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable

from fodsync.config import Settings, settings as default_settings
from fodsync.models.record import (
    ClassificationRecord,
    FodmapStatus,
    is_awaiting_result,
    is_submittable,
    utcnow,
)
from fodsync.schemas.classification import StatusResponse, SubmitResponse
from fodsync.services.api_client import ClassificationApiClient, ClassificationApiError
from fodsync.services.messenger import RecordStoreMessenger, StoreUnreachable

logger = logging.getLogger(__name__)


class SyncType(str, Enum):
    PERIODIC = "periodic"
    MANUAL = "manual"
    TARGETED = "targeted"
    POST_SUBMIT = "post-submit"


@dataclass
class SyncStatus:
    is_syncing: bool
    is_polling: bool
    last_sync_time: datetime | None
    next_sync_time: datetime | None


class SyncOrchestrator:
    def __init__(
        self,
        messenger: RecordStoreMessenger,
        api_client: ClassificationApiClient,
        settings: Settings = default_settings,
    ) -> None:
        self._messenger = messenger
        self._api_client = api_client
        self._settings = settings

        self._is_syncing = False
        self._is_polling = False
        self._last_sync_time: datetime | None = None

        self._sync_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

        self._miss_counts: dict[str, int] = {}

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def is_polling(self) -> bool:
        return self._is_polling

    @property
    def is_running(self) -> bool:
        return self._sync_task is not None

    # ---------- lifecycle ----------

    def start(self) -> None:
        """Start both timers. Runs one submit cycle right away. Calling twice is a no-op."""
        if self._sync_task is not None:
            logger.info("[sync] periodic sync already running")
            return

        logger.info(
            "[sync] starting periodic sync | submit_every=%ss | poll_every=%ss",
            self._settings.SYNC_INTERVAL_SECONDS,
            self._settings.POLL_INTERVAL_SECONDS,
        )
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._sync_task = asyncio.create_task(
            self._run_periodic(
                self._settings.SYNC_INTERVAL_SECONDS,
                lambda: self._perform_submit_sync(SyncType.PERIODIC),
                stop_event,
                run_immediately=True,
            )
        )
        self._poll_task = asyncio.create_task(
            self._run_periodic(
                self._settings.POLL_INTERVAL_SECONDS,
                lambda: self._perform_status_poll(sync_type=SyncType.PERIODIC),
                stop_event,
            )
        )

    async def stop(self) -> None:
        """Stop future ticks and wait for any in-flight cycle of the timers to finish."""
        stop_event = self._stop_event
        if stop_event is None:
            return
        stop_event.set()
        tasks = [t for t in (self._sync_task, self._poll_task) if t is not None]
        self._sync_task = None
        self._poll_task = None
        self._stop_event = None
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[sync] stopped periodic sync and polling")

    async def _run_periodic(
        self,
        interval: float,
        cycle: Callable[[], Awaitable[object]],
        stop_event: asyncio.Event,
        run_immediately: bool = False,
    ) -> None:
        if run_immediately and not stop_event.is_set():
            await cycle()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            await cycle()

    # ---------- public operations ----------

    async def sync_with_api(self) -> SubmitResponse | None:
        return await self._perform_submit_sync(SyncType.MANUAL)

    async def sync_specific_records(self, ids: list[str]) -> SubmitResponse | None:
        if not ids:
            logger.warning("[sync] targeted sync requested without ids")
            return None
        return await self._perform_submit_sync(SyncType.TARGETED, ids)

    async def force_poll_status(self, ids: list[str] | None = None) -> StatusResponse | None:
        return await self._perform_status_poll(ids, SyncType.MANUAL)

    def get_sync_status(self) -> SyncStatus:
        next_sync_time = None
        if self._last_sync_time is not None:
            next_sync_time = self._last_sync_time + timedelta(
                seconds=self._settings.SYNC_INTERVAL_SECONDS
            )
        return SyncStatus(
            is_syncing=self._is_syncing,
            is_polling=self._is_polling,
            last_sync_time=self._last_sync_time,
            next_sync_time=next_sync_time,
        )

    # ---------- submit cycle ----------

    async def _perform_submit_sync(
        self, sync_type: SyncType, ids: list[str] | None = None
    ) -> SubmitResponse | None:
        if self._is_syncing:
            logger.info("[sync] submit already in progress, skipping | type=%s", sync_type.value)
            return None
        if not self._api_client.is_configured():
            logger.info("[sync] API client not configured, skipping submit | type=%s", sync_type.value)
            return None

        self._is_syncing = True
        record_count = 0
        try:
            if not await self._backend_is_healthy("sync", sync_type):
                return None

            reopened = await self._messenger.reopen_stranded_submissions()
            if reopened:
                logger.warning(
                    "[sync] reopened records stranded by an earlier cycle | type=%s | records=%d",
                    sync_type.value,
                    reopened,
                )

            records = await self._resolve_submit_candidates(ids)
            if not records:
                logger.info("[sync] no records to submit | type=%s", sync_type.value)
                return None

            record_count = len(records)
            logger.info("[sync] starting submit | type=%s | records=%d", sync_type.value, record_count)
            started = time.monotonic()

            submitted_at = utcnow()
            stamped = [replace(r, submitted_at=submitted_at) for r in records]
            record_ids = [r.id for r in stamped]
            await self._messenger.stamp_submitted(record_ids, submitted_at)

            try:
                result = await self._api_client.submit_records(stamped)
            except Exception:
                # Keep the stamp: PENDING + submitted_at hands the records to the poll
                # cycle, which reopens them once the service reports them missing.
                await self._messenger.mark_pending(record_ids)
                raise

            await self._messenger.mark_pending(record_ids)
            self._last_sync_time = utcnow()
            logger.info(
                "[sync] submit completed | type=%s | submitted=%d | duration_ms=%d",
                sync_type.value,
                result.submitted_count,
                (time.monotonic() - started) * 1000,
            )

            delay = self._settings.POST_SUBMIT_POLL_DELAY_SECONDS
            if delay > 0:
                await asyncio.sleep(delay)
            await self._perform_status_poll(record_ids, SyncType.POST_SUBMIT)
            return result
        except (ClassificationApiError, StoreUnreachable) as exc:
            logger.error(
                "[sync] submit cycle failed | type=%s | records=%d | error=%s",
                sync_type.value,
                record_count,
                exc,
            )
            return None
        except Exception:
            logger.exception(
                "[sync] submit cycle crashed | type=%s | records=%d", sync_type.value, record_count
            )
            return None
        finally:
            self._is_syncing = False

    async def _resolve_submit_candidates(
        self, ids: list[str] | None
    ) -> list[ClassificationRecord]:
        if ids is None:
            records = await self._messenger.get_unsubmitted_records()
        else:
            records = await self._messenger.get_records_by_ids(ids)
        return [r for r in records if is_submittable(r)]

    # ---------- poll cycle ----------

    async def _perform_status_poll(
        self, ids: list[str] | None = None, sync_type: SyncType = SyncType.PERIODIC
    ) -> StatusResponse | None:
        if self._is_polling:
            logger.info("[poll] status poll already in progress, skipping | type=%s", sync_type.value)
            return None
        if not self._api_client.is_configured():
            logger.info("[poll] API client not configured, skipping poll | type=%s", sync_type.value)
            return None

        self._is_polling = True
        id_count = 0
        try:
            if not await self._backend_is_healthy("poll", sync_type):
                return None

            candidates = await self._messenger.get_submitted_unprocessed_records()
            if ids is not None:
                wanted = set(ids)
                candidates = [r for r in candidates if r.id in wanted]
            by_id = {r.id: r for r in candidates if is_awaiting_result(r)}
            if not by_id:
                logger.info("[poll] no submitted records to poll | type=%s", sync_type.value)
                return None

            requested = list(by_id)
            id_count = len(requested)
            result = await self._api_client.poll_status(requested)

            updated = self._reconcile_results(by_id, result)
            if updated:
                await self._messenger.apply_updates(updated)

            to_reset = self._missing_ids_to_reset(requested, result, {r.id for r in updated})
            reset_count = 0
            if to_reset:
                reset_count = await self._messenger.reset_submitted_at_for_missing(to_reset)

            logger.info(
                "[poll] completed | type=%s | requested=%d | updated=%d | still_pending=%d "
                "| found=%d | missing=%d | reset=%d",
                sync_type.value,
                id_count,
                len(updated),
                sum(1 for r in result.results if r.status is FodmapStatus.PENDING),
                result.found,
                result.missing,
                reset_count,
            )
            return result
        except (ClassificationApiError, StoreUnreachable) as exc:
            logger.error(
                "[poll] poll cycle failed | type=%s | ids=%d | error=%s",
                sync_type.value,
                id_count,
                exc,
            )
            return None
        except Exception:
            logger.exception("[poll] poll cycle crashed | type=%s | ids=%d", sync_type.value, id_count)
            return None
        finally:
            self._is_polling = False

    def _reconcile_results(
        self, by_id: dict[str, ClassificationRecord], result: StatusResponse
    ) -> list[ClassificationRecord]:
        """Terminal results applied onto the matching local records. PENDING answers are skipped."""
        now = utcnow()
        updated: dict[str, ClassificationRecord] = {}
        for item in result.results:
            if item.status is FodmapStatus.PENDING:
                continue
            original = by_id.get(item.id)
            if original is None:
                logger.debug("[poll] result for unknown id ignored | id=%s", item.id)
                continue
            updated[item.id] = replace(
                original,
                status=item.status,
                processed_at=item.processed_at or now,
                explanation=item.explanation,
                is_food=item.is_food,
            )
        return list(updated.values())

    def _missing_ids_to_reset(
        self, requested: list[str], result: StatusResponse, processed_ids: set[str]
    ) -> list[str]:
        """
        Ids the service returned no result for, once they have been missing for
        MISSING_RESET_THRESHOLD consecutive polls. Processed ids are never reset.
        """
        returned = {item.id for item in result.results}
        threshold = self._settings.MISSING_RESET_THRESHOLD
        to_reset: list[str] = []
        for record_id in requested:
            if record_id in returned or record_id in processed_ids:
                self._miss_counts.pop(record_id, None)
                continue
            misses = self._miss_counts.get(record_id, 0) + 1
            if misses >= threshold:
                to_reset.append(record_id)
                self._miss_counts.pop(record_id, None)
            else:
                self._miss_counts[record_id] = misses
        return to_reset

    # ---------- helpers ----------

    async def _backend_is_healthy(self, cycle: str, sync_type: SyncType) -> bool:
        if not self._settings.HEALTH_CHECK_ENABLED:
            return True
        health = await self._api_client.health_check()
        if not health.is_healthy:
            logger.info(
                "[%s] backend unhealthy, skipping | type=%s | reason=%s",
                cycle,
                sync_type.value,
                health.message,
            )
        return health.is_healthy
