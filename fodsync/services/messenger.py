import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable

from fodsync.models.record import ClassificationRecord
from fodsync.repositories.base import AbstractRecordStore

logger = logging.getLogger(__name__)


class StoreUnreachable(Exception):
    """The record store could not be reached; the caller should retry on its next tick."""

    def __init__(self, action: str, reason: str) -> None:
        super().__init__(f"{action}: {reason}")
        self.action = action


class RecordStoreMessenger:
    """
    Async bridge between the orchestrator and the record store.

    Store calls run in a worker thread. A detached route or a failing store
    raises StoreUnreachable, never an empty answer.
    """

    def __init__(self, store: AbstractRecordStore | None = None) -> None:
        self._store = store

    @property
    def is_attached(self) -> bool:
        return self._store is not None

    def attach(self, store: AbstractRecordStore) -> None:
        self._store = store

    def detach(self) -> None:
        self._store = None

    async def _call(self, action: str, fn: Callable[[AbstractRecordStore], Any]) -> Any:
        store = self._store
        if store is None:
            raise StoreUnreachable(action, "no record store attached")
        try:
            return await asyncio.to_thread(fn, store)
        except sqlite3.Error as exc:
            logger.warning("[store] call failed | action=%s | error=%s", action, exc)
            raise StoreUnreachable(action, str(exc)) from exc

    async def get_unsubmitted_records(self) -> list[ClassificationRecord]:
        records = await self._call(
            "get_unsubmitted_records", lambda s: s.get_unsubmitted_records()
        )
        logger.debug("[store] retrieved unsubmitted records | count=%d", len(records))
        return records

    async def get_submitted_unprocessed_records(self) -> list[ClassificationRecord]:
        records = await self._call(
            "get_submitted_unprocessed_records",
            lambda s: s.get_submitted_unprocessed_records(),
        )
        logger.debug("[store] retrieved submitted unprocessed records | count=%d", len(records))
        return records

    async def get_records_by_ids(self, ids: list[str]) -> list[ClassificationRecord]:
        return await self._call("get_records_by_ids", lambda s: s.get_records_by_ids(ids))

    async def apply_updates(self, records: list[ClassificationRecord]) -> None:
        await self._call("apply_updates", lambda s: s.apply_updates(records))

    async def reset_submitted_at_for_missing(self, ids: list[str]) -> int:
        return await self._call(
            "reset_submitted_at_for_missing",
            lambda s: s.reset_submitted_at_for_missing(ids),
        )

    async def save_new_records(self, records: list[ClassificationRecord]) -> list[str]:
        return await self._call("save_new_records", lambda s: s.save_new_records(records))

    async def stamp_submitted(self, ids: list[str], submitted_at: datetime) -> int:
        return await self._call(
            "stamp_submitted", lambda s: s.stamp_submitted(ids, submitted_at)
        )

    async def mark_pending(self, ids: list[str]) -> int:
        return await self._call("mark_pending", lambda s: s.mark_pending(ids))

    async def reopen_stranded_submissions(self) -> int:
        return await self._call(
            "reopen_stranded_submissions", lambda s: s.reopen_stranded_submissions()
        )
