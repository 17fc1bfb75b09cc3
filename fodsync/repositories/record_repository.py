import logging
import sqlite3
from datetime import datetime

from fodsync.db.connection import get_connection
from fodsync.models.record import ClassificationRecord, FodmapStatus
from fodsync.repositories.base import AbstractRecordStore

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, name, category, status, price, submitted_at, processed_at, explanation, is_food"
)

# SQLite's default limit on bound parameters is 999 on older builds.
_MAX_PARAMS = 900


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row: sqlite3.Row) -> ClassificationRecord:
    is_food = row["is_food"]
    return ClassificationRecord(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        status=FodmapStatus(row["status"]),
        price=row["price"],
        submitted_at=_from_iso(row["submitted_at"]),
        processed_at=_from_iso(row["processed_at"]),
        explanation=row["explanation"],
        is_food=None if is_food is None else bool(is_food),
    )


def _record_params(record: ClassificationRecord) -> tuple:
    return (
        record.id,
        record.name,
        record.category,
        record.status.value,
        record.price,
        _to_iso(record.submitted_at),
        _to_iso(record.processed_at),
        record.explanation,
        None if record.is_food is None else int(record.is_food),
    )


def _chunks(ids: list[str]):
    for i in range(0, len(ids), _MAX_PARAMS):
        yield ids[i : i + _MAX_PARAMS]


class RecordRepository(AbstractRecordStore):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def get_unsubmitted_records(self) -> list[ClassificationRecord]:
        with get_connection(self._db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM records
                WHERE status IN ('UNKNOWN', 'PENDING') AND submitted_at IS NULL
                ORDER BY created_at, id
                """
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def get_submitted_unprocessed_records(self) -> list[ClassificationRecord]:
        with get_connection(self._db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM records
                WHERE status = 'PENDING'
                  AND submitted_at IS NOT NULL
                  AND processed_at IS NULL
                ORDER BY submitted_at, id
                """
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def get_records_by_ids(self, ids: list[str]) -> list[ClassificationRecord]:
        if not ids:
            return []
        records: list[ClassificationRecord] = []
        with get_connection(self._db_path) as conn:
            for chunk in _chunks(list(dict.fromkeys(ids))):
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM records WHERE id IN ({placeholders})",
                    chunk,
                ).fetchall()
                records.extend(_row_to_record(row) for row in rows)
        return records

    def apply_updates(self, records: list[ClassificationRecord]) -> None:
        """
        Upsert records keyed by id. Every classification field is written as given,
        so a None submitted_at or processed_at clears the stored value.
        """
        if not records:
            return
        with get_connection(self._db_path) as conn:
            conn.executemany(
                f"""
                INSERT INTO records ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name         = excluded.name,
                    category     = excluded.category,
                    status       = excluded.status,
                    price        = excluded.price,
                    submitted_at = excluded.submitted_at,
                    processed_at = excluded.processed_at,
                    explanation  = excluded.explanation,
                    is_food      = excluded.is_food,
                    updated_at   = CURRENT_TIMESTAMP
                """,
                [_record_params(record) for record in records],
            )
            conn.commit()
        logger.debug("[store] applied updates | count=%d", len(records))

    def reset_submitted_at_for_missing(self, ids: list[str]) -> int:
        if not ids:
            return 0
        changed = 0
        with get_connection(self._db_path) as conn:
            for chunk in _chunks(list(dict.fromkeys(ids))):
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"""
                    UPDATE records
                    SET submitted_at = NULL, updated_at = CURRENT_TIMESTAMP
                    WHERE id IN ({placeholders}) AND submitted_at IS NOT NULL
                    """,
                    chunk,
                )
                changed += cursor.rowcount
            conn.commit()
        if changed:
            logger.info("[store] reset submitted_at | changed=%d | requested=%d", changed, len(ids))
        return changed

    def save_new_records(self, records: list[ClassificationRecord]) -> list[str]:
        if not records:
            return []
        inserted: list[str] = []
        with get_connection(self._db_path) as conn:
            for record in records:
                cursor = conn.execute(
                    f"""
                    INSERT INTO records ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO NOTHING
                    """,
                    _record_params(record),
                )
                if cursor.rowcount == 1:
                    inserted.append(record.id)
            conn.commit()
        return inserted

    def stamp_submitted(self, ids: list[str], submitted_at: datetime) -> int:
        return self._update_by_ids(
            "SET submitted_at = ?, updated_at = CURRENT_TIMESTAMP",
            "processed_at IS NULL",
            ids,
            (_to_iso(submitted_at),),
        )

    def mark_pending(self, ids: list[str]) -> int:
        return self._update_by_ids(
            "SET status = 'PENDING', updated_at = CURRENT_TIMESTAMP",
            "processed_at IS NULL AND status IN ('UNKNOWN', 'PENDING')",
            ids,
        )

    def reopen_stranded_submissions(self) -> int:
        with get_connection(self._db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE records
                SET submitted_at = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE status = 'UNKNOWN'
                  AND submitted_at IS NOT NULL
                  AND processed_at IS NULL
                """
            )
            conn.commit()
        if cursor.rowcount:
            logger.warning("[store] reopened stranded submissions | changed=%d", cursor.rowcount)
        return cursor.rowcount

    def _update_by_ids(
        self, set_clause: str, condition: str, ids: list[str], params: tuple = ()
    ) -> int:
        if not ids:
            return 0
        changed = 0
        with get_connection(self._db_path) as conn:
            for chunk in _chunks(list(dict.fromkeys(ids))):
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"UPDATE records {set_clause} WHERE id IN ({placeholders}) AND {condition}",
                    (*params, *chunk),
                )
                changed += cursor.rowcount
            conn.commit()
        return changed
