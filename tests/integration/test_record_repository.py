"""Integration tests for the SQLite record store."""
import tempfile
from datetime import datetime, timezone

import pytest

from fodsync.db.connection import run_migrations
from fodsync.models.record import ClassificationRecord, FodmapStatus
from fodsync.repositories.record_repository import RecordRepository

STAMP = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)


@pytest.fixture
def repo():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    run_migrations(path)
    return RecordRepository(path)


def _record(record_id: str, **fields) -> ClassificationRecord:
    return ClassificationRecord(id=record_id, name=f"Product {record_id}", **fields)


def test_migrations_are_idempotent(repo):
    assert run_migrations(repo._db_path) == []
    repo.apply_updates([_record("a")])
    assert [r.id for r in repo.get_records_by_ids(["a"])] == ["a"]


def test_round_trip_keeps_all_fields(repo):
    record = _record(
        "a",
        category="Dairy",
        status=FodmapStatus.HIGH,
        submitted_at=STAMP,
        processed_at=STAMP,
        explanation="lactose",
        is_food=False,
        price=3.5,
    )
    repo.apply_updates([record])

    assert repo.get_records_by_ids(["a"]) == [record]


def test_unsubmitted_query_selects_only_eligible(repo):
    repo.apply_updates(
        [
            _record("unknown", status=FodmapStatus.UNKNOWN),
            _record("pending", status=FodmapStatus.PENDING),
            _record("stamped", status=FodmapStatus.PENDING, submitted_at=STAMP),
            _record("low", status=FodmapStatus.LOW),
        ]
    )

    ids = {r.id for r in repo.get_unsubmitted_records()}
    assert ids == {"unknown", "pending"}


def test_submitted_unprocessed_query_selects_only_poll_candidates(repo):
    repo.apply_updates(
        [
            _record("waiting", status=FodmapStatus.PENDING, submitted_at=STAMP),
            _record("fresh", status=FodmapStatus.PENDING),
            _record("unknown_stamped", status=FodmapStatus.UNKNOWN, submitted_at=STAMP),
            _record("done", status=FodmapStatus.LOW, submitted_at=STAMP, processed_at=STAMP),
        ]
    )

    assert [r.id for r in repo.get_submitted_unprocessed_records()] == ["waiting"]


def test_apply_updates_overwrites_by_id(repo):
    repo.apply_updates([_record("a")])
    repo.apply_updates([_record("a", status=FodmapStatus.LOW, processed_at=STAMP, explanation="ok")])

    (stored,) = repo.get_records_by_ids(["a"])
    assert stored.status is FodmapStatus.LOW
    assert stored.explanation == "ok"


def test_reset_submitted_at_leaves_status_alone(repo):
    repo.apply_updates(
        [
            _record("a", status=FodmapStatus.PENDING, submitted_at=STAMP),
            _record("b", status=FodmapStatus.PENDING, submitted_at=STAMP),
            _record("c", status=FodmapStatus.PENDING),
        ]
    )

    changed = repo.reset_submitted_at_for_missing(["a", "c", "nope"])

    assert changed == 1
    by_id = {r.id: r for r in repo.get_records_by_ids(["a", "b"])}
    assert by_id["a"].submitted_at is None
    assert by_id["a"].status is FodmapStatus.PENDING
    assert by_id["b"].submitted_at == STAMP
    assert repo.reset_submitted_at_for_missing([]) == 0


def test_save_new_records_never_overwrites(repo):
    repo.apply_updates([_record("a", status=FodmapStatus.LOW, processed_at=STAMP)])

    new_ids = repo.save_new_records([_record("a"), _record("b")])

    assert new_ids == ["b"]
    (stored,) = repo.get_records_by_ids(["a"])
    assert stored.status is FodmapStatus.LOW


def test_get_records_by_ids_handles_large_sets(repo):
    repo.apply_updates([_record(f"r{i}") for i in range(1200)])

    found = repo.get_records_by_ids([f"r{i}" for i in range(1200)] + ["missing"])

    assert len(found) == 1200
    assert repo.get_records_by_ids([]) == []


def test_stamp_submitted_touches_only_submitted_at(repo):
    repo.apply_updates(
        [
            _record("a", category="Dairy", explanation="note"),
            _record("done", status=FodmapStatus.LOW, processed_at=STAMP),
        ]
    )

    assert repo.stamp_submitted(["a", "done", "ghost"], STAMP) == 1

    by_id = {r.id: r for r in repo.get_records_by_ids(["a", "done"])}
    assert by_id["a"].submitted_at == STAMP
    assert by_id["a"].category == "Dairy"
    assert by_id["a"].explanation == "note"
    assert by_id["done"].submitted_at is None


def test_mark_pending_skips_processed_records(repo):
    repo.apply_updates(
        [
            _record("unknown", status=FodmapStatus.UNKNOWN, submitted_at=STAMP),
            _record(
                "low",
                status=FodmapStatus.LOW,
                submitted_at=STAMP,
                processed_at=STAMP,
                explanation="safe",
                is_food=True,
            ),
        ]
    )

    assert repo.mark_pending(["unknown", "low"]) == 1

    by_id = {r.id: r for r in repo.get_records_by_ids(["unknown", "low"])}
    assert by_id["unknown"].status is FodmapStatus.PENDING
    assert by_id["low"].status is FodmapStatus.LOW
    assert by_id["low"].processed_at == STAMP
    assert by_id["low"].explanation == "safe"
    assert repo.mark_pending([]) == 0


def test_reopen_stranded_submissions(repo):
    repo.apply_updates(
        [
            _record("stranded", status=FodmapStatus.UNKNOWN, submitted_at=STAMP),
            _record("waiting", status=FodmapStatus.PENDING, submitted_at=STAMP),
            _record("fresh", status=FodmapStatus.UNKNOWN),
        ]
    )

    assert repo.reopen_stranded_submissions() == 1

    assert {r.id for r in repo.get_unsubmitted_records()} == {"stranded", "fresh"}
    assert [r.id for r in repo.get_submitted_unprocessed_records()] == ["waiting"]
    assert repo.reopen_stranded_submissions() == 0


def test_migrations_report_applied_files():
    with tempfile.TemporaryDirectory() as tmp:
        assert run_migrations(f"{tmp}/nested/store.db") == ["001_records.sql"]
