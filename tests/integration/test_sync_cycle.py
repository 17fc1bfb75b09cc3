"""End-to-end submit/poll cycles against a SQLite store and a mocked classification API."""
import json
import tempfile

import httpx
import pytest
from pytest_httpx import HTTPXMock

from fodsync.config import Settings
from fodsync.db.connection import run_migrations
from fodsync.models.record import ClassificationRecord, FodmapStatus, is_submittable
from fodsync.repositories.record_repository import RecordRepository
from fodsync.services.api_client import ClassificationApiClient
from fodsync.services.messenger import RecordStoreMessenger
from fodsync.services.sync_orchestrator import SyncOrchestrator

BASE = "https://classifier.test/api/v1"
SUBMIT_URL = f"{BASE}/products/submit"
STATUS_URL = f"{BASE}/products/status"


@pytest.fixture
def repo():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    run_migrations(path)
    return RecordRepository(path)


@pytest.fixture
def orchestrator(repo):
    settings = Settings(
        API_ENDPOINT=BASE,
        SUBMIT_BATCH_SIZE=100,
        POLL_BATCH_SIZE=500,
        RETRY_ATTEMPTS=2,
        RETRY_DELAY_SECONDS=0.0,
        POST_SUBMIT_POLL_DELAY_SECONDS=0.0,
        HEALTH_CHECK_ENABLED=False,
    )
    client = ClassificationApiClient(BASE, settings)
    return SyncOrchestrator(RecordStoreMessenger(repo), client, settings)


def _accept_submission(request: httpx.Request) -> httpx.Response:
    products = json.loads(request.content)["products"]
    return httpx.Response(200, json={"success": True, "submitted_count": len(products)})


def _all_pending(request: httpx.Request) -> httpx.Response:
    ids = json.loads(request.content)["ids"]
    return httpx.Response(
        200,
        json={
            "results": [{"id": i, "status": "PENDING"} for i in ids],
            "found": len(ids),
            "missing": 0,
            "missingIds": [],
        },
    )


def _requests_to(httpx_mock: HTTPXMock, url: str) -> list[httpx.Request]:
    return [r for r in httpx_mock.get_requests() if str(r.url) == url]


@pytest.mark.asyncio
async def test_250_records_submit_then_poll_with_missing(repo, orchestrator, httpx_mock: HTTPXMock):
    repo.apply_updates(
        [ClassificationRecord(id=f"p{i:03d}", name=f"Product {i}") for i in range(250)]
    )
    for _ in range(3):
        httpx_mock.add_callback(_accept_submission, method="POST", url=SUBMIT_URL)
    httpx_mock.add_callback(_all_pending, method="POST", url=STATUS_URL)

    result = await orchestrator.sync_with_api()

    assert result.submitted_count == 250
    batch_sizes = [
        len(json.loads(r.content)["products"]) for r in _requests_to(httpx_mock, SUBMIT_URL)
    ]
    assert batch_sizes == [100, 100, 50]
    submitted = repo.get_submitted_unprocessed_records()
    assert len(submitted) == 250
    assert all(r.status is FodmapStatus.PENDING and r.submitted_at for r in submitted)

    classified = [f"p{i:03d}" for i in range(200)]
    lost = [f"p{i:03d}" for i in range(200, 250)]
    httpx_mock.add_response(
        method="POST",
        url=STATUS_URL,
        json={
            "results": [
                {"id": i, "status": "LOW", "explanation": "safe", "isFood": True} for i in classified
            ],
            "found": 200,
            "missing": 50,
            "missingIds": lost,
        },
    )

    poll = await orchestrator.force_poll_status()

    assert poll.found == 200 and poll.missing == 50
    status_requests = _requests_to(httpx_mock, STATUS_URL)
    assert len(json.loads(status_requests[-1].content)["ids"]) == 250

    done = repo.get_records_by_ids(classified)
    assert all(r.status is FodmapStatus.LOW and r.processed_at is not None for r in done)
    assert all(r.explanation == "safe" and r.is_food is True for r in done)

    reopened = repo.get_records_by_ids(lost)
    assert all(r.submitted_at is None and r.status is FodmapStatus.PENDING for r in reopened)
    assert {r.id for r in repo.get_unsubmitted_records()} == set(lost)
    assert all(is_submittable(r) for r in reopened)
    assert repo.get_submitted_unprocessed_records() == []


@pytest.mark.asyncio
async def test_failed_submission_is_recovered_through_missing_reconciliation(
    repo, orchestrator, httpx_mock: HTTPXMock
):
    repo.apply_updates([ClassificationRecord(id="a", name="Apple", status=FodmapStatus.UNKNOWN)])
    httpx_mock.add_response(method="POST", url=SUBMIT_URL, status_code=502)
    httpx_mock.add_exception(httpx.ConnectError("refused"), method="POST", url=SUBMIT_URL)

    assert await orchestrator.sync_with_api() is None
    (record,) = repo.get_records_by_ids(["a"])
    assert record.submitted_at is not None
    assert record.status is FodmapStatus.PENDING

    httpx_mock.add_response(
        method="POST",
        url=STATUS_URL,
        json={"results": [], "found": 0, "missing": 1, "missingIds": ["a"]},
    )
    await orchestrator.force_poll_status()
    assert [r.id for r in repo.get_unsubmitted_records()] == ["a"]

    httpx_mock.add_callback(_accept_submission, method="POST", url=SUBMIT_URL)
    httpx_mock.add_response(
        method="POST",
        url=STATUS_URL,
        json={"results": [{"id": "a", "status": "HIGH"}], "found": 1, "missing": 0, "missingIds": []},
    )
    result = await orchestrator.sync_with_api()

    assert result.submitted_count == 1
    (record,) = repo.get_records_by_ids(["a"])
    assert record.status is FodmapStatus.HIGH
    assert record.processed_at is not None
