import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class FodmapStatus(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    UNKNOWN = "UNKNOWN"
    PENDING = "PENDING"

    @property
    def is_submittable(self) -> bool:
        return self in (FodmapStatus.UNKNOWN, FodmapStatus.PENDING)

    @property
    def is_terminal(self) -> bool:
        return self is not FodmapStatus.PENDING


@dataclass
class ClassificationRecord:
    id: str
    name: str
    category: str = "Uncategorized"
    status: FodmapStatus = FodmapStatus.PENDING
    submitted_at: datetime | None = None
    processed_at: datetime | None = None
    explanation: str | None = None
    is_food: bool | None = None
    price: float | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_submittable(record: ClassificationRecord) -> bool:
    """Unsubmitted and still waiting for a classification."""
    return record.submitted_at is None and record.status.is_submittable


def is_awaiting_result(record: ClassificationRecord) -> bool:
    """Submitted, still PENDING and not yet processed: a poll candidate."""
    return (
        record.submitted_at is not None
        and record.processed_at is None
        and record.status is FodmapStatus.PENDING
    )


def normalize_name(name: str) -> str:
    return " ".join(name.strip().lower().split())


def record_id_for_name(name: str) -> str:
    """Stable record id for a product name (case and whitespace insensitive)."""
    digest = hashlib.sha256(normalize_name(name).encode("utf-8")).hexdigest()
    return digest[:16]
