from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from fodsync.models.record import ClassificationRecord, FodmapStatus


class SubmitResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    submitted_count: int = 0
    message: str | None = None


class StatusResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    status: FodmapStatus
    explanation: str | None = None
    is_food: bool | None = Field(default=None, alias="isFood")
    processed_at: datetime | None = Field(default=None, alias="processedAt")


class StatusResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    results: list[StatusResult] = []
    found: int = 0
    missing: int = 0
    missing_ids: list[str] = Field(default_factory=list, alias="missingIds")


class HealthStatus(BaseModel):
    is_healthy: bool
    message: str


def record_to_wire(record: ClassificationRecord) -> dict:
    """Serialize a record for the submit endpoint."""
    return {
        "id": record.id,
        "name": record.name,
        "category": record.category,
        "status": record.status.value,
        "price": record.price,
        "submittedAt": record.submitted_at.isoformat() if record.submitted_at else None,
        "processedAt": record.processed_at.isoformat() if record.processed_at else None,
        "explanation": record.explanation,
        "isFood": record.is_food,
    }
