from datetime import datetime

from pydantic import BaseModel, field_validator

from fodsync.models.record import FodmapStatus


class DiscoveredProduct(BaseModel):
    name: str
    category: str | None = None
    status: FodmapStatus = FodmapStatus.PENDING
    external_id: str | None = None
    price: float | None = None

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()

    @field_validator("status")
    @classmethod
    def status_must_be_unclassified(cls, v: FodmapStatus) -> FodmapStatus:
        if not v.is_submittable:
            raise ValueError("newly discovered products must be UNKNOWN or PENDING")
        return v


class ProductsFoundRequest(BaseModel):
    products: list[DiscoveredProduct]


class ProductsFoundResponse(BaseModel):
    status: str
    message: str
    new_ids: list[str] = []


class PollRequest(BaseModel):
    ids: list[str] | None = None


class ActionResponse(BaseModel):
    status: str
    message: str


class SyncStatusResponse(BaseModel):
    is_syncing: bool
    is_polling: bool
    last_sync_time: datetime | None = None
    next_sync_time: datetime | None = None
