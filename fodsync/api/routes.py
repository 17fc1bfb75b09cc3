import logging

from fastapi import APIRouter, BackgroundTasks, Request

from fodsync.schemas.control import (
    ActionResponse,
    PollRequest,
    ProductsFoundRequest,
    ProductsFoundResponse,
    SyncStatusResponse,
)
from fodsync.services.messenger import StoreUnreachable

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(request: Request) -> SyncStatusResponse:
    status = request.app.state.orchestrator.get_sync_status()
    return SyncStatusResponse(
        is_syncing=status.is_syncing,
        is_polling=status.is_polling,
        last_sync_time=status.last_sync_time,
        next_sync_time=status.next_sync_time,
    )


@router.post("/sync", response_model=ActionResponse)
async def manual_sync(request: Request, background_tasks: BackgroundTasks) -> ActionResponse:
    logger.info("[sync] manual sync requested")
    background_tasks.add_task(request.app.state.orchestrator.sync_with_api)
    return ActionResponse(status="queued", message="Sync queued")


@router.post("/sync/poll", response_model=ActionResponse)
async def manual_poll(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: PollRequest | None = None,
) -> ActionResponse:
    ids = payload.ids if payload else None
    logger.info("[poll] manual status poll requested | ids=%s", len(ids) if ids is not None else "all")
    background_tasks.add_task(request.app.state.orchestrator.force_poll_status, ids)
    return ActionResponse(status="queued", message="Poll queued")


@router.post("/products", response_model=ProductsFoundResponse)
async def products_found(
    payload: ProductsFoundRequest,
    request: Request,
    background_tasks: BackgroundTasks,
) -> ProductsFoundResponse:
    discovery_service = request.app.state.discovery_service
    orchestrator = request.app.state.orchestrator

    try:
        new_ids = await discovery_service.register(payload.products)
    except StoreUnreachable as exc:
        logger.warning("[discovery] record store unreachable | error=%s", exc)
        return ProductsFoundResponse(status="unavailable", message="Record store unreachable")

    if not new_ids:
        return ProductsFoundResponse(status="skipped", message="No new products")

    background_tasks.add_task(orchestrator.sync_specific_records, new_ids)
    return ProductsFoundResponse(
        status="queued",
        message=f"Registered {len(new_ids)} new products",
        new_ids=new_ids,
    )
