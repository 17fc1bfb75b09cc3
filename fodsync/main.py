import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fodsync.api.routes import router
from fodsync.config import settings
from fodsync.db.connection import run_migrations
from fodsync.repositories.record_repository import RecordRepository
from fodsync.services.api_client import ClassificationApiClient
from fodsync.services.discovery_service import DiscoveryService
from fodsync.services.messenger import RecordStoreMessenger
from fodsync.services.sync_orchestrator import SyncOrchestrator


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_logging()
    logger = logging.getLogger(__name__)
    logger.info(
        "fodsync starting | db=%s | port=%s | sync_enabled=%s | api=%s",
        settings.DB_PATH,
        settings.PORT,
        settings.SYNC_ENABLED,
        "configured" if settings.api_configured else "not configured",
    )
    run_migrations(settings.DB_PATH)

    app.state.repository = RecordRepository(settings.DB_PATH)
    app.state.messenger = RecordStoreMessenger(app.state.repository)
    app.state.api_client = ClassificationApiClient(settings.API_ENDPOINT, settings)
    app.state.orchestrator = SyncOrchestrator(app.state.messenger, app.state.api_client, settings)
    app.state.discovery_service = DiscoveryService(app.state.messenger)

    if settings.SYNC_ENABLED:
        if not settings.api_configured:
            logger.warning("Sync is enabled but API_ENDPOINT is empty; cycles will be skipped")
        app.state.orchestrator.start()
    else:
        logger.info("Background sync is disabled")

    yield

    logger.info("fodsync shutting down")
    await app.state.orchestrator.stop()
    app.state.messenger.detach()


def create_app() -> FastAPI:
    app = FastAPI(title="fodsync", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logging.getLogger(__name__).exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("fodsync.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL)
