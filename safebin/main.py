import logging

from fastapi import FastAPI

from safebin.core.config import Settings
from safebin.monitoring import router as monitoring_router
from safebin.routers import health, trash
from safebin.services import TrashService


logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, service: TrashService | None = None) -> FastAPI:
    """Build the HTTP application around one trash service."""

    settings = settings or Settings()
    logging.getLogger("safebin").setLevel(settings.log_level.upper())

    service = service or TrashService.from_settings(settings)
    logger.info("Serving trash at %s", service.trash_root)

    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.state.settings = settings
    app.state.trash_service = service

    app.include_router(trash.router)
    app.include_router(health.router)
    app.include_router(monitoring_router)
    return app
