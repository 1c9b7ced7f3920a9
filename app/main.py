import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.accounts.router import router as accounts_router
from app.api.v1.auth.router import router as auth_router
from app.api.v1.fees.router import router as fees_router
from app.api.v1.imports.router import router as imports_router
from app.api.v1.installments.router import router as installments_router
from app.api.v1.messages.router import router as messages_router
from app.api.v1.schools.router import router as schools_router
from app.api.v1.settings.router import router as settings_router
from app.api.v1.students.router import router as students_router
from app.api.v1.system.router import router as system_router
from app.core.config import Settings, settings
from app.core.container import ServiceContainer

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the service container on startup and release its connections on shutdown."""
        logger.info("Starting School Finance API...")
        owns_container = getattr(app.state, "container", None) is None
        if owns_container:
            app.state.container = await ServiceContainer.build(app_settings)
        if not app.state.container.reconciler.is_configured:
            logger.warning("Remote account store is not configured; accounts are kept locally only")
        yield
        logger.info("Shutting down School Finance API...")
        if owns_container:
            await app.state.container.aclose()

    app = FastAPI(title="School Finance API", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(schools_router)
    app.include_router(accounts_router)
    app.include_router(students_router)
    app.include_router(fees_router)
    app.include_router(installments_router)
    app.include_router(messages_router)
    app.include_router(settings_router)
    app.include_router(imports_router)
    app.include_router(system_router)

    return app


configure_logging(settings.log_level)
app = create_app()
