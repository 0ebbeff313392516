"""
FastAPI application factory.

Creates and configures the automation engine API application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from automation_engine import __version__
from automation_engine.api.routes import router
from automation_engine.config import get_settings
from automation_engine.engine.runtime import AutomationRuntime, start_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Connects Redis and PostgreSQL and starts the event stream consumer,
    unless a runtime was handed to create_app.
    """
    settings = get_settings()
    owned = getattr(app.state, "runtime", None) is None

    if owned:
        logger.info("Starting Workflow Automation Engine...")
        app.state.runtime = await start_runtime(settings)
        logger.info(f"Automation Engine started - Environment: {settings.environment.value}")

    yield

    if owned:
        logger.info("Shutting down Workflow Automation Engine...")
        await app.state.runtime.close()
        logger.info("Automation Engine shutdown complete")


def create_app(runtime: Optional[AutomationRuntime] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        runtime: Pre-built runtime (tests, embedding); the lifespan then
            neither starts nor closes connections
    """
    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Trigger/condition/action workflow automation for platform events",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    if runtime is not None:
        app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app


# Application instance for uvicorn
app = create_app()
