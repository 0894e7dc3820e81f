"""
PluginGate FastAPI Application
Plugin upload, admission and management API
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .config import get_settings
from .routes import plugin_management

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan management."""
    logger.info(f"Starting {settings.app_name} application...")

    settings.plugins_dir.mkdir(parents=True, exist_ok=True)
    settings.temp_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Plugins directory: {settings.plugins_dir.resolve()}")

    yield

    logger.info(f"Shutting down {settings.app_name} application...")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Plugin admission pipeline: manifest validation, security scanning and installation",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(plugin_management.router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for logging."""
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.get("/health")
    async def health_check() -> dict:
        return {"status": "healthy", "service": settings.app_name, "version": settings.app_version}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
