"""
Main entry point for the FastAPI gateway.
Configures lifespan events and mounts routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from webchat.api.routes import router as api_router
from webchat.config.settings import settings
from webchat.core.errors import TransportError
from webchat.services.gateway import gateway

# Setup Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# pylint: disable=redefined-outer-name
# pylint: disable=unused-argument
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application Lifecycle Manager.
    Connects the shared transport on startup, tears every channel down on shutdown.
    """
    logger.info("Starting %s...", settings.app_name)

    try:
        await gateway.start()
    except TransportError as e:
        logger.warning("Transport unavailable, channels disabled: %s", e)

    yield

    logger.info("Shutting down %s...", settings.app_name)
    await gateway.shutdown()


def create_app() -> FastAPI:
    """Factory to create the app."""
    application = FastAPI(
        title=settings.app_name,
        description="Room channel synchronizer for the WebChat service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict this
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    application.include_router(api_router, prefix="/api")

    return application


app = create_app()
