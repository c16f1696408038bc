"""
flyergen API Server
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flyergen.config import get_settings
from flyergen.services.provider_config import ProviderConfigManager
from flyergen.services.provider_factory import ImageProviderService

settings = get_settings()

# Configure logging for application modules (must be after imports)
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    # Startup
    logger.info(f"Starting flyergen on port {settings.port}")

    service = ImageProviderService(ProviderConfigManager())
    app.state.image_service = service

    # Non-fatal - providers can be fixed and reloaded at runtime
    setup = service.validate_provider_setup()
    if setup["valid"]:
        logger.info("Image provider setup validated")
    else:
        for error in setup["errors"]:
            logger.warning(f"Image provider setup: {error}")

    yield

    # Shutdown
    logger.info("Shutting down flyergen")


app = FastAPI(
    title="flyergen",
    description="Image generation with provider fallback, retry and circuit breaking",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Welcome to flyergen", "docs": "/docs"}


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Basic liveness check at root level for k8s probes."""
    return {"status": "healthy", "service": "flyergen"}


# Import and include routers (must be after app is created to avoid circular imports)
from flyergen.api import router  # noqa: E402

app.include_router(router)
