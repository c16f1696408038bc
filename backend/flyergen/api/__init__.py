"""API routers for flyergen."""

from fastapi import APIRouter

from flyergen.api.images import router as images_router
from flyergen.api.providers import router as providers_router

router = APIRouter()
router.include_router(images_router, tags=["images"])
router.include_router(providers_router)  # Has its own prefix /api/providers and tags

__all__ = ["router"]
