"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from flyergen.services.provider_factory import ImageProviderService


def get_image_service(request: Request) -> ImageProviderService:
    """Image provider service built at app startup."""
    return request.app.state.image_service


ImageServiceDep = Annotated[ImageProviderService, Depends(get_image_service)]
