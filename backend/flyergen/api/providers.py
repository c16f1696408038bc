"""Provider admin endpoints: health, configuration, circuit breakers."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from flyergen.adapters.base import ProviderType
from flyergen.api.dependencies import ImageServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/providers", tags=["providers"])


class SetDefaultProviderRequest(BaseModel):
    provider: ProviderType


class ProviderSetupResponse(BaseModel):
    valid: bool
    errors: list[str]


@router.get("/health")
async def providers_health(service: ImageServiceDep) -> dict[str, dict[str, Any]]:
    return await service.get_providers_health()


@router.get("/config")
async def providers_config(service: ImageServiceDep) -> list[dict[str, Any]]:
    return service.get_provider_config_summary()


@router.get("/validate", response_model=ProviderSetupResponse)
async def validate_providers(service: ImageServiceDep) -> ProviderSetupResponse:
    return ProviderSetupResponse(**service.validate_provider_setup())


@router.get("/circuit-breakers")
async def circuit_breakers(service: ImageServiceDep) -> dict[str, dict[str, Any]]:
    return service.get_circuit_breaker_status()


@router.post("/{provider}/reset-circuit")
async def reset_circuit(provider: ProviderType, service: ImageServiceDep) -> dict[str, str]:
    service.reset_circuit_breaker(provider)
    return {"status": "reset", "provider": provider.value}


@router.post("/default")
async def set_default_provider(
    body: SetDefaultProviderRequest, service: ImageServiceDep
) -> dict[str, str]:
    try:
        service.set_default_provider(body.provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"default_provider": body.provider.value}


@router.post("/reload")
async def reload_providers(service: ImageServiceDep) -> dict[str, Any]:
    service.reload_providers()
    logger.info("Image providers reloaded via API")
    return {
        "status": "reloaded",
        "providers": [p.value for p in service.get_available_providers()],
        "default_provider": service.registry.get_default_provider().value,
    }
