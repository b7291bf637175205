"""
Integration endpoints: catalog, OAuth connect flow and per-instance bindings.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse

from fasterclaw.api.auth import get_current_user
from fasterclaw.api.deps import get_integration_service, get_owned_instance
from fasterclaw.db import Instance, InstanceIntegration, User
from fasterclaw.schemas import (
    EnableIntegrationRequest,
    InstanceIntegrationResponse,
    IntegrationResponse,
    MessageResponse,
    OAuthInitiateRequest,
    OAuthInitiateResponse,
    UserIntegrationResponse,
)
from fasterclaw.services.integration_service import IntegrationService

router = APIRouter(tags=["Integrations"])


def binding_response(binding: InstanceIntegration) -> InstanceIntegrationResponse:
    connection = binding.user_integration
    return InstanceIntegrationResponse(
        id=binding.id,
        instance_id=binding.instance_id,
        user_integration_id=binding.user_integration_id,
        integration=IntegrationResponse.model_validate(connection.integration),
        account_identifier=connection.account_identifier,
        enabled_at=binding.enabled_at,
    )


# ── Catalog / connections ─────────────────────────────────────────────────────

@router.get("/integrations", response_model=List[IntegrationResponse])
async def list_integrations(
    current_user: User = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    return await service.list_catalog()


@router.get("/integrations/user", response_model=List[UserIntegrationResponse])
async def list_user_integrations(
    current_user: User = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    return await service.list_connections(current_user.id)


@router.delete("/integrations/user/{integration_id}", response_model=MessageResponse)
async def disconnect_integration(
    integration_id: str,
    current_user: User = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    await service.disconnect(current_user.id, integration_id)
    return MessageResponse(message="Integration disconnected")


# ── OAuth ─────────────────────────────────────────────────────────────────────

@router.post("/integrations/oauth/initiate", response_model=OAuthInitiateResponse)
async def initiate_oauth(
    body: OAuthInitiateRequest,
    current_user: User = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    return await service.initiate(current_user.id, body.integration_id)


@router.get("/integrations/oauth/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    service: IntegrationService = Depends(get_integration_service),
):
    """Provider redirect target. Authenticated by the signed ``state`` only."""
    url = await service.callback(code, state, error)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.post("/integrations/oauth/refresh/{user_integration_id}", response_model=MessageResponse)
async def refresh_token(
    user_integration_id: str,
    current_user: User = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    await service.refresh(current_user.id, user_integration_id)
    return MessageResponse(message="Token refreshed")


# ── Instance bindings ─────────────────────────────────────────────────────────

@router.get("/instances/{instance_id}/integrations", response_model=List[InstanceIntegrationResponse])
async def list_instance_integrations(
    instance: Instance = Depends(get_owned_instance),
    service: IntegrationService = Depends(get_integration_service),
):
    return [binding_response(b) for b in await service.list_bindings(instance)]


@router.post(
    "/instances/{instance_id}/integrations",
    response_model=InstanceIntegrationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enable_instance_integration(
    body: EnableIntegrationRequest,
    instance: Instance = Depends(get_owned_instance),
    current_user: User = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    binding = await service.enable(current_user.id, instance, body.user_integration_id)
    return binding_response(binding)


@router.delete("/instances/{instance_id}/integrations/{integration_id}", response_model=MessageResponse)
async def disable_instance_integration(
    integration_id: str,
    instance: Instance = Depends(get_owned_instance),
    current_user: User = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
):
    await service.disable(current_user.id, instance, integration_id)
    return MessageResponse(message="Integration disabled")
