"""
Instance endpoints.

POST   /instances                          - create (201, provisioning continues in background)
GET    /instances                          - list caller's instances
POST   /instances/validate-telegram-token  - check a bot token with Telegram
GET    /instances/{id}                     - fetch one
PATCH  /instances/{id}                     - update name / model / region (STOPPED only)
POST   /instances/{id}/start|stop|retry|sync
DELETE /instances/{id}                     - tear down and soft-delete
"""

import logging
from typing import List

import httpx
from fastapi import APIRouter, Depends, status

from fasterclaw.api.auth import get_current_user
from fasterclaw.api.deps import get_http, get_lifecycle, get_owned_instance
from fasterclaw.db import Instance, User
from fasterclaw.schemas import (
    InstanceCreate,
    InstanceResponse,
    InstanceUpdate,
    MessageResponse,
    TelegramTokenRequest,
    TelegramTokenValidation,
)
from fasterclaw.services.instance_service import InstanceLifecycle, validate_telegram_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instances", tags=["Instances"])


def to_response(lifecycle: InstanceLifecycle, instance: Instance) -> InstanceResponse:
    out = InstanceResponse.model_validate(instance)
    out.telegram_bot_token = lifecycle.masked_telegram_token(instance)
    return out


@router.post("", response_model=InstanceResponse, status_code=status.HTTP_201_CREATED)
async def create_instance(
    body: InstanceCreate,
    current_user: User = Depends(get_current_user),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    instance = await lifecycle.create(
        current_user,
        name=body.name,
        region=body.region,
        ai_model=body.ai_model,
        provider=body.provider,
        telegram_bot_token=body.telegram_bot_token,
    )
    return to_response(lifecycle, instance)


@router.get("", response_model=List[InstanceResponse])
async def list_instances(
    current_user: User = Depends(get_current_user),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return [to_response(lifecycle, i) for i in await lifecycle.list_for(current_user.id)]


@router.post("/validate-telegram-token", response_model=TelegramTokenValidation)
async def validate_token(
    body: TelegramTokenRequest,
    current_user: User = Depends(get_current_user),
    http: httpx.AsyncClient = Depends(get_http),
):
    return await validate_telegram_token(http, body.token)


@router.get("/{instance_id}", response_model=InstanceResponse)
async def get_instance(
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return to_response(lifecycle, instance)


@router.patch("/{instance_id}", response_model=InstanceResponse)
async def update_instance(
    body: InstanceUpdate,
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    instance = await lifecycle.update(instance, body.model_dump(exclude_unset=True))
    return to_response(lifecycle, instance)


@router.post("/{instance_id}/start", response_model=InstanceResponse)
async def start_instance(
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return to_response(lifecycle, await lifecycle.start(instance))


@router.post("/{instance_id}/stop", response_model=InstanceResponse)
async def stop_instance(
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return to_response(lifecycle, await lifecycle.stop(instance))


@router.post("/{instance_id}/retry", response_model=InstanceResponse)
async def retry_instance(
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return to_response(lifecycle, await lifecycle.retry(instance))


@router.post("/{instance_id}/sync", response_model=InstanceResponse)
async def sync_instance(
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return to_response(lifecycle, await lifecycle.sync(instance))


@router.delete("/{instance_id}", response_model=MessageResponse)
async def delete_instance(
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    await lifecycle.delete(instance)
    return MessageResponse(message="Instance deleted")
