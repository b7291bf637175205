"""Web chat with a running instance"""

from typing import List

from fastapi import APIRouter, Depends, File, UploadFile

from fasterclaw.api.auth import get_current_user
from fasterclaw.api.deps import get_lifecycle, get_owned_instance
from fasterclaw.db import Instance, User
from fasterclaw.schemas import ChatMessageResponse, ChatRequest, ChatResponse, UploadResponse
from fasterclaw.services.instance_service import InstanceLifecycle

router = APIRouter(prefix="/instances", tags=["Chat"])


@router.post("/{instance_id}/chat", response_model=ChatResponse)
async def send_message(
    body: ChatRequest,
    instance: Instance = Depends(get_owned_instance),
    current_user: User = Depends(get_current_user),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    response = await lifecycle.chat(current_user, instance, body.message, body.file_path)
    return ChatResponse(response=response)


@router.post("/{instance_id}/chat/upload", response_model=UploadResponse)
async def upload_file(
    file: UploadFile = File(...),
    instance: Instance = Depends(get_owned_instance),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.upload(
        instance,
        file.read,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
    )


@router.get("/{instance_id}/chat/history", response_model=List[ChatMessageResponse])
async def chat_history(
    instance: Instance = Depends(get_owned_instance),
    current_user: User = Depends(get_current_user),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.history(current_user, instance)
