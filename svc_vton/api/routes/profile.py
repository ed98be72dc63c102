from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from svc_vton.api.deps import get_current_user_id, get_profile_service
from svc_vton.domain.models import ConsentState, ConsentUpsertCommand, PersonaUploadResponse, ProfileView
from svc_vton.services.profile_service import ProfileService

router = APIRouter()


@router.get("", response_model=ProfileView)
async def get_profile(
    response: Response,
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileView:
    response.headers["Cache-Control"] = "no-store"
    return await service.get_profile_view(user_id)


@router.post("/consent", response_model=ConsentState)
async def accept_consent(
    body: ConsentUpsertCommand,
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
) -> ConsentState:
    return await service.accept_consent(user_id, body.version)


@router.post("/persona", status_code=status.HTTP_201_CREATED, response_model=PersonaUploadResponse)
async def upload_persona(
    persona: Optional[UploadFile] = File(default=None),
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
) -> PersonaUploadResponse:
    data = await persona.read() if persona is not None else b""
    content_type = persona.content_type if persona is not None else None
    return await service.upload_persona(user_id, data=data, content_type=content_type)
