from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status

from svc_vton.api.deps import get_current_user_id, get_generations_repo, get_orchestrator
from svc_vton.domain.enums import GenerationErrorCode, GenerationStatus
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.domain.lifecycle import normalize_status
from svc_vton.domain.models import (
    GenerationCreateCommand,
    GenerationDetail,
    GenerationQueuedResponse,
    RatingCommand,
    RatingResponse,
)
from svc_vton.repos.generations_repo import GenerationsRepo
from svc_vton.services.generation_orchestrator import GenerationOrchestrator
from svc_vton.services.status_mapper import enforce_expiry

logger = logging.getLogger("vton_generations")

router = APIRouter()

_NO_STORE = "no-store"


def _parse_retention(raw: Optional[str]) -> Optional[int]:
    """Form fields arrive as text; anything but a plain integer is rejected."""
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as e:
        raise GenerationServiceError(
            GenerationErrorCode.invalid_request,
            "Retention must be provided as an integer value.",
            context={"value": raw},
        ) from e


def _generation_id(raw: str) -> str:
    try:
        return str(UUID(raw))
    except ValueError as e:
        raise GenerationServiceError(GenerationErrorCode.not_found, "Generation not found.") from e


async def _load_generation(repo: GenerationsRepo, generation_id: str, user_id: str) -> dict:
    try:
        row = await repo.get_generation(generation_id, user_id)
    except Exception as e:
        raise GenerationServiceError(GenerationErrorCode.database_failure, "Unable to load the generation.") from e
    if not row:
        raise GenerationServiceError(GenerationErrorCode.not_found, "Generation not found.")
    return row


@router.post(
    "/generations",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=GenerationQueuedResponse,
)
async def create_generation(
    response: Response,
    garment: Optional[UploadFile] = File(default=None),
    consent_version: str = Form(default="", alias="consentVersion"),
    retain_for_hours: Optional[str] = Form(default=None, alias="retainForHours"),
    user_id: str = Depends(get_current_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationQueuedResponse:
    data = await garment.read() if garment is not None else b""
    command = GenerationCreateCommand(
        garment=data,
        garment_filename=(garment.filename or "") if garment is not None else "",
        garment_content_type=garment.content_type if garment is not None else None,
        consent_version=consent_version,
        retain_for_hours=_parse_retention(retain_for_hours),
    )

    result = await orchestrator.create_generation(command, user_id)

    response.headers["Location"] = f"/api/vton/generations/{result.id}"
    response.headers["Cache-Control"] = _NO_STORE
    return result


@router.get("/generations/{generation_id}", response_model=GenerationDetail)
async def get_generation(
    generation_id: str,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    repo: GenerationsRepo = Depends(get_generations_repo),
) -> GenerationDetail:
    row = await _load_generation(repo, _generation_id(generation_id), user_id)
    response.headers["Cache-Control"] = _NO_STORE
    return GenerationDetail.from_row(row)


@router.post("/generations/{generation_id}/rating", response_model=RatingResponse)
async def rate_generation(
    generation_id: str,
    body: RatingCommand,
    user_id: str = Depends(get_current_user_id),
    repo: GenerationsRepo = Depends(get_generations_repo),
) -> RatingResponse:
    gid = _generation_id(generation_id)
    row = await _load_generation(repo, gid, user_id)

    now = datetime.now(timezone.utc)
    effective = enforce_expiry(normalize_status(row.get("status")), row.get("expires_at"), now)
    if effective != GenerationStatus.succeeded:
        raise GenerationServiceError(
            GenerationErrorCode.invalid_state,
            "Only completed generations can be rated.",
            context={"status": effective.value},
        )

    try:
        updated = await repo.set_rating(gid, user_id, rating=body.rating, rated_at=now, now=now)
    except Exception as e:
        raise GenerationServiceError(GenerationErrorCode.database_failure, "Unable to save the rating.") from e
    if not updated:
        # expired or changed between the read and the write
        raise GenerationServiceError(GenerationErrorCode.invalid_state, "Only completed generations can be rated.")

    logger.info("generation_rated", extra={"user_id": user_id, "generation_id": gid, "rating": body.rating})
    return RatingResponse(id=gid, rating=updated["user_rating"], rated_at=updated["rated_at"])
