from __future__ import annotations

import hmac
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from svc_vton.config import settings
from svc_vton.db import get_pool
from svc_vton.domain.enums import GenerationErrorCode
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.repos.generations_repo import GenerationsRepo
from svc_vton.security import decode_access_token
from svc_vton.services.generation_orchestrator import GenerationOrchestrator
from svc_vton.services.job_updates_service import JobUpdatesService
from svc_vton.services.profile_service import ProfileService

logger = logging.getLogger("svc_vton.deps")

bearer = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> GenerationServiceError:
    return GenerationServiceError(GenerationErrorCode.unauthorized, message)


def get_current_claims(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> dict:
    if not creds or not creds.credentials:
        raise _unauthorized("missing_token")
    try:
        return decode_access_token(creds.credentials)
    except Exception as e:
        raise _unauthorized("invalid_token") from e


async def get_current_user_id(claims: dict = Depends(get_current_claims)) -> str:
    sub = claims.get("sub")
    if not sub:
        raise _unauthorized("missing_sub")
    try:
        return str(UUID(str(sub)))
    except ValueError as e:
        raise _unauthorized("invalid_sub") from e


def verify_webhook_secret(
    x_vertex_webhook_secret: Optional[str] = Header(default=None, alias="X-Vertex-Webhook-Secret"),
) -> None:
    expected = settings.VERTEX_WEBHOOK_SECRET
    if not expected:
        logger.error("vertex_webhook_secret_not_configured")
        raise _unauthorized("webhook_not_configured")
    supplied = x_vertex_webhook_secret or ""
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise _unauthorized("invalid_webhook_secret")


RequireWebhookSecret = Depends(verify_webhook_secret)


async def get_generations_repo() -> GenerationsRepo:
    return GenerationsRepo(await get_pool())


async def get_orchestrator() -> GenerationOrchestrator:
    return GenerationOrchestrator.from_pool(await get_pool())


async def get_job_updates_service() -> JobUpdatesService:
    return JobUpdatesService.from_pool(await get_pool())


async def get_profile_service() -> ProfileService:
    return ProfileService.from_pool(await get_pool())
