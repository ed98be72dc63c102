from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import asyncpg

from svc_vton.config import settings
from svc_vton.domain.enums import GenerationErrorCode
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.domain.models import (
    ConsentState,
    GarmentCacheView,
    PersonaUploadResponse,
    PersonaView,
    ProfileView,
)
from svc_vton.domain.validators import ImageValidationFailure, validate_image
from svc_vton.repos.profiles_repo import ProfilesRepo
from svc_vton.services.quota_guard import quota_snapshot

logger = logging.getLogger("profile_service")

_PERSONA_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def consent_state(row: Mapping[str, Any], current_version: str) -> ConsentState:
    accepted = row.get("consent_version")
    return ConsentState(
        required_version=current_version,
        accepted_version=accepted,
        accepted_at=row.get("consent_accepted_at"),
        is_compliant=accepted == current_version,
    )


def build_profile_view(row: Mapping[str, Any], current_consent_version: str) -> ProfileView:
    persona: Optional[PersonaView] = None
    if row.get("persona_path"):
        persona = PersonaView(
            path=row["persona_path"],
            width=int(row.get("persona_width") or 0),
            height=int(row.get("persona_height") or 0),
            content_type=row.get("persona_content_type") or "image/*",
            updated_at=row.get("updated_at"),
        )

    return ProfileView(
        user_id=str(row["user_id"]),
        persona=persona,
        consent=consent_state(row, current_consent_version),
        quota=quota_snapshot(row),
        garment_cache=GarmentCacheView(
            path=row.get("garment_path"),
            expires_at=row.get("garment_expires_at"),
        ),
    )


def persona_storage_path(user_id: str, content_type: str) -> str:
    ext = _PERSONA_EXTENSIONS.get(content_type, "png")
    return f"users/{user_id}/persona/persona.{ext}"


class ProfileService:
    """Profile bootstrap, consent acceptance and persona uploads."""

    def __init__(
        self,
        profiles: ProfilesRepo,
        storage=None,
        *,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.profiles = profiles
        self.storage = storage
        self.now = now

    @classmethod
    def from_pool(cls, pool: asyncpg.Pool) -> "ProfileService":
        from svc_vton.services.azure_storage_service import AzureStorageService

        return cls(ProfilesRepo(pool), AzureStorageService())

    async def _load(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.profiles.get_profile(user_id)
        except Exception as e:
            logger.error("profile_load_failed", extra={"user_id": user_id, "error": type(e).__name__})
            raise GenerationServiceError(GenerationErrorCode.database_failure, "Unable to load the profile.") from e

    async def ensure_profile(self, user_id: str) -> Dict[str, Any]:
        row = await self._load(user_id)
        if row:
            return row

        try:
            await self.profiles.create_default_profile(
                user_id,
                consent_version=settings.CONSENT_BOOTSTRAP_VERSION,
                free_generation_quota=settings.DEFAULT_FREE_GENERATION_QUOTA,
                quota_renewal_at=self.now() + timedelta(days=settings.QUOTA_RENEWAL_DAYS),
            )
        except Exception as e:
            logger.error("profile_bootstrap_failed", extra={"user_id": user_id, "error": type(e).__name__})
            raise GenerationServiceError(GenerationErrorCode.database_failure, "Unable to create the profile.") from e

        logger.info("profile_bootstrapped", extra={"user_id": user_id})
        row = await self._load(user_id)
        if not row:
            raise GenerationServiceError(GenerationErrorCode.profile_not_found, "Profile not found.")
        return row

    async def get_profile_view(self, user_id: str) -> ProfileView:
        row = await self.ensure_profile(user_id)
        return build_profile_view(row, settings.CONSENT_CURRENT_VERSION)

    async def accept_consent(self, user_id: str, version: str) -> ConsentState:
        if version != settings.CONSENT_CURRENT_VERSION:
            raise GenerationServiceError(
                GenerationErrorCode.invalid_request,
                "Only the current consent version can be accepted.",
                context={"requiredVersion": settings.CONSENT_CURRENT_VERSION, "suppliedVersion": version},
            )

        await self.ensure_profile(user_id)
        try:
            row = await self.profiles.accept_consent(user_id, version=version, accepted_at=self.now())
        except Exception as e:
            raise GenerationServiceError(GenerationErrorCode.database_failure, "Unable to record consent.") from e
        if not row:
            raise GenerationServiceError(GenerationErrorCode.profile_not_found, "Profile not found.")

        logger.info("consent_accepted", extra={"user_id": user_id, "version": version})
        return consent_state(row, settings.CONSENT_CURRENT_VERSION)

    async def upload_persona(
        self,
        user_id: str,
        *,
        data: bytes,
        content_type: Optional[str],
    ) -> PersonaUploadResponse:
        row = await self.ensure_profile(user_id)
        consent = consent_state(row, settings.CONSENT_CURRENT_VERSION)
        if not consent.is_compliant:
            raise GenerationServiceError(
                GenerationErrorCode.consent_mismatch,
                "Accept the current consent policy before uploading a persona.",
            )

        validation = validate_image(data, content_type, settings.persona_constraints())
        if isinstance(validation, ImageValidationFailure):
            raise GenerationServiceError(
                GenerationErrorCode.invalid_request,
                validation.message,
                context={"reason": validation.code.value, "details": validation.details},
            )

        path = persona_storage_path(user_id, validation.content_type)
        try:
            await self.storage.upload_bytes(settings.VTON_PERSONA_CONTAINER, path, data, validation.content_type)
        except Exception as e:
            logger.error("persona_upload_failed", extra={"user_id": user_id, "path": path, "error": type(e).__name__})
            raise GenerationServiceError(GenerationErrorCode.storage_failure, "Unable to store the persona.") from e

        updated_at = self.now()
        try:
            updated = await self.profiles.set_persona(
                user_id,
                path=path,
                width=validation.width,
                height=validation.height,
                content_type=validation.content_type,
                updated_at=updated_at,
            )
        except Exception as e:
            raise GenerationServiceError(GenerationErrorCode.database_failure, "Unable to update the profile.") from e

        logger.info("persona_uploaded", extra={"user_id": user_id, "path": path})
        return PersonaUploadResponse(
            persona=PersonaView(
                path=path,
                width=validation.width,
                height=validation.height,
                content_type=validation.content_type,
                updated_at=updated_at,
            ),
            checksum=validation.checksum,
            consent=consent_state(updated or row, settings.CONSENT_CURRENT_VERSION),
        )
