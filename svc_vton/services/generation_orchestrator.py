from __future__ import annotations

import logging
import mimetypes
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import asyncpg

from svc_vton.config import settings
from svc_vton.domain.enums import GenerationErrorCode, GenerationStatus
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.domain.models import GenerationCreateCommand, GenerationQueuedResponse, QuotaView
from svc_vton.domain.validators import ImageValidationFailure, normalize_retention, validate_image
from svc_vton.repos.generations_repo import GenerationsRepo
from svc_vton.repos.profiles_repo import ProfilesRepo
from svc_vton.services.asset_snapshotter import AssetSnapshotter
from svc_vton.services.providers.base import EnqueueInput, JobRunnerClient
from svc_vton.services.quota_guard import ensure_quota

logger = logging.getLogger("generation_orchestrator")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationOrchestrator:
    """
    Single linear creation sequence per request.

    Preconditions (no side effects yet):
      garment payload -> retention -> profile -> consent -> persona -> quota
    Side effects, each with its own failure code:
      validate garment -> upload garment + copy persona -> insert row
      -> update profile -> enqueue job -> store job id (failure logged only)

    There is no cross-system rollback. A failure after the insert leaves the row
    queued without a job id for operators to inspect.
    """

    def __init__(
        self,
        *,
        profiles: ProfilesRepo,
        generations: GenerationsRepo,
        snapshotter: AssetSnapshotter,
        job_runner: JobRunnerClient,
        now: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.profiles = profiles
        self.generations = generations
        self.snapshotter = snapshotter
        self.job_runner = job_runner
        self.now = now
        self.id_factory = id_factory

    @classmethod
    def from_pool(cls, pool: asyncpg.Pool) -> "GenerationOrchestrator":
        from svc_vton.services.azure_storage_service import AzureStorageService
        from svc_vton.services.vertex_client import VertexVtonClient

        storage = AzureStorageService()
        return cls(
            profiles=ProfilesRepo(pool),
            generations=GenerationsRepo(pool),
            snapshotter=AssetSnapshotter(storage),
            job_runner=VertexVtonClient(storage),
        )

    def _reject(self, err: GenerationServiceError, user_id: str, *, side_effect: bool = False) -> GenerationServiceError:
        log = logger.error if side_effect else logger.warning
        log(
            "generation_create_aborted",
            extra={"user_id": user_id, "code": err.code.value, "status_code": err.http_status},
        )
        return err

    async def create_generation(self, command: GenerationCreateCommand, user_id: str) -> GenerationQueuedResponse:
        # ---- preconditions --------------------------------------------------
        if not command.garment:
            raise self._reject(
                GenerationServiceError(GenerationErrorCode.invalid_request, "A garment image is required."),
                user_id,
            )
        if not (command.garment_filename or "").strip():
            raise self._reject(
                GenerationServiceError(GenerationErrorCode.invalid_request, "The garment filename is required."),
                user_id,
            )

        try:
            retain_for_hours = normalize_retention(
                command.retain_for_hours,
                minimum=settings.VTON_RETAIN_HOURS_MIN,
                maximum=settings.VTON_RETAIN_HOURS_MAX,
                default=settings.VTON_RETAIN_HOURS_DEFAULT,
            )
        except GenerationServiceError as e:
            raise self._reject(e, user_id)

        try:
            profile = await self.profiles.get_profile(user_id)
        except Exception as e:
            raise self._reject(
                GenerationServiceError(GenerationErrorCode.database_failure, "Unable to load the profile."),
                user_id,
                side_effect=True,
            ) from e

        if not profile:
            raise self._reject(
                GenerationServiceError(GenerationErrorCode.profile_not_found, "Profile not found."),
                user_id,
            )

        accepted_version = profile.get("consent_version")
        if command.consent_version != accepted_version or accepted_version != settings.CONSENT_CURRENT_VERSION:
            raise self._reject(
                GenerationServiceError(
                    GenerationErrorCode.consent_mismatch,
                    "Consent must be accepted for the current policy version.",
                    context={
                        "requiredVersion": settings.CONSENT_CURRENT_VERSION,
                        "acceptedVersion": accepted_version,
                        "suppliedVersion": command.consent_version,
                    },
                ),
                user_id,
            )

        persona_path = profile.get("persona_path")
        if not persona_path:
            raise self._reject(
                GenerationServiceError(GenerationErrorCode.persona_missing, "Upload a persona before generating."),
                user_id,
            )

        try:
            quota = ensure_quota(profile)
        except GenerationServiceError as e:
            raise self._reject(e, user_id)

        # ---- side effects ---------------------------------------------------
        content_type = command.garment_content_type or mimetypes.guess_type(command.garment_filename)[0]
        validation = validate_image(command.garment, content_type, settings.garment_constraints())
        if isinstance(validation, ImageValidationFailure):
            raise self._reject(
                GenerationServiceError(
                    GenerationErrorCode.invalid_request,
                    validation.message,
                    context={"reason": validation.code.value, "details": validation.details},
                ),
                user_id,
            )

        generation_id = self.id_factory()
        log_extra = {"user_id": user_id, "generation_id": generation_id}

        try:
            garment_path = await self.snapshotter.persist_garment(
                user_id=user_id,
                generation_id=generation_id,
                filename=command.garment_filename,
                data=command.garment,
                content_type=validation.content_type,
            )
            persona_snapshot = await self.snapshotter.snapshot_persona(
                user_id=user_id,
                generation_id=generation_id,
                persona_path=persona_path,
            )
        except Exception as e:
            raise self._reject(
                GenerationServiceError(
                    GenerationErrorCode.storage_failure,
                    "Unable to store the generation assets.",
                    context={"generationId": generation_id},
                ),
                user_id,
                side_effect=True,
            ) from e

        now = self.now()
        expires_at = now + timedelta(hours=retain_for_hours)

        try:
            row = await self.generations.insert_generation(
                {
                    "id": generation_id,
                    "user_id": user_id,
                    "status": GenerationStatus.queued.value,
                    "persona_path_snapshot": persona_snapshot,
                    "garment_path_snapshot": garment_path,
                    "expires_at": expires_at,
                    "created_at": now,
                }
            )
        except Exception as e:
            raise self._reject(
                GenerationServiceError(
                    GenerationErrorCode.database_failure,
                    "Unable to record the generation.",
                    context={"generationId": generation_id},
                ),
                user_id,
                side_effect=True,
            ) from e

        try:
            await self.profiles.record_generation(
                user_id,
                garment_path=garment_path,
                garment_expires_at=expires_at,
                free_generation_used=quota.used + 1,
            )
        except Exception as e:
            raise self._reject(
                GenerationServiceError(
                    GenerationErrorCode.database_failure,
                    "Unable to update the profile.",
                    context={"generationId": generation_id},
                ),
                user_id,
                side_effect=True,
            ) from e

        try:
            job = await self.job_runner.enqueue_job(
                EnqueueInput(
                    generation_id=generation_id,
                    user_id=user_id,
                    persona_path=persona_snapshot,
                    garment_path=garment_path,
                    retain_for_hours=retain_for_hours,
                )
            )
        except Exception as e:
            raise self._reject(
                GenerationServiceError(
                    GenerationErrorCode.vertex_failure,
                    "The rendering service could not accept the job.",
                    context={"generationId": generation_id},
                ),
                user_id,
                side_effect=True,
            ) from e

        try:
            await self.generations.set_vertex_job_id(generation_id, job.job_id)
        except Exception as e:
            # the remote job is already running; reconciliation picks this up
            logger.warning(
                "generation_job_id_persist_failed",
                extra={**log_extra, "vertex_job_id": job.job_id, "error": type(e).__name__},
            )

        logger.info("generation_queued", extra={**log_extra, "vertex_job_id": job.job_id})

        return GenerationQueuedResponse(
            id=generation_id,
            status=GenerationStatus.queued,
            vertex_job_id=job.job_id,
            eta_seconds=job.eta_seconds if job.eta_seconds is not None else settings.VTON_DEFAULT_ETA_SECONDS,
            quota=QuotaView(remaining_free=max(quota.remaining - 1, 0)),
            created_at=_created_at(row, now),
            persona_snapshot_path=persona_snapshot,
            garment_snapshot_path=garment_path,
            expires_at=expires_at,
        )


def _created_at(row: Optional[Dict[str, Any]], fallback: datetime) -> datetime:
    value = (row or {}).get("created_at")
    return value if isinstance(value, datetime) else fallback
