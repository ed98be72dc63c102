from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from svc_vton.domain.enums import FailureAction, GenerationStatus, ProgressTone


class CamelModel(BaseModel):
    """Boundary payloads are camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Create
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationCreateCommand:
    garment: bytes
    garment_filename: str
    consent_version: str
    garment_content_type: Optional[str] = None
    retain_for_hours: Optional[int] = None


class QuotaView(CamelModel):
    remaining_free: int


class GenerationQueuedResponse(CamelModel):
    id: str
    status: GenerationStatus
    vertex_job_id: Optional[str] = None
    eta_seconds: int
    quota: QuotaView
    created_at: datetime
    persona_snapshot_path: str
    garment_snapshot_path: str
    expires_at: Optional[datetime] = None


class ErrorBody(CamelModel):
    code: str
    message: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorEnvelope(CamelModel):
    error: ErrorBody


# -----------------------------------------------------------------------------
# Generation record (raw status fetch)
# -----------------------------------------------------------------------------

class GenerationDetail(CamelModel):
    id: str
    # kept as a plain string: unknown values must survive until the view builder coerces them
    status: str
    persona_snapshot_path: Optional[str] = None
    garment_snapshot_path: Optional[str] = None
    result_path: Optional[str] = None
    vertex_job_id: Optional[str] = None
    error_reason: Optional[str] = None
    rating: Optional[int] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "GenerationDetail":
        return cls(
            id=str(row["id"]),
            status=str(row.get("status") or ""),
            persona_snapshot_path=row.get("persona_path_snapshot"),
            garment_snapshot_path=row.get("garment_path_snapshot"),
            result_path=row.get("result_path"),
            vertex_job_id=row.get("vertex_job_id"),
            error_reason=row.get("error_reason"),
            rating=row.get("user_rating"),
            created_at=row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            rated_at=row.get("rated_at"),
            expires_at=row.get("expires_at"),
        )


class RatingCommand(CamelModel):
    rating: int = Field(ge=1, le=5)


class RatingResponse(CamelModel):
    id: str
    rating: int
    rated_at: datetime


class VertexWebhookCommand(CamelModel):
    job_id: str = Field(min_length=1)
    state: str
    output_uri: Optional[str] = None
    error: Optional[str] = None


class VertexWebhookResponse(CamelModel):
    acknowledged: bool = True
    applied: bool = False
    status: Optional[GenerationStatus] = None


# -----------------------------------------------------------------------------
# Profile
# -----------------------------------------------------------------------------

class PersonaView(CamelModel):
    path: str
    width: int = 0
    height: int = 0
    content_type: str = "image/*"
    updated_at: Optional[datetime] = None


class ConsentState(CamelModel):
    required_version: str
    accepted_version: Optional[str] = None
    accepted_at: Optional[datetime] = None
    is_compliant: bool = False


class FreeQuotaSnapshot(CamelModel):
    total: int
    used: int
    remaining: int
    renews_at: Optional[datetime] = None


class GarmentCacheView(CamelModel):
    path: Optional[str] = None
    expires_at: Optional[datetime] = None


class ProfileView(CamelModel):
    user_id: str
    persona: Optional[PersonaView] = None
    consent: ConsentState
    quota: FreeQuotaSnapshot
    garment_cache: GarmentCacheView


class ConsentUpsertCommand(CamelModel):
    version: str = Field(min_length=1, max_length=32)


class PersonaUploadResponse(CamelModel):
    persona: PersonaView
    checksum: str
    consent: ConsentState


# -----------------------------------------------------------------------------
# Status view model (derived on every read, never persisted)
# -----------------------------------------------------------------------------

class StatusMessage(CamelModel):
    label: str
    description: str


class FailureContext(CamelModel):
    code: str
    title: str
    description: str
    hint: Optional[str] = None
    actions: List[FailureAction] = Field(default_factory=list)


class ProgressItem(CamelModel):
    key: GenerationStatus
    label: str
    description: str = ""
    timestamp: Optional[datetime] = None
    is_current: bool = False
    is_completed: bool = False
    tone: ProgressTone = ProgressTone.info


class StatusActionPermissions(CamelModel):
    can_view_result: bool = False
    can_download: bool = False
    can_retry: bool = False
    can_rate: bool = False
    can_keep_working: bool = False
    disabled_reason: Optional[str] = None


class GenerationStatusViewModel(CamelModel):
    id: str
    status: GenerationStatus
    status_label: str
    status_description: str
    persona_preview_url: Optional[str] = None
    garment_preview_url: Optional[str] = None
    result_url: Optional[str] = None
    vertex_job_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    failure_context: Optional[FailureContext] = None
    eta_seconds: Optional[int] = None
    eta_target: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    timeline: List[ProgressItem] = Field(default_factory=list)
    actions: StatusActionPermissions
    quota_remaining: Optional[int] = None


class StatusMetadataViewModel(CamelModel):
    generation_id: str
    persona_path: Optional[str] = None
    garment_path: Optional[str] = None
    persona_preview_url: Optional[str] = None
    garment_preview_url: Optional[str] = None
    vertex_job_id: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    quota_remaining: Optional[int] = None


class EtaCountdownViewModel(CamelModel):
    target_time: datetime
    initial_seconds: int
    formatted_remaining: str
    is_expired: bool


def model_payload(model: BaseModel, *, exclude_none: bool = False) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)
