from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from svc_vton.domain.enums import GenerationErrorCode, GenerationStatus, ProgressTone
from svc_vton.domain.lifecycle import is_terminal, normalize_status
from svc_vton.domain.models import (
    EtaCountdownViewModel,
    FailureContext,
    GenerationDetail,
    GenerationQueuedResponse,
    GenerationStatusViewModel,
    ProgressItem,
    StatusActionPermissions,
    StatusMetadataViewModel,
)
from svc_vton.services.status_messages import (
    EXPIRED_DESCRIPTION,
    EXPIRED_FAILURE,
    MISSING_RESULT,
    UNKNOWN_FAILURE,
    get_failure_context,
    get_status_message,
)

Clock = Callable[[], datetime]

_TONES: Dict[GenerationStatus, ProgressTone] = {
    GenerationStatus.queued: ProgressTone.info,
    GenerationStatus.processing: ProgressTone.info,
    GenerationStatus.succeeded: ProgressTone.success,
    GenerationStatus.failed: ProgressTone.error,
    GenerationStatus.expired: ProgressTone.warning,
}

_STEP_COPY: Dict[GenerationStatus, Tuple[str, str]] = {
    GenerationStatus.queued: ("Queued", "The request was accepted and is waiting to start."),
    GenerationStatus.processing: ("Processing", "The rendering service is generating the result."),
    GenerationStatus.succeeded: ("Completed", "The result is stored and ready to download."),
    GenerationStatus.failed: ("Failed", "The generation stopped because of an error."),
    GenerationStatus.expired: ("Expired", "The files were removed under the retention policy."),
}

DOWNLOAD_UNAVAILABLE = "The download link is temporarily unavailable."
QUOTA_EXHAUSTED_REASON = "The generation limit has been reached."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enforce_expiry(status: GenerationStatus, expires_at: Optional[datetime], now: datetime) -> GenerationStatus:
    """Evaluated on every read; rows are never swept proactively."""
    if expires_at is not None and expires_at <= now:
        return GenerationStatus.expired
    return status


def resolve_failure_code(
    status: GenerationStatus,
    error_reason: Optional[str],
    result_path: Optional[str],
) -> Optional[str]:
    if status == GenerationStatus.succeeded:
        return None if result_path else MISSING_RESULT
    if status == GenerationStatus.failed:
        return error_reason or UNKNOWN_FAILURE
    if status == GenerationStatus.expired:
        return EXPIRED_FAILURE
    return None


def derive_action_permissions(
    status: GenerationStatus,
    *,
    has_result_asset: bool,
    has_result_url: bool,
    failure_code: Optional[str],
) -> StatusActionPermissions:
    actions = StatusActionPermissions()

    if status == GenerationStatus.succeeded:
        actions.can_view_result = True
        actions.can_rate = True
        actions.can_download = has_result_asset
        if not has_result_url:
            actions.disabled_reason = DOWNLOAD_UNAVAILABLE
    elif status in (GenerationStatus.failed, GenerationStatus.expired):
        actions.can_retry = True
    else:
        actions.can_keep_working = True

    if failure_code == GenerationErrorCode.quota_exhausted.value:
        actions.can_retry = False
        actions.disabled_reason = QUOTA_EXHAUSTED_REASON

    return actions


def _step_timestamp(
    key: GenerationStatus,
    *,
    created_at: datetime,
    started_at: Optional[datetime],
    completed_at: Optional[datetime],
    expires_at: Optional[datetime],
) -> Optional[datetime]:
    if key == GenerationStatus.queued:
        return created_at
    if key == GenerationStatus.processing:
        return started_at
    if key == GenerationStatus.expired:
        return expires_at
    return completed_at


_PROGRESS_SEQUENCE = (
    GenerationStatus.queued,
    GenerationStatus.processing,
    GenerationStatus.succeeded,
    GenerationStatus.failed,
    GenerationStatus.expired,
)

_OUTCOMES = (GenerationStatus.succeeded, GenerationStatus.failed, GenerationStatus.expired)


def build_timeline(
    status: GenerationStatus,
    *,
    created_at: datetime,
    started_at: Optional[datetime] = None,
    completed_at: Optional[datetime] = None,
    expires_at: Optional[datetime] = None,
) -> List[ProgressItem]:
    """
    queued -> processing -> succeeded | failed | expired.

    A terminal generation only shows its own outcome; a running one shows every
    possible outcome, none of them current yet.
    """
    current = _PROGRESS_SEQUENCE.index(status)
    terminal = is_terminal(status)

    items: List[ProgressItem] = []
    for index, key in enumerate(_PROGRESS_SEQUENCE):
        if terminal and key in _OUTCOMES and key != status:
            continue
        label, description = _STEP_COPY[key]
        is_current = index == current
        items.append(
            ProgressItem(
                key=key,
                label=label,
                description=description,
                timestamp=_step_timestamp(
                    key,
                    created_at=created_at,
                    started_at=started_at,
                    completed_at=completed_at,
                    expires_at=expires_at,
                ),
                is_current=is_current,
                is_completed=index < current or (is_current and terminal),
                tone=_TONES[key],
            )
        )
    return items


def compute_eta_target(
    status: GenerationStatus,
    *,
    created_at: datetime,
    eta_seconds: Optional[int],
    completed_at: Optional[datetime] = None,
    expires_at: Optional[datetime] = None,
) -> Optional[datetime]:
    if eta_seconds is None:
        return None

    predicted = created_at + timedelta(seconds=eta_seconds)

    if is_terminal(status):
        return completed_at or predicted

    # never promise a completion after the data is gone
    if expires_at is not None and expires_at < predicted:
        return expires_at
    return predicted


def _status_description(status: GenerationStatus, fallback: str, context: Optional[FailureContext]) -> str:
    if status == GenerationStatus.failed and context is not None:
        return context.description
    if status == GenerationStatus.expired:
        return EXPIRED_DESCRIPTION
    return fallback


def build_generation_status_view_model(
    *,
    queued: Optional[GenerationQueuedResponse] = None,
    detail: Optional[GenerationDetail] = None,
    persona_preview_url: Optional[str] = None,
    garment_preview_url: Optional[str] = None,
    result_url: Optional[str] = None,
    now: Clock = _utcnow,
) -> GenerationStatusViewModel:
    """
    Pure transform of the latest known record into what a status panel shows.

    `detail` wins over `queued` for every field both carry; `queued` only
    contributes the ETA and the remaining quota from the create response.
    """
    source = detail or queued
    if source is None:
        raise ValueError("a generation payload is required to build the status view model")
    if not source.id:
        raise ValueError("a generation id is required to build the status view model")

    raw_status = detail.status if detail is not None else (queued.status if queued is not None else None)
    expires_at = (detail.expires_at if detail is not None else None) or (queued.expires_at if queued else None)
    status = enforce_expiry(normalize_status(raw_status), expires_at, now())

    created_at = (detail.created_at if detail is not None else None) or (queued.created_at if queued else None)
    if created_at is None:
        raise ValueError("a creation timestamp is required to build the status view model")

    started_at = detail.started_at if detail is not None else None
    completed_at = detail.completed_at if detail is not None else None
    result_path = detail.result_path if detail is not None else None
    error_reason = detail.error_reason if detail is not None else None

    message = get_status_message(status.value)
    failure_code = resolve_failure_code(status, error_reason, result_path)
    context = get_failure_context(failure_code)

    actions = derive_action_permissions(
        status,
        has_result_asset=bool(result_url or result_path),
        has_result_url=bool(result_url),
        failure_code=failure_code,
    )

    eta_seconds = queued.eta_seconds if queued is not None else None
    vertex_job_id = (detail.vertex_job_id if detail is not None else None) or (
        queued.vertex_job_id if queued is not None else None
    )

    return GenerationStatusViewModel(
        id=source.id,
        status=status,
        status_label=message.label,
        status_description=_status_description(status, message.description, context),
        persona_preview_url=persona_preview_url,
        garment_preview_url=garment_preview_url,
        result_url=result_url,
        vertex_job_id=vertex_job_id,
        error_code=failure_code,
        error_message=context.description if context is not None else None,
        failure_context=context,
        eta_seconds=eta_seconds,
        eta_target=compute_eta_target(
            status,
            created_at=created_at,
            eta_seconds=eta_seconds,
            completed_at=completed_at,
            expires_at=expires_at,
        ),
        created_at=created_at,
        started_at=started_at,
        completed_at=completed_at,
        expires_at=expires_at,
        timeline=build_timeline(
            status,
            created_at=created_at,
            started_at=started_at,
            completed_at=completed_at,
            expires_at=expires_at,
        ),
        actions=actions,
        quota_remaining=queued.quota.remaining_free if queued is not None else None,
    )


def build_status_metadata(
    *,
    queued: Optional[GenerationQueuedResponse] = None,
    detail: Optional[GenerationDetail] = None,
    persona_preview_url: Optional[str] = None,
    garment_preview_url: Optional[str] = None,
) -> StatusMetadataViewModel:
    source = detail or queued
    if source is None:
        raise ValueError("a generation payload is required to build status metadata")

    def pick(name_detail: str, name_queued: str):
        value = getattr(detail, name_detail, None) if detail is not None else None
        if value is None and queued is not None:
            value = getattr(queued, name_queued, None)
        return value

    created_at = pick("created_at", "created_at")
    if created_at is None:
        raise ValueError("a creation timestamp is required to build status metadata")

    return StatusMetadataViewModel(
        generation_id=source.id,
        persona_path=pick("persona_snapshot_path", "persona_snapshot_path"),
        garment_path=pick("garment_snapshot_path", "garment_snapshot_path"),
        persona_preview_url=persona_preview_url,
        garment_preview_url=garment_preview_url,
        vertex_job_id=pick("vertex_job_id", "vertex_job_id"),
        created_at=created_at,
        started_at=detail.started_at if detail is not None else None,
        completed_at=detail.completed_at if detail is not None else None,
        expires_at=pick("expires_at", "expires_at"),
        quota_remaining=queued.quota.remaining_free if queued is not None else None,
    )


def format_duration(seconds: float) -> str:
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "00:00"
    total = int(seconds)
    minutes, remainder = divmod(total, 60)
    return f"{minutes:02d}:{remainder:02d}"


def build_eta_countdown(
    eta_target: Optional[datetime],
    eta_seconds: Optional[int],
    now: Clock = _utcnow,
) -> Optional[EtaCountdownViewModel]:
    if eta_target is None or eta_seconds is None:
        return None

    remaining = max(math.floor((eta_target - now()).total_seconds()), 0)
    return EtaCountdownViewModel(
        target_time=eta_target,
        initial_seconds=eta_seconds,
        formatted_remaining=format_duration(remaining),
        is_expired=remaining <= 0,
    )
