from __future__ import annotations

from typing import Any, Dict, FrozenSet, Optional

from svc_vton.domain.enums import GenerationStatus, TERMINAL_STATUSES

# queued -> processing -> {succeeded | failed}; any non-terminal -> expired.
_ALLOWED_FROM: Dict[GenerationStatus, FrozenSet[GenerationStatus]] = {
    GenerationStatus.queued: frozenset(),
    GenerationStatus.processing: frozenset({GenerationStatus.queued}),
    GenerationStatus.succeeded: frozenset({GenerationStatus.queued, GenerationStatus.processing}),
    GenerationStatus.failed: frozenset({GenerationStatus.queued, GenerationStatus.processing}),
    GenerationStatus.expired: frozenset({GenerationStatus.queued, GenerationStatus.processing}),
}


def is_terminal(status: Any) -> bool:
    try:
        return GenerationStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False


def normalize_status(raw: Any) -> GenerationStatus:
    """Unknown or missing statuses are coerced to failed, never to success."""
    if isinstance(raw, GenerationStatus):
        return raw
    try:
        return GenerationStatus(str(raw or "").strip().lower())
    except ValueError:
        return GenerationStatus.failed


def allowed_sources(target: GenerationStatus) -> FrozenSet[GenerationStatus]:
    return _ALLOWED_FROM[target]


def can_transition(current: Any, target: GenerationStatus) -> bool:
    return normalize_status(current) in _ALLOWED_FROM[target]


def normalize_runner_state(raw: Any) -> Optional[GenerationStatus]:
    s = str(raw or "").strip().lower().replace("-", "_")
    if s in ("pending", "queued", "job_state_queued", "job_state_pending"):
        return GenerationStatus.queued
    if s in ("running", "processing", "in_progress", "job_state_running"):
        return GenerationStatus.processing
    if s in ("succeeded", "success", "completed", "complete", "done", "job_state_succeeded"):
        return GenerationStatus.succeeded
    if s in ("failed", "error", "cancelled", "canceled", "job_state_failed", "job_state_cancelled"):
        return GenerationStatus.failed
    return None
