from __future__ import annotations

from enum import Enum


class GenerationStatus(str, Enum):
    queued = "queued"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"
    expired = "expired"


TERMINAL_STATUSES = frozenset(
    {GenerationStatus.succeeded, GenerationStatus.failed, GenerationStatus.expired}
)


class GenerationErrorCode(str, Enum):
    invalid_request = "invalid_request"
    unauthorized = "unauthorized"
    consent_mismatch = "consent_mismatch"
    persona_missing = "persona_missing"
    quota_exhausted = "quota_exhausted"
    profile_not_found = "profile_not_found"
    storage_failure = "storage_failure"
    database_failure = "database_failure"
    vertex_failure = "vertex_failure"
    not_found = "not_found"
    invalid_state = "invalid_state"


class ImageValidationErrorCode(str, Enum):
    missing_file = "missing_file"
    unsupported_mime = "unsupported_mime"
    exceeds_max_size = "exceeds_max_size"
    invalid_dimensions = "invalid_dimensions"
    below_min_resolution = "below_min_resolution"


class FailureAction(str, Enum):
    retry = "retry"
    contact_support = "contact-support"
    view_logs = "view-logs"
    reupload_garment = "reupload-garment"


class ProgressTone(str, Enum):
    info = "info"
    success = "success"
    warning = "warning"
    error = "error"


class PollerState(str, Enum):
    idle = "idle"
    scheduled = "scheduled"
    in_flight = "in_flight"
    terminal = "terminal"
