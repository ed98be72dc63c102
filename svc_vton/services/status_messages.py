from __future__ import annotations

from typing import Dict, Optional

from svc_vton.domain.enums import FailureAction, GenerationErrorCode, GenerationStatus
from svc_vton.domain.models import FailureContext, StatusMessage

UNKNOWN_FAILURE = "unknown_failure"
EXPIRED_FAILURE = "expired"
MISSING_RESULT = "missing_result"

STATUS_MESSAGES: Dict[str, StatusMessage] = {
    GenerationStatus.queued.value: StatusMessage(
        label="Queued",
        description="The job is waiting to start on the rendering service.",
    ),
    GenerationStatus.processing.value: StatusMessage(
        label="Processing",
        description="Your try-on is being rendered from the uploaded images.",
    ),
    GenerationStatus.succeeded.value: StatusMessage(
        label="Ready",
        description="Your try-on is ready to view and download.",
    ),
    GenerationStatus.failed.value: StatusMessage(
        label="Failed",
        description="The rendering service did not finish this generation.",
    ),
    GenerationStatus.expired.value: StatusMessage(
        label="Expired",
        description="This generation has expired and is no longer available.",
    ),
    "unknown": StatusMessage(
        label="Unknown status",
        description="The current status of this generation could not be determined.",
    ),
}

EXPIRED_DESCRIPTION = "The retention period has ended and the result has been removed."

# Fixed, non-technical copy per error code returned by the API.
ERROR_MESSAGES: Dict[str, str] = {
    GenerationErrorCode.invalid_request.value: "The request could not be processed. Check the file and try again.",
    GenerationErrorCode.unauthorized.value: "Please sign in again to continue.",
    GenerationErrorCode.consent_mismatch.value: "Please accept the current consent policy before generating.",
    GenerationErrorCode.persona_missing.value: "Upload a persona photo before starting a generation.",
    GenerationErrorCode.quota_exhausted.value: "You have used all of your free generations.",
    GenerationErrorCode.profile_not_found.value: "Your profile could not be found.",
    GenerationErrorCode.storage_failure.value: "We could not save your images. Please try again.",
    GenerationErrorCode.database_failure.value: "We could not save your generation. Please try again.",
    GenerationErrorCode.vertex_failure.value: "The rendering service is unavailable right now. Please try again.",
    GenerationErrorCode.not_found.value: "This generation could not be found.",
    GenerationErrorCode.invalid_state.value: "This action is not available for the generation in its current state.",
    "internal_error": "Something went wrong on our side. Please try again.",
}

_SUPPORT_RETRY = [FailureAction.retry, FailureAction.contact_support]

FAILURE_CONTEXTS: Dict[str, FailureContext] = {
    GenerationErrorCode.quota_exhausted.value: FailureContext(
        code=GenerationErrorCode.quota_exhausted.value,
        title="Generation limit reached",
        description="You have used your full allowance of generations for this period. It renews automatically.",
        hint="Wait for the allowance to renew or contact us about a larger plan.",
        actions=[FailureAction.contact_support, FailureAction.retry],
    ),
    GenerationErrorCode.persona_missing.value: FailureContext(
        code=GenerationErrorCode.persona_missing.value,
        title="Persona photo missing",
        description="A current persona photo is needed to render a try-on and none is saved on your profile.",
        hint="Upload your persona photo again from the profile page.",
        actions=[FailureAction.reupload_garment, FailureAction.retry],
    ),
    GenerationErrorCode.invalid_request.value: FailureContext(
        code=GenerationErrorCode.invalid_request.value,
        title="Request rejected",
        description="The job was rejected because of invalid input, usually the file format or size.",
        hint="Make sure the file meets the requirements and try again.",
        actions=[FailureAction.reupload_garment, FailureAction.retry],
    ),
    MISSING_RESULT: FailureContext(
        code=MISSING_RESULT,
        title="Result was not saved",
        description="The job reported completion but the result file is not available.",
        hint="Start the generation again. Contact us if it keeps happening.",
        actions=list(_SUPPORT_RETRY),
    ),
    GenerationErrorCode.vertex_failure.value: FailureContext(
        code=GenerationErrorCode.vertex_failure.value,
        title="Rendering service error",
        description="The rendering service returned an error while processing the job.",
        hint="Wait a moment and try again. Report it to support if it persists.",
        actions=list(_SUPPORT_RETRY),
    ),
    GenerationErrorCode.consent_mismatch.value: FailureContext(
        code=GenerationErrorCode.consent_mismatch.value,
        title="Consent required",
        description="The consent policy changed since you last accepted it.",
        hint="Review and accept the current policy, then try again.",
        actions=[FailureAction.retry],
    ),
    GenerationErrorCode.storage_failure.value: FailureContext(
        code=GenerationErrorCode.storage_failure.value,
        title="Images could not be stored",
        description="Saving the images for this generation failed.",
        hint="Try again in a moment.",
        actions=list(_SUPPORT_RETRY),
    ),
    GenerationErrorCode.database_failure.value: FailureContext(
        code=GenerationErrorCode.database_failure.value,
        title="Generation could not be recorded",
        description="Saving the generation record failed.",
        hint="Try again in a moment.",
        actions=list(_SUPPORT_RETRY),
    ),
    EXPIRED_FAILURE: FailureContext(
        code=EXPIRED_FAILURE,
        title="Generation expired",
        description=EXPIRED_DESCRIPTION,
        hint="Start a new generation to get a fresh result.",
        actions=[FailureAction.retry],
    ),
}

DEFAULT_FAILURE_CONTEXT = FailureContext(
    code=UNKNOWN_FAILURE,
    title="Unexpected generation error",
    description="An unknown error occurred while rendering. No further details are available.",
    hint="Start the generation again or report the problem to support.",
    actions=list(_SUPPORT_RETRY),
)


def get_status_message(status: Optional[str]) -> StatusMessage:
    return STATUS_MESSAGES.get(status or "unknown", STATUS_MESSAGES["unknown"])


def get_failure_context(code: Optional[str]) -> Optional[FailureContext]:
    """Unknown codes keep their own code but borrow the generic copy and actions."""
    if not code:
        return None
    known = FAILURE_CONTEXTS.get(code)
    if known is not None:
        return known.model_copy(deep=True)
    return DEFAULT_FAILURE_CONTEXT.model_copy(update={"code": code}, deep=True)


def error_message(code: str) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES["internal_error"])
