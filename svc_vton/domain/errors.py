from __future__ import annotations

from typing import Any, Dict, Optional

from svc_vton.domain.enums import GenerationErrorCode

HTTP_STATUS_BY_CODE: Dict[GenerationErrorCode, int] = {
    GenerationErrorCode.invalid_request: 400,
    GenerationErrorCode.unauthorized: 401,
    GenerationErrorCode.consent_mismatch: 403,
    GenerationErrorCode.persona_missing: 403,
    GenerationErrorCode.profile_not_found: 404,
    GenerationErrorCode.not_found: 404,
    GenerationErrorCode.invalid_state: 409,
    GenerationErrorCode.quota_exhausted: 429,
    GenerationErrorCode.storage_failure: 500,
    GenerationErrorCode.database_failure: 500,
    GenerationErrorCode.vertex_failure: 502,
}


class GenerationServiceError(RuntimeError):
    """
    Typed failure crossing the service boundary.

    code        -> stable machine code (GenerationErrorCode)
    http_status -> transport status the API layer responds with
    context     -> structured details (validator reason, offending values, ...)
    """

    def __init__(
        self,
        code: GenerationErrorCode,
        message: str,
        *,
        http_status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = GenerationErrorCode(code)
        self.message = message
        self.http_status = http_status or HTTP_STATUS_BY_CODE.get(self.code, 500)
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "httpStatus": self.http_status,
            "message": self.message,
        }


class VertexApiError(RuntimeError):
    pass
