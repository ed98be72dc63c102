from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from svc_vton.api import build_router
from svc_vton.config import settings
from svc_vton.db import close_pool, get_pool
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.domain.models import ErrorBody, ErrorEnvelope, model_payload
from svc_vton.logging import configure_logging
from svc_vton.services.status_messages import error_message

logger = logging.getLogger("svc_vton")


def _error_response(status_code: int, body: ErrorBody) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=model_payload(ErrorEnvelope(error=body), exclude_none=True),
        headers={"Cache-Control": "no-store"},
    )


async def generation_error_handler(request: Request, exc: GenerationServiceError) -> JSONResponse:
    request_id = str(uuid.uuid4())
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "request_failed",
        extra={
            "request_id": request_id,
            "code": exc.code.value,
            "status_code": exc.http_status,
            "path": request.url.path,
            "reason": exc.message,
        },
    )
    return _error_response(
        exc.http_status,
        ErrorBody(
            code=exc.code.value,
            message=exc.message,
            request_id=request_id,
            details=exc.context or None,
        ),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = str(uuid.uuid4())
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    logger.warning(
        "request_invalid",
        extra={"request_id": request_id, "path": request.url.path, "fields": fields},
    )
    return _error_response(
        400,
        ErrorBody(
            code="invalid_request",
            message=error_message("invalid_request"),
            request_id=request_id,
            details={"fields": fields},
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = str(uuid.uuid4())
    logger.exception("request_crashed", extra={"request_id": request_id, "path": request.url.path})
    return _error_response(
        500,
        ErrorBody(code="internal_error", message=error_message("internal_error"), request_id=request_id),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await get_pool()
    try:
        yield
    finally:
        await close_pool()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Virtual Try-On Service",
        version=settings.SERVICE_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_exception_handler(GenerationServiceError, generation_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(build_router())

    @app.get("/")
    async def root():
        return {"service": "svc-vton", "status": "ok", "version": settings.SERVICE_VERSION}

    return app


app = create_app()
