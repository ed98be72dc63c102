from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from svc_vton.config import settings
from svc_vton.domain.errors import VertexApiError
from svc_vton.services.providers.base import EnqueueInput, EnqueueResult

logger = logging.getLogger("vertex_vton")

# Only failures where the request never reached the runner are safe to resend.
_CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def _safe_json(resp: httpx.Response) -> Dict[str, Any]:
    text = (resp.text or "").strip()
    if not text:
        raise VertexApiError(f"Vertex enqueue returned HTTP {resp.status_code} with an empty body")
    try:
        obj = resp.json()
    except json.JSONDecodeError as e:
        raise VertexApiError(f"INVALID_JSON: {str(e)} body={text[:200]}") from e
    if not isinstance(obj, dict):
        raise VertexApiError(f"UNEXPECTED_JSON_TYPE: {type(obj).__name__}")
    return obj


def _extract_eta(obj: Dict[str, Any]) -> Optional[int]:
    eta = obj.get("etaSeconds")
    if isinstance(eta, bool) or not isinstance(eta, (int, float)):
        return None
    return int(eta)


class VertexVtonClient:
    """
    Vertex AI virtual try-on job runner.

    The runner pulls both snapshots itself, so the request carries read-only SAS URLs
    valid for the whole retention window instead of raw storage paths.
    """

    provider_name = "vertex_vton"

    def __init__(
        self,
        storage,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait=None,
    ) -> None:
        self.storage = storage
        self.url = settings.vertex_enqueue_url()
        self.api_key = settings.VERTEX_API_KEY
        self.model = settings.VERTEX_VTO_MODEL
        self.timeout = settings.VERTEX_TIMEOUT_SECONDS
        self.connect_attempts = max(1, int(settings.VERTEX_CONNECT_RETRIES))
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=4.0)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise VertexApiError("VERTEX_API_KEY is not set.")
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def build_payload(self, job: EnqueueInput) -> Dict[str, Any]:
        minutes = int(job.retain_for_hours) * 60
        return {
            "model": self.model,
            "input": {
                "personaUri": self.storage.read_url(settings.VTON_PERSONA_CONTAINER, job.persona_path, minutes),
                "garmentUri": self.storage.read_url(settings.VTON_GARMENT_CONTAINER, job.garment_path, minutes),
                "retainForHours": job.retain_for_hours,
            },
            "metadata": {
                "generationId": job.generation_id,
                "userId": job.user_id,
            },
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = self._headers()
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.connect_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(_CONNECT_ERRORS),
        ):
            with attempt:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    return await client.post(self.url, headers=headers, json=payload)
        raise VertexApiError("vertex_enqueue_not_attempted")

    async def enqueue_job(self, job: EnqueueInput) -> EnqueueResult:
        payload = self.build_payload(job)

        try:
            r = await self._post(payload)
        except httpx.HTTPError as e:
            logger.error(
                "vertex_enqueue_transport_error",
                extra={"generation_id": job.generation_id, "error": type(e).__name__},
            )
            raise VertexApiError(f"Vertex enqueue transport error: {type(e).__name__}: {e}") from e

        if r.status_code < 200 or r.status_code >= 300:
            logger.error(
                "vertex_enqueue_http_error",
                extra={"generation_id": job.generation_id, "status_code": r.status_code},
            )
            raise VertexApiError(f"Vertex enqueue failed {r.status_code}: {r.text[:500]}")

        data = _safe_json(r)
        job_id = data.get("jobId") or data.get("name")
        if not job_id:
            logger.error("vertex_enqueue_missing_job_id", extra={"generation_id": job.generation_id})
            raise VertexApiError("Vertex enqueue response is missing a job identifier")

        return EnqueueResult(job_id=str(job_id), eta_seconds=_extract_eta(data))
