from __future__ import annotations

from fastapi import APIRouter, Depends

from svc_vton.api.deps import RequireWebhookSecret, get_job_updates_service
from svc_vton.domain.models import VertexWebhookCommand, VertexWebhookResponse
from svc_vton.services.job_updates_service import JobUpdatesService

router = APIRouter()


@router.post("/webhooks/vertex", dependencies=[RequireWebhookSecret], response_model=VertexWebhookResponse)
async def vertex_job_update(
    body: VertexWebhookCommand,
    service: JobUpdatesService = Depends(get_job_updates_service),
) -> VertexWebhookResponse:
    return await service.apply_event(body)
