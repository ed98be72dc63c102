from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import asyncpg

from svc_vton.domain.enums import GenerationErrorCode, GenerationStatus
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.domain.lifecycle import allowed_sources, can_transition, normalize_runner_state, normalize_status
from svc_vton.domain.models import VertexWebhookCommand, VertexWebhookResponse
from svc_vton.repos.generations_repo import GenerationsRepo

logger = logging.getLogger("job_updates")

_ERROR_TOKEN = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def result_path_from_uri(output_uri: Optional[str]) -> Optional[str]:
    """
    gs://bucket/users/u/result.png                      -> users/u/result.png
    https://acct.blob.core.windows.net/container/a.png?sv -> a.png
    users/u/result.png                                   -> users/u/result.png
    """
    if not output_uri:
        return None
    raw = output_uri.strip()
    if not raw:
        return None

    parsed = urlparse(raw)
    if parsed.scheme == "gs":
        path = parsed.path
    elif parsed.scheme in ("http", "https"):
        # first path segment is the container
        path = parsed.path.lstrip("/").partition("/")[2]
    else:
        path = raw.split("?", 1)[0]

    path = path.lstrip("/")
    return path or None


def _error_reason(error: Optional[str]) -> str:
    token = (error or "").strip().lower()
    if _ERROR_TOKEN.match(token):
        return token
    return GenerationErrorCode.vertex_failure.value


class JobUpdatesService:
    """
    Applies job-runner callbacks to generation rows.

    Every write is conditional on the row still being in a legal source status,
    so a late or duplicated callback can never move a generation backwards or
    out of a terminal status.
    """

    def __init__(self, generations: GenerationsRepo, *, now: Callable[[], datetime] = _utcnow):
        self.generations = generations
        self.now = now

    @classmethod
    def from_pool(cls, pool: asyncpg.Pool) -> "JobUpdatesService":
        return cls(GenerationsRepo(pool))

    def _changes(self, target: GenerationStatus, row: Dict[str, Any], command: VertexWebhookCommand) -> Dict[str, Any]:
        now = self.now()
        changes: Dict[str, Any] = {"status": target.value}

        if target == GenerationStatus.processing:
            if not row.get("started_at"):
                changes["started_at"] = now
            return changes

        if not row.get("started_at"):
            changes["started_at"] = now
        changes["completed_at"] = now

        if target == GenerationStatus.succeeded:
            changes["result_path"] = result_path_from_uri(command.output_uri)
        elif target == GenerationStatus.failed:
            changes["error_reason"] = _error_reason(command.error)
        return changes

    async def apply_event(self, command: VertexWebhookCommand) -> VertexWebhookResponse:
        try:
            row = await self.generations.get_by_vertex_job_id(command.job_id)
        except Exception as e:
            raise GenerationServiceError(
                GenerationErrorCode.database_failure,
                "Unable to load the generation for this job.",
            ) from e

        if not row:
            logger.warning("job_update_unknown_job", extra={"vertex_job_id": command.job_id})
            raise GenerationServiceError(GenerationErrorCode.not_found, "No generation matches this job.")

        generation_id = row["id"]
        current = normalize_status(row.get("status"))
        extra = {"generation_id": generation_id, "vertex_job_id": command.job_id, "state": command.state}

        target = normalize_runner_state(command.state)
        if target is None:
            logger.info("job_update_state_ignored", extra=extra)
            return VertexWebhookResponse(status=current, applied=False)

        if not can_transition(current, target):
            logger.info("job_update_transition_skipped", extra={**extra, "status": current.value})
            return VertexWebhookResponse(status=current, applied=False)

        try:
            updated = await self.generations.apply_transition(
                generation_id,
                from_statuses=[s.value for s in allowed_sources(target)],
                changes=self._changes(target, row, command),
            )
        except Exception as e:
            raise GenerationServiceError(
                GenerationErrorCode.database_failure,
                "Unable to update the generation.",
                context={"generationId": generation_id},
            ) from e

        if updated is None:
            # another callback won the race; report whatever is stored now
            latest = await self.generations.get_by_vertex_job_id(command.job_id)
            status = normalize_status((latest or row).get("status"))
            logger.info("job_update_lost_race", extra={**extra, "status": status.value})
            return VertexWebhookResponse(status=status, applied=False)

        if target == GenerationStatus.succeeded and not updated.get("result_path"):
            logger.warning("job_update_succeeded_without_result", extra=extra)

        logger.info("job_update_applied", extra={**extra, "status": target.value})
        return VertexWebhookResponse(status=target, applied=True)