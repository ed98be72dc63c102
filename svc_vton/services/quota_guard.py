from __future__ import annotations

import logging
from typing import Any, Mapping

from svc_vton.domain.enums import GenerationErrorCode
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.domain.models import FreeQuotaSnapshot

logger = logging.getLogger("quota_guard")


def quota_snapshot(profile: Mapping[str, Any]) -> FreeQuotaSnapshot:
    total = int(profile.get("free_generation_quota") or 0)
    used = int(profile.get("free_generation_used") or 0)
    if used > total:
        logger.warning(
            "quota_used_exceeds_total",
            extra={"user_id": profile.get("user_id"), "used": used, "total": total},
        )
    return FreeQuotaSnapshot(
        total=total,
        used=used,
        remaining=max(total - used, 0),
        renews_at=profile.get("quota_renewal_at"),
    )


def ensure_quota(profile: Mapping[str, Any]) -> FreeQuotaSnapshot:
    """
    Returns the snapshot the caller must later increment from.
    Raises quota_exhausted when nothing is left.
    """
    snapshot = quota_snapshot(profile)
    if snapshot.remaining <= 0:
        raise GenerationServiceError(
            GenerationErrorCode.quota_exhausted,
            "You have used all of your free generations.",
            context={"total": snapshot.total, "used": snapshot.used, "renewsAt": snapshot.renews_at},
        )
    return snapshot
