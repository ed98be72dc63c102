from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class EnqueueInput:
    generation_id: str
    user_id: str
    persona_path: str  # snapshot path in the persona container
    garment_path: str  # snapshot path in the garment container
    retain_for_hours: int


@dataclass(frozen=True)
class EnqueueResult:
    job_id: str
    eta_seconds: Optional[int] = None


class JobRunnerClient(Protocol):
    provider_name: str

    async def enqueue_job(self, job: EnqueueInput) -> EnqueueResult:
        ...
