from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from svc_vton.config import settings
from svc_vton.domain.enums import GenerationStatus, PollerState
from svc_vton.domain.lifecycle import is_terminal
from svc_vton.domain.models import (
    GenerationDetail,
    GenerationQueuedResponse,
    GenerationStatusViewModel,
    StatusMetadataViewModel,
)
from svc_vton.services.status_mapper import build_generation_status_view_model, build_status_metadata

logger = logging.getLogger("status_poller")

FetchFn = Callable[[str], Awaitable[GenerationDetail]]
PreviewResolver = Callable[[str, str], Awaitable[Optional[str]]]
Clock = Callable[[], datetime]

# Codes that end polling no matter what the transport said about retrying.
TERMINAL_ERROR_CODES = frozenset({"unauthorized", "not_found", "expired"})


class StatusFetchError(RuntimeError):
    def __init__(self, code: str, message: str, *, status: Optional[int] = None, retriable: bool = False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.retriable = retriable and code not in TERMINAL_ERROR_CODES

    def __repr__(self) -> str:
        return f"StatusFetchError(code={self.code!r}, status={self.status!r}, retriable={self.retriable!r})"


def _error_for_status(status: int, code: Optional[str] = None, message: Optional[str] = None) -> StatusFetchError:
    if status in (401, 403):
        return StatusFetchError("unauthorized", "Your session has expired. Sign in again to continue.", status=status)
    if status == 404:
        return StatusFetchError("not_found", "The generation was not found. It was removed or never existed.", status=status)
    if status == 410:
        return StatusFetchError("expired", "The generation has expired and is no longer available.", status=status)
    return StatusFetchError(
        code or "server_error",
        message or "Unable to load the generation status.",
        status=status,
        retriable=status >= 500,
    )


def _envelope(resp: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    try:
        body = resp.json()
    except ValueError:
        return None, None
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return None, None
    return error.get("code"), error.get("message")


def classify_fetch_error(exc: BaseException) -> StatusFetchError:
    """
    unauthorized / not_found / expired and other 4xx stop polling;
    5xx and transport failures are retried.
    """
    if isinstance(exc, StatusFetchError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        code, message = _envelope(exc.response)
        return _error_for_status(exc.response.status_code, code, message)
    if isinstance(exc, httpx.TransportError):
        return StatusFetchError(
            "network_error",
            "Could not reach the server. Try again in a moment.",
            retriable=True,
        )
    return StatusFetchError("network_error", f"Status fetch failed: {type(exc).__name__}", retriable=True)


def next_poll_delay(
    *,
    status: Optional[GenerationStatus],
    failure_count: int,
    processing_since: Optional[datetime],
    now: datetime,
    base_interval: float,
    fast_interval: float,
    accelerate_after: float,
) -> float:
    """Long-running processing always gets the fast interval, even while backing off."""
    if (
        status == GenerationStatus.processing
        and processing_since is not None
        and (now - processing_since).total_seconds() >= accelerate_after
    ):
        return fast_interval
    if failure_count > 0:
        return base_interval * min(2 ** failure_count, 4)
    return base_interval


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusPoller:
    """
    Adaptive refetch loop for one generation at a time.

      idle -> in_flight -> scheduled -> in_flight -> ... -> terminal

    Runs on the caller's event loop; nothing here is thread-safe and nothing needs to be.
    Every fetch is tagged with the epoch it started in, so results that arrive after
    stop(), a target switch, or a manual refresh are dropped.
    """

    def __init__(
        self,
        fetch: FetchFn,
        *,
        scheduler: Any = None,
        clock: Clock = _utcnow,
        preview_resolver: Optional[PreviewResolver] = None,
        on_change: Optional[Callable[["StatusPoller"], None]] = None,
        base_interval: Optional[float] = None,
        fast_interval: Optional[float] = None,
        accelerate_after: Optional[float] = None,
        max_failures: Optional[int] = None,
    ):
        self._fetch = fetch
        self._scheduler = scheduler
        self._clock = clock
        self._preview_resolver = preview_resolver
        self._on_change = on_change

        self.base_interval = base_interval if base_interval is not None else settings.STATUS_POLL_INTERVAL_SECONDS
        self.fast_interval = fast_interval if fast_interval is not None else settings.STATUS_POLL_FAST_SECONDS
        self.accelerate_after = (
            accelerate_after if accelerate_after is not None else settings.STATUS_POLL_ACCEL_AFTER_SECONDS
        )
        self.max_failures = max_failures if max_failures is not None else settings.STATUS_POLL_MAX_FAILURES

        self._epoch = 0
        self._generation_id: Optional[str] = None
        self._queued: Optional[GenerationQueuedResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._timer: Any = None
        self._processing_since: Optional[datetime] = None

        self._state = PollerState.idle
        self._view: Optional[GenerationStatusViewModel] = None
        self._metadata: Optional[StatusMetadataViewModel] = None
        self._error: Optional[StatusFetchError] = None
        self._failure_count = 0
        self.last_delay: Optional[float] = None

    # ---- read-only surface ---------------------------------------------------

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def generation_id(self) -> Optional[str]:
        return self._generation_id

    @property
    def view(self) -> Optional[GenerationStatusViewModel]:
        return self._view

    @property
    def metadata(self) -> Optional[StatusMetadataViewModel]:
        return self._metadata

    @property
    def error(self) -> Optional[StatusFetchError]:
        return self._error

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---- control ---------------------------------------------------------------

    def start(self, generation_id: str, initial: Optional[GenerationQueuedResponse] = None) -> None:
        """Switch to a generation and fetch immediately. Must be called with a running loop."""
        if not generation_id:
            raise ValueError("generation_id is required")

        self._cancel_pending()
        self._generation_id = generation_id
        self._queued = initial
        self._processing_since = None
        self._failure_count = 0
        self._error = None
        self._view = None
        self._metadata = None

        if initial is not None:
            self._view = build_generation_status_view_model(queued=initial, now=self._clock)
            self._metadata = build_status_metadata(queued=initial)

        self._launch()

    async def refresh(self) -> None:
        """Fetch now, outside the schedule. An in-flight fetch is aborted first."""
        if not self._generation_id:
            return

        stale = self._task
        self._cancel_pending()
        epoch = self._epoch
        if stale is not None and not stale.done():
            await asyncio.gather(stale, return_exceptions=True)
        if epoch != self._epoch:
            # superseded while waiting for the stale fetch
            return

        self._launch()
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def stop(self) -> None:
        self._cancel_pending()
        self._generation_id = None
        self._queued = None
        self._processing_since = None
        self._set_state(PollerState.idle)

    # ---- internals -------------------------------------------------------------

    def _cancel_pending(self) -> None:
        self._epoch += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _set_state(self, state: PollerState) -> None:
        self._state = state
        if self._on_change is not None:
            self._on_change(self)

    def _launch(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        epoch = self._epoch
        self._set_state(PollerState.in_flight)
        self._task = asyncio.ensure_future(self._run(epoch, self._generation_id))

    def _on_timer(self, epoch: int) -> None:
        if epoch != self._epoch:
            return
        self._timer = None
        self._launch()

    def _schedule(self) -> None:
        status = self._view.status if self._view is not None else GenerationStatus.queued
        delay = next_poll_delay(
            status=status,
            failure_count=self._failure_count,
            processing_since=self._processing_since,
            now=self._clock(),
            base_interval=self.base_interval,
            fast_interval=self.fast_interval,
            accelerate_after=self.accelerate_after,
        )
        self.last_delay = delay
        scheduler = self._scheduler or asyncio.get_running_loop()
        self._timer = scheduler.call_later(delay, self._on_timer, self._epoch)
        self._set_state(PollerState.scheduled)

    async def _resolve_preview(self, path: Optional[str], kind: str) -> Optional[str]:
        if not path or self._preview_resolver is None:
            return None
        try:
            return await self._preview_resolver(path, kind)
        except Exception as e:
            logger.warning(
                "status_preview_unavailable",
                extra={"generation_id": self._generation_id, "kind": kind, "error": type(e).__name__},
            )
            return None

    async def _run(self, epoch: int, generation_id: str) -> None:
        try:
            detail = await self._fetch(generation_id)
            if detail is None:
                raise StatusFetchError("empty_payload", "The server returned an empty response.", retriable=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if epoch == self._epoch:
                self._handle_error(classify_fetch_error(e))
            return

        if epoch != self._epoch:
            return

        persona_path = detail.persona_snapshot_path or (self._queued.persona_snapshot_path if self._queued else None)
        garment_path = detail.garment_snapshot_path or (self._queued.garment_snapshot_path if self._queued else None)
        persona_url = await self._resolve_preview(persona_path, "persona")
        garment_url = await self._resolve_preview(garment_path, "garment")
        result_url = await self._resolve_preview(detail.result_path, "result")

        if epoch != self._epoch:
            return

        self._apply_detail(detail, persona_url, garment_url, result_url)

    def _apply_detail(
        self,
        detail: GenerationDetail,
        persona_url: Optional[str],
        garment_url: Optional[str],
        result_url: Optional[str],
    ) -> None:
        view = build_generation_status_view_model(
            queued=self._queued,
            detail=detail,
            persona_preview_url=persona_url,
            garment_preview_url=garment_url,
            result_url=result_url,
            now=self._clock,
        )
        self._metadata = build_status_metadata(
            queued=self._queued,
            detail=detail,
            persona_preview_url=persona_url,
            garment_preview_url=garment_url,
        )
        if view.status == GenerationStatus.processing and detail.started_at is not None:
            self._processing_since = detail.started_at

        self._view = view
        self._error = None
        self._failure_count = 0
        self._task = None

        if is_terminal(view.status):
            self._set_state(PollerState.terminal)
            return
        self._schedule()

    def _handle_error(self, err: StatusFetchError) -> None:
        self._error = err
        self._task = None
        extra = {"generation_id": self._generation_id, "code": err.code, "status_code": err.status}

        if not err.retriable:
            logger.info("status_poll_stopped", extra=extra)
            self._set_state(PollerState.terminal)
            return

        self._failure_count = min(self._failure_count + 1, self.max_failures)
        logger.warning("status_poll_retry", extra={**extra, "failure_count": self._failure_count})
        self._schedule()


class HttpGenerationFetcher:
    """Fetch capability for StatusPoller backed by GET /api/vton/generations/{id}."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def __call__(self, generation_id: str) -> GenerationDetail:
        headers = {"Authorization": f"Bearer {self.token}", "Accept": "application/json"}
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            r = await client.get(f"/api/vton/generations/{generation_id}", headers=headers)

        if r.status_code >= 400:
            code, message = _envelope(r)
            raise _error_for_status(r.status_code, code, message)

        try:
            payload = r.json()
        except ValueError as e:
            raise StatusFetchError("invalid_payload", "The server returned an unreadable response.", retriable=True) from e
        if not payload:
            raise StatusFetchError("empty_payload", "The server returned an empty response.", retriable=True)
        return GenerationDetail.model_validate(payload)
