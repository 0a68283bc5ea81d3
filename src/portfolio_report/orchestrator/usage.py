"""Fire-and-forget usage accounting for report requests."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class UsageEvent:
    """One accounting record per request outcome."""

    request_id: str
    user_id: str | None
    user_email: str | None
    report_type: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated_cost_usd: float | None
    processing_time_ms: int
    started_at: datetime
    finished_at: datetime
    success: bool
    degraded: bool = False
    error_code: str | None = None
    error_message: str | None = None
    data_completeness: int = 0

    def to_payload(self) -> dict[str, object]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        payload["finished_at"] = self.finished_at.isoformat()
        return payload


class UsageLogger(Protocol):
    """Sink for usage events; failures must not reach the caller."""

    def record(self, event: UsageEvent) -> None:
        """Persist or forward one usage event."""


class LoggingUsageLogger:
    """Default sink that writes usage events to the application log."""

    def record(self, event: UsageEvent) -> None:
        logger.info(
            "Usage request=%s user=%s type=%s success=%s degraded=%s tokens=%d cost=%s time=%dms",
            event.request_id,
            event.user_id or "-",
            event.report_type,
            event.success,
            event.degraded,
            event.total_tokens,
            f"{event.estimated_cost_usd:.4f}" if event.estimated_cost_usd is not None else "n/a",
            event.processing_time_ms,
        )


class UsageDispatcher:
    """Hands usage events to a sink on a background thread."""

    def __init__(self, sink: UsageLogger) -> None:
        self.sink = sink
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="usage-logger")

    def emit(self, event: UsageEvent) -> None:
        try:
            self._executor.submit(self._record, event)
        except RuntimeError:
            logger.warning("Usage dispatcher closed, dropping event %s", event.request_id)

    def close(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _record(self, event: UsageEvent) -> None:
        try:
            self.sink.record(event)
        except Exception:  # noqa: BLE001
            logger.warning("Usage logging failed for %s", event.request_id, exc_info=True)
