"""Caller-facing error taxonomy for report generation."""

from __future__ import annotations

import random
import string
import time

from portfolio_report.orchestrator.models import ErrorInfo, RetryAttemptRecord

_BASE36 = string.digits + string.ascii_lowercase


class ReportGenerationError(RuntimeError):
    """Terminal rejection with a stable code and a user-safe message."""

    code = "REPORT_GENERATION_FAILED"

    def __init__(
        self,
        user_message: str,
        *,
        retry_after_seconds: int | None = None,
        error_id: str | None = None,
    ) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.retry_after_seconds = retry_after_seconds
        self.error_id = error_id or generate_error_id()

    def to_payload(self) -> dict[str, object]:
        return {
            "code": self.code,
            "message": self.user_message,
            "retry_after_seconds": self.retry_after_seconds,
            "error_id": self.error_id,
        }


class ValidationError(ReportGenerationError):
    """Missing or malformed investment data; never retried."""

    code = "INVALID_INPUT_DATA"

    def __init__(
        self,
        missing_fields: list[str],
        *,
        suggestions: list[str] | None = None,
        user_message: str | None = None,
    ) -> None:
        readable = ", ".join(field.replace("_", " ") for field in missing_fields)
        super().__init__(user_message or f"Investment data validation failed: missing {readable}.")
        self.missing_fields = list(missing_fields)
        self.suggestions = list(suggestions or [])

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["details"] = [f"Missing required field: {field}" for field in self.missing_fields]
        payload["suggestions"] = list(self.suggestions)
        return payload


class UpstreamError(ReportGenerationError):
    """Upstream failure that exhausted retries and was not degraded."""

    def __init__(
        self,
        info: ErrorInfo,
        *,
        attempts: int,
        history: tuple[RetryAttemptRecord, ...] = (),
    ) -> None:
        super().__init__(
            info.user_message,
            retry_after_seconds=info.retry_after_seconds if info.retryable else None,
            error_id=info.error_id or None,
        )
        self.info = info
        self.attempts = attempts
        self.history = history

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.info.error_code

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["severity"] = self.info.severity.value
        payload["user_actions"] = list(self.info.user_actions)
        payload["attempts"] = self.attempts
        return payload


class QueueTimeoutError(ReportGenerationError):
    """Request waited in the admission queue longer than allowed."""

    code = "QUEUE_TIMEOUT"

    def __init__(self, waited_seconds: float, *, retry_after_seconds: int = 60) -> None:
        super().__init__(
            "The report service is at capacity and your request timed out in the queue. "
            f"Please try again in {retry_after_seconds} seconds.",
            retry_after_seconds=retry_after_seconds,
        )
        self.waited_seconds = waited_seconds


class SchedulerStoppedError(ReportGenerationError):
    """Scheduler was stopped before the request could run."""

    code = "SCHEDULER_STOPPED"

    def __init__(self) -> None:
        super().__init__("The report service is shutting down. Please try again shortly.")


class UnexpectedError(ReportGenerationError):
    """Uncategorized failure; surfaced with a correlation id only."""

    code = "UNEXPECTED_ERROR"

    def __init__(self, error_id: str | None = None) -> None:
        resolved_id = error_id or generate_error_id()
        super().__init__(
            "An unexpected error occurred while generating your report. "
            f"Contact support with error id {resolved_id}.",
            error_id=resolved_id,
        )


def generate_error_id() -> str:
    """Correlation id in the form `err_<base36 millis>_<6 random chars>`."""

    millis = int(time.time() * 1000)
    encoded = ""
    while millis:
        millis, remainder = divmod(millis, 36)
        encoded = _BASE36[remainder] + encoded
    suffix = "".join(random.choices(_BASE36, k=6))  # noqa: S311
    return f"err_{encoded or '0'}_{suffix}"
