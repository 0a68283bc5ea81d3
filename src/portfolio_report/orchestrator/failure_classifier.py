"""Deterministic upstream failure classification for retry and degradation policy."""

from __future__ import annotations

import socket

from portfolio_report.orchestrator.backend.base import CompletionApiError
from portfolio_report.orchestrator.errors import generate_error_id
from portfolio_report.orchestrator.models import ErrorInfo, ErrorKind, Severity

ERROR_CLASSIFIER_VERSION = 1

DEGRADABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER_UNAVAILABLE,
        ErrorKind.TIMEOUT,
        ErrorKind.CONNECTION,
    },
)

_CONNECTION_CODES: tuple[str, ...] = ("ECONNREFUSED", "ENOTFOUND")
_TIMEOUT_CODES: tuple[str, ...] = ("ETIMEDOUT",)
_SERVER_UNAVAILABLE_STATUSES: tuple[int, ...] = (500, 502, 503)

_RATE_LIMIT_DEFAULT_SECONDS = 60
_SERVER_UNAVAILABLE_DEFAULT_SECONDS = 300
_CONNECTION_DEFAULT_SECONDS = 30
_TIMEOUT_DEFAULT_SECONDS = 120


def classify_upstream_failure(error: BaseException) -> ErrorInfo:
    """Map a raw upstream failure to an immutable `ErrorInfo`."""

    status, code, headers = _error_fields(error)
    message = str(error)

    if status is not None:
        return _classify_status(status=status, headers=headers, message=message)

    if code in _CONNECTION_CODES or isinstance(error, (ConnectionRefusedError, socket.gaierror)):
        return _build(
            kind=ErrorKind.CONNECTION,
            retryable=True,
            error_code="CONNECTION_ERROR",
            severity=Severity.WARNING,
            user_message=(
                "Unable to connect to the AI service. Please check your internet connection."
            ),
            technical_detail="Network connection failed to the completion API",
            retry_after_seconds=_CONNECTION_DEFAULT_SECONDS,
            user_actions=(
                "Check your internet connection",
                "Try refreshing the page",
                "If your connection is stable, this may be a temporary service issue",
            ),
            message=message,
        )

    if code in _TIMEOUT_CODES or isinstance(error, TimeoutError) or "timeout" in message.lower():
        return _build(
            kind=ErrorKind.TIMEOUT,
            retryable=True,
            error_code="TIMEOUT_ERROR",
            severity=Severity.WARNING,
            user_message=(
                "The AI analysis is taking longer than expected. Please try with simpler data."
            ),
            technical_detail="Request timeout to the completion API",
            retry_after_seconds=_TIMEOUT_DEFAULT_SECONDS,
            user_actions=(
                "Try using a basic report type for faster processing",
                "Reduce the amount of portfolio data",
                "Simplify your investment goals description",
            ),
            message=message,
        )

    return _build(
        kind=ErrorKind.UNKNOWN,
        retryable=False,
        error_code="UNKNOWN_ERROR",
        severity=Severity.ERROR,
        user_message="An error occurred while generating your report. Please try again.",
        technical_detail=f"{type(error).__name__}: {message}",
        user_actions=(),
        message=message,
    )


def is_degradable(info: ErrorInfo) -> bool:
    """Whether a final failure should fall back to a locally synthesized report."""

    return info.kind in DEGRADABLE_KINDS


def extract_retry_after_seconds(headers: dict[str, str]) -> int | None:
    """Parse an integer `retry-after` header; anything else is ignored."""

    raw = headers.get("retry-after")
    if raw is None:
        return None
    raw = raw.strip()
    if not raw.isdigit():
        return None
    return int(raw)


def _classify_status(  # noqa: PLR0911
    *,
    status: int,
    headers: dict[str, str],
    message: str,
) -> ErrorInfo:
    if status == 401:
        return _build(
            kind=ErrorKind.AUTH,
            retryable=False,
            error_code="AUTHENTICATION_ERROR",
            severity=Severity.CRITICAL,
            user_message=(
                "AI service authentication failed. The service is temporarily unavailable."
            ),
            technical_detail="Completion API key authentication failed",
            user_actions=(
                "Please try again in a few minutes",
                "If the problem persists, contact support",
            ),
            http_status=status,
            message=message,
        )
    if status == 429:
        server_hint = extract_retry_after_seconds(headers)
        retry_after = server_hint if server_hint is not None else _RATE_LIMIT_DEFAULT_SECONDS
        return _build(
            kind=ErrorKind.RATE_LIMIT,
            retryable=True,
            error_code="RATE_LIMIT_ERROR",
            severity=Severity.WARNING,
            user_message=(
                "The AI service is currently experiencing high demand. "
                "Your request has been queued."
            ),
            technical_detail=f"Rate limit exceeded. Retry after {retry_after} seconds",
            retry_after_seconds=retry_after,
            retry_after_from_server=server_hint is not None,
            user_actions=(
                f"Please wait {retry_after} seconds before trying again",
                "Consider using a basic report type for faster processing",
                "Try again during off-peak hours for better performance",
            ),
            http_status=status,
            message=message,
        )
    if status in _SERVER_UNAVAILABLE_STATUSES:
        return _build(
            kind=ErrorKind.SERVER_UNAVAILABLE,
            retryable=True,
            error_code="SERVICE_UNAVAILABLE",
            severity=Severity.WARNING,
            user_message=(
                "The AI analysis service is temporarily down for maintenance. "
                "We'll provide a basic analysis instead."
            ),
            technical_detail=f"Completion service unavailable (HTTP {status})",
            retry_after_seconds=_SERVER_UNAVAILABLE_DEFAULT_SECONDS,
            user_actions=(
                "A simplified analysis will be provided automatically",
                "Try again in 5 minutes for full AI-powered analysis",
                "Check our status page for service updates",
            ),
            http_status=status,
            message=message,
        )
    if status == 400:
        return _build(
            kind=ErrorKind.INVALID_REQUEST,
            retryable=False,
            error_code="INVALID_REQUEST",
            severity=Severity.ERROR,
            user_message=(
                "There was an issue with your investment data format. "
                "Please check your input and try again."
            ),
            technical_detail="Invalid request format sent to the completion API",
            user_actions=(
                "Ensure all required fields are completed",
                "Check that portfolio data is properly formatted",
                "Try reducing the amount of detailed information",
            ),
            http_status=status,
            message=message,
        )
    if status == 413:
        return _build(
            kind=ErrorKind.TOO_LARGE,
            retryable=False,
            error_code="REQUEST_TOO_LARGE",
            severity=Severity.ERROR,
            user_message=(
                "Your investment data is too detailed for processing. Please simplify your input."
            ),
            technical_detail="Request payload too large for the completion API",
            user_actions=(
                "Reduce the amount of portfolio detail",
                "Use shorter descriptions for your investment goals",
                "Try a basic report type instead of advanced",
            ),
            http_status=status,
            message=message,
        )
    server_side = status >= 500
    return _build(
        kind=ErrorKind.UNKNOWN,
        retryable=server_side,
        error_code="API_ERROR",
        severity=Severity.WARNING if server_side else Severity.ERROR,
        user_message=f"AI service error ({status}). Please try again or contact support.",
        technical_detail=f"HTTP {status}: {message}",
        retry_after_seconds=_SERVER_UNAVAILABLE_DEFAULT_SECONDS if server_side else None,
        user_actions=(
            "Try again in a few minutes",
            "If the problem continues, contact support with error code",
        ),
        http_status=status,
        message=message,
    )


def _build(  # noqa: PLR0913
    *,
    kind: ErrorKind,
    retryable: bool,
    error_code: str,
    severity: Severity,
    user_message: str,
    technical_detail: str,
    user_actions: tuple[str, ...],
    message: str,
    retry_after_seconds: int | None = None,
    retry_after_from_server: bool = False,
    http_status: int | None = None,
) -> ErrorInfo:
    return ErrorInfo(
        kind=kind,
        retryable=retryable,
        error_code=error_code,
        severity=severity,
        user_message=user_message,
        technical_detail=technical_detail,
        retry_after_seconds=retry_after_seconds,
        retry_after_from_server=retry_after_from_server,
        http_status=http_status,
        user_actions=user_actions,
        original_message=message,
        error_id=generate_error_id(),
    )


def _error_fields(error: BaseException) -> tuple[int | None, str | None, dict[str, str]]:
    if isinstance(error, CompletionApiError):
        return error.status, error.code, error.headers
    status = getattr(error, "status", None)
    code = getattr(error, "code", None)
    return (
        status if isinstance(status, int) else None,
        code if isinstance(code, str) else None,
        {},
    )
