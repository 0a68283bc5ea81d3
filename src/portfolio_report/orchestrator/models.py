"""Domain models for report generation, admission and upstream execution."""

from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ReportType(str, Enum):
    """Supported report depth levels."""

    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ErrorKind(str, Enum):
    """Normalized upstream failure kinds used by retry and degradation policy."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    SERVER_UNAVAILABLE = "server_unavailable"
    INVALID_REQUEST = "invalid_request"
    TOO_LARGE = "too_large"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


@dataclass(slots=True, frozen=True)
class Holding:
    """One portfolio position as entered by the user."""

    name: str | None = None
    symbol: str | None = None
    type: str | None = None
    value: str | None = None
    percentage: str | None = None
    description: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Holding:
        return cls(
            name=_optional_text(payload.get("name")),
            symbol=_optional_text(payload.get("symbol")),
            type=_optional_text(payload.get("type")),
            value=_optional_text(payload.get("value")),
            percentage=_optional_text(payload.get("percentage")),
            description=_optional_text(payload.get("description")),
        )


@dataclass(slots=True, frozen=True)
class Portfolio:
    holdings: tuple[Holding, ...] = ()
    total_value: str | None = None
    last_updated: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Portfolio:
        raw_holdings = payload.get("holdings") or ()
        return cls(
            holdings=tuple(
                Holding.from_mapping(item) for item in raw_holdings if isinstance(item, Mapping)
            ),
            total_value=_optional_text(_first_key(payload, "total_value", "totalValue")),
            last_updated=_optional_text(_first_key(payload, "last_updated", "lastUpdated")),
        )


@dataclass(slots=True, frozen=True)
class InvestmentProfile:
    """User-provided investment data that drives prompts and degraded reports."""

    goals: str | None = None
    risk_tolerance: str | None = None
    time_horizon: str | None = None
    age: str | None = None
    income: str | None = None
    net_worth: str | None = None
    experience: str | None = None
    tax_situation: str | None = None
    portfolio: Portfolio | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> InvestmentProfile:
        """Build a profile from snake_case or web-client camelCase keys."""

        raw_portfolio = payload.get("portfolio")
        return cls(
            goals=_optional_text(payload.get("goals")),
            risk_tolerance=_optional_text(_first_key(payload, "risk_tolerance", "riskTolerance")),
            time_horizon=_optional_text(_first_key(payload, "time_horizon", "timeHorizon")),
            age=_optional_text(payload.get("age")),
            income=_optional_text(payload.get("income")),
            net_worth=_optional_text(_first_key(payload, "net_worth", "netWorth")),
            experience=_optional_text(payload.get("experience")),
            tax_situation=_optional_text(_first_key(payload, "tax_situation", "taxSituation")),
            portfolio=(
                Portfolio.from_mapping(raw_portfolio)
                if isinstance(raw_portfolio, Mapping)
                else None
            ),
        )


@dataclass(slots=True, frozen=True)
class ReportPreferences:
    """Per-request analysis preferences and scheduling flags."""

    focus_areas: tuple[str, ...] = ()
    market_outlook: str = "Neutral"
    is_premium: bool = False
    is_retry: bool = False
    model: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> ReportPreferences:
        if not payload:
            return cls()
        focus_areas = _first_key(payload, "focus_areas", "focusAreas") or ()
        return cls(
            focus_areas=tuple(str(area) for area in focus_areas),
            market_outlook=str(_first_key(payload, "market_outlook", "marketOutlook") or "Neutral"),
            is_premium=bool(_first_key(payload, "is_premium", "isPremium")),
            is_retry=bool(_first_key(payload, "is_retry", "isRetry")),
            model=_optional_text(payload.get("model")),
        )


@dataclass(slots=True, frozen=True)
class GenerationRequest:
    """Immutable input bundle handed to the scheduler."""

    request_id: str
    investment_data: InvestmentProfile
    report_type: ReportType
    preferences: ReportPreferences
    submitted_at: datetime
    user_id: str | None = None
    user_email: str | None = None
    data_completeness: int = 0


@dataclass(slots=True)
class QueueItem:
    """Waiting request owned by the admission controller."""

    item_id: str
    request: GenerationRequest
    priority: int
    sequence: int
    enqueued_at: float
    future: Future[Any]
    timer: Any = None

    def sort_key(self) -> tuple[int, int]:
        return (-self.priority, self.sequence)


@dataclass(slots=True, frozen=True)
class ErrorInfo:
    """Classified upstream failure; built once per failed attempt."""

    kind: ErrorKind
    retryable: bool
    error_code: str
    severity: Severity
    user_message: str
    technical_detail: str
    retry_after_seconds: int | None = None
    retry_after_from_server: bool = False
    http_status: int | None = None
    user_actions: tuple[str, ...] = ()
    original_message: str = ""
    error_id: str = ""

    def to_payload(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "code": self.error_code,
            "retryable": self.retryable,
            "retry_after_seconds": self.retry_after_seconds,
            "severity": self.severity.value,
            "message": self.user_message,
            "technical_detail": self.technical_detail,
            "user_actions": list(self.user_actions),
            "error_id": self.error_id,
        }


@dataclass(slots=True, frozen=True)
class RetryAttemptRecord:
    attempt_number: int
    error_kind: ErrorKind
    error_code: str
    elapsed_ms: int
    timestamp: datetime
    message: str = ""


@dataclass(slots=True, frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_payload(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True, frozen=True)
class CompletionResult:
    """Successful upstream completion."""

    raw_text: str
    finish_reason: str | None = None
    token_usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(slots=True, frozen=True)
class PromptPayload:
    system_prompt: str
    user_prompt: str


@dataclass(slots=True, frozen=True)
class CompletionOptions:
    """Per-call upstream and retry options."""

    model: str = "gpt-4"
    max_tokens: int = 4000
    temperature: float = 0.7
    max_retries: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 60_000
    jitter_factor: float = 0.1
    timeout_ms: int = 120_000


@dataclass(slots=True, frozen=True)
class ReportMetadata:
    report_type: ReportType
    generated_at: datetime
    processing_time_ms: int
    token_usage: TokenUsage
    data_completeness: int
    attempts: int = 0
    finish_reason: str | None = None
    word_count: int = 0
    retry_history: tuple[RetryAttemptRecord, ...] = ()


@dataclass(slots=True, frozen=True)
class ReportResult:
    """Terminal artifact returned to the caller."""

    title: str
    summary: str
    full_text: str
    sections: dict[str, str]
    metadata: ReportMetadata
    degraded: bool = False
    degradation_reason: str | None = None
    retry_after_seconds: int | None = None
    retry_suggestion: str | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "title": self.title,
            "summary": self.summary,
            "full_text": self.full_text,
            "sections": dict(self.sections),
            "degraded": self.degraded,
            "degradation_reason": self.degradation_reason,
            "retry_after_seconds": self.retry_after_seconds,
            "retry_suggestion": self.retry_suggestion,
            "metadata": {
                "report_type": self.metadata.report_type.value,
                "generated_at": self.metadata.generated_at.isoformat(),
                "processing_time_ms": self.metadata.processing_time_ms,
                "token_usage": self.metadata.token_usage.to_payload(),
                "data_completeness": self.metadata.data_completeness,
                "attempts": self.metadata.attempts,
                "finish_reason": self.metadata.finish_reason,
                "word_count": self.metadata.word_count,
            },
        }


@dataclass(slots=True, frozen=True)
class QueueStats:
    """Point-in-time admission statistics."""

    queued_count: int
    active_count: int
    max_concurrent: int
    total_queued: int
    total_processed: int
    total_evicted: int
    average_wait_ms: float
    max_queue_depth_seen: int

    def to_payload(self) -> dict[str, object]:
        return {
            "queued_count": self.queued_count,
            "active_count": self.active_count,
            "max_concurrent": self.max_concurrent,
            "total_queued": self.total_queued,
            "total_processed": self.total_processed,
            "total_evicted": self.total_evicted,
            "average_wait_ms": round(self.average_wait_ms, 1),
            "max_queue_depth_seen": self.max_queue_depth_seen,
        }


def _first_key(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
