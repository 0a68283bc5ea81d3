"""Runtime configuration for report scheduling, retries and usage storage."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from portfolio_report.orchestrator.admission import PriorityPolicy
from portfolio_report.orchestrator.models import CompletionOptions

OPENAI_API_KEY_PLACEHOLDER = "your_openai_api_key_here"
OPENAI_API_KEY_MIN_LENGTH = 40


@dataclass(slots=True)
class SchedulerSettings:
    """Admission control settings."""

    max_concurrent: int = 3
    queue_timeout_seconds: float = 300.0
    drain_interval_seconds: float = 1.0
    premium_bonus: int = 2
    retry_bonus: int = 1

    def priority_policy(self) -> PriorityPolicy:
        return PriorityPolicy(premium_bonus=self.premium_bonus, retry_bonus=self.retry_bonus)


@dataclass(slots=True)
class RetrySettings:
    """Per-request retry and timeout settings."""

    max_retries: int = 5
    base_delay_ms: int = 1_000
    max_delay_ms: int = 60_000
    jitter_factor: float = 0.1
    timeout_ms: int = 120_000


@dataclass(slots=True)
class CompletionSettings:
    model: str = "gpt-4"
    max_tokens: int = 4_000
    temperature: float = 0.7
    openai_api_key: str | None = None


@dataclass(slots=True)
class UsageSettings:
    db_path: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    completion: CompletionSettings = field(default_factory=CompletionSettings)
    usage: UsageSettings = field(default_factory=UsageSettings)

    @classmethod
    def from_env(cls, usage_db_path: Path | None = None) -> Settings:
        """Load settings from `PORTFOLIO_REPORT_*` variables with local defaults."""

        raw_db_path = os.getenv("PORTFOLIO_REPORT_USAGE_DB_PATH", "").strip()
        return cls(
            scheduler=SchedulerSettings(
                max_concurrent=int(os.getenv("PORTFOLIO_REPORT_MAX_CONCURRENT", "3")),
                queue_timeout_seconds=float(
                    os.getenv("PORTFOLIO_REPORT_QUEUE_TIMEOUT_SECONDS", "300"),
                ),
                drain_interval_seconds=float(
                    os.getenv("PORTFOLIO_REPORT_DRAIN_INTERVAL_SECONDS", "1.0"),
                ),
                premium_bonus=int(os.getenv("PORTFOLIO_REPORT_PREMIUM_BONUS", "2")),
                retry_bonus=int(os.getenv("PORTFOLIO_REPORT_RETRY_BONUS", "1")),
            ),
            retry=RetrySettings(
                max_retries=int(os.getenv("PORTFOLIO_REPORT_MAX_RETRIES", "5")),
                base_delay_ms=int(os.getenv("PORTFOLIO_REPORT_BASE_DELAY_MS", "1000")),
                max_delay_ms=int(os.getenv("PORTFOLIO_REPORT_MAX_DELAY_MS", "60000")),
                jitter_factor=float(os.getenv("PORTFOLIO_REPORT_JITTER_FACTOR", "0.1")),
                timeout_ms=int(os.getenv("PORTFOLIO_REPORT_TIMEOUT_MS", "120000")),
            ),
            completion=CompletionSettings(
                model=os.getenv("PORTFOLIO_REPORT_MODEL", "gpt-4"),
                max_tokens=int(os.getenv("PORTFOLIO_REPORT_MAX_TOKENS", "4000")),
                temperature=float(os.getenv("PORTFOLIO_REPORT_TEMPERATURE", "0.7")),
                openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            ),
            usage=UsageSettings(
                db_path=usage_db_path or (Path(raw_db_path) if raw_db_path else None),
            ),
        )

    def completion_options(self) -> CompletionOptions:
        return CompletionOptions(
            model=self.completion.model,
            max_tokens=self.completion.max_tokens,
            temperature=self.completion.temperature,
            max_retries=self.retry.max_retries,
            base_delay_ms=self.retry.base_delay_ms,
            max_delay_ms=self.retry.max_delay_ms,
            jitter_factor=self.retry.jitter_factor,
            timeout_ms=self.retry.timeout_ms,
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        if self.scheduler.max_concurrent < 1:
            raise ValueError("PORTFOLIO_REPORT_MAX_CONCURRENT must be >= 1.")
        if self.scheduler.queue_timeout_seconds <= 0:
            raise ValueError("PORTFOLIO_REPORT_QUEUE_TIMEOUT_SECONDS must be > 0.")
        if self.scheduler.drain_interval_seconds <= 0:
            raise ValueError("PORTFOLIO_REPORT_DRAIN_INTERVAL_SECONDS must be > 0.")
        if self.retry.max_retries < 0:
            raise ValueError("PORTFOLIO_REPORT_MAX_RETRIES must be >= 0.")
        if self.retry.base_delay_ms <= 0:
            raise ValueError("PORTFOLIO_REPORT_BASE_DELAY_MS must be > 0.")
        if self.retry.max_delay_ms < self.retry.base_delay_ms:
            raise ValueError(
                "PORTFOLIO_REPORT_MAX_DELAY_MS must be >= PORTFOLIO_REPORT_BASE_DELAY_MS.",
            )
        if not 0 <= self.retry.jitter_factor <= 1:
            raise ValueError("PORTFOLIO_REPORT_JITTER_FACTOR must be within [0, 1].")
        if self.retry.timeout_ms <= 0:
            raise ValueError("PORTFOLIO_REPORT_TIMEOUT_MS must be > 0.")
        if self.completion.max_tokens <= 0:
            raise ValueError("PORTFOLIO_REPORT_MAX_TOKENS must be > 0.")

    def require_openai_api_key(self) -> str:
        return validate_openai_api_key(self.completion.openai_api_key)


def validate_openai_api_key(api_key: str | None) -> str:
    """Return the key or raise `ValueError` describing what is wrong with it."""

    if not api_key:
        raise ValueError("OPENAI_API_KEY environment variable is not set.")
    key = api_key.strip()
    if key == OPENAI_API_KEY_PLACEHOLDER:
        raise ValueError("OPENAI_API_KEY is set to the placeholder value.")
    if not key.startswith("sk-"):
        raise ValueError("OPENAI_API_KEY has an invalid format (expected 'sk-' prefix).")
    if len(key) < OPENAI_API_KEY_MIN_LENGTH:
        raise ValueError("OPENAI_API_KEY appears to be too short.")
    return key
