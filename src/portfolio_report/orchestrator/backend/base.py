"""Upstream completion client interface."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from portfolio_report.orchestrator.models import CompletionOptions, CompletionResult


class CompletionApiError(RuntimeError):
    """Raw upstream failure with optional HTTP status, error code and headers."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.headers = {key.lower(): value for key, value in (headers or {}).items()}


class CompletionClient(Protocol):
    """Protocol implemented by upstream completion clients."""

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> CompletionResult:
        """Run one completion call and return its text and usage."""
