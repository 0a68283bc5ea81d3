"""Shared test fixtures."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import pytest

from portfolio_report.orchestrator.models import (
    CompletionOptions,
    CompletionResult,
    TokenUsage,
)
from portfolio_report.orchestrator.usage import UsageEvent

REPORT_TEXT = """\
EXECUTIVE SUMMARY
The portfolio is broadly aligned with a moderate profile.

RISK ASSESSMENT
Risk level: Medium.

RECOMMENDATIONS
1. Increase bond exposure.
2. Rebalance annually.
"""


class ScriptedClient:
    """Completion client that replays a list of exceptions and results."""

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str, CompletionOptions]] = []
        self.call_times: list[float] = []

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> CompletionResult:
        with self._lock:
            self.calls.append((system_prompt, user_prompt, options))
            self.call_times.append(time.monotonic())
            step = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, str):
            return CompletionResult(
                raw_text=step,
                finish_reason="stop",
                token_usage=TokenUsage(
                    prompt_tokens=1200,
                    completion_tokens=800,
                    total_tokens=2000,
                ),
            )
        return step


class RecordingUsageLogger:
    def __init__(self) -> None:
        self.events: list[UsageEvent] = []

    def record(self, event: UsageEvent) -> None:
        self.events.append(event)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture()
def investment_payload() -> dict[str, Any]:
    return {
        "goals": "Retirement savings and a house deposit",
        "riskTolerance": "Moderate",
        "timeHorizon": "15 years",
        "age": "35",
        "income": "85000",
        "experience": "Intermediate",
        "portfolio": {
            "holdings": [
                {
                    "name": "Vanguard Total Stock Market",
                    "symbol": "VTI",
                    "type": "ETF",
                    "value": "42000",
                    "percentage": "60",
                },
                {
                    "name": "iShares Core US Aggregate Bond",
                    "symbol": "AGG",
                    "type": "ETF",
                    "value": "28000",
                    "percentage": "40",
                },
            ],
            "totalValue": "70000",
        },
    }


@pytest.fixture()
def usage_sink() -> RecordingUsageLogger:
    return RecordingUsageLogger()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    for name in (
        "PORTFOLIO_REPORT_LLM_PRICING",
        "PORTFOLIO_REPORT_USAGE_DB_PATH",
        "PORTFOLIO_REPORT_MAX_CONCURRENT",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
