from __future__ import annotations

import random
import threading

import allure
from conftest import REPORT_TEXT, RecordingSleep, ScriptedClient

from portfolio_report.orchestrator.backend.base import CompletionApiError
from portfolio_report.orchestrator.failure_classifier import classify_upstream_failure
from portfolio_report.orchestrator.models import (
    CompletionOptions,
    CompletionResult,
    ErrorKind,
    PromptPayload,
)
from portfolio_report.orchestrator.retry import RetryExecutor, compute_retry_delay_ms

pytestmark = [
    allure.epic("Report Generation"),
    allure.feature("Retry and Backoff"),
]

PROMPT = PromptPayload(system_prompt="system", user_prompt="user")


def _delay(attempt: int, error: CompletionApiError, *, max_delay_ms: int = 60_000) -> float:
    return compute_retry_delay_ms(
        attempt=attempt,
        error=classify_upstream_failure(error),
        base_delay_ms=1_000,
        max_delay_ms=max_delay_ms,
        jitter_factor=0.0,
        rand=0.5,
    )


def test_delay_doubles_per_attempt_without_jitter() -> None:
    timeout = CompletionApiError("slow", code="ETIMEDOUT")
    delays = [_delay(attempt, timeout) for attempt in range(4)]
    assert delays == [1_000, 2_000, 4_000, 8_000]
    assert all(later > earlier for earlier, later in zip(delays, delays[1:], strict=False))


def test_delay_clamps_to_max_delay() -> None:
    timeout = CompletionApiError("slow", code="ETIMEDOUT")
    assert _delay(10, timeout, max_delay_ms=5_000) == 5_000


def test_rate_limit_grows_with_power_of_three() -> None:
    rate_limited = CompletionApiError("slow down", status=429)
    assert _delay(2, rate_limited) == 9_000


def test_server_errors_grow_with_power_of_two_and_a_half() -> None:
    unavailable = CompletionApiError("down", status=503)
    assert _delay(2, unavailable) == 6_250


def test_server_retry_after_sets_a_floor_within_the_cap() -> None:
    hinted = CompletionApiError("slow down", status=429, headers={"retry-after": "2"})
    assert _delay(0, hinted) == 2_000
    long_hint = CompletionApiError("slow down", status=429, headers={"retry-after": "600"})
    assert _delay(0, long_hint, max_delay_ms=60_000) == 60_000


def test_jitter_adds_proportional_randomness() -> None:
    delay = compute_retry_delay_ms(
        attempt=1,
        error=classify_upstream_failure(CompletionApiError("slow", code="ETIMEDOUT")),
        base_delay_ms=1_000,
        max_delay_ms=60_000,
        jitter_factor=0.1,
        rand=0.5,
    )
    assert delay == 2_100


def test_rate_limit_then_success_waits_for_retry_after(recording_sleep: RecordingSleep) -> None:
    client = ScriptedClient(
        [
            CompletionApiError("slow down", status=429, headers={"Retry-After": "2"}),
            REPORT_TEXT,
        ],
    )
    executor = RetryExecutor(
        client=client,
        sleep=recording_sleep,
        random_source=random.Random(7),
    )

    outcome = executor.execute(PROMPT, CompletionOptions())

    assert outcome.ok is True
    assert outcome.attempts == 2
    assert len(client.calls) == 2
    assert recording_sleep.delays and recording_sleep.delays[0] >= 2.0
    assert [record.error_kind for record in outcome.history] == [ErrorKind.RATE_LIMIT]
    assert outcome.completion is not None
    assert outcome.completion.token_usage.total_tokens == 2000


def test_non_retryable_error_stops_immediately(recording_sleep: RecordingSleep) -> None:
    client = ScriptedClient([CompletionApiError("bad key", status=401)])
    executor = RetryExecutor(client=client, sleep=recording_sleep)

    outcome = executor.execute(PROMPT, CompletionOptions(max_retries=5))

    assert outcome.ok is False
    assert outcome.attempts == 1
    assert recording_sleep.delays == []
    assert outcome.error is not None
    assert outcome.error.kind == ErrorKind.AUTH


def test_retryable_error_exhausts_configured_attempts(recording_sleep: RecordingSleep) -> None:
    client = ScriptedClient([CompletionApiError("down", status=503)])
    executor = RetryExecutor(client=client, sleep=recording_sleep)

    outcome = executor.execute(PROMPT, CompletionOptions(max_retries=2, jitter_factor=0.0))

    assert outcome.ok is False
    assert outcome.attempts == 3
    assert len(client.calls) == 3
    assert recording_sleep.delays == [1.0, 2.5]
    assert len(outcome.history) == 3
    assert outcome.error is not None
    assert outcome.error.error_code == "SERVICE_UNAVAILABLE"


def test_history_is_bounded(recording_sleep: RecordingSleep) -> None:
    client = ScriptedClient([CompletionApiError("down", status=503)])
    executor = RetryExecutor(client=client, sleep=recording_sleep, history_limit=2)

    outcome = executor.execute(PROMPT, CompletionOptions(max_retries=4))

    assert outcome.attempts == 5
    assert [record.attempt_number for record in outcome.history] == [4, 5]


def test_slow_call_loses_the_timeout_race(recording_sleep: RecordingSleep) -> None:
    release = threading.Event()

    class _SlowClient:
        def complete(self, system_prompt, user_prompt, options) -> CompletionResult:
            release.wait(5)
            return CompletionResult(raw_text=REPORT_TEXT)

    executor = RetryExecutor(client=_SlowClient(), sleep=recording_sleep)
    try:
        outcome = executor.execute(PROMPT, CompletionOptions(max_retries=0, timeout_ms=50))
    finally:
        release.set()

    assert outcome.ok is False
    assert outcome.error is not None
    assert outcome.error.kind == ErrorKind.TIMEOUT
    assert outcome.error.error_code == "TIMEOUT_ERROR"


def test_empty_completion_is_a_final_failure(recording_sleep: RecordingSleep) -> None:
    client = ScriptedClient([CompletionResult(raw_text="   ")])
    executor = RetryExecutor(client=client, sleep=recording_sleep)

    outcome = executor.execute(PROMPT, CompletionOptions(max_retries=3))

    assert outcome.ok is False
    assert outcome.attempts == 1
    assert outcome.error is not None
    assert outcome.error.kind == ErrorKind.UNKNOWN
