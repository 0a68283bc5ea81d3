"""Timeout-raced upstream calls with classified exponential backoff."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass

from portfolio_report.orchestrator.backend.base import CompletionApiError, CompletionClient
from portfolio_report.orchestrator.failure_classifier import classify_upstream_failure
from portfolio_report.orchestrator.models import (
    CompletionOptions,
    CompletionResult,
    ErrorInfo,
    ErrorKind,
    PromptPayload,
    RetryAttemptRecord,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class EmptyCompletionError(RuntimeError):
    """Upstream answered without usable content."""


@dataclass(slots=True)
class ExecutionOutcome:
    """Result of one logical upstream call across all attempts."""

    ok: bool
    completion: CompletionResult | None
    error: ErrorInfo | None
    attempts: int
    history: tuple[RetryAttemptRecord, ...]
    elapsed_ms: int


def compute_retry_delay_ms(  # noqa: PLR0913
    *,
    attempt: int,
    error: ErrorInfo,
    base_delay_ms: int,
    max_delay_ms: int,
    jitter_factor: float,
    rand: float,
) -> float:
    """Backoff delay before the attempt following zero-based `attempt`."""

    delay = base_delay_ms * (2**attempt)
    delay += delay * jitter_factor * rand
    if error.kind == ErrorKind.RATE_LIMIT:
        delay = max(delay, base_delay_ms * (3**attempt))
    elif error.http_status is not None and error.http_status >= 500:
        delay = max(delay, base_delay_ms * (2.5**attempt))
    if error.retry_after_from_server and error.retry_after_seconds is not None:
        delay = max(delay, error.retry_after_seconds * 1000)
    return min(delay, max_delay_ms)


class RetryExecutor:
    """Runs one prompt against the completion client until success or a final error."""

    def __init__(
        self,
        *,
        client: CompletionClient,
        sleep: Callable[[float], object] = time.sleep,
        random_source: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.client = client
        self._sleep = sleep
        self._random = random_source or random.Random()  # noqa: S311
        self._clock = clock
        self._history_limit = history_limit

    def execute(self, prompt: PromptPayload, options: CompletionOptions) -> ExecutionOutcome:
        total_attempts = options.max_retries + 1
        history: deque[RetryAttemptRecord] = deque(maxlen=self._history_limit)
        started = self._clock()
        last_error: ErrorInfo | None = None
        attempts = 0

        for attempt in range(total_attempts):
            attempts = attempt + 1
            attempt_started = self._clock()
            try:
                completion = self._call_with_timeout(prompt, options)
            except Exception as error:  # noqa: BLE001
                info = classify_upstream_failure(error)
                last_error = info
                history.append(
                    RetryAttemptRecord(
                        attempt_number=attempts,
                        error_kind=info.kind,
                        error_code=info.error_code,
                        elapsed_ms=_elapsed_ms(attempt_started, self._clock()),
                        timestamp=utc_now(),
                        message=info.original_message,
                    ),
                )
                logger.warning(
                    "Completion attempt %d/%d failed: %s (%s)",
                    attempts,
                    total_attempts,
                    info.error_code,
                    info.original_message,
                )
                if not info.retryable:
                    logger.info("Non-retryable %s, stopping retries", info.error_code)
                    break
                if attempt == options.max_retries:
                    break
                delay_ms = compute_retry_delay_ms(
                    attempt=attempt,
                    error=info,
                    base_delay_ms=options.base_delay_ms,
                    max_delay_ms=options.max_delay_ms,
                    jitter_factor=options.jitter_factor,
                    rand=self._random.random(),
                )
                logger.info("Retrying in %.0fms after %s", delay_ms, info.error_code)
                self._sleep(delay_ms / 1000)
                continue

            elapsed_ms = _elapsed_ms(started, self._clock())
            logger.info("Completion succeeded (%dms, attempt %d)", elapsed_ms, attempts)
            return ExecutionOutcome(
                ok=True,
                completion=completion,
                error=None,
                attempts=attempts,
                history=tuple(history),
                elapsed_ms=elapsed_ms,
            )

        logger.error(
            "Completion failed after %d attempt(s): %s",
            attempts,
            last_error.error_code if last_error else "unknown",
        )
        return ExecutionOutcome(
            ok=False,
            completion=None,
            error=last_error,
            attempts=attempts,
            history=tuple(history),
            elapsed_ms=_elapsed_ms(started, self._clock()),
        )

    def _call_with_timeout(
        self,
        prompt: PromptPayload,
        options: CompletionOptions,
    ) -> CompletionResult:
        call: Future[CompletionResult] = Future()

        def _target() -> None:
            if not call.set_running_or_notify_cancel():
                return
            try:
                call.set_result(
                    self.client.complete(prompt.system_prompt, prompt.user_prompt, options),
                )
            except Exception as error:  # noqa: BLE001
                call.set_exception(error)

        threading.Thread(target=_target, daemon=True, name="completion-call").start()
        try:
            completion = call.result(timeout=options.timeout_ms / 1000)
        except FutureTimeoutError:
            if call.done():
                raise
            # A late answer lands in the abandoned future and is never read.
            call.cancel()
            raise CompletionApiError(
                f"Request timeout after {options.timeout_ms}ms",
                code="ETIMEDOUT",
            ) from None

        if completion is None or not completion.raw_text.strip():
            raise EmptyCompletionError("Empty response content from completion API")
        return completion


def _elapsed_ms(started: float, finished: float) -> int:
    return int((finished - started) * 1000)
