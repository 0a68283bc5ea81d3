"""Report generation state machine: validate, admit, execute, parse or degrade."""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import TracebackType
from typing import Any

from portfolio_report.orchestrator.admission import AdmissionController, PriorityPolicy
from portfolio_report.orchestrator.backend.base import CompletionClient
from portfolio_report.orchestrator.degradation import build_degraded_report
from portfolio_report.orchestrator.errors import (
    QueueTimeoutError,
    ReportGenerationError,
    SchedulerStoppedError,
    UnexpectedError,
    UpstreamError,
    ValidationError,
)
from portfolio_report.orchestrator.failure_classifier import is_degradable
from portfolio_report.orchestrator.models import (
    CompletionOptions,
    ErrorKind,
    GenerationRequest,
    InvestmentProfile,
    QueueStats,
    ReportMetadata,
    ReportPreferences,
    ReportResult,
    ReportType,
    TokenUsage,
    utc_now,
)
from portfolio_report.orchestrator.pricing import estimate_cost_usd
from portfolio_report.orchestrator.prompts import (
    PromptBuilder,
    TemplatePromptBuilder,
    analyze_token_usage,
)
from portfolio_report.orchestrator.retry import ExecutionOutcome, RetryExecutor
from portfolio_report.orchestrator.sections import KeywordSectionParser, SectionParser
from portfolio_report.orchestrator.usage import (
    LoggingUsageLogger,
    UsageDispatcher,
    UsageEvent,
    UsageLogger,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = ("goals", "risk_tolerance", "time_horizon")
OPTIONAL_FIELDS: tuple[str, ...] = ("age", "income", "experience", "portfolio")
DEFAULT_MODEL_TOKEN_LIMIT = 8192
SUMMARY_FALLBACK = "Summary not available"


@dataclass(slots=True)
class InputValidation:
    is_valid: bool
    missing_fields: list[str] = field(default_factory=list)
    data_completeness: int = 0
    suggestions: list[str] = field(default_factory=list)


def validate_investment_data(profile: InvestmentProfile) -> InputValidation:
    """Check required fields and score completeness over required and optional fields."""

    missing = [name for name in REQUIRED_FIELDS if not getattr(profile, name)]
    provided = len(REQUIRED_FIELDS) - len(missing)
    provided += sum(1 for name in OPTIONAL_FIELDS if getattr(profile, name))
    total = len(REQUIRED_FIELDS) + len(OPTIONAL_FIELDS)
    completeness = math.floor(provided * 100 / total + 0.5)

    suggestions: list[str] = []
    if completeness < 50:
        suggestions.append(
            "Consider providing more investment details for a more comprehensive analysis",
        )
    if profile.portfolio is None or not profile.portfolio.holdings:
        suggestions.append(
            "Adding specific portfolio holdings will enable detailed asset allocation analysis",
        )
    if not profile.age:
        suggestions.append(
            "Age information helps determine appropriate investment timeline and risk tolerance",
        )
    if not profile.income:
        suggestions.append(
            "Income information enables better savings and investment capacity analysis",
        )
    return InputValidation(
        is_valid=not missing,
        missing_fields=missing,
        data_completeness=completeness,
        suggestions=suggestions,
    )


class ReportOrchestrator:
    """Owns one admission controller and drives every request to a terminal state.

    Construct once per process, `start()` it, and share the instance. Results
    are delivered through `concurrent.futures.Future`; `generate_report` is the
    blocking convenience wrapper.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        client: CompletionClient,
        completion_options: CompletionOptions | None = None,
        max_concurrent: int = 3,
        queue_timeout_seconds: float = 300.0,
        drain_interval_seconds: float = 1.0,
        priority_policy: PriorityPolicy | None = None,
        prompt_builder: PromptBuilder | None = None,
        section_parser: SectionParser | None = None,
        usage_logger: UsageLogger | None = None,
        retry_executor: RetryExecutor | None = None,
        model_token_limit: int = DEFAULT_MODEL_TOKEN_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.completion_options = completion_options or CompletionOptions()
        self.prompt_builder = prompt_builder or TemplatePromptBuilder()
        self.section_parser = section_parser or KeywordSectionParser()
        self.retry_executor = retry_executor or RetryExecutor(client=client)
        self.model_token_limit = model_token_limit
        self._usage_sink = usage_logger or LoggingUsageLogger()
        self._usage = UsageDispatcher(self._usage_sink)
        self._clock = clock
        self.admission = AdmissionController(
            process=self._process,
            max_concurrent=max_concurrent,
            queue_timeout_seconds=queue_timeout_seconds,
            drain_interval_seconds=drain_interval_seconds,
            priority_policy=priority_policy,
        )

    def start(self) -> None:
        self.admission.start()

    def stop(self, *, wait: bool = True) -> None:
        self.admission.stop(wait=wait)
        self._usage.close(wait=wait)
        self._usage = UsageDispatcher(self._usage_sink)

    def __enter__(self) -> ReportOrchestrator:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.stop()

    def get_queue_stats(self) -> QueueStats:
        return self.admission.stats()

    def generate_report(  # noqa: PLR0913
        self,
        investment_data: InvestmentProfile | Mapping[str, Any],
        report_type: ReportType | str = ReportType.BASIC,
        preferences: ReportPreferences | Mapping[str, Any] | None = None,
        *,
        user_id: str | None = None,
        user_email: str | None = None,
        timeout: float | None = None,
    ) -> ReportResult:
        """Run one request to completion.

        Returns a full or degraded `ReportResult`; raises a
        `ReportGenerationError` subclass when the request is rejected.
        """

        future = self.submit_report(
            investment_data,
            report_type,
            preferences,
            user_id=user_id,
            user_email=user_email,
        )
        return future.result(timeout=timeout)

    def submit_report(
        self,
        investment_data: InvestmentProfile | Mapping[str, Any],
        report_type: ReportType | str = ReportType.BASIC,
        preferences: ReportPreferences | Mapping[str, Any] | None = None,
        *,
        user_id: str | None = None,
        user_email: str | None = None,
    ) -> Future[ReportResult]:
        """Validate and admit one request; the returned future resolves to its outcome.

        Validation failures are raised here and never reach the scheduler.
        """

        profile = (
            investment_data
            if isinstance(investment_data, InvestmentProfile)
            else InvestmentProfile.from_mapping(investment_data)
        )
        prefs = (
            preferences
            if isinstance(preferences, ReportPreferences)
            else ReportPreferences.from_mapping(preferences)
        )
        validation = validate_investment_data(profile)
        parsed_type = parse_report_type(report_type)
        request = GenerationRequest(
            request_id=f"req_{uuid.uuid4().hex}",
            investment_data=profile,
            report_type=parsed_type or ReportType.BASIC,
            preferences=prefs,
            submitted_at=utc_now(),
            user_id=user_id,
            user_email=user_email,
            data_completeness=validation.data_completeness,
        )

        if parsed_type is None:
            rejection = ValidationError(
                [],
                user_message=(
                    f"Invalid report type: {report_type!r}. "
                    "Must be 'basic', 'intermediate', or 'advanced'."
                ),
            )
            self._emit_rejection(request, rejection, report_type=str(report_type))
            raise rejection
        if not validation.is_valid:
            rejection = ValidationError(
                validation.missing_fields,
                suggestions=validation.suggestions,
            )
            logger.info(
                "Rejected %s: missing %s",
                request.request_id,
                ", ".join(validation.missing_fields),
            )
            self._emit_rejection(request, rejection)
            raise rejection

        try:
            future = self.admission.submit(request)
        except SchedulerStoppedError as error:
            self._emit_rejection(request, error)
            raise
        future.add_done_callback(lambda done: self._on_admission_failure(request, done))
        return future

    def _process(self, request: GenerationRequest) -> ReportResult:
        options = self._options_for(request.preferences)
        started_at = utc_now()
        started = self._clock()
        token_usage = TokenUsage()
        success = False
        degraded = False
        error_code: str | None = None
        error_message: str | None = None

        try:
            prompt = self.prompt_builder.format(
                request.investment_data,
                request.report_type,
                request.preferences,
            )
            budget = analyze_token_usage(
                prompt,
                max_tokens=options.max_tokens,
                model_limit=self.model_token_limit,
            )
            if not budget.within_limits:
                logger.warning(
                    "Request %s may exceed model limits (%d estimated tokens, limit %d)",
                    request.request_id,
                    budget.estimated_total_tokens,
                    budget.model_limit,
                )

            outcome = self.retry_executor.execute(prompt, options)
            if outcome.ok and outcome.completion is not None:
                token_usage = outcome.completion.token_usage
                result = self._build_report(request, outcome, self._elapsed_ms(started))
                success = True
                return result

            error = outcome.error
            if error is None:
                raise RuntimeError("Retry executor failed without a classified error")
            error_code = error.error_code
            error_message = error.user_message
            if is_degradable(error):
                logger.warning(
                    "Degrading %s after %d attempt(s): %s",
                    request.request_id,
                    outcome.attempts,
                    error.error_code,
                )
                result = build_degraded_report(
                    investment_data=request.investment_data,
                    report_type=request.report_type,
                    error=error,
                    data_completeness=request.data_completeness,
                    processing_time_ms=self._elapsed_ms(started),
                    attempts=outcome.attempts,
                )
                success = True
                degraded = True
                return result
            if error.kind is ErrorKind.UNKNOWN and error.http_status is None:
                unexpected = UnexpectedError(error.error_id or None)
                error_code = unexpected.code
                logger.error(
                    "Unclassified upstream failure for %s (error_id=%s): %s",
                    request.request_id,
                    unexpected.error_id,
                    error.technical_detail,
                )
                raise unexpected
            logger.error("Rejected %s: %s", request.request_id, error.error_code)
            raise UpstreamError(error, attempts=outcome.attempts, history=outcome.history)
        except ReportGenerationError:
            raise
        except Exception as error:
            unexpected = UnexpectedError()
            error_code = unexpected.code
            error_message = str(error)
            logger.exception(
                "Unexpected failure for %s (error_id=%s)",
                request.request_id,
                unexpected.error_id,
            )
            raise unexpected from error
        finally:
            self._emit_usage(
                request,
                model=options.model,
                token_usage=token_usage,
                processing_time_ms=self._elapsed_ms(started),
                started_at=started_at,
                success=success,
                degraded=degraded,
                error_code=error_code,
                error_message=error_message,
            )

    def _build_report(
        self,
        request: GenerationRequest,
        outcome: ExecutionOutcome,
        processing_time_ms: int,
    ) -> ReportResult:
        completion = outcome.completion
        assert completion is not None  # noqa: S101
        sections = self.section_parser.parse(completion.raw_text)
        logger.info(
            "Completed %s with %d section(s) in %dms",
            request.request_id,
            len(sections),
            processing_time_ms,
        )
        return ReportResult(
            title=f"Investment Analysis Report - {request.report_type.label} Level",
            summary=sections.get("summary") or SUMMARY_FALLBACK,
            full_text=completion.raw_text,
            sections=sections,
            metadata=ReportMetadata(
                report_type=request.report_type,
                generated_at=utc_now(),
                processing_time_ms=processing_time_ms,
                token_usage=completion.token_usage,
                data_completeness=request.data_completeness,
                attempts=outcome.attempts,
                finish_reason=completion.finish_reason,
                word_count=len(completion.raw_text.split()),
                retry_history=outcome.history,
            ),
        )

    def _options_for(self, preferences: ReportPreferences) -> CompletionOptions:
        if preferences.model:
            return replace(self.completion_options, model=preferences.model)
        return self.completion_options

    def _on_admission_failure(
        self,
        request: GenerationRequest,
        future: Future[ReportResult],
    ) -> None:
        if future.cancelled():
            return
        error = future.exception()
        # Executed requests already emitted usage from `_process`.
        if isinstance(error, (QueueTimeoutError, SchedulerStoppedError)):
            self._emit_rejection(request, error)

    def _emit_rejection(
        self,
        request: GenerationRequest,
        error: ReportGenerationError,
        *,
        report_type: str | None = None,
    ) -> None:
        waited_ms = int((utc_now() - request.submitted_at).total_seconds() * 1000)
        self._emit_usage(
            request,
            model=self._options_for(request.preferences).model,
            token_usage=TokenUsage(),
            processing_time_ms=waited_ms,
            started_at=request.submitted_at,
            success=False,
            error_code=error.code,
            error_message=error.user_message,
            report_type=report_type,
        )

    def _emit_usage(  # noqa: PLR0913
        self,
        request: GenerationRequest,
        *,
        model: str,
        token_usage: TokenUsage,
        processing_time_ms: int,
        started_at: datetime,
        success: bool,
        degraded: bool = False,
        error_code: str | None = None,
        error_message: str | None = None,
        report_type: str | None = None,
    ) -> None:
        self._usage.emit(
            UsageEvent(
                request_id=request.request_id,
                user_id=request.user_id,
                user_email=request.user_email,
                report_type=report_type or request.report_type.value,
                model=model,
                prompt_tokens=token_usage.prompt_tokens,
                completion_tokens=token_usage.completion_tokens,
                total_tokens=token_usage.total_tokens,
                estimated_cost_usd=estimate_cost_usd(
                    model=model,
                    prompt_tokens=token_usage.prompt_tokens,
                    completion_tokens=token_usage.completion_tokens,
                ),
                processing_time_ms=processing_time_ms,
                started_at=started_at,
                finished_at=utc_now(),
                success=success,
                degraded=degraded,
                error_code=error_code,
                error_message=error_message,
                data_completeness=request.data_completeness,
            ),
        )

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def parse_report_type(value: ReportType | str) -> ReportType | None:
    if isinstance(value, ReportType):
        return value
    try:
        return ReportType(str(value).strip().lower())
    except ValueError:
        return None
