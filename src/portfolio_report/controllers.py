"""Controllers for report CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from concurrent.futures import Future
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from portfolio_report.config import Settings
from portfolio_report.orchestrator.backend import (
    CompletionClient,
    EchoCompletionClient,
    OpenAICompletionClient,
)
from portfolio_report.orchestrator.errors import ReportGenerationError
from portfolio_report.orchestrator.models import QueueStats, ReportResult
from portfolio_report.orchestrator.service import ReportOrchestrator
from portfolio_report.storage.usage_repository import SqliteUsageLogger

_ENVELOPE_KEYS = ("investment_data", "investmentData")


@dataclass(slots=True)
class ReportRequestInput:
    """One request as loaded from a JSON input file."""

    investment_data: dict[str, Any]
    report_type: str = "basic"
    preferences: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    user_email: str | None = None


@dataclass(slots=True)
class GenerateCommand:
    """CLI input for single report generation."""

    input_path: Path
    report_type: str | None
    premium: bool
    use_echo: bool
    usage_db_path: Path | None
    user_id: str | None = None


@dataclass(slots=True)
class BatchCommand:
    """CLI input for concurrent generation of several reports."""

    input_paths: tuple[Path, ...]
    report_type: str | None
    use_echo: bool
    usage_db_path: Path | None
    max_concurrent: int | None = None


@dataclass(slots=True)
class UsageCommand:
    usage_db_path: Path
    user_id: str | None


@dataclass(slots=True)
class CommandResult:
    lines: list[str]
    success: bool


class ReportCliController:
    """Wires settings, completion client and usage storage into CLI operations."""

    def generate(self, command: GenerateCommand) -> CommandResult:
        settings = Settings.from_env(usage_db_path=command.usage_db_path)
        settings.validate()
        request = load_request_input(command.input_path)
        if command.report_type:
            request.report_type = command.report_type
        if command.premium:
            request.preferences["is_premium"] = True
        if command.user_id:
            request.user_id = command.user_id

        with _orchestrator(settings, use_echo=command.use_echo) as orchestrator:
            try:
                report = orchestrator.generate_report(
                    request.investment_data,
                    request.report_type,
                    request.preferences,
                    user_id=request.user_id,
                    user_email=request.user_email,
                )
            except ReportGenerationError as error:
                return CommandResult(lines=_render_rejection(error), success=False)
        return CommandResult(lines=_render_report(report), success=True)

    def batch(self, command: BatchCommand) -> CommandResult:
        settings = Settings.from_env(usage_db_path=command.usage_db_path)
        if command.max_concurrent is not None:
            settings.scheduler.max_concurrent = command.max_concurrent
        settings.validate()
        requests = [load_request_input(path) for path in command.input_paths]

        lines: list[str] = []
        success = True
        with _orchestrator(settings, use_echo=command.use_echo) as orchestrator:
            submitted: list[tuple[Path, Future[ReportResult] | ReportGenerationError]] = []
            for path, request in zip(command.input_paths, requests, strict=True):
                try:
                    future = orchestrator.submit_report(
                        request.investment_data,
                        command.report_type or request.report_type,
                        request.preferences,
                        user_id=request.user_id,
                        user_email=request.user_email,
                    )
                except ReportGenerationError as error:
                    submitted.append((path, error))
                    continue
                submitted.append((path, future))

            for path, outcome in submitted:
                if isinstance(outcome, ReportGenerationError):
                    error: ReportGenerationError = outcome
                else:
                    try:
                        report = outcome.result()
                    except ReportGenerationError as failure:
                        error = failure
                    else:
                        status = "degraded" if report.degraded else "ok"
                        lines.append(f"{path.name}: {status} title={report.title!r}")
                        continue
                success = False
                lines.append(
                    f"{path.name}: rejected code={error.code} message={error.user_message}",
                )
            stats = orchestrator.get_queue_stats()
        lines.extend(_render_stats(stats))
        return CommandResult(lines=lines, success=success)

    def usage(self, command: UsageCommand) -> list[str]:
        usage_logger = SqliteUsageLogger(command.usage_db_path)
        try:
            usage_logger.init_schema()
            summary = usage_logger.summarize(user_id=command.user_id)
        finally:
            usage_logger.close()
        scope = f"user={command.user_id}" if command.user_id else "all users"
        return [
            f"Usage summary ({scope}):",
            f"requests={summary.requests} succeeded={summary.succeeded} "
            f"degraded={summary.degraded} failed={summary.failed}",
            f"total_tokens={summary.total_tokens} "
            f"estimated_cost_usd={summary.estimated_cost_usd:.4f}",
        ]


def load_request_input(path: Path) -> ReportRequestInput:
    """Read a request file: either a bare investment profile or an envelope with options."""

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Input file must contain a JSON object: {path}")
    envelope_key = next((key for key in _ENVELOPE_KEYS if key in payload), None)
    if envelope_key is None:
        return ReportRequestInput(investment_data=payload)
    investment_data = payload[envelope_key]
    if not isinstance(investment_data, dict):
        raise ValueError(f"'{envelope_key}' must be a JSON object: {path}")
    return ReportRequestInput(
        investment_data=investment_data,
        report_type=str(payload.get("report_type") or payload.get("reportType") or "basic"),
        preferences=dict(payload.get("preferences") or {}),
        user_id=payload.get("user_id") or payload.get("userId"),
        user_email=payload.get("user_email") or payload.get("userEmail"),
    )


@contextmanager
def _orchestrator(settings: Settings, *, use_echo: bool) -> Iterator[ReportOrchestrator]:
    client: CompletionClient = (
        EchoCompletionClient()
        if use_echo
        else OpenAICompletionClient(api_key=settings.require_openai_api_key())
    )
    usage_logger: SqliteUsageLogger | None = None
    if settings.usage.db_path is not None:
        usage_logger = SqliteUsageLogger(settings.usage.db_path)
        usage_logger.init_schema()

    options = settings.completion_options()
    if use_echo:
        options = replace(options, max_retries=0)
    orchestrator = ReportOrchestrator(
        client=client,
        completion_options=options,
        max_concurrent=settings.scheduler.max_concurrent,
        queue_timeout_seconds=settings.scheduler.queue_timeout_seconds,
        drain_interval_seconds=settings.scheduler.drain_interval_seconds,
        priority_policy=settings.scheduler.priority_policy(),
        usage_logger=usage_logger,
    )
    orchestrator.start()
    try:
        yield orchestrator
    finally:
        orchestrator.stop()
        if usage_logger is not None:
            usage_logger.close()


def _render_report(report: ReportResult) -> list[str]:
    metadata = report.metadata
    lines = [report.title, "", report.full_text, ""]
    if report.degraded:
        lines.append(f"Degraded: {report.degradation_reason}")
        if report.retry_suggestion:
            lines.append(report.retry_suggestion)
    lines.append(
        f"report_type={metadata.report_type.value} attempts={metadata.attempts} "
        f"tokens={metadata.token_usage.total_tokens} "
        f"processing_ms={metadata.processing_time_ms} "
        f"completeness={metadata.data_completeness}%",
    )
    return lines


def _render_rejection(error: ReportGenerationError) -> list[str]:
    return [json.dumps(error.to_payload(), indent=2, ensure_ascii=False)]


def _render_stats(stats: QueueStats) -> list[str]:
    return [
        "Queue stats: "
        f"queued={stats.queued_count} active={stats.active_count} "
        f"max_concurrent={stats.max_concurrent} total_queued={stats.total_queued} "
        f"total_processed={stats.total_processed} total_evicted={stats.total_evicted} "
        f"avg_wait_ms={stats.average_wait_ms:.1f} max_depth={stats.max_queue_depth_seen}",
    ]
