"""Bounded-concurrency report generation against a rate-limited completion API.

A single `ReportOrchestrator` admits requests through a priority queue,
runs each through timeout-raced retries with classified backoff, and either
parses the completion into sections or, for capacity-type failures, builds
a locally synthesized degraded report. Usage accounting is dispatched on a
background thread and never affects the caller's result.
"""

from portfolio_report.orchestrator.errors import (
    QueueTimeoutError,
    ReportGenerationError,
    SchedulerStoppedError,
    UnexpectedError,
    UpstreamError,
    ValidationError,
)
from portfolio_report.orchestrator.models import ReportPreferences, ReportResult, ReportType
from portfolio_report.orchestrator.service import ReportOrchestrator, validate_investment_data

__all__ = [
    "QueueTimeoutError",
    "ReportGenerationError",
    "ReportOrchestrator",
    "ReportPreferences",
    "ReportResult",
    "ReportType",
    "SchedulerStoppedError",
    "UnexpectedError",
    "UpstreamError",
    "ValidationError",
    "validate_investment_data",
]
