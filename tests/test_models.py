from __future__ import annotations

import allure

from portfolio_report.orchestrator.backend.base import CompletionApiError
from portfolio_report.orchestrator.errors import (
    QueueTimeoutError,
    UpstreamError,
    ValidationError,
)
from portfolio_report.orchestrator.failure_classifier import classify_upstream_failure
from portfolio_report.orchestrator.models import InvestmentProfile, ReportPreferences, ReportType

pytestmark = [
    allure.epic("Report Generation"),
    allure.feature("Domain Models"),
]


def test_profile_accepts_camel_case_keys(investment_payload) -> None:
    profile = InvestmentProfile.from_mapping(
        {**investment_payload, "netWorth": "250000", "taxSituation": "  "},
    )
    assert profile.risk_tolerance == "Moderate"
    assert profile.time_horizon == "15 years"
    assert profile.net_worth == "250000"
    assert profile.tax_situation is None
    assert profile.portfolio is not None
    assert [holding.symbol for holding in profile.portfolio.holdings] == ["VTI", "AGG"]
    assert profile.portfolio.total_value == "70000"


def test_preferences_defaults_and_flags() -> None:
    assert ReportPreferences.from_mapping(None) == ReportPreferences()
    preferences = ReportPreferences.from_mapping(
        {"focusAreas": ["ESG"], "isPremium": True, "is_retry": 1, "model": "gpt-4o"},
    )
    assert preferences.focus_areas == ("ESG",)
    assert preferences.market_outlook == "Neutral"
    assert preferences.is_premium is True
    assert preferences.is_retry is True
    assert preferences.model == "gpt-4o"


def test_report_type_label() -> None:
    assert ReportType.INTERMEDIATE.label == "Intermediate"


def test_error_payloads_carry_code_message_and_hint() -> None:
    validation = ValidationError(["goals", "time_horizon"], suggestions=["Add age"])
    assert validation.to_payload()["code"] == "INVALID_INPUT_DATA"
    assert validation.user_message.endswith("missing goals, time horizon.")
    assert validation.to_payload()["suggestions"] == ["Add age"]

    queue_timeout = QueueTimeoutError(301.0)
    assert queue_timeout.to_payload()["retry_after_seconds"] == 60

    upstream = UpstreamError(
        classify_upstream_failure(CompletionApiError("down", status=503)),
        attempts=6,
    )
    payload = upstream.to_payload()
    assert payload["code"] == "SERVICE_UNAVAILABLE"
    assert payload["retry_after_seconds"] == 300
    assert payload["attempts"] == 6
    assert payload["error_id"] == upstream.info.error_id
