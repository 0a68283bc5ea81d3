"""Locally synthesized reports for when the completion API is unavailable."""

from __future__ import annotations

import re

from portfolio_report.orchestrator.models import (
    ErrorInfo,
    InvestmentProfile,
    ReportMetadata,
    ReportResult,
    ReportType,
    TokenUsage,
    utc_now,
)

DEGRADED_SUMMARY = (
    "The AI-powered analysis service is currently experiencing high demand. "
    "Below is a basic assessment based on your provided information."
)
DEGRADED_NOTICE = (
    "For a comprehensive AI-powered analysis, please try again in a few minutes "
    "when service capacity is available."
)

_CONSERVATIVE_GUIDANCE = (
    "Based on your conservative risk tolerance, consider focusing on stable, income-generating "
    "investments such as bonds, dividend-paying stocks, and balanced funds."
)
_AGGRESSIVE_GUIDANCE = (
    "Given your aggressive risk tolerance, you may consider growth-oriented investments such as "
    "growth stocks, emerging market funds, and technology sector investments."
)
_MODERATE_GUIDANCE = (
    "With a moderate risk tolerance, a balanced approach combining growth and income investments "
    "may be appropriate."
)
_SHORT_HORIZON_GUIDANCE = (
    "With a shorter time horizon, focus on capital preservation and liquidity. Consider money "
    "market funds, short-term bonds, and stable value funds."
)
_LONG_HORIZON_GUIDANCE = (
    "Your longer time horizon allows for more growth-oriented strategies. Consider a higher "
    "allocation to stocks and equity funds."
)
_SIMPLIFIED_DISCLAIMER = (
    "**Important:** This is a simplified analysis. For comprehensive investment advice tailored "
    "to your specific situation, please try again when our full AI analysis service is available "
    "or consult with a qualified financial advisor."
)

_RISK_RECOMMENDATIONS: dict[str, tuple[str, ...]] = {
    "conservative": (
        "Consider a portfolio allocation of 30-40% stocks, 50-60% bonds, and 10% cash equivalents",
        "Focus on dividend-paying stocks and high-grade corporate bonds",
    ),
    "aggressive": (
        "Consider a portfolio allocation of 80-90% stocks, 10-15% bonds, and minimal cash",
        "Explore growth stocks, international markets, and sector-specific ETFs",
    ),
    "moderate": (
        "Consider a balanced portfolio allocation of 60% stocks, 35% bonds, and 5% cash",
        "Mix growth and value investments across different sectors",
    ),
}
_HORIZON_RECOMMENDATIONS: dict[str, tuple[str, ...]] = {
    "short": (
        "Prioritize capital preservation and liquidity over growth",
        "Consider CDs, money market accounts, and short-term Treasury bills",
    ),
    "long": (
        "Take advantage of compound growth with long-term equity investments",
        "Consider dollar-cost averaging into broad market index funds",
    ),
}
_GENERAL_RECOMMENDATIONS: tuple[str, ...] = (
    "Diversify across different asset classes, sectors, and geographic regions",
    "Review and rebalance your portfolio regularly (quarterly or semi-annually)",
    "Consider tax-advantaged accounts (401k, IRA, Roth IRA) for retirement savings",
    "Maintain an emergency fund of 3-6 months of expenses in liquid savings",
)
_ADVANCED_RECOMMENDATIONS: tuple[str, ...] = (
    "Consider tax-loss harvesting strategies to optimize after-tax returns",
    "Evaluate alternative investments (REITs, commodities) for additional diversification",
)
_RECOMMENDATION_DISCLAIMER = (
    "**Important:** These are general guidelines. For personalized advice, consult with a "
    "qualified financial advisor or try again when our full AI analysis service is available."
)

_SHORT_HORIZON_MAX_YEARS = 3
_LONG_HORIZON_MIN_YEARS = 10
_NUMBER = re.compile(r"\d+")


def classify_risk_tolerance(risk_tolerance: str | None) -> str:
    text = (risk_tolerance or "").lower()
    if "conservative" in text:
        return "conservative"
    if "aggressive" in text:
        return "aggressive"
    return "moderate"


def classify_time_horizon(time_horizon: str | None) -> str | None:
    """Bucket a free-text horizon into "short", "long" or None.

    Explicit year counts win over words: "10 years" is long even though it
    contains a "1".
    """

    text = (time_horizon or "").lower()
    numbers = [int(match) for match in _NUMBER.findall(text)]
    if numbers:
        years = max(numbers)
        if years <= _SHORT_HORIZON_MAX_YEARS:
            return "short"
        if years >= _LONG_HORIZON_MIN_YEARS:
            return "long"
    if "short" in text:
        return "short"
    if "long" in text:
        return "long"
    return None


def build_basic_analysis(investment_data: InvestmentProfile) -> str:
    parts: list[str] = []
    if investment_data.goals:
        parts.append(f"**Investment Goals:** {investment_data.goals}")

    if investment_data.risk_tolerance:
        parts.append(f"**Risk Tolerance:** {investment_data.risk_tolerance}")
        parts.append(
            {
                "conservative": _CONSERVATIVE_GUIDANCE,
                "aggressive": _AGGRESSIVE_GUIDANCE,
                "moderate": _MODERATE_GUIDANCE,
            }[classify_risk_tolerance(investment_data.risk_tolerance)],
        )

    if investment_data.time_horizon:
        parts.append(f"**Time Horizon:** {investment_data.time_horizon}")
        horizon = classify_time_horizon(investment_data.time_horizon)
        if horizon == "short":
            parts.append(_SHORT_HORIZON_GUIDANCE)
        elif horizon == "long":
            parts.append(_LONG_HORIZON_GUIDANCE)

    if investment_data.portfolio is not None and investment_data.portfolio.holdings:
        parts.append(
            f"**Portfolio Holdings:** {len(investment_data.portfolio.holdings)} "
            "holdings identified",
        )
        parts.append(
            "For detailed portfolio analysis including asset allocation, diversification "
            "assessment, and specific recommendations, please try again when the full AI "
            "service is available.",
        )

    parts.append(_SIMPLIFIED_DISCLAIMER)
    return "\n\n".join(parts)


def build_basic_recommendations(
    investment_data: InvestmentProfile,
    report_type: ReportType,
) -> list[str]:
    recommendations: list[str] = []
    if investment_data.risk_tolerance:
        recommendations.extend(
            _RISK_RECOMMENDATIONS[classify_risk_tolerance(investment_data.risk_tolerance)],
        )
    if investment_data.time_horizon:
        horizon = classify_time_horizon(investment_data.time_horizon)
        if horizon is not None:
            recommendations.extend(_HORIZON_RECOMMENDATIONS[horizon])
    recommendations.extend(_GENERAL_RECOMMENDATIONS)
    if report_type == ReportType.ADVANCED:
        recommendations.extend(_ADVANCED_RECOMMENDATIONS)
    recommendations.append(_RECOMMENDATION_DISCLAIMER)
    return recommendations


def build_degraded_report(
    *,
    investment_data: InvestmentProfile,
    report_type: ReportType,
    error: ErrorInfo,
    data_completeness: int,
    processing_time_ms: int,
    attempts: int = 0,
) -> ReportResult:
    """Assemble a clearly labeled, lower-fidelity report with zero token usage."""

    title = f"Investment Analysis Summary - {report_type.label} Level (Limited Service)"
    analysis = build_basic_analysis(investment_data)
    recommendations = "\n\n".join(
        f"{index}. {item}"
        for index, item in enumerate(
            build_basic_recommendations(investment_data, report_type),
            start=1,
        )
    )
    sections = {
        "summary": DEGRADED_SUMMARY,
        "analysis": analysis,
        "recommendations": recommendations,
        "notice": DEGRADED_NOTICE,
    }
    full_text = "\n\n".join(
        [
            f"# {title}",
            DEGRADED_SUMMARY,
            "## Basic Analysis",
            analysis,
            "## Recommendations",
            recommendations,
            "## Notice",
            DEGRADED_NOTICE,
        ],
    )
    retry_after = error.retry_after_seconds
    return ReportResult(
        title=title,
        summary="AI service temporarily unavailable - Basic analysis provided",
        full_text=full_text,
        sections=sections,
        degraded=True,
        degradation_reason=error.error_code,
        retry_after_seconds=retry_after,
        retry_suggestion=(
            f"Try again in {retry_after} seconds for a full AI-powered analysis."
            if retry_after
            else "Try again in a few minutes for a full AI-powered analysis."
        ),
        metadata=ReportMetadata(
            report_type=report_type,
            generated_at=utc_now(),
            processing_time_ms=processing_time_ms,
            token_usage=TokenUsage(),
            data_completeness=data_completeness,
            attempts=attempts,
            word_count=len(full_text.split()),
        ),
    )
