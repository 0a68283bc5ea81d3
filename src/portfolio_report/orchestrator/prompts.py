"""Prompt templates and token estimates for each report type."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol

from portfolio_report.orchestrator.models import (
    InvestmentProfile,
    Portfolio,
    PromptPayload,
    ReportPreferences,
    ReportType,
)

NOT_SPECIFIED = "Not specified"

_BASIC_SYSTEM_PROMPT = """\
You are a professional investment advisor providing clear, accessible investment analysis.
Focus on fundamental concepts and practical recommendations suitable for beginning investors.
Keep explanations simple and avoid complex financial jargon."""

_BASIC_USER_PROMPT = """\
Please analyze the following investment portfolio and provide a basic investment report:

INVESTMENT DATA:
Portfolio Holdings: {portfolio}
Investment Goals: {goals}
Risk Tolerance: {risk_tolerance}
Investment Timeline: {time_horizon}
Current Age: {age}
Annual Income: {income}

ANALYSIS REQUIREMENTS:
Please provide a structured report with the following sections:

1. PORTFOLIO SUMMARY
   - Brief overview of current holdings
   - Asset allocation breakdown
   - Total portfolio value assessment

2. RISK ASSESSMENT
   - Simple risk level evaluation (Low/Medium/High)
   - Risk alignment with stated tolerance
   - Basic diversification review

3. RECOMMENDATIONS
   - 3-5 specific, actionable recommendations
   - Focus on fundamental improvements
   - Simple rebalancing suggestions if needed

4. NEXT STEPS
   - Immediate actions to take
   - Timeline for implementation
   - When to review again

Keep the language accessible and focus on practical, implementable advice."""

_INTERMEDIATE_SYSTEM_PROMPT = """\
You are an experienced investment advisor providing comprehensive analysis for investors with \
moderate experience.
Include detailed analysis while maintaining clarity. Use appropriate financial terminology with \
explanations.
Focus on strategic asset allocation and risk management principles."""

_INTERMEDIATE_USER_PROMPT = """\
Please analyze the following investment portfolio and provide an intermediate-level investment \
report:

INVESTMENT DATA:
Portfolio Holdings: {portfolio}
Investment Goals: {goals}
Risk Tolerance: {risk_tolerance}
Investment Timeline: {time_horizon}
Current Age: {age}
Annual Income: {income}
Investment Experience: {experience}
Preferred Focus Areas: {focus_areas}

ANALYSIS REQUIREMENTS:
Please provide a comprehensive report with the following sections:

1. EXECUTIVE SUMMARY
   - Key findings and overall portfolio health
   - Primary strengths and concerns

2. DETAILED PORTFOLIO ANALYSIS
   - Asset allocation with target recommendations
   - Sector and geographic diversification review
   - Cost review (expense ratios, fees)

3. RISK MANAGEMENT ASSESSMENT
   - Quantitative risk metrics (if calculable from data)
   - Correlation between holdings
   - Stress testing scenarios

4. STRATEGIC RECOMMENDATIONS
   - Asset allocation optimization
   - Specific security recommendations (buy/sell/hold)
   - Tax efficiency improvements

5. IMPLEMENTATION PLAN
   - Prioritized action items with timelines
   - Transition strategy for major changes
   - Review schedule and benchmarks to track

Include relevant financial concepts and provide rationale for all recommendations."""

_ADVANCED_SYSTEM_PROMPT = """\
You are a sophisticated investment advisor providing institutional-quality analysis for \
experienced investors.
Use advanced financial concepts, quantitative analysis, and strategic insights.
Assume familiarity with complex investment strategies and financial instruments."""

_ADVANCED_USER_PROMPT = """\
Please analyze the following investment portfolio and provide an advanced investment report:

INVESTMENT DATA:
Portfolio Holdings: {portfolio}
Investment Goals: {goals}
Risk Tolerance: {risk_tolerance}
Investment Timeline: {time_horizon}
Current Age: {age}
Annual Income: {income}
Net Worth: {net_worth}
Investment Experience: {experience}
Tax Situation: {tax_situation}
Preferred Focus Areas: {focus_areas}
Current Market Outlook: {market_outlook}

ANALYSIS REQUIREMENTS:
Please provide a sophisticated report with the following sections:

1. EXECUTIVE SUMMARY & INVESTMENT THESIS
   - Strategic portfolio positioning
   - Risk-return optimization assessment

2. QUANTITATIVE PORTFOLIO ANALYSIS
   - Sharpe ratio, alpha, beta
   - Factor exposure (value, growth, momentum, quality)
   - Value-at-Risk and stress testing scenarios

3. ADVANCED RISK MANAGEMENT
   - Tail risk and hedging strategies
   - Liquidity and concentration risk

4. STRATEGIC RECOMMENDATIONS
   - Optimal allocation and alternative investments
   - Tax-loss harvesting and asset location

5. IMPLEMENTATION PLAN
   - Rebalancing rules and sequencing

6. MONITORING
   - Performance attribution framework
   - Risk dashboard recommendations

Provide quantitative analysis where possible and include advanced investment strategies \
appropriate for sophisticated investors."""


@dataclass(slots=True, frozen=True)
class PromptTemplate:
    system_prompt: str
    user_prompt_template: str


PROMPT_TEMPLATES: dict[ReportType, PromptTemplate] = {
    ReportType.BASIC: PromptTemplate(_BASIC_SYSTEM_PROMPT, _BASIC_USER_PROMPT),
    ReportType.INTERMEDIATE: PromptTemplate(
        _INTERMEDIATE_SYSTEM_PROMPT,
        _INTERMEDIATE_USER_PROMPT,
    ),
    ReportType.ADVANCED: PromptTemplate(_ADVANCED_SYSTEM_PROMPT, _ADVANCED_USER_PROMPT),
}


class PromptBuilder(Protocol):
    """Formats investment data into system and user prompts."""

    def format(
        self,
        investment_data: InvestmentProfile,
        report_type: ReportType,
        preferences: ReportPreferences,
    ) -> PromptPayload:
        """Return prompts for one report request."""


class TemplatePromptBuilder:
    """Default builder backed by `PROMPT_TEMPLATES`."""

    def __init__(self, templates: dict[ReportType, PromptTemplate] | None = None) -> None:
        self._templates = templates or PROMPT_TEMPLATES

    def format(
        self,
        investment_data: InvestmentProfile,
        report_type: ReportType,
        preferences: ReportPreferences,
    ) -> PromptPayload:
        template = self._templates.get(report_type)
        if template is None:
            raise ValueError(
                f"Invalid report type: {report_type!r}. "
                "Must be 'basic', 'intermediate', or 'advanced'.",
            )
        values = {
            "portfolio": format_portfolio(investment_data.portfolio),
            "goals": investment_data.goals or NOT_SPECIFIED,
            "risk_tolerance": investment_data.risk_tolerance or NOT_SPECIFIED,
            "time_horizon": investment_data.time_horizon or NOT_SPECIFIED,
            "age": investment_data.age or NOT_SPECIFIED,
            "income": investment_data.income or NOT_SPECIFIED,
            "net_worth": investment_data.net_worth or NOT_SPECIFIED,
            "experience": investment_data.experience or NOT_SPECIFIED,
            "tax_situation": investment_data.tax_situation or NOT_SPECIFIED,
            "focus_areas": format_focus_areas(preferences.focus_areas),
            "market_outlook": preferences.market_outlook or "Neutral",
        }
        return PromptPayload(
            system_prompt=template.system_prompt,
            user_prompt=template.user_prompt_template.format(**values),
        )


def format_portfolio(portfolio: Portfolio | None) -> str:
    if portfolio is None:
        return "No portfolio data provided"
    if not portfolio.holdings:
        return "No specific holdings provided"

    lines = ["Portfolio Holdings:"]
    for index, holding in enumerate(portfolio.holdings, start=1):
        lines.append(f"{index}. {holding.name or 'Unknown'} ({holding.symbol or 'N/A'})")
        lines.append(f"   - Type: {holding.type or NOT_SPECIFIED}")
        lines.append(f"   - Value: {holding.value or NOT_SPECIFIED}")
        lines.append(f"   - Percentage: {holding.percentage or NOT_SPECIFIED}%")
        if holding.description:
            lines.append(f"   - Notes: {holding.description}")
        lines.append("")
    if portfolio.total_value:
        lines.append(f"Total Portfolio Value: {portfolio.total_value}")
    if portfolio.last_updated:
        lines.append(f"Last Updated: {portfolio.last_updated}")
    return "\n".join(lines).strip()


def format_focus_areas(focus_areas: tuple[str, ...]) -> str:
    if not focus_areas:
        return "No specific focus areas specified - provide general analysis"
    return f"Please pay special attention to: {', '.join(focus_areas)}"


def estimate_token_count(text: str) -> int:
    """Rough token estimate: one token per four characters."""

    return math.ceil(len(text) / 4)


@dataclass(slots=True)
class TokenBudget:
    estimated_input_tokens: int
    requested_output_tokens: int
    model_limit: int
    suggestions: list[str] = field(default_factory=list)

    @property
    def estimated_total_tokens(self) -> int:
        return self.estimated_input_tokens + self.requested_output_tokens

    @property
    def within_limits(self) -> bool:
        return self.estimated_total_tokens <= self.model_limit


def analyze_token_usage(
    prompt: PromptPayload,
    *,
    max_tokens: int,
    model_limit: int = 8192,
) -> TokenBudget:
    """Predict whether a prompt plus requested output fits the model window."""

    input_tokens = estimate_token_count(prompt.system_prompt) + estimate_token_count(
        prompt.user_prompt,
    )
    budget = TokenBudget(
        estimated_input_tokens=input_tokens,
        requested_output_tokens=max_tokens,
        model_limit=model_limit,
    )
    if not budget.within_limits:
        budget.suggestions.append("Request may exceed model token limits")
        budget.suggestions.append(
            "Consider reducing portfolio detail or using a shorter report type",
        )
    if input_tokens > model_limit * 0.7:
        budget.suggestions.append(
            "Input prompt is quite long - consider summarizing portfolio data",
        )
    return budget
