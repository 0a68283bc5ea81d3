from __future__ import annotations

import allure

from portfolio_report.orchestrator.sections import KeywordSectionParser, extract_report_sections

pytestmark = [
    allure.epic("Report Generation"),
    allure.feature("Response Parsing"),
]


def test_two_headers_split_into_trimmed_sections() -> None:
    text = (
        "EXECUTIVE SUMMARY\n"
        "  Portfolio is healthy.  \n"
        "Fees are low.\n"
        "\n"
        "RECOMMENDATIONS\n"
        "1. Add bonds.\n"
        "2. Rebalance yearly.\n"
    )
    sections = extract_report_sections(text)
    assert sections == {
        "summary": "Portfolio is healthy.  \nFees are low.",
        "recommendations": "1. Add bonds.\n2. Rebalance yearly.",
    }


def test_text_without_headers_becomes_summary() -> None:
    text = "\n  Just a free-form answer without structure.\nSecond line.  \n"
    assert extract_report_sections(text) == {
        "summary": "Just a free-form answer without structure.\nSecond line.",
    }


def test_header_matching_several_sections_uses_last_declared() -> None:
    sections = extract_report_sections("3. RISK ANALYSIS\nHigh equity exposure.\n")
    assert sections == {"risk_assessment": "High equity exposure."}


def test_numbered_and_lowercase_headers_are_recognized() -> None:
    text = "1. Portfolio Summary\nTwo ETFs.\n5. Implementation Plan\nStart in Q1.\n"
    sections = KeywordSectionParser().parse(text)
    assert sections["summary"] == "Two ETFs."
    assert sections["implementation"] == "Start in Q1."


def test_lines_before_first_header_are_dropped() -> None:
    sections = extract_report_sections("Sure, here is your report.\nSUMMARY\nAll good.\n")
    assert sections == {"summary": "All good."}


def test_custom_keywords_can_replace_defaults() -> None:
    parser = KeywordSectionParser(keywords=(("outlook", ("OUTLOOK",)),))
    assert parser.parse("MARKET OUTLOOK\nNeutral.\nSUMMARY\nignored header\n") == {
        "outlook": "Neutral.\nSUMMARY\nignored header",
    }
