"""Keyword-driven section extraction from raw completion text."""

from __future__ import annotations

from typing import Protocol

SECTION_PARSER_VERSION = "v1"

# Declaration order matters: when a header matches keywords of several
# sections, the section declared last wins ("RISK ANALYSIS" -> risk_assessment).
SECTION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("summary", ("EXECUTIVE SUMMARY", "PORTFOLIO SUMMARY", "SUMMARY")),
    ("analysis", ("PORTFOLIO ANALYSIS", "DETAILED ANALYSIS", "ANALYSIS")),
    ("risk_assessment", ("RISK ASSESSMENT", "RISK ANALYSIS", "RISK MANAGEMENT")),
    ("recommendations", ("RECOMMENDATIONS", "STRATEGIC RECOMMENDATIONS", "NEXT STEPS")),
    ("implementation", ("IMPLEMENTATION", "ACTION PLAN", "IMPLEMENTATION PLAN")),
    ("monitoring", ("MONITORING", "REVIEW SCHEDULE", "PERFORMANCE TRACKING")),
)


class SectionParser(Protocol):
    """Splits completion text into an ordered section mapping."""

    def parse(self, text: str) -> dict[str, str]:
        """Return section key -> section body."""


class KeywordSectionParser:
    """Line scanner that treats any line containing a section keyword as a header."""

    def __init__(
        self,
        keywords: tuple[tuple[str, tuple[str, ...]], ...] = SECTION_KEYWORDS,
    ) -> None:
        self._keywords = keywords

    def parse(self, text: str) -> dict[str, str]:
        sections: dict[str, str] = {}
        current: str | None = None
        buffer: list[str] = []

        for line in text.splitlines():
            stripped = line.strip()
            header = self._match_header(stripped)
            if header is not None:
                if current is not None and buffer:
                    sections[current] = "\n".join(buffer).strip()
                current = header
                buffer = []
            elif current is not None and stripped:
                buffer.append(line)

        if current is not None and buffer:
            sections[current] = "\n".join(buffer).strip()

        if not sections:
            sections["summary"] = text.strip()
        return sections

    def _match_header(self, line: str) -> str | None:
        upper = line.upper()
        matched: str | None = None
        for key, patterns in self._keywords:
            if any(pattern in upper for pattern in patterns):
                matched = key
        return matched


def extract_report_sections(text: str) -> dict[str, str]:
    return KeywordSectionParser().parse(text)
