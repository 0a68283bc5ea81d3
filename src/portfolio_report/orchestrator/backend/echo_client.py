"""Deterministic local completion client for demos and integration tests."""

from __future__ import annotations

from portfolio_report.orchestrator.models import CompletionOptions, CompletionResult, TokenUsage
from portfolio_report.orchestrator.prompts import estimate_token_count

_ECHOED_FIELDS = ("Investment Goals:", "Risk Tolerance:", "Investment Timeline:")


class EchoCompletionClient:
    """Build a sectioned report from the prompt without calling a model."""

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> CompletionResult:
        echoed = [
            line.strip()
            for line in user_prompt.splitlines()
            if line.strip().startswith(_ECHOED_FIELDS)
        ]
        text = "\n".join(
            [
                "EXECUTIVE SUMMARY",
                f"Offline {options.model} review of the submitted profile.",
                *echoed,
                "",
                "RISK ASSESSMENT",
                "Risk level: Medium.",
                "",
                "RECOMMENDATIONS",
                "1. Keep an emergency fund of 3-6 months of expenses.",
                "2. Rebalance at least once a year.",
            ],
        )
        prompt_tokens = estimate_token_count(system_prompt) + estimate_token_count(user_prompt)
        completion_tokens = estimate_token_count(text)
        return CompletionResult(
            raw_text=text,
            finish_reason="stop",
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )
