"""Upstream completion client implementations."""

from portfolio_report.orchestrator.backend.base import CompletionApiError, CompletionClient
from portfolio_report.orchestrator.backend.echo_client import EchoCompletionClient
from portfolio_report.orchestrator.backend.openai_client import OpenAICompletionClient

__all__ = [
    "CompletionApiError",
    "CompletionClient",
    "EchoCompletionClient",
    "OpenAICompletionClient",
]
