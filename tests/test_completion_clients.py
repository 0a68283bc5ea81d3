from __future__ import annotations

from types import SimpleNamespace

import allure
import httpx
import openai
import pytest

from portfolio_report.orchestrator.backend import (
    CompletionApiError,
    EchoCompletionClient,
    OpenAICompletionClient,
)
from portfolio_report.orchestrator.failure_classifier import classify_upstream_failure
from portfolio_report.orchestrator.models import CompletionOptions, ErrorKind

pytestmark = [
    allure.epic("Report Generation"),
    allure.feature("Completion Clients"),
]

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _fake_sdk(create) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _client_raising(error: Exception) -> OpenAICompletionClient:
    def _create(**kwargs):
        raise error

    return OpenAICompletionClient(api_key="unused", client=_fake_sdk(_create))


def test_openai_client_maps_response_and_usage() -> None:
    captured: dict = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(content="EXECUTIVE SUMMARY\nok"),
                    finish_reason="stop",
                ),
            ],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )

    client = OpenAICompletionClient(api_key="unused", client=_fake_sdk(_create))
    result = client.complete("system", "user", CompletionOptions(model="gpt-4o", timeout_ms=5_000))

    assert result.raw_text == "EXECUTIVE SUMMARY\nok"
    assert result.finish_reason == "stop"
    assert result.token_usage.total_tokens == 15
    assert captured["model"] == "gpt-4o"
    assert captured["timeout"] == 5.0
    assert captured["messages"][0] == {"role": "system", "content": "system"}


def test_openai_client_returns_empty_text_without_choices() -> None:
    client = OpenAICompletionClient(
        api_key="unused",
        client=_fake_sdk(lambda **kwargs: SimpleNamespace(choices=[], usage=None)),
    )
    assert client.complete("s", "u", CompletionOptions()).raw_text == ""


def test_openai_status_error_keeps_status_and_headers() -> None:
    response = httpx.Response(429, headers={"Retry-After": "3"}, request=_REQUEST)
    client = _client_raising(openai.RateLimitError("rate limited", response=response, body=None))

    with pytest.raises(CompletionApiError) as caught:
        client.complete("s", "u", CompletionOptions())

    assert caught.value.status == 429
    assert caught.value.headers["retry-after"] == "3"
    info = classify_upstream_failure(caught.value)
    assert info.kind == ErrorKind.RATE_LIMIT
    assert info.retry_after_seconds == 3


def test_openai_timeout_and_connection_errors_get_codes() -> None:
    with pytest.raises(CompletionApiError) as timed_out:
        _client_raising(openai.APITimeoutError(request=_REQUEST)).complete(
            "s",
            "u",
            CompletionOptions(),
        )
    with pytest.raises(CompletionApiError) as refused:
        _client_raising(openai.APIConnectionError(request=_REQUEST)).complete(
            "s",
            "u",
            CompletionOptions(),
        )

    assert timed_out.value.code == "ETIMEDOUT"
    assert classify_upstream_failure(timed_out.value).kind == ErrorKind.TIMEOUT
    assert refused.value.code == "ECONNREFUSED"
    assert classify_upstream_failure(refused.value).kind == ErrorKind.CONNECTION


def test_echo_client_is_deterministic() -> None:
    client = EchoCompletionClient()
    prompt = "Investment Goals: Growth\nRisk Tolerance: High\nIgnored: yes"
    first = client.complete("system", prompt, CompletionOptions())
    second = client.complete("system", prompt, CompletionOptions())

    assert first == second
    assert "Investment Goals: Growth" in first.raw_text
    assert "Ignored" not in first.raw_text
    assert first.token_usage.total_tokens == (
        first.token_usage.prompt_tokens + first.token_usage.completion_tokens
    )
