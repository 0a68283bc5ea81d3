"""OpenAI chat-completions client mapped onto `CompletionApiError`."""

from __future__ import annotations

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from portfolio_report.orchestrator.backend.base import CompletionApiError
from portfolio_report.orchestrator.models import CompletionOptions, CompletionResult, TokenUsage


class OpenAICompletionClient:
    """Single-shot completion call; retries are owned by `RetryExecutor`."""

    def __init__(self, *, api_key: str, client: OpenAI | None = None) -> None:
        self._client = client or OpenAI(api_key=api_key, max_retries=0)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> CompletionResult:
        try:
            response = self._client.chat.completions.create(
                model=options.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                timeout=options.timeout_ms / 1000,
            )
        except APITimeoutError as error:
            raise CompletionApiError(f"Request timeout: {error}", code="ETIMEDOUT") from error
        except APIConnectionError as error:
            raise CompletionApiError(
                f"Connection failed: {error}",
                code="ECONNREFUSED",
            ) from error
        except APIStatusError as error:
            raise CompletionApiError(
                str(error),
                status=error.status_code,
                code=getattr(error, "code", None),
                headers=dict(error.response.headers),
            ) from error

        if not response.choices:
            return CompletionResult(raw_text="", finish_reason=None)
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return CompletionResult(
            raw_text=choice.message.content or "",
            finish_reason=choice.finish_reason,
            token_usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
        )
