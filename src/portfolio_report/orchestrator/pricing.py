"""Token cost estimation for completion requests."""

from __future__ import annotations

import os
from dataclasses import dataclass

PRICING_ENV_VAR = "PORTFOLIO_REPORT_LLM_PRICING"


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


DEFAULT_PRICING: dict[str, ModelPricing] = {
    "gpt-4": ModelPricing(input_per_1m=30.0, output_per_1m=60.0),
    "gpt-4o": ModelPricing(input_per_1m=5.0, output_per_1m=15.0),
    "gpt-3.5-turbo": ModelPricing(input_per_1m=1.0, output_per_1m=2.0),
}
FALLBACK_MODEL = "gpt-4"


def estimate_cost_usd(*, model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Estimate request cost in USD from token usage and configured pricing."""

    pricing = lookup_pricing(model)
    return (prompt_tokens / 1_000_000) * pricing.input_per_1m + (
        completion_tokens / 1_000_000
    ) * pricing.output_per_1m


def lookup_pricing(model: str) -> ModelPricing:
    mapping = _parse_pricing_mapping(os.getenv(PRICING_ENV_VAR, ""))
    normalized = model.strip()
    direct = mapping.get(normalized)
    if direct is not None:
        return direct
    builtin = DEFAULT_PRICING.get(normalized)
    if builtin is not None:
        return builtin
    wildcard = mapping.get("*")
    if wildcard is not None:
        return wildcard
    return DEFAULT_PRICING[FALLBACK_MODEL]


def _parse_pricing_mapping(raw: str) -> dict[str, ModelPricing]:
    """Parse `PORTFOLIO_REPORT_LLM_PRICING` mapping.

    Format:
    - `model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` as model matches any model without its own entry
    """

    parsed: dict[str, ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.rsplit(":", 2)]
        if len(parts) != 3:
            continue
        model, input_price, output_price = parts
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        if input_per_1m < 0 or output_per_1m < 0:
            continue
        parsed[model] = ModelPricing(input_per_1m=input_per_1m, output_per_1m=output_per_1m)
    return parsed
