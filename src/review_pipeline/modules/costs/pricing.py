"""
Per-token pricing for the reviewer models.

Rates are USD per single token; the published per-1M figures are kept in the
expressions so the table can be checked against the provider's price sheet.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class ModelPricing:
    display_name: str
    input_rate_per_token: float
    output_rate_per_token: float
    category: str


# Groq pricing (2024)
MODEL_PRICING: Mapping[str, ModelPricing] = MappingProxyType(
    {
        "mixtral-8x7b-32768": ModelPricing(
            display_name="Mixtral 8x7B (Balanced)",
            input_rate_per_token=0.24 / 1_000_000,
            output_rate_per_token=0.24 / 1_000_000,
            category="balanced",
        ),
        "llama3-70b-8192": ModelPricing(
            display_name="Llama 3 70B (Quality)",
            input_rate_per_token=0.59 / 1_000_000,
            output_rate_per_token=0.79 / 1_000_000,
            category="quality",
        ),
        "llama3-8b-8192": ModelPricing(
            display_name="Llama 3 8B (Speed)",
            input_rate_per_token=0.07 / 1_000_000,
            output_rate_per_token=0.10 / 1_000_000,
            category="speed",
        ),
    }
)


def pricing_table_as_dict(table: Mapping[str, ModelPricing] = MODEL_PRICING) -> dict[str, dict]:
    return {
        model: {
            "name": p.display_name,
            "input_rate_per_token": p.input_rate_per_token,
            "output_rate_per_token": p.output_rate_per_token,
            "category": p.category,
        }
        for model, p in table.items()
    }
