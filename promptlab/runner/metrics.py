"""Cost estimation from a static per-model price table with per-provider fallbacks."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from promptlab.config import (
    PRICE_TABLE, PROVIDER_DEFAULT_PRICES, OPENAI, ANTHROPIC, PriceEntry,
)


@dataclass(frozen=True)
class PriceTable:
    """Per-model prices plus one default tier per provider family."""
    models: dict[str, dict[str, PriceEntry]]
    defaults: dict[str, PriceEntry] = field(default_factory=dict)

    def get_pricing(self, model: str, provider: Optional[str] = None) -> PriceEntry:
        """Return the model's price, falling back to its provider's default tier.

        Raises:
            ValueError: If the provider has no pricing (e.g. the local daemon)
        """
        provider = provider or provider_for_model(model, self)
        if provider not in self.defaults:
            raise ValueError(f"No pricing for provider: {provider}")
        return self.models.get(provider, {}).get(model, self.defaults[provider])


def provider_for_model(model: str, table: Optional[PriceTable] = None) -> str:
    """Guess the billing provider for a model name."""
    table = table or DEFAULT_PRICE_TABLE
    for provider, models in table.models.items():
        if model in models:
            return provider
    name = model.lower()
    if name.startswith("claude"):
        return ANTHROPIC
    if name.startswith(("gpt", "o1", "o3", "o4", "chatgpt")):
        return OPENAI
    raise ValueError(f"Cannot infer provider for model: {model}")


DEFAULT_PRICE_TABLE = PriceTable(
    models={p: dict(m) for p, m in PRICE_TABLE.items()},
    defaults=dict(PROVIDER_DEFAULT_PRICES),
)

_active_table: Optional[PriceTable] = None


def get_price_table() -> PriceTable:
    """Built-in table, merged with PROMPTLAB_PRICING overrides on first use."""
    global _active_table
    if _active_table is None:
        override_path = os.environ.get("PROMPTLAB_PRICING")
        if override_path:
            _active_table = load_price_overrides(override_path)
        else:
            _active_table = DEFAULT_PRICE_TABLE
    return _active_table


def set_price_table(table: Optional[PriceTable]) -> None:
    """Swap the active table; None re-reads the environment on next use."""
    global _active_table
    _active_table = table


def estimate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    provider: Optional[str] = None,
    table: Optional[PriceTable] = None,
) -> float:
    """Estimated USD cost of one invocation."""
    pricing = (table or get_price_table()).get_pricing(model, provider)
    return (input_tokens * pricing.input + output_tokens * pricing.output) / 1_000_000


def load_price_overrides(path: str, base: PriceTable = DEFAULT_PRICE_TABLE) -> PriceTable:
    """Load a YAML pricing file and merge it over the built-in table.

    Expected shape::

        openai:
          default: {input: 5, output: 15}
          models:
            gpt-4o: {input: 2.5, output: 10}

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file has unknown keys, providers, or negative prices
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Pricing file not found: {path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not raw:
        raise ValueError("Pricing file is empty")
    if not isinstance(raw, dict):
        raise ValueError("Pricing file must be a mapping of provider -> prices")

    unknown = set(raw) - set(base.defaults)
    if unknown:
        raise ValueError(f"Unknown pricing providers: {unknown}")

    models = {p: dict(m) for p, m in base.models.items()}
    defaults = dict(base.defaults)

    for provider, section in raw.items():
        if not isinstance(section, dict):
            raise ValueError(f"'{provider}' must be a dictionary")
        unknown_keys = set(section) - {"default", "models"}
        if unknown_keys:
            raise ValueError(f"Unknown keys in {provider}: {unknown_keys}")

        if "default" in section:
            defaults[provider] = _parse_price(section["default"], f"{provider}.default")

        model_prices = section.get("models") or {}
        if not isinstance(model_prices, dict):
            raise ValueError(f"'{provider}.models' must be a dictionary")
        for name, price in model_prices.items():
            models.setdefault(provider, {})[name] = _parse_price(price, f"{provider}.models.{name}")

    return PriceTable(models=models, defaults=defaults)


def _parse_price(data, path: str) -> PriceEntry:
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary with input and output")
    unknown = set(data) - {"input", "output"}
    if unknown:
        raise ValueError(f"Unknown keys in {path}: {unknown}")
    values = {}
    for key in ("input", "output"):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"'{key}' in {path} must be a number >= 0")
        values[key] = float(value)
    return PriceEntry(values["input"], values["output"])
