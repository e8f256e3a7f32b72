"""Provider definitions, price table, and constants for promptlab."""

import os
from dataclasses import dataclass


def get_db_path() -> str:
    """Sqlite database path, read at call time so tests and .env can override it."""
    return os.environ.get("PROMPTLAB_DB", "promptlab.db")


def get_ollama_base_url() -> str:
    return os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434").rstrip("/")


# Providers
OLLAMA = "ollama"
OPENAI = "openai"
ANTHROPIC = "anthropic"

PROVIDERS = [OLLAMA, OPENAI, ANTHROPIC]

PROVIDER_LABELS = {
    OLLAMA: "Ollama",
    OPENAI: "OpenAI",
    ANTHROPIC: "Anthropic",
}

# Values allowed in responses.source
RESPONSE_SOURCES = [OLLAMA, OPENAI, ANTHROPIC, "manual", "imported"]


@dataclass(frozen=True)
class PriceEntry:
    input: float     # $ per 1M input tokens
    output: float    # $ per 1M output tokens


# Per-model prices, approximate as of 2025. Swappable via PROMPTLAB_PRICING.
PRICE_TABLE: dict[str, dict[str, PriceEntry]] = {
    OPENAI: {
        "gpt-4o": PriceEntry(2.5, 10.0),
        "gpt-4o-mini": PriceEntry(0.15, 0.6),
        "o1": PriceEntry(15.0, 60.0),
        "o3-mini": PriceEntry(1.1, 4.4),
    },
    ANTHROPIC: {
        "claude-sonnet-4-20250514": PriceEntry(3.0, 15.0),
        "claude-3-5-haiku-20241022": PriceEntry(0.8, 4.0),
        "claude-3-5-sonnet-20241022": PriceEntry(3.0, 15.0),
        "claude-3-opus-20240229": PriceEntry(15.0, 75.0),
    },
}

# Fallback tier when a model is missing from PRICE_TABLE
PROVIDER_DEFAULT_PRICES: dict[str, PriceEntry] = {
    OPENAI: PriceEntry(5.0, 15.0),
    ANTHROPIC: PriceEntry(3.0, 15.0),
}

# Static catalogs for cloud providers
MODEL_CATALOG: dict[str, list[str]] = {
    OPENAI: ["gpt-4o", "gpt-4o-mini", "o1", "o3-mini"],
    ANTHROPIC: [
        "claude-sonnet-4-20250514",
        "claude-3-5-haiku-20241022",
        "claude-3-5-sonnet-20241022",
        "claude-3-opus-20240229",
    ],
}

# Request defaults
DEFAULT_MAX_TOKENS = 4096
MODEL_LIST_TIMEOUT_S = 5.0

# Credential display
MASK_PREFIX = "••••"
