"""Error taxonomy for generation, credentials, and persistence."""

from __future__ import annotations

from typing import Any


class PromptLabError(Exception):
    """Base exception for everything the generation core raises."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider

    @property
    def is_retryable(self) -> bool:
        return False

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class ValidationError(PromptLabError):
    """Caller input is malformed (missing promptId, model, or content)."""


class CredentialMissingError(PromptLabError):
    """A cloud provider was requested but no API key is stored for it."""

    def __init__(self, provider: str, label: str | None = None):
        super().__init__(
            f"No {label or provider} API key configured. Add one in Settings.",
            provider=provider,
        )


class DecryptionError(PromptLabError):
    """A stored credential could not be decrypted (wrong key or corrupt ciphertext)."""


class UpstreamError(PromptLabError):
    """The provider call failed: non-success status or transport failure."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, provider=provider)
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"HTTP {self.status_code} {base}"
        return base


class UpstreamTimeout(UpstreamError):
    """The provider did not answer before the configured deadline."""

    def __init__(self, message: str = "Request timed out", provider: str | None = None,
                 timeout: float | None = None):
        super().__init__(message, provider=provider)
        self.timeout = timeout


class ProviderUnavailable(UpstreamError):
    """Upstream unreachable or timed out; safe to retry with backoff."""

    @property
    def is_retryable(self) -> bool:
        return True


class PersistenceError(PromptLabError):
    """Generation succeeded but the response record could not be written."""

    def __init__(self, message: str, result: Any = None, provider: str | None = None):
        super().__init__(message, provider=provider)
        self.result = result
