"""Gateway error taxonomy.

  - ValidationError: malformed request, fatal, no provider is attempted
  - ProviderError: one provider failed; recoverable through the fallback chain
  - NoProviderAvailable: nothing is enabled, fatal
  - AllProvidersExhausted: every reachable fallback failed, fatal
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from counselflow.gateway.types import ProviderId


class ProviderErrorKind(str, Enum):
    AUTH_MISSING = "auth_missing"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UPSTREAM = "upstream"
    MALFORMED = "malformed"


class GatewayError(Exception):
    """Base class for everything the gateway raises to callers."""


class ValidationError(GatewayError):
    """Raised when a request does not satisfy the AnalysisRequest schema."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ProviderError(GatewayError):
    """Raised by a provider adapter when a single call fails."""

    def __init__(
        self,
        provider: ProviderId,
        kind: ProviderErrorKind,
        message: str,
        status_code: int = 0,
    ):
        super().__init__(f"{provider.value}: {kind.value}: {message}")
        self.provider = provider
        self.kind = kind
        self.message = message
        self.status_code = status_code


class NoProviderAvailable(GatewayError):
    def __init__(self, message: str = "No AI providers available"):
        super().__init__(message)


class AllProvidersExhausted(GatewayError):
    """Every provider reachable from the initial selection failed.

    `attempted` lists providers in the order they were tried;
    `last_error` is the failure of the final hop.
    """

    def __init__(self, attempted: list[ProviderId], last_error: ProviderError):
        names = ", ".join(p.value for p in attempted)
        super().__init__(f"All providers exhausted (attempted: {names}); last error: {last_error}")
        self.attempted = list(attempted)
        self.last_error = last_error

    @property
    def last_provider(self) -> ProviderId:
        return self.attempted[-1]
