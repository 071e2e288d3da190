"""Shared fixtures for the AI gateway tests.

No network or database is needed: provider adapters are replaced by scripted
fakes, HTTP-level adapter tests patch httpx.AsyncClient, and the SQL usage
store is exercised against a mocked async session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace
from decimal import Decimal

import pytest

from counselflow.core.config import settings

# Override settings for tests
settings.app_env = "test"
settings.usage_store = "memory"
settings.sentry_dsn = ""

from counselflow.gateway.gateway import AnalysisGateway, GatewayConfig  # noqa: E402
from counselflow.gateway.provider_adapters import BaseProviderAdapter  # noqa: E402
from counselflow.gateway.types import (  # noqa: E402
    DEFAULT_PROVIDER_CONFIGS,
    AnalysisRequest,
    AnalysisResponse,
    ProviderId,
)

ALL_PROVIDERS = frozenset(ProviderId)


class FakeAdapter(BaseProviderAdapter):
    """Scripted adapter.

    `fail_with` is raised on every call when set; `delay` sleeps before
    answering so hop timeouts can be exercised.
    """

    def __init__(
        self,
        provider: ProviderId,
        output: object = None,
        cost: Decimal = Decimal("0.002"),
        fail_with: BaseException | None = None,
        delay: float = 0.0,
    ):
        super().__init__(replace(DEFAULT_PROVIDER_CONFIGS[provider]), api_key="test-key")
        self.provider = provider
        self.output = output if output is not None else {"analysis": f"answer from {provider.value}"}
        self.cost = cost
        self.fail_with = fail_with
        self.delay = delay
        self.healthy = True
        self.calls = 0

    async def process(self, request: AnalysisRequest, timeout: float | None = None) -> AnalysisResponse:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return AnalysisResponse(
            request_id=request.request_id,
            provider=self.provider,
            model=self.config.default_model,
            output=self.output,
            confidence=0.9,
            tokens_used=30,
            cost=self.cost,
            processing_time_ms=5,
        )

    async def _probe(self, timeout: float) -> bool:
        return self.healthy

    async def _fetch_models(self, timeout: float) -> list[str]:
        return [f"{self.provider.value}-model"]


def make_config(enabled: Iterable[ProviderId] = ALL_PROVIDERS) -> GatewayConfig:
    """GatewayConfig where exactly `enabled` is selectable; premium ones get a key."""
    enabled = frozenset(enabled)
    providers = {}
    api_keys = {}
    for provider, default in DEFAULT_PROVIDER_CONFIGS.items():
        on = provider in enabled
        keyed = on and provider.is_premium
        providers[provider] = replace(default, enabled=on, api_key_present=keyed)
        if keyed:
            api_keys[provider] = f"{provider.value}-key"
    return GatewayConfig(providers=providers, api_keys=api_keys)


def make_request(**overrides) -> AnalysisRequest:
    values = {
        "kind": "legal_research",
        "input": "force majeure",
        "context": {"jurisdiction": "NG"},
    }
    values.update(overrides)
    return AnalysisRequest.model_validate(values)


@pytest.fixture
def fakes() -> dict[ProviderId, FakeAdapter]:
    return {p: FakeAdapter(p) for p in ProviderId}


@pytest.fixture
def make_gateway(fakes):
    def _make(enabled: Iterable[ProviderId] = ALL_PROVIDERS, **kwargs) -> AnalysisGateway:
        return AnalysisGateway(make_config(enabled), adapters=fakes, **kwargs)

    return _make
