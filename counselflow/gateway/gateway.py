"""AI Request Gateway — orchestrator integrating all gateway components.

Main entry point for running legal analyses against AI providers:
  1. Validates the request (AnalysisRequest or a plain mapping)
  2. Looks the request fingerprint up in the ResponseCache
  3. Selects a provider with the deterministic selection policy
  4. Invokes it through the FallbackChainExecutor
  5. Caches successful, non-empty outputs with the domain TTL
  6. Records exactly one UsageRecord for requests that reached a provider

Usage:
    gateway = AnalysisGateway(GatewayConfig.from_settings(settings))
    await gateway.start()

    response = await gateway.process(
        {"kind": "legal_research", "input": "force majeure", "context": {"jurisdiction": "NG"}},
        user_id="user-1",
    )

    await gateway.close()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from counselflow.core.config import Settings
from counselflow.core.metrics import CACHE_LOOKUPS, GATEWAY_REQUESTS
from counselflow.gateway.cache import DEFAULT_SWEEP_INTERVAL_SECONDS, DEFAULT_TTL_SECONDS, ResponseCache, fingerprint, ttl_for
from counselflow.gateway.errors import (
    AllProvidersExhausted,
    NoProviderAvailable,
    ProviderError,
    ProviderErrorKind,
    ValidationError,
)
from counselflow.gateway.fallback import FallbackChainExecutor
from counselflow.gateway.policy import select_provider
from counselflow.gateway.provider_adapters import BaseProviderAdapter, build_adapters
from counselflow.gateway.types import (
    DEFAULT_PROVIDER_CONFIGS,
    MAX_USER_ID_LENGTH,
    SUPPORTED_JURISDICTIONS,
    AnalysisRequest,
    AnalysisResponse,
    ProviderConfig,
    ProviderId,
    SupportedLanguage,
)
from counselflow.gateway.usage import DEFAULT_MONTHLY_BUDGET, UsageRecord, UsageTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class GatewayConfig:
    """Everything the gateway needs, passed explicitly to its constructor."""

    providers: dict[ProviderId, ProviderConfig] = field(
        default_factory=lambda: {p: replace(c) for p, c in DEFAULT_PROVIDER_CONFIGS.items()}
    )
    api_keys: dict[ProviderId, str] = field(default_factory=dict)
    cache_ttl_seconds: float = DEFAULT_TTL_SECONDS
    cache_sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    default_monthly_budget: Decimal = DEFAULT_MONTHLY_BUDGET

    @classmethod
    def from_settings(cls, settings: Settings) -> GatewayConfig:
        """Self-hosted providers follow their flags; premium ones are enabled iff keyed."""
        api_keys = {
            ProviderId.OPENAI: settings.openai_api_key,
            ProviderId.ANTHROPIC: settings.anthropic_api_key,
            ProviderId.GOOGLE: settings.google_api_key,
        }
        overrides: dict[ProviderId, dict[str, Any]] = {
            ProviderId.OLLAMA: {
                "enabled": settings.ollama_enabled,
                "base_url": settings.ollama_base_url,
                "default_model": settings.ollama_model,
            },
            ProviderId.LEGAL_BERT: {
                "enabled": settings.legal_bert_enabled,
                "base_url": settings.legal_bert_base_url,
                "default_model": settings.legal_bert_model,
            },
            ProviderId.OPENAI: {"default_model": settings.openai_model},
            ProviderId.ANTHROPIC: {"default_model": settings.anthropic_model},
            ProviderId.GOOGLE: {"default_model": settings.google_model},
        }

        providers: dict[ProviderId, ProviderConfig] = {}
        for provider, default in DEFAULT_PROVIDER_CONFIGS.items():
            values = dict(overrides.get(provider, {}))
            if provider.is_premium:
                keyed = bool(api_keys.get(provider))
                values.update(enabled=keyed, api_key_present=keyed)
            providers[provider] = replace(
                default,
                timeout_seconds=settings.provider_timeout_seconds,
                health_timeout_seconds=settings.health_timeout_seconds,
                **values,
            )

        return cls(
            providers=providers,
            api_keys={p: k for p, k in api_keys.items() if k},
            cache_ttl_seconds=settings.cache_ttl_seconds,
            cache_sweep_interval_seconds=settings.cache_sweep_interval_seconds,
            default_monthly_budget=settings.default_monthly_budget,
        )

    def enabled_providers(self) -> frozenset[ProviderId]:
        return frozenset(p for p, c in self.providers.items() if c.selectable)


def _is_cacheable(response: AnalysisResponse) -> bool:
    output = response.output
    if output is None:
        return False
    if isinstance(output, (str, list, dict)) and not output:
        return False
    return True


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class AnalysisGateway:
    """Main gateway orchestrator.

    Integrates:
      - Selection policy: deterministic provider choice per analysis kind
      - FallbackChainExecutor: bounded failover across providers
      - ResponseCache: fingerprint-keyed TTL memoization
      - UsageTracker: one usage record per billed request, budget queries
      - Provider adapters: protocol-specific HTTP calls
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        adapters: Mapping[ProviderId, BaseProviderAdapter] | None = None,
        cache: ResponseCache | None = None,
        usage: UsageTracker | None = None,
        fallback_graph: Mapping[ProviderId, tuple[ProviderId, ...]] | None = None,
    ):
        """
        Args:
            config: Provider configs, API keys, cache and budget settings
            adapters: Override adapters (tests inject fakes here)
            cache: Override the response cache
            usage: Override the usage tracker
            fallback_graph: Override the static fallback graph
        """
        config = config or GatewayConfig()
        self.config = config
        self._configs: dict[ProviderId, ProviderConfig] = {p: replace(c) for p, c in config.providers.items()}
        self._api_keys: dict[ProviderId, str] = dict(config.api_keys)

        self.adapters: dict[ProviderId, BaseProviderAdapter] = (
            dict(adapters) if adapters is not None else build_adapters(self._configs, self._api_keys)
        )
        self.cache = cache or ResponseCache(
            default_ttl=config.cache_ttl_seconds,
            sweep_interval=config.cache_sweep_interval_seconds,
        )
        self.usage = usage or UsageTracker(default_budget=config.default_monthly_budget)
        self.executor = FallbackChainExecutor(
            self.adapters,
            graph=fallback_graph,
            timeouts={p: c.timeout_seconds for p, c in self._configs.items()},
        )

        # Replaced wholesale under the lock; readers take a snapshot without locking
        self._enabled: frozenset[ProviderId] = frozenset(p for p, c in self._configs.items() if c.selectable)
        self._enabled_lock = asyncio.Lock()
        self._health: dict[ProviderId, dict[str, Any]] = {}

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        self.cache.start_sweeper()
        logger.info(
            "AI gateway started with providers: %s",
            ", ".join(sorted(p.value for p in self._enabled)) or "none",
        )

    async def close(self) -> None:
        await self.cache.stop_sweeper()

    # -- request path ------------------------------------------------------

    @staticmethod
    def _validate(request: AnalysisRequest | Mapping[str, Any]) -> AnalysisRequest:
        if isinstance(request, AnalysisRequest):
            return request
        if not isinstance(request, Mapping):
            raise ValidationError("Request must be an AnalysisRequest or a mapping")
        try:
            return AnalysisRequest.model_validate(dict(request))
        except PydanticValidationError as e:
            errors = [
                {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors(include_url=False)
            ]
            raise ValidationError("Invalid analysis request", errors=errors) from e

    def _priorities(self) -> dict[ProviderId, int]:
        return {p: c.priority for p, c in self._configs.items()}

    async def _cache_lookup(self, request: AnalysisRequest) -> tuple[str | None, AnalysisResponse | None]:
        try:
            key = fingerprint(request)
            cached = await self.cache.get(key)
        except Exception:
            CACHE_LOOKUPS.labels(result="error").inc()
            logger.exception("Cache lookup failed for request %s", request.request_id)
            return None, None
        CACHE_LOOKUPS.labels(result="hit" if cached is not None else "miss").inc()
        return key, cached

    async def _cache_write(self, key: str, request: AnalysisRequest, response: AnalysisResponse) -> None:
        try:
            await self.cache.set(key, response, ttl=ttl_for(request.kind, self.cache.default_ttl))
        except Exception:
            logger.exception("Cache write failed for request %s", request.request_id)

    def _model_for(self, provider: ProviderId, request: AnalysisRequest) -> str:
        if request.model:
            return request.model
        config = self._configs.get(provider)
        return config.default_model if config else ""

    async def process(self, request: AnalysisRequest | Mapping[str, Any], user_id: str) -> AnalysisResponse:
        """Run one analysis end to end.

        Raises:
            ValidationError: malformed request; no provider is attempted
            NoProviderAvailable: no provider is enabled
            AllProvidersExhausted: the whole fallback chain failed
        """
        started = time.monotonic()
        if not user_id:
            raise ValidationError("user_id is required")
        if len(user_id) > MAX_USER_ID_LENGTH:
            raise ValidationError(f"user_id must be at most {MAX_USER_ID_LENGTH} characters")
        try:
            request = self._validate(request)
        except ValidationError:
            GATEWAY_REQUESTS.labels(analysis_type="unknown", outcome="invalid").inc()
            raise

        kind = request.kind.value
        log_extra = {"request_id": request.request_id, "user_id": user_id}
        enabled = self._enabled

        key: str | None = None
        if request.cache_enabled:
            key, cached = await self._cache_lookup(request)
            if cached is not None:
                cached.cached = True
                cached.request_id = request.request_id
                cached.processing_time_ms = _elapsed_ms(started)
                GATEWAY_REQUESTS.labels(analysis_type=kind, outcome="cache_hit").inc()
                logger.debug("Cache hit for %s request %s", kind, request.request_id, extra=log_extra)
                return cached

        try:
            first = select_provider(request.kind, enabled, self._priorities())
        except NoProviderAvailable:
            GATEWAY_REQUESTS.labels(analysis_type=kind, outcome="no_provider").inc()
            logger.error("No AI provider available for %s request %s", kind, request.request_id, extra=log_extra)
            raise

        try:
            response, attempts = await self.executor.run(request, first, enabled)
        except AllProvidersExhausted as e:
            GATEWAY_REQUESTS.labels(analysis_type=kind, outcome="exhausted").inc()
            await self.usage.record(
                UsageRecord(
                    request_id=request.request_id,
                    user_id=user_id,
                    provider=e.last_provider,
                    model=self._model_for(e.last_provider, request),
                    analysis_type=request.kind,
                    success=False,
                    processing_time_ms=_elapsed_ms(started),
                    error_kind=e.last_error.kind,
                )
            )
            logger.error(
                "All providers exhausted for request %s: %s",
                request.request_id,
                ", ".join(p.value for p in e.attempted),
                extra=log_extra,
            )
            raise

        response.request_id = request.request_id
        response.cached = False
        response.processing_time_ms = _elapsed_ms(started)

        if key is not None and _is_cacheable(response):
            await self._cache_write(key, request, response)

        # Per-call diagnostics stay out of the cached copy
        if len(attempts) > 1:
            response.metadata["fallback_chain"] = [a.provider.value for a in attempts]

        await self.usage.record(
            UsageRecord(
                request_id=request.request_id,
                user_id=user_id,
                provider=response.provider,
                model=response.model,
                analysis_type=request.kind,
                tokens_used=response.tokens_used,
                cost=response.cost,
                success=True,
                processing_time_ms=response.processing_time_ms,
            )
        )
        GATEWAY_REQUESTS.labels(analysis_type=kind, outcome="success").inc()
        logger.info(
            "Request %s served by %s in %dms",
            request.request_id,
            response.provider.value,
            response.processing_time_ms,
            extra={**log_extra, "provider": response.provider.value},
        )
        return response

    # -- provider management ----------------------------------------------

    def enabled_providers(self) -> frozenset[ProviderId]:
        return self._enabled

    async def enable_provider(self, provider: ProviderId, api_key: str | None = None) -> None:
        """Switch a provider on. Premium providers need a key, given here or at startup."""
        async with self._enabled_lock:
            if api_key:
                self._api_keys[provider] = api_key
                self.adapters[provider].api_key = api_key
                self._configs[provider].api_key_present = True
            if provider.is_premium and not self._api_keys.get(provider):
                raise ProviderError(provider, ProviderErrorKind.AUTH_MISSING, "API key required to enable provider")
            self._configs[provider].enabled = True
            self._enabled = self._enabled | {provider}
        logger.info("Provider %s enabled", provider.value)

    async def disable_provider(self, provider: ProviderId) -> None:
        async with self._enabled_lock:
            self._configs[provider].enabled = False
            self._enabled = self._enabled - {provider}
        logger.info("Provider %s disabled", provider.value)

    async def check_provider_health(self, provider: ProviderId) -> bool:
        started = time.monotonic()
        healthy = await self.adapters[provider].is_healthy()
        self._health[provider] = {
            "healthy": healthy,
            "latency_ms": _elapsed_ms(started),
            "last_checked": datetime.now(timezone.utc).isoformat(),
        }
        if not healthy:
            logger.warning("Provider %s health check failed", provider.value)
        return healthy

    async def health_check(self) -> dict[str, bool]:
        """Probe every provider concurrently."""
        providers = list(ProviderId)
        results = await asyncio.gather(*(self.check_provider_health(p) for p in providers))
        return {p.value: healthy for p, healthy in zip(providers, results)}

    def _status(self, provider: ProviderId) -> dict[str, Any]:
        config = self._configs[provider]
        health = self._health.get(provider, {})
        return {
            "provider": provider.value,
            "enabled": provider in self._enabled,
            "self_hosted": provider.is_self_hosted,
            "healthy": health.get("healthy"),
            "latency_ms": health.get("latency_ms"),
            "last_checked": health.get("last_checked"),
            "adapter": type(self.adapters[provider]).__name__,
            "priority": config.priority,
            "default_model": config.default_model,
        }

    def get_provider_status(self, provider: ProviderId | None = None) -> dict[str, Any] | list[dict[str, Any]]:
        """Status of one provider, or of all of them in enum order."""
        if provider is not None:
            return self._status(provider)
        return [self._status(p) for p in ProviderId]

    async def list_models(self, provider: ProviderId) -> list[str]:
        return await self.adapters[provider].list_models()

    @staticmethod
    def is_jurisdiction_supported(code: str) -> bool:
        return code.strip().upper() in SUPPORTED_JURISDICTIONS

    @staticmethod
    def is_language_supported(code: str) -> bool:
        return code in {lang.value for lang in SupportedLanguage}
