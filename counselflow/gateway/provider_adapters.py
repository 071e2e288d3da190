"""Provider Adapters — protocol-level handling for each AI backend.

Each adapter translates an AnalysisRequest into the provider's HTTP protocol,
sends it, and returns an AnalysisResponse with normalized fields. Failures are
raised as ProviderError; adapters never retry (retry and fallback belong to
the gateway).

Provider-specific behaviors:
  - Ollama: self-hosted generate endpoint, token counts from eval counters
  - Legal BERT: self-hosted legal-domain inference server, structured output
  - OpenAI: chat completions with system prompt
  - Anthropic: messages API, content blocks
  - Google: Gemini generateContent, finishReason SAFETY → malformed reply
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import replace
from decimal import Decimal
from typing import Any

import httpx

from counselflow.gateway.errors import ProviderError, ProviderErrorKind
from counselflow.gateway.normalizer import estimate_tokens, normalize_response, structure_output
from counselflow.gateway.prompts import build_legal_prompt, build_system_prompt
from counselflow.gateway.types import (
    DEFAULT_PROVIDER_CONFIGS,
    AnalysisRequest,
    AnalysisResponse,
    ProviderConfig,
    ProviderId,
)

logger = logging.getLogger(__name__)

# Health probes never wait longer than this, whatever the config says
MAX_HEALTH_TIMEOUT = 5.0

_THOUSAND = Decimal(1000)


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters."""

    provider: ProviderId
    requires_api_key: bool = False
    default_confidence: float = 0.85
    fallback_models: tuple[str, ...] = ()

    def __init__(self, config: ProviderConfig, api_key: str = ""):
        self.config = config
        self.api_key = api_key

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) or not self.requires_api_key

    @abstractmethod
    async def process(self, request: AnalysisRequest, timeout: float | None = None) -> AnalysisResponse:
        """Run one analysis against the provider and return a normalized response."""
        ...

    @abstractmethod
    async def _probe(self, timeout: float) -> bool:
        """Lightweight liveness call. May raise; `is_healthy` absorbs it."""
        ...

    async def _fetch_models(self, timeout: float) -> list[str]:
        return list(self.fallback_models)

    async def is_healthy(self) -> bool:
        """Liveness probe with a short timeout. Never raises."""
        if not self.has_credentials:
            return False
        timeout = min(self.config.health_timeout_seconds, MAX_HEALTH_TIMEOUT)
        try:
            return await self._probe(timeout)
        except Exception as e:
            logger.debug("Health probe for %s failed: %s", self.provider.value, e)
            return False

    async def list_models(self) -> list[str]:
        """Models the provider offers, or the static list when it cannot be asked."""
        if not self.has_credentials:
            return list(self.fallback_models)
        timeout = min(self.config.health_timeout_seconds, MAX_HEALTH_TIMEOUT)
        try:
            models = await self._fetch_models(timeout)
        except Exception as e:
            logger.debug("Model listing for %s failed: %s", self.provider.value, e)
            models = []
        return models or list(self.fallback_models)

    # -- helpers -----------------------------------------------------------

    def _require_credentials(self) -> None:
        if not self.has_credentials:
            raise ProviderError(self.provider, ProviderErrorKind.AUTH_MISSING, "API key not configured")

    def _resolve_timeout(self, request: AnalysisRequest, timeout: float | None) -> float:
        if timeout is not None:
            return timeout
        if request.options and request.options.timeout_seconds:
            return min(request.options.timeout_seconds, self.config.timeout_seconds)
        return self.config.timeout_seconds

    def _model_for(self, request: AnalysisRequest) -> str:
        return request.model or self.config.default_model

    def _error(self, kind: ProviderErrorKind, message: str, status_code: int = 0) -> ProviderError:
        return ProviderError(self.provider, kind, message, status_code=status_code)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        code = resp.status_code
        if code in (401, 403):
            raise self._error(ProviderErrorKind.AUTH_MISSING, f"Rejected credentials ({code})", code)
        if code == 429:
            raise self._error(ProviderErrorKind.RATE_LIMITED, f"Rate limited by {self.provider.value}", code)
        if code >= 400:
            raise self._error(ProviderErrorKind.UPSTREAM, f"HTTP {code}: {resp.text[:200]}", code)

    def _decode(self, resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise self._error(ProviderErrorKind.MALFORMED, f"Reply is not JSON: {e}", resp.status_code) from e
        if not isinstance(data, dict):
            raise self._error(ProviderErrorKind.MALFORMED, "Reply is not a JSON object", resp.status_code)
        return data

    async def _send(
        self,
        method: str,
        url: str,
        timeout: float,
        *,
        json: dict | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Single HTTP round-trip; transport failures become ProviderError."""
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                if method == "GET":
                    resp = await client.get(url, headers=headers, params=params)
                else:
                    resp = await client.post(url, json=json, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise self._error(ProviderErrorKind.TIMEOUT, f"Timeout after {timeout}s") from e
        except httpx.RequestError as e:
            raise self._error(ProviderErrorKind.UPSTREAM, f"Transport error: {e}") from e

        self._raise_for_status(resp)
        return self._decode(resp)

    def _calc_cost(self, input_tokens: int, output_tokens: int) -> Decimal:
        return (
            Decimal(input_tokens) * self.config.cost_per_1k_input_tokens
            + Decimal(output_tokens) * self.config.cost_per_1k_output_tokens
        ) / _THOUSAND

    def _build_response(
        self,
        request: AnalysisRequest,
        *,
        model: str,
        output: Any,
        input_tokens: int,
        output_tokens: int,
        started: float,
        confidence: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AnalysisResponse:
        response = AnalysisResponse(
            request_id=request.request_id,
            provider=self.provider,
            model=model,
            output=output,
            confidence=self.default_confidence if confidence is None else confidence,
            tokens_used=input_tokens + output_tokens,
            cost=self._calc_cost(input_tokens, output_tokens),
            processing_time_ms=int((time.monotonic() - started) * 1000),
            metadata=metadata or {},
        )
        return normalize_response(response)

    def _text_or_malformed(self, text: Any) -> str:
        if not isinstance(text, str) or not text.strip():
            raise self._error(ProviderErrorKind.MALFORMED, "Reply carried no text")
        return text


# ---------------------------------------------------------------------------
# Ollama Adapter (self-hosted, general)
# ---------------------------------------------------------------------------


class OllamaAdapter(BaseProviderAdapter):
    """Self-hosted Ollama model server."""

    provider = ProviderId.OLLAMA
    default_confidence = 0.85  # Ollama reports no confidence
    fallback_models = ("llama3.2:latest",)

    async def process(self, request: AnalysisRequest, timeout: float | None = None) -> AnalysisResponse:
        timeout = self._resolve_timeout(request, timeout)
        model = self._model_for(request)
        prompt = build_legal_prompt(request)
        start = time.monotonic()

        payload = {
            "model": model,
            "prompt": prompt,
            "system": build_system_prompt(request),
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "top_p": 0.9,
                "num_predict": request.max_tokens,
            },
        }

        data = await self._send("POST", f"{self.base_url}/api/generate", timeout, json=payload)
        text = self._text_or_malformed(data.get("response"))

        return self._build_response(
            request,
            model=data.get("model", model),
            output=structure_output(text, request.kind),
            input_tokens=int(data.get("prompt_eval_count") or estimate_tokens(prompt)),
            output_tokens=int(data.get("eval_count") or estimate_tokens(text)),
            started=start,
            metadata={
                "total_duration": data.get("total_duration"),
                "load_duration": data.get("load_duration"),
            },
        )

    async def _probe(self, timeout: float) -> bool:
        await self._send("GET", f"{self.base_url}/api/tags", timeout)
        return True

    async def _fetch_models(self, timeout: float) -> list[str]:
        data = await self._send("GET", f"{self.base_url}/api/tags", timeout)
        return [m["name"] for m in data.get("models", []) if m.get("name")]


# ---------------------------------------------------------------------------
# Legal BERT Adapter (self-hosted, legal-domain)
# ---------------------------------------------------------------------------


class LegalBertAdapter(BaseProviderAdapter):
    """Self-hosted legal-domain inference server.

    The server accepts the task and raw input and answers either with a
    structured `output` object or with free `text`, plus an optional
    `confidence` and `usage` block.
    """

    provider = ProviderId.LEGAL_BERT
    default_confidence = 0.92
    fallback_models = (
        "nlpaueb/legal-bert-base-uncased",
        "zlucia/legalbert",
        "saibo/legal-roberta-base",
        "counselflow/african-legal-model",
        "counselflow/middle-east-legal-model",
    )

    async def process(self, request: AnalysisRequest, timeout: float | None = None) -> AnalysisResponse:
        timeout = self._resolve_timeout(request, timeout)
        model = self._model_for(request)
        start = time.monotonic()

        payload = {
            "model": model,
            "task": request.kind.value,
            "inputs": request.input,
            "context": request.context.model_dump(mode="json") if request.context else None,
            "parameters": {"max_tokens": request.max_tokens},
        }

        data = await self._send("POST", f"{self.base_url}/predict", timeout, json=payload)

        if isinstance(data.get("output"), dict):
            output = data["output"]
            produced = str(output)
        else:
            produced = self._text_or_malformed(data.get("text"))
            output = structure_output(produced, request.kind)

        usage = data.get("usage") or {}
        confidence = data.get("confidence")
        return self._build_response(
            request,
            model=data.get("model", model),
            output=output,
            input_tokens=int(usage.get("input_tokens") or estimate_tokens(str(request.input))),
            output_tokens=int(usage.get("output_tokens") or estimate_tokens(produced)),
            started=start,
            confidence=float(confidence) if confidence is not None else None,
            metadata={"specialization": "legal_language_processing"},
        )

    async def _probe(self, timeout: float) -> bool:
        data = await self._send("GET", f"{self.base_url}/health", timeout)
        return data.get("status", "ok") in ("ok", "ready")

    async def _fetch_models(self, timeout: float) -> list[str]:
        data = await self._send("GET", f"{self.base_url}/models", timeout)
        return [str(m) for m in data.get("models", [])]


# ---------------------------------------------------------------------------
# OpenAI Adapter
# ---------------------------------------------------------------------------


class OpenAIAdapter(BaseProviderAdapter):
    """OpenAI Chat Completions adapter."""

    provider = ProviderId.OPENAI
    requires_api_key = True
    default_confidence = 0.95
    fallback_models = ("gpt-4o-mini", "gpt-4o", "gpt-4.1")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def process(self, request: AnalysisRequest, timeout: float | None = None) -> AnalysisResponse:
        self._require_credentials()
        timeout = self._resolve_timeout(request, timeout)
        model = self._model_for(request)
        system_prompt = build_system_prompt(request)
        prompt = build_legal_prompt(request)
        start = time.monotonic()

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }

        data = await self._send(
            "POST", f"{self.base_url}/v1/chat/completions", timeout, json=payload, headers=self._headers()
        )

        try:
            choice = data["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise self._error(ProviderErrorKind.MALFORMED, f"Unexpected completion shape: {e}") from e
        text = self._text_or_malformed(text)

        usage = data.get("usage") or {}
        return self._build_response(
            request,
            model=data.get("model", model),
            output=structure_output(text, request.kind),
            input_tokens=int(usage.get("prompt_tokens") or estimate_tokens(system_prompt + prompt)),
            output_tokens=int(usage.get("completion_tokens") or estimate_tokens(text)),
            started=start,
            metadata={"finish_reason": choice.get("finish_reason")},
        )

    async def _probe(self, timeout: float) -> bool:
        await self._send("GET", f"{self.base_url}/v1/models", timeout, headers=self._headers())
        return True

    async def _fetch_models(self, timeout: float) -> list[str]:
        data = await self._send("GET", f"{self.base_url}/v1/models", timeout, headers=self._headers())
        return sorted(m["id"] for m in data.get("data", []) if "gpt" in m.get("id", ""))


# ---------------------------------------------------------------------------
# Anthropic Adapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(BaseProviderAdapter):
    """Anthropic Messages API adapter."""

    provider = ProviderId.ANTHROPIC
    requires_api_key = True
    default_confidence = 0.93
    fallback_models = ("claude-3-5-haiku-latest", "claude-3-5-sonnet-latest")
    api_version = "2023-06-01"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    async def process(self, request: AnalysisRequest, timeout: float | None = None) -> AnalysisResponse:
        self._require_credentials()
        timeout = self._resolve_timeout(request, timeout)
        model = self._model_for(request)
        system_prompt = build_system_prompt(request)
        prompt = build_legal_prompt(request)
        start = time.monotonic()

        payload = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
        }

        data = await self._send("POST", f"{self.base_url}/v1/messages", timeout, json=payload, headers=self._headers())

        blocks = data.get("content") or []
        text = self._text_or_malformed(
            "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")
        )

        usage = data.get("usage") or {}
        return self._build_response(
            request,
            model=data.get("model", model),
            output=structure_output(text, request.kind),
            input_tokens=int(usage.get("input_tokens") or estimate_tokens(system_prompt + prompt)),
            output_tokens=int(usage.get("output_tokens") or estimate_tokens(text)),
            started=start,
            metadata={"stop_reason": data.get("stop_reason")},
        )

    async def _probe(self, timeout: float) -> bool:
        await self._send("GET", f"{self.base_url}/v1/models", timeout, headers=self._headers())
        return True

    async def _fetch_models(self, timeout: float) -> list[str]:
        data = await self._send("GET", f"{self.base_url}/v1/models", timeout, headers=self._headers())
        return [m["id"] for m in data.get("data", []) if m.get("id")]


# ---------------------------------------------------------------------------
# Google Adapter (Gemini)
# ---------------------------------------------------------------------------


class GoogleAdapter(BaseProviderAdapter):
    """Google Gemini adapter with SAFETY filter detection."""

    provider = ProviderId.GOOGLE
    requires_api_key = True
    default_confidence = 0.91
    fallback_models = ("gemini-2.0-flash", "gemini-2.5-flash", "gemini-2.5-pro")

    async def process(self, request: AnalysisRequest, timeout: float | None = None) -> AnalysisResponse:
        self._require_credentials()
        timeout = self._resolve_timeout(request, timeout)
        model = self._model_for(request)
        system_prompt = build_system_prompt(request)
        prompt = build_legal_prompt(request)
        start = time.monotonic()

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }

        data = await self._send(
            "POST",
            f"{self.base_url}/v1beta/models/{model}:generateContent",
            timeout,
            json=payload,
            params={"key": self.api_key},
            headers={"Content-Type": "application/json"},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason", "")
            raise self._error(ProviderErrorKind.MALFORMED, f"No candidates returned (blockReason={block_reason})")

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason", "")
        if finish_reason == "SAFETY":
            raise self._error(ProviderErrorKind.MALFORMED, "Reply blocked by Gemini safety filter")

        parts = (candidate.get("content") or {}).get("parts", [])
        text = self._text_or_malformed("".join(p.get("text", "") for p in parts if isinstance(p, dict)))

        usage = data.get("usageMetadata") or {}
        return self._build_response(
            request,
            model=model,
            output=structure_output(text, request.kind),
            input_tokens=int(usage.get("promptTokenCount") or estimate_tokens(system_prompt + prompt)),
            output_tokens=int(usage.get("candidatesTokenCount") or estimate_tokens(text)),
            started=start,
            metadata={"finish_reason": finish_reason},
        )

    async def _probe(self, timeout: float) -> bool:
        await self._send("GET", f"{self.base_url}/v1beta/models", timeout, params={"key": self.api_key})
        return True

    async def _fetch_models(self, timeout: float) -> list[str]:
        data = await self._send("GET", f"{self.base_url}/v1beta/models", timeout, params={"key": self.api_key})
        return [m["name"].split("/")[-1] for m in data.get("models", []) if m.get("name")]


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[ProviderId, type[BaseProviderAdapter]] = {
    ProviderId.OLLAMA: OllamaAdapter,
    ProviderId.LEGAL_BERT: LegalBertAdapter,
    ProviderId.OPENAI: OpenAIAdapter,
    ProviderId.ANTHROPIC: AnthropicAdapter,
    ProviderId.GOOGLE: GoogleAdapter,
}


def get_adapter(provider: ProviderId, config: ProviderConfig | None = None, api_key: str = "") -> BaseProviderAdapter:
    """Factory: get the appropriate adapter for a provider."""
    cls = ADAPTER_REGISTRY.get(provider)
    if cls is None:
        raise ValueError(f"No adapter registered for provider: {provider}")
    config = config or replace(DEFAULT_PROVIDER_CONFIGS[provider])
    return cls(config=config, api_key=api_key)


def build_adapters(
    configs: Mapping[ProviderId, ProviderConfig],
    api_keys: Mapping[ProviderId, str] | None = None,
) -> dict[ProviderId, BaseProviderAdapter]:
    """Construct one adapter per provider. Unkeyed premium adapters are built but stay unselectable."""
    api_keys = api_keys or {}
    return {
        provider: get_adapter(provider, configs.get(provider), api_keys.get(provider, ""))
        for provider in ProviderId
    }
