"""Fallback chain executor.

Invokes the selected provider and, on failure, walks the static fallback
graph:
  - The next hop is the first alternate of the failed provider that is
    enabled and not yet visited in this request
  - The visited set is seeded with the first selection, so traversal ends
    after at most |ProviderId| hops even when the graph has cycles
  - Each hop runs under its own timeout; there is no backoff between hops
  - Hops are strictly sequential

When no hop is left, AllProvidersExhausted carries the providers attempted
and the last ProviderError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from counselflow.core.metrics import FALLBACK_HOPS, PROVIDER_ATTEMPTS, PROVIDER_LATENCY
from counselflow.gateway.errors import AllProvidersExhausted, ProviderError, ProviderErrorKind
from counselflow.gateway.provider_adapters import BaseProviderAdapter
from counselflow.gateway.types import AnalysisRequest, AnalysisResponse, ProviderId

logger = logging.getLogger(__name__)

DEFAULT_HOP_TIMEOUT = 30.0

FALLBACK_GRAPH: dict[ProviderId, tuple[ProviderId, ...]] = {
    ProviderId.LEGAL_BERT: (ProviderId.OLLAMA, ProviderId.OPENAI),
    ProviderId.OLLAMA: (ProviderId.OPENAI, ProviderId.ANTHROPIC),
    ProviderId.OPENAI: (ProviderId.ANTHROPIC, ProviderId.GOOGLE),
    ProviderId.ANTHROPIC: (ProviderId.OPENAI, ProviderId.GOOGLE),
    ProviderId.GOOGLE: (ProviderId.OPENAI, ProviderId.OLLAMA),
}


@dataclass(frozen=True)
class Attempt:
    """One hop of the chain. `error_kind` is None for the successful hop."""

    provider: ProviderId
    error_kind: ProviderErrorKind | None
    elapsed_ms: int


def next_fallback(
    failed: ProviderId,
    enabled: Iterable[ProviderId],
    visited: Iterable[ProviderId],
    graph: Mapping[ProviderId, Iterable[ProviderId]] = FALLBACK_GRAPH,
) -> ProviderId | None:
    """First alternate of `failed` that is enabled and unvisited, or None."""
    enabled = frozenset(enabled)
    visited = frozenset(visited)
    for candidate in graph.get(failed, ()):
        if candidate in enabled and candidate not in visited:
            return candidate
    return None


class FallbackChainExecutor:
    """Runs one request through the selected provider and its fallbacks."""

    def __init__(
        self,
        adapters: Mapping[ProviderId, BaseProviderAdapter],
        graph: Mapping[ProviderId, Iterable[ProviderId]] | None = None,
        timeouts: Mapping[ProviderId, float] | None = None,
    ):
        self._adapters = adapters
        self._graph = graph if graph is not None else FALLBACK_GRAPH
        self._timeouts = dict(timeouts or {})

    def hop_timeout(self, provider: ProviderId, request: AnalysisRequest) -> float:
        timeout = self._timeouts.get(provider, DEFAULT_HOP_TIMEOUT)
        if request.options and request.options.timeout_seconds:
            timeout = min(timeout, request.options.timeout_seconds)
        return timeout

    async def _invoke(self, provider: ProviderId, request: AnalysisRequest) -> AnalysisResponse:
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ProviderError(provider, ProviderErrorKind.UPSTREAM, "No adapter registered")

        timeout = self.hop_timeout(provider, request)
        try:
            return await asyncio.wait_for(adapter.process(request, timeout=timeout), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(provider, ProviderErrorKind.TIMEOUT, f"No reply within {timeout}s") from e
        except ProviderError:
            raise
        except Exception as e:
            logger.exception("Unexpected error from %s adapter", provider.value)
            raise ProviderError(provider, ProviderErrorKind.UPSTREAM, str(e) or type(e).__name__) from e

    async def run(
        self,
        request: AnalysisRequest,
        first: ProviderId,
        enabled: Iterable[ProviderId],
    ) -> tuple[AnalysisResponse, list[Attempt]]:
        """Execute the chain starting at `first`.

        Returns:
            (response, attempts) where attempts lists every hop in order

        Raises:
            AllProvidersExhausted: every reachable provider failed
        """
        enabled = frozenset(enabled)
        visited: set[ProviderId] = {first}
        attempted: list[ProviderId] = []
        attempts: list[Attempt] = []
        current = first

        while True:
            attempted.append(current)
            start = time.monotonic()
            try:
                response = await self._invoke(current, request)
            except ProviderError as e:
                elapsed = time.monotonic() - start
                attempts.append(Attempt(current, e.kind, int(elapsed * 1000)))
                PROVIDER_ATTEMPTS.labels(provider=current.value, outcome=e.kind.value).inc()
                PROVIDER_LATENCY.labels(provider=current.value).observe(elapsed)
                logger.warning(
                    "Provider %s failed for request %s: %s",
                    current.value,
                    request.request_id,
                    e,
                    extra={"request_id": request.request_id, "provider": current.value},
                )

                nxt = next_fallback(current, enabled, visited, self._graph)
                if nxt is None:
                    raise AllProvidersExhausted(attempted, e) from e

                FALLBACK_HOPS.labels(from_provider=current.value, to_provider=nxt.value).inc()
                logger.info("Falling back from %s to %s", current.value, nxt.value)
                visited.add(nxt)
                current = nxt
                continue

            elapsed = time.monotonic() - start
            attempts.append(Attempt(current, None, int(elapsed * 1000)))
            PROVIDER_ATTEMPTS.labels(provider=current.value, outcome="success").inc()
            PROVIDER_LATENCY.labels(provider=current.value).observe(elapsed)
            return response, attempts
