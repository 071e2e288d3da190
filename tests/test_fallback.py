"""Tests for the fallback chain executor."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeAdapter, make_request
from hypothesis import given, settings
from hypothesis import strategies as st

from counselflow.gateway.errors import AllProvidersExhausted, ProviderError, ProviderErrorKind
from counselflow.gateway.fallback import FALLBACK_GRAPH, FallbackChainExecutor, next_fallback
from counselflow.gateway.types import ProviderId

O, LB, OA, AN, G = (
    ProviderId.OLLAMA,
    ProviderId.LEGAL_BERT,
    ProviderId.OPENAI,
    ProviderId.ANTHROPIC,
    ProviderId.GOOGLE,
)
ALL = frozenset(ProviderId)


def _err(provider: ProviderId, kind: ProviderErrorKind = ProviderErrorKind.UPSTREAM) -> ProviderError:
    return ProviderError(provider, kind, "boom")


class TestNextFallback:
    def test_graph_covers_every_provider(self):
        assert set(FALLBACK_GRAPH) == set(ProviderId)

    def test_first_enabled_unvisited(self):
        assert next_fallback(LB, ALL, {LB}) == O

    def test_skips_visited(self):
        assert next_fallback(LB, ALL, {LB, O}) == OA

    def test_skips_disabled(self):
        assert next_fallback(O, {O, AN}, {O}) == AN

    def test_none_left(self):
        assert next_fallback(G, ALL, {G, OA, O}) is None


class TestFallbackChainExecutor:
    async def test_first_provider_succeeds(self):
        fakes = {p: FakeAdapter(p) for p in ProviderId}
        executor = FallbackChainExecutor(fakes)

        response, attempts = await executor.run(make_request(), LB, ALL)

        assert response.provider == LB
        assert [a.provider for a in attempts] == [LB]
        assert attempts[0].error_kind is None
        assert fakes[O].calls == 0

    async def test_walks_graph_until_success(self):
        fakes = {p: FakeAdapter(p) for p in ProviderId}
        fakes[LB].fail_with = _err(LB, ProviderErrorKind.TIMEOUT)
        fakes[O].fail_with = _err(O)
        executor = FallbackChainExecutor(fakes)

        response, attempts = await executor.run(make_request(), LB, ALL)

        assert response.provider == OA
        assert [a.provider for a in attempts] == [LB, O, OA]
        assert [a.error_kind for a in attempts] == [ProviderErrorKind.TIMEOUT, ProviderErrorKind.UPSTREAM, None]

    async def test_exhaustion_carries_attempts_and_last_error(self):
        fakes = {p: FakeAdapter(p, fail_with=_err(p)) for p in ProviderId}
        fakes[OA].fail_with = _err(OA, ProviderErrorKind.RATE_LIMITED)
        executor = FallbackChainExecutor(fakes)

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await executor.run(make_request(), LB, {LB, O, OA})

        assert exc_info.value.attempted == [LB, O, OA]
        assert exc_info.value.last_provider == OA
        assert exc_info.value.last_error.kind == ProviderErrorKind.RATE_LIMITED

    async def test_hop_timeout_becomes_timeout_error(self):
        fakes = {p: FakeAdapter(p) for p in ProviderId}
        fakes[O].delay = 1.0
        executor = FallbackChainExecutor(fakes, timeouts={O: 0.05})

        response, attempts = await executor.run(make_request(kind="document_review"), O, {O, OA})

        assert attempts[0].error_kind == ProviderErrorKind.TIMEOUT
        assert response.provider == OA

    async def test_request_timeout_caps_hop_timeout(self):
        executor = FallbackChainExecutor({}, timeouts={OA: 30.0})
        req = make_request(options={"timeout_seconds": 2.5})
        assert executor.hop_timeout(OA, req) == 2.5
        assert executor.hop_timeout(OA, make_request()) == 30.0

    async def test_unexpected_exception_is_upstream(self):
        fakes = {p: FakeAdapter(p) for p in ProviderId}
        fakes[O].fail_with = KeyError("surprise")
        executor = FallbackChainExecutor(fakes)

        response, attempts = await executor.run(make_request(kind="document_review"), O, {O, OA})

        assert attempts[0].error_kind == ProviderErrorKind.UPSTREAM
        assert response.provider == OA

    async def test_missing_adapter_is_upstream(self):
        executor = FallbackChainExecutor({OA: FakeAdapter(OA)})

        response, attempts = await executor.run(make_request(kind="document_review"), O, {O, OA})

        assert attempts[0].error_kind == ProviderErrorKind.UPSTREAM
        assert response.provider == OA

    async def test_self_loop_terminates(self):
        fakes = {p: FakeAdapter(p, fail_with=_err(p)) for p in ProviderId}
        graph = {O: (O, O, O)}
        executor = FallbackChainExecutor(fakes, graph=graph)

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await executor.run(make_request(), O, ALL)

        assert exc_info.value.attempted == [O]
        assert fakes[O].calls == 1


providers = st.sampled_from(list(ProviderId))
graphs = st.dictionaries(providers, st.lists(providers, max_size=6).map(tuple))


class TestFallbackProperties:
    @settings(max_examples=200, deadline=None)
    @given(
        graph=graphs,
        enabled=st.frozensets(providers, min_size=1),
        failing=st.frozensets(providers),
        data=st.data(),
    )
    def test_terminates_and_never_repeats(self, graph, enabled, failing, data):
        first = data.draw(st.sampled_from(sorted(enabled, key=list(ProviderId).index)))
        fakes = {p: FakeAdapter(p, fail_with=_err(p) if p in failing else None) for p in ProviderId}
        executor = FallbackChainExecutor(fakes, graph=graph)

        try:
            response, attempts = asyncio.run(executor.run(make_request(), first, enabled))
            attempted = [a.provider for a in attempts]
            assert response.provider == attempted[-1]
            assert response.provider not in failing
        except AllProvidersExhausted as e:
            attempted = e.attempted
            assert all(p in failing for p in attempted)

        assert attempted[0] == first
        assert len(attempted) <= len(ProviderId)
        assert len(set(attempted)) == len(attempted)
        assert all(p in enabled for p in attempted)
        assert sum(f.calls for f in fakes.values()) == len(attempted)
