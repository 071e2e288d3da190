"""Tests for request fingerprinting and the TTL response cache."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from conftest import make_request

from counselflow.gateway.cache import (
    DOMAIN_TTL_SECONDS,
    ResponseCache,
    canonical_json,
    fingerprint,
    ttl_for,
)
from counselflow.gateway.types import AnalysisKind, AnalysisResponse, ProviderId


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ==========================================================================
# Test: Fingerprint
# ==========================================================================


class TestFingerprint:
    def test_canonical_json_sorts_nested_keys(self):
        assert canonical_json({"b": {"y": 1, "x": 2}, "a": [3]}) == '{"a":[3],"b":{"x":2,"y":1}}'

    def test_canonical_json_scalars(self):
        assert canonical_json({"d": Decimal("1.50"), "k": AnalysisKind.RISK_ASSESSMENT}) == (
            '{"d":"1.50","k":"risk_assessment"}'
        )

    def test_canonical_json_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            canonical_json({"x": object()})

    def test_input_key_order_irrelevant(self):
        a = make_request(input={"party": "Acme", "clause": "indemnity"})
        b = make_request(input={"clause": "indemnity", "party": "Acme"})
        assert fingerprint(a) == fingerprint(b)

    def test_identity_fields_excluded(self):
        a = make_request(request_id="r-1", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        b = make_request(request_id="r-2", created_at=datetime(2025, 6, 1, tzinfo=timezone.utc))
        assert a.request_id != b.request_id
        assert fingerprint(a) == fingerprint(b)

    def test_transport_options_excluded(self):
        a = make_request(options={"timeout_seconds": 5, "cache_enabled": True})
        b = make_request(options={"timeout_seconds": 60, "cache_enabled": False})
        assert fingerprint(a) == fingerprint(b)

    def test_default_options_match_explicit_defaults(self):
        assert fingerprint(make_request()) == fingerprint(make_request(options={"temperature": 0.1, "max_tokens": 2048}))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"kind": "contract_analysis"},
            {"input": "hardship"},
            {"context": {"jurisdiction": "KE"}},
            {"context": {"jurisdiction": "NG", "language": "fr"}},
            {"options": {"temperature": 0.7}},
            {"options": {"max_tokens": 512}},
            {"model": "gpt-4o"},
        ],
    )
    def test_semantic_fields_included(self, overrides):
        assert fingerprint(make_request()) != fingerprint(make_request(**overrides))

    def test_jurisdiction_case_normalized(self):
        assert fingerprint(make_request(context={"jurisdiction": "ng"})) == fingerprint(make_request())

    def test_is_sha256_hex(self):
        key = fingerprint(make_request())
        assert len(key) == 64
        int(key, 16)


# ==========================================================================
# Test: ResponseCache
# ==========================================================================


def _response(**kwargs) -> AnalysisResponse:
    values = {"request_id": "r1", "provider": ProviderId.OLLAMA, "output": {"analysis": "ok"}}
    values.update(kwargs)
    return AnalysisResponse(**values)


class TestResponseCache:
    async def test_round_trip(self):
        cache = ResponseCache()
        await cache.set("k", _response())
        hit = await cache.get("k")
        assert hit.output == {"analysis": "ok"}

    async def test_miss(self):
        cache = ResponseCache()
        assert await cache.get("absent") is None

    async def test_overwrite(self):
        cache = ResponseCache()
        await cache.set("k", _response(output={"analysis": "old"}))
        await cache.set("k", _response(output={"analysis": "new"}))
        assert (await cache.get("k")).output == {"analysis": "new"}

    async def test_expiry_on_read(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=60, clock=clock)
        await cache.set("k", _response())

        clock.advance(59)
        assert await cache.get("k") is not None

        clock.advance(1)
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_per_entry_ttl(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=60, clock=clock)
        await cache.set("k", _response(), ttl=3600)
        clock.advance(600)
        assert await cache.exists("k")

    async def test_rejects_non_positive_ttl(self):
        cache = ResponseCache()
        with pytest.raises(ValueError):
            await cache.set("k", _response(), ttl=0)

    async def test_values_are_copied(self):
        cache = ResponseCache()
        original = _response()
        await cache.set("k", original)

        original.output["analysis"] = "mutated after write"
        first = await cache.get("k")
        first.output["analysis"] = "mutated after read"

        assert (await cache.get("k")).output == {"analysis": "ok"}

    async def test_sweep_removes_only_expired(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=60, clock=clock)
        await cache.set("short", _response())
        await cache.set("long", _response(), ttl=600)

        clock.advance(120)
        removed = await cache.sweep()

        assert removed == 1
        assert len(cache) == 1
        assert await cache.exists("long")

    async def test_delete_and_clear(self):
        cache = ResponseCache()
        await cache.set("a", _response())
        await cache.set("b", _response())

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        assert await cache.clear() == 1
        assert len(cache) == 0

    async def test_stats(self):
        cache = ResponseCache()
        await cache.set("k", _response())
        await cache.get("k")
        await cache.get("missing")

        stats = await cache.get_stats()
        assert stats["size"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    async def test_background_sweeper(self):
        clock = FakeClock()
        cache = ResponseCache(default_ttl=1, sweep_interval=0.01, clock=clock)
        await cache.set("k", _response())
        clock.advance(5)

        cache.start_sweeper()
        assert cache.sweeper_running
        for _ in range(50):
            if len(cache) == 0:
                break
            await asyncio.sleep(0.01)
        await cache.stop_sweeper()

        assert len(cache) == 0
        assert not cache.sweeper_running


class TestDomainTtl:
    def test_domain_overrides(self):
        assert ttl_for(AnalysisKind.CONTRACT_ANALYSIS) == timedelta(hours=24).total_seconds()
        assert ttl_for(AnalysisKind.LEGAL_RESEARCH) == timedelta(hours=12).total_seconds()

    def test_default(self):
        assert AnalysisKind.RISK_ASSESSMENT not in DOMAIN_TTL_SECONDS
        assert ttl_for(AnalysisKind.RISK_ASSESSMENT) == 3600
        assert ttl_for(AnalysisKind.RISK_ASSESSMENT, default=120) == 120
