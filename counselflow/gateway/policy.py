"""Provider selection policy.

Pure function of (analysis kind, enabled providers, priorities). Rules are
evaluated top to bottom and the first match wins:
  1. Legal-domain kinds go to the self-hosted legal model when it is enabled
  2. Risk / prediction / compliance go to the best enabled premium provider
  3. Legal research goes to Google when enabled
  4. Ollama when enabled
  5. Any enabled provider, in enum order
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from counselflow.gateway.errors import NoProviderAvailable
from counselflow.gateway.types import PREMIUM_PROVIDERS, AnalysisKind, ProviderId

LEGAL_DOMAIN_KINDS: frozenset[AnalysisKind] = frozenset(
    {
        AnalysisKind.CONTRACT_ANALYSIS,
        AnalysisKind.COMPLIANCE_CHECK,
        AnalysisKind.CLAUSE_EXTRACTION,
        AnalysisKind.LEGAL_RESEARCH,
        AnalysisKind.PRECEDENT_MATCHING,
    }
)

PREMIUM_REASONING_KINDS: frozenset[AnalysisKind] = frozenset(
    {
        AnalysisKind.RISK_ASSESSMENT,
        AnalysisKind.CASE_PREDICTION,
        AnalysisKind.COMPLIANCE_CHECK,
    }
)

# Enum declaration order, used for tie-breaks
_ENUM_ORDER: dict[ProviderId, int] = {p: i for i, p in enumerate(ProviderId)}
_UNRANKED = 2**31


def select_provider(
    kind: AnalysisKind,
    enabled: Iterable[ProviderId],
    priorities: Mapping[ProviderId, int] | None = None,
) -> ProviderId:
    """Pick the provider for a request.

    Args:
        kind: Requested analysis type
        enabled: Providers currently routable (any iterable; order is ignored)
        priorities: Provider → priority (lower is preferred). Missing entries rank last.

    Raises:
        NoProviderAvailable: when `enabled` is empty
    """
    available = frozenset(enabled)
    priorities = priorities or {}

    if kind in LEGAL_DOMAIN_KINDS and ProviderId.LEGAL_BERT in available:
        return ProviderId.LEGAL_BERT

    if kind in PREMIUM_REASONING_KINDS:
        premium = available & PREMIUM_PROVIDERS
        if premium:
            return min(premium, key=lambda p: (priorities.get(p, _UNRANKED), _ENUM_ORDER[p]))

    if kind == AnalysisKind.LEGAL_RESEARCH and ProviderId.GOOGLE in available:
        return ProviderId.GOOGLE

    if ProviderId.OLLAMA in available:
        return ProviderId.OLLAMA

    for provider in ProviderId:
        if provider in available:
            return provider

    raise NoProviderAvailable()
