"""AI Request Gateway.

Routes typed legal analysis requests to AI providers with:
  - Deterministic provider selection per analysis kind
  - Provider Adapters (self-hosted and premium protocol differences)
  - Bounded fallback chain across providers
  - Fingerprint-keyed TTL response cache
  - Usage & cost tracking with advisory budget alerts
"""
