"""Core types and DTOs for the AI request gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProviderId(str, Enum):
    """Closed set of AI backends. Every member has exactly one adapter."""

    OLLAMA = "ollama"  # Self-hosted general model server
    LEGAL_BERT = "legal_bert"  # Self-hosted legal-domain model
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"

    @property
    def is_self_hosted(self) -> bool:
        return self in SELF_HOSTED_PROVIDERS

    @property
    def is_premium(self) -> bool:
        return self in PREMIUM_PROVIDERS


SELF_HOSTED_PROVIDERS: frozenset[ProviderId] = frozenset({ProviderId.OLLAMA, ProviderId.LEGAL_BERT})
PREMIUM_PROVIDERS: frozenset[ProviderId] = frozenset({ProviderId.OPENAI, ProviderId.ANTHROPIC, ProviderId.GOOGLE})


class AnalysisKind(str, Enum):
    """Analysis types callers can request."""

    CONTRACT_ANALYSIS = "contract_analysis"
    RISK_ASSESSMENT = "risk_assessment"
    CASE_PREDICTION = "case_prediction"
    DOCUMENT_REVIEW = "document_review"
    LEGAL_RESEARCH = "legal_research"
    COMPLIANCE_CHECK = "compliance_check"
    CLAUSE_EXTRACTION = "clause_extraction"
    ENTITY_RECOGNITION = "entity_recognition"
    CITATION_ANALYSIS = "citation_analysis"
    PRECEDENT_MATCHING = "precedent_matching"


class LegalSystem(str, Enum):
    COMMON_LAW = "common_law"
    CIVIL_LAW = "civil_law"
    ISLAMIC_LAW = "islamic_law"
    CUSTOMARY_LAW = "customary_law"
    MIXED_SYSTEM = "mixed_system"


class SupportedLanguage(str, Enum):
    ENGLISH = "en"
    FRENCH = "fr"
    ARABIC = "ar"
    PORTUGUESE = "pt"
    SWAHILI = "sw"
    AMHARIC = "am"
    HEBREW = "he"
    PERSIAN = "fa"
    TURKISH = "tr"
    GERMAN = "de"


class ConfidentialityLevel(str, Enum):
    PUBLIC = "public"
    CONFIDENTIAL = "confidential"
    PRIVILEGED = "privileged"


# ISO 3166-1 alpha-2 codes: 54 African states, 16 Middle-Eastern states, plus cross-border "INTL"
AFRICAN_JURISDICTIONS: frozenset[str] = frozenset(
    {
        "DZ", "AO", "BJ", "BW", "BF", "BI", "CM", "CV", "CF", "TD", "KM", "CG", "CD", "DJ",
        "EG", "GQ", "ER", "SZ", "ET", "GA", "GM", "GH", "GN", "GW", "CI", "KE", "LS", "LR",
        "LY", "MG", "MW", "ML", "MR", "MU", "MA", "MZ", "NA", "NE", "NG", "RW", "ST", "SN",
        "SC", "SL", "SO", "ZA", "SS", "SD", "TZ", "TG", "TN", "UG", "ZM", "ZW",
    }
)  # fmt: skip
MIDDLE_EAST_JURISDICTIONS: frozenset[str] = frozenset(
    {"BH", "CY", "IR", "IQ", "IL", "JO", "KW", "LB", "OM", "PS", "QA", "SA", "SY", "TR", "AE", "YE"}
)
INTERNATIONAL_JURISDICTION = "INTL"
SUPPORTED_JURISDICTIONS: frozenset[str] = (
    AFRICAN_JURISDICTIONS | MIDDLE_EAST_JURISDICTIONS | {INTERNATIONAL_JURISDICTION}
)

# Widths of the usage table id columns
MAX_REQUEST_ID_LENGTH = 64
MAX_USER_ID_LENGTH = 128


# ---------------------------------------------------------------------------
# Analysis Request — input to the gateway (validated, immutable)
# ---------------------------------------------------------------------------


class LegalContext(BaseModel):
    """Jurisdictional framing for an analysis request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    jurisdiction: str
    legal_system: LegalSystem | None = None
    language: SupportedLanguage = SupportedLanguage.ENGLISH
    practice_area: str | None = Field(None, max_length=200)
    confidentiality_level: ConfidentialityLevel = ConfidentialityLevel.CONFIDENTIAL

    @field_validator("jurisdiction")
    @classmethod
    def _known_jurisdiction(cls, value: str) -> str:
        code = value.strip().upper()
        if code not in SUPPORTED_JURISDICTIONS:
            raise ValueError(f"Unsupported jurisdiction: {value}")
        return code


class AnalysisOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    temperature: float | None = Field(None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(None, gt=0)
    timeout_seconds: float | None = Field(None, gt=0)
    cache_enabled: bool = True


class AnalysisRequest(BaseModel):
    """A single typed analysis request.

    `request_id` and `created_at` identify this particular call and are
    never part of the cache fingerprint.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    request_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex[:16], min_length=1, max_length=MAX_REQUEST_ID_LENGTH
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    kind: AnalysisKind
    input: Any
    context: LegalContext | None = None
    options: AnalysisOptions | None = None
    model: str | None = None  # Provider model override

    @field_validator("input")
    @classmethod
    def _input_required(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Input is required")
        if isinstance(value, (str, list, dict)) and not value:
            raise ValueError("Input must not be empty")
        return value

    @property
    def temperature(self) -> float:
        if self.options and self.options.temperature is not None:
            return self.options.temperature
        return 0.1

    @property
    def max_tokens(self) -> int:
        if self.options and self.options.max_tokens is not None:
            return self.options.max_tokens
        return 2048

    @property
    def cache_enabled(self) -> bool:
        return self.options.cache_enabled if self.options else True


# ---------------------------------------------------------------------------
# Analysis Response — unified DTO (output of any adapter / the gateway)
# ---------------------------------------------------------------------------


@dataclass
class AnalysisResponse:
    """Unified response DTO from any provider.

    Same structure regardless of which provider produced it. The gateway
    returns either a fresh response (`cached=False`) or a copy of a cached
    one with `cached=True` and a refreshed `processing_time_ms`.
    """

    request_id: str = ""
    provider: ProviderId = ProviderId.OLLAMA
    model: str = ""
    output: Any = None
    confidence: float = 0.0
    tokens_used: int = 0
    cost: Decimal = Decimal("0")
    cached: bool = False
    processing_time_ms: int = 0
    completed_at: datetime | None = None

    # Provider-specific diagnostics (finish reason, raw usage block, ...)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict for storage/API."""
        return {
            "request_id": self.request_id,
            "provider": self.provider.value,
            "model": self.model,
            "output": self.output,
            "confidence": self.confidence,
            "tokens_used": self.tokens_used,
            "cost": str(self.cost),
            "cached": self.cached,
            "processing_time_ms": self.processing_time_ms,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


# ---------------------------------------------------------------------------
# Provider config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimit:
    requests_per_minute: int = 60
    tokens_per_minute: int = 100_000


@dataclass
class ProviderConfig:
    """Connection, routing and pricing configuration for a provider."""

    provider: ProviderId
    enabled: bool = True
    api_key_present: bool = False
    priority: int = 1  # Lower = preferred when several premium providers qualify
    rate_limit: RateLimit = field(default_factory=RateLimit)
    cost_per_1k_input_tokens: Decimal = Decimal("0")
    cost_per_1k_output_tokens: Decimal = Decimal("0")
    timeout_seconds: float = 30.0  # Per-hop budget for `process`
    health_timeout_seconds: float = 5.0
    base_url: str = ""
    default_model: str = ""

    @property
    def selectable(self) -> bool:
        """A provider may be routed to only when switched on and, if premium, keyed."""
        if not self.enabled:
            return False
        return self.provider.is_self_hosted or self.api_key_present


# Default configurations per provider
DEFAULT_PROVIDER_CONFIGS: dict[ProviderId, ProviderConfig] = {
    ProviderId.OLLAMA: ProviderConfig(
        provider=ProviderId.OLLAMA,
        priority=1,
        rate_limit=RateLimit(requests_per_minute=120, tokens_per_minute=500_000),
        base_url="http://localhost:11434",
        default_model="llama3.2:latest",
    ),
    ProviderId.LEGAL_BERT: ProviderConfig(
        provider=ProviderId.LEGAL_BERT,
        priority=1,
        rate_limit=RateLimit(requests_per_minute=120, tokens_per_minute=500_000),
        base_url="http://localhost:8081",
        default_model="nlpaueb/legal-bert-base-uncased",
    ),
    ProviderId.OPENAI: ProviderConfig(
        provider=ProviderId.OPENAI,
        priority=1,
        rate_limit=RateLimit(requests_per_minute=60, tokens_per_minute=200_000),
        cost_per_1k_input_tokens=Decimal("0.00015"),
        cost_per_1k_output_tokens=Decimal("0.0006"),
        base_url="https://api.openai.com",
        default_model="gpt-4o-mini",
    ),
    ProviderId.ANTHROPIC: ProviderConfig(
        provider=ProviderId.ANTHROPIC,
        priority=2,
        rate_limit=RateLimit(requests_per_minute=50, tokens_per_minute=100_000),
        cost_per_1k_input_tokens=Decimal("0.0008"),
        cost_per_1k_output_tokens=Decimal("0.004"),
        base_url="https://api.anthropic.com",
        default_model="claude-3-5-haiku-latest",
    ),
    ProviderId.GOOGLE: ProviderConfig(
        provider=ProviderId.GOOGLE,
        priority=3,
        rate_limit=RateLimit(requests_per_minute=60, tokens_per_minute=200_000),
        cost_per_1k_input_tokens=Decimal("0.0001"),
        cost_per_1k_output_tokens=Decimal("0.0004"),
        base_url="https://generativelanguage.googleapis.com",
        default_model="gemini-2.0-flash",
    ),
}
