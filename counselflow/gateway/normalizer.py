"""Response Normalizer — turns provider replies into the unified response shape.

Applies final normalization steps after an adapter returns:
  - Structures free text into a per-analysis-kind output dict
  - Passes through JSON objects that a model embedded in its reply
  - Provides the token estimate adapters use when a provider omits usage
  - Clamps confidence, tokens and cost into their valid ranges
  - Ensures the completion timestamp is set
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from counselflow.gateway.types import AnalysisKind, AnalysisResponse

logger = logging.getLogger(__name__)

_COST_QUANTUM = Decimal("0.000001")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_RISK_PATTERNS = (
    re.compile(r"risk.*?(?:critical|high|medium|moderate|low|minimal)", re.IGNORECASE),
    re.compile(r"(?:critical|high|medium|moderate|low|minimal).*?risk", re.IGNORECASE),
)
_FINDING_PATTERNS = (
    re.compile(r"(?:key findings?|important|critical|significant)[:\s]*(.*?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"(?:\d+\.)\s*(.*?)(?:\n|$)"),
)
_RECOMMENDATION_PATTERNS = (
    re.compile(r"(?:recommend|suggest|advise)[:\s]*(.*?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"(?:should|must|need to)[:\s]*(.*?)(?:\n|$)", re.IGNORECASE),
)
_STATUTE_PATTERNS = (
    re.compile(r"(?:act|law|statute|regulation|code)[:\s]*(.*?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"(?:section|article)\s+\d+.*?(?:\n|$)", re.IGNORECASE),
)
_PRECEDENT_PATTERNS = (
    re.compile(r"(?:case|precedent|decision)[:\s]*(.*?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"\bv\.\s+.*?(?:\n|$)"),
)
_COMPLIANCE_STATUS = re.compile(r"\b(non-compliant|partially compliant|compliant|review required)\b", re.IGNORECASE)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 characters per token."""
    return math.ceil(len(text) / 4) if text else 0


def structure_output(text: str, kind: AnalysisKind) -> Any:
    """Structure a free-text reply according to the analysis kind.

    A JSON object embedded in the reply wins over heuristic extraction.
    """
    embedded = _extract_json_object(text)
    if embedded is not None:
        return embedded

    if kind == AnalysisKind.CONTRACT_ANALYSIS:
        return {
            "analysis": text,
            "risk_level": extract_risk_level(text),
            "key_findings": _collect(text, _FINDING_PATTERNS, group=1, min_len=10, limit=5),
            "recommendations": _collect(text, _RECOMMENDATION_PATTERNS, group=1, min_len=10, limit=5),
        }
    if kind == AnalysisKind.LEGAL_RESEARCH:
        return {
            "research": text,
            "relevant_statutes": _collect(text, _STATUTE_PATTERNS, group=0, min_len=5, limit=10),
            "precedents": _collect(text, _PRECEDENT_PATTERNS, group=0, min_len=10, limit=5),
            "summary": extract_summary(text),
        }
    if kind == AnalysisKind.COMPLIANCE_CHECK:
        return {
            "compliance_analysis": text,
            "compliance_status": extract_compliance_status(text),
            "risk_level": extract_risk_level(text),
            "recommendations": _collect(text, _RECOMMENDATION_PATTERNS, group=1, min_len=10, limit=5),
        }
    if kind == AnalysisKind.RISK_ASSESSMENT:
        return {
            "assessment": text,
            "risk_level": extract_risk_level(text),
            "risk_factors": _collect(text, _FINDING_PATTERNS, group=1, min_len=10, limit=5),
        }
    return {"analysis": text}


def extract_risk_level(text: str) -> str:
    for pattern in _RISK_PATTERNS:
        match = pattern.search(text)
        if match:
            risk = match.group(0).lower()
            if "critical" in risk or "high" in risk:
                return "HIGH"
            if "medium" in risk or "moderate" in risk:
                return "MEDIUM"
            if "low" in risk or "minimal" in risk:
                return "LOW"
    return "MEDIUM"


def extract_compliance_status(text: str) -> str:
    match = _COMPLIANCE_STATUS.search(text)
    if not match:
        return "UNKNOWN"
    return match.group(1).upper().replace(" ", "_").replace("-", "_")


def extract_summary(text: str) -> str:
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    if not sentences:
        return ""
    return ". ".join(sentences[:3]) + "."


def normalize_response(response: AnalysisResponse) -> AnalysisResponse:
    """Apply normalization to an adapter response.

    Idempotent: safe to call more than once.
    """
    if response.completed_at is None:
        response.completed_at = datetime.now(timezone.utc)

    response.confidence = min(max(float(response.confidence), 0.0), 1.0)
    response.tokens_used = max(int(response.tokens_used), 0)
    response.processing_time_ms = max(int(response.processing_time_ms), 0)

    cost = Decimal(response.cost)
    if cost < 0:
        logger.warning("Negative cost %s from %s clamped to zero", cost, response.provider.value)
        cost = Decimal("0")
    response.cost = cost.quantize(_COST_QUANTUM, rounding=ROUND_HALF_UP)

    return response


def _extract_json_object(text: str) -> dict | None:
    if "{" not in text or "}" not in text:
        return None
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _collect(text: str, patterns: tuple[re.Pattern, ...], group: int, min_len: int, limit: int) -> list[str]:
    """Gather unique matches, in pattern order, up to `limit`."""
    seen: set[str] = set()
    result: list[str] = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            value = (match.group(group) or "").strip()
            if len(value) > min_len and value not in seen:
                seen.add(value)
                result.append(value)
    return result[:limit]
