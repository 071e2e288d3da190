"""Legal prompt construction shared by the text-generation adapters."""

from __future__ import annotations

import json

from counselflow.gateway.types import AnalysisKind, AnalysisRequest, ConfidentialityLevel, SupportedLanguage

_COUNTRY_ADJECTIVES: dict[str, str] = {
    "NG": "Nigerian",
    "ZA": "South African",
    "EG": "Egyptian",
    "KE": "Kenyan",
    "MA": "Moroccan",
    "ET": "Ethiopian",
    "GH": "Ghanaian",
    "TN": "Tunisian",
    "AE": "UAE",
    "SA": "Saudi Arabian",
    "IL": "Israeli",
    "TR": "Turkish",
}

_LANGUAGE_NAMES: dict[SupportedLanguage, str] = {
    SupportedLanguage.ENGLISH: "English",
    SupportedLanguage.FRENCH: "French",
    SupportedLanguage.ARABIC: "Arabic",
    SupportedLanguage.PORTUGUESE: "Portuguese",
    SupportedLanguage.SWAHILI: "Swahili",
    SupportedLanguage.AMHARIC: "Amharic",
    SupportedLanguage.HEBREW: "Hebrew",
    SupportedLanguage.PERSIAN: "Persian",
    SupportedLanguage.TURKISH: "Turkish",
    SupportedLanguage.GERMAN: "German",
}

_TASK_INSTRUCTIONS: dict[AnalysisKind, str] = {
    AnalysisKind.CONTRACT_ANALYSIS: (
        "Analyze the following contract and provide:\n"
        "1. Risk assessment\n2. Key terms analysis\n3. Compliance considerations\n4. Recommendations\n\n"
        "Contract:\n{payload}"
    ),
    AnalysisKind.LEGAL_RESEARCH: (
        "Conduct legal research on: {payload}\n\n"
        "Provide:\n1. Relevant statutes\n2. Case law precedents\n3. Legal analysis\n4. Practical recommendations"
    ),
    AnalysisKind.COMPLIANCE_CHECK: (
        "Review for compliance with applicable laws:\n{payload}\n\n"
        "Provide:\n1. Compliance status\n2. Identified issues\n3. Required actions\n4. Risk level"
    ),
    AnalysisKind.RISK_ASSESSMENT: (
        "Assess the legal risk of the following matter:\n{payload}\n\n"
        "Provide:\n1. Overall risk level\n2. Risk factors\n3. Likelihood and impact\n4. Mitigation steps"
    ),
    AnalysisKind.CASE_PREDICTION: (
        "Predict the likely outcome of the following case:\n{payload}\n\n"
        "Provide:\n1. Likely outcome\n2. Key factors\n3. Relevant precedents\n4. Confidence and caveats"
    ),
}

_DEFAULT_INSTRUCTION = "Analyze the following legal matter:\n{payload}"


def country_adjective(jurisdiction: str) -> str:
    return _COUNTRY_ADJECTIVES.get(jurisdiction, jurisdiction)


def _render_payload(payload: object) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)


def build_legal_prompt(request: AnalysisRequest) -> str:
    """Build the user-turn prompt for a request."""
    context = request.context

    prompt = "You are a legal AI assistant specializing in "
    if context is not None:
        prompt += f"{country_adjective(context.jurisdiction)} law and legal systems. "
    else:
        prompt += "African and Middle Eastern legal systems. "

    if context is not None and context.language != SupportedLanguage.ENGLISH:
        prompt += f"Please respond in {_LANGUAGE_NAMES[context.language]}. "

    if context is not None and context.practice_area:
        prompt += f"The matter concerns {context.practice_area}. "

    instruction = _TASK_INSTRUCTIONS.get(request.kind, _DEFAULT_INSTRUCTION)
    return prompt + "\n\n" + instruction.format(payload=_render_payload(request.input))


def build_system_prompt(request: AnalysisRequest) -> str:
    """System prompt for chat-style premium providers."""
    context = request.context

    system = (
        "You are an expert legal AI assistant with deep knowledge of African and Middle Eastern legal systems. "
    )
    if context is not None:
        system += f"You specialize in {country_adjective(context.jurisdiction)} law and legal practice. "
        if context.legal_system is not None:
            system += f"The governing tradition is {context.legal_system.value.replace('_', ' ')}. "

    system += (
        "Consider jurisdictional differences, mixed legal systems (common, civil, Islamic and customary law) "
        "and professional legal standards. Always provide structured, actionable responses with clear risk "
        "assessments."
    )

    if context is not None and context.confidentiality_level == ConfidentialityLevel.PRIVILEGED:
        system += " This analysis involves attorney-client privileged material. Maintain strict confidentiality."

    return system
