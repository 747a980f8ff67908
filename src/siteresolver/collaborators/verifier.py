"""Optional AI verification of uncertain candidates via the OpenAI API."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Protocol

import structlog
from openai import AsyncOpenAI

from siteresolver.config import AIConfig, Settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CompanyFacts:
    company_name: str
    city: str
    address: str = ""
    industry: str = ""
    phone: str = ""


@dataclass(frozen=True)
class CandidateFacts:
    url: str
    page_title: str = ""
    content_snippet: str = ""


@dataclass(frozen=True)
class VerificationResult:
    is_match: bool
    confidence: float
    reason: str


class Verifier(Protocol):
    async def verify(
        self, company: CompanyFacts, candidate: CandidateFacts
    ) -> VerificationResult: ...


_PROMPT = """Sei un esperto di ricerca aziendale italiana. Devi verificare se un sito web \
appartiene a un'azienda specifica.

AZIENDA DA CERCARE:
{company}

SITO WEB CANDIDATO:
{candidate}

ISTRUZIONI:
1. Verifica se il sito web appartiene ESATTAMENTE a questa azienda
2. Considera: nome azienda nel sito, localita, settore di attivita
3. Se il sito e un portale generico (es. paginegialle, yelp) rispondi NO
4. Se il sito e di un'azienda DIVERSA con nome simile, rispondi NO

Rispondi SOLO con un JSON valido in questo formato esatto:
{{"is_match": true, "confidence": 85, "reason": "..."}}"""


def build_prompt(company: CompanyFacts, candidate: CandidateFacts) -> str:
    company_lines = [f"- Nome: {company.company_name}", f"- Citta: {company.city}"]
    if company.address:
        company_lines.append(f"- Indirizzo: {company.address}")
    if company.industry:
        company_lines.append(f"- Settore: {company.industry}")
    if company.phone:
        company_lines.append(f"- Telefono: {company.phone}")

    candidate_lines = [f"- URL: {candidate.url}"]
    if candidate.page_title:
        candidate_lines.append(f"- Titolo pagina: {candidate.page_title}")
    if candidate.content_snippet:
        candidate_lines.append(f"- Estratto contenuto: {candidate.content_snippet[:500]}")

    return _PROMPT.format(company="\n".join(company_lines), candidate="\n".join(candidate_lines))


def parse_verification(content: str) -> VerificationResult:
    """Parse the model's JSON answer; anything unparseable is a non-match."""
    match = re.search(r"\{.*\}", content or "", re.DOTALL)
    if not match:
        return VerificationResult(False, 0, "Could not parse AI response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return VerificationResult(False, 0, "Could not parse AI response")
    try:
        confidence = float(data.get("confidence", 0))
    except (TypeError, ValueError):
        confidence = 0.0
    return VerificationResult(
        is_match=data.get("is_match") is True,
        confidence=confidence,
        reason=str(data.get("reason", "")),
    )


class OpenAIVerifier:
    """Ask a chat model whether a candidate site belongs to the company."""

    def __init__(
        self, client: AsyncOpenAI, model: str = "gpt-4o-mini", timeout_s: float = 20
    ) -> None:
        self.client = client
        self.model = model
        self.timeout_s = timeout_s

    async def verify(self, company: CompanyFacts, candidate: CandidateFacts) -> VerificationResult:
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": build_prompt(company, candidate)}],
                    temperature=0.1,
                    max_tokens=200,
                ),
                timeout=self.timeout_s,
            )
        except Exception as exc:
            logger.warning("ai_verification_failed", url=candidate.url, error=str(exc))
            return VerificationResult(False, 0, f"Error: {exc}")

        content = response.choices[0].message.content if response.choices else ""
        result = parse_verification(content or "")
        logger.info(
            "ai_verification",
            url=candidate.url,
            is_match=result.is_match,
            confidence=result.confidence,
        )
        return result


def build_verifier(settings: Settings, ai: AIConfig) -> OpenAIVerifier | None:
    """Return a verifier when AI fallback is enabled and a key is configured."""
    if not ai.enabled:
        return None
    if not settings.openai_api_key:
        logger.warning("ai_enabled_without_key")
        return None
    return OpenAIVerifier(
        AsyncOpenAI(api_key=settings.openai_api_key),
        model=ai.model,
        timeout_s=ai.timeout_s,
    )
