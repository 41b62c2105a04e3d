# backend/tender_review.py
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from check_parser import canonicalize_findings, parse_findings
from error_handler import (
    BudgetExceededError,
    TenderMatchError,
    ValidationError,
    error_handler,
)
from generation_gateway import GeneratedText, GenerationGateway
from scorecard import CANONICAL_SECTIONS, Scorecard
from scoring import build_degraded_scorecard, build_scorecard
from shared_utils import DEFAULT_RESPONSE_LANGUAGE

logger = logging.getLogger(__name__)

_SECTION_GUIDE = {
    "administrative_requirements": "registrations, certificates of good standing, tax and social security compliance",
    "technical_requirements": "skills, prior comparable contracts, qualified staff, equipment",
    "economic_requirements": "turnover, financial solidity, bank references, insurance",
    "general_documentation": "completeness of the submission, formal compliance, signatures and forms",
    "certifications": "ISO, SOA and sector-specific certifications",
}

SYSTEM_PROMPT_CHECKS = """
You are TenderMatch AI, an engine that assesses how well a company matches a public tender.

ABSOLUTE RULES:
1. NEVER produce scoring numbers (no "36/100", no percentages, no points).
2. Produce ONLY discrete checks with status PASS | PARTIAL | FAIL | ND.
3. For every check give evidence (snippets from the text) and a short rationale.
4. If the data is not sufficient to judge a check, use ND.

Your output MUST be **ONLY** valid JSON with this structure:

{
  "sections": [
    {
      "section_id": "administrative_requirements",
      "section_name": "Administrative requirements",
      "checks": [
        {
          "id": "check_1",
          "label": "Chamber of Commerce registration",
          "status": "PASS" | "PARTIAL" | "FAIL" | "ND",
          "evidence": ["snippet from the documents..."],
          "rationale": "short justification"
        }
      ]
    }
  ]
}

The sections to assess are:
""" + "\n".join(
    f"- {section_id}: {_SECTION_GUIDE[section_id]}" for section_id, _ in CANONICAL_SECTIONS
) + """

Do not add any text before or after the JSON.
"""

SYSTEM_PROMPT_REPORT = """
You are TenderMatch, an AI engine that helps companies judge whether they are
eligible for public tenders.

Write a clear, well structured markdown report containing:
1. A short summary of the tender (max 5 lines)
2. Mandatory requirements identified
3. Main gaps between the company and the tender
4. Recommended actions (clear operational points)
5. Final considerations

Do NOT include numeric scores in the report; they are computed separately.
"""


@dataclass
class ComplianceDocument:
    name: str
    type: str
    summary: str


@dataclass
class ReviewResult:
    ok: bool
    narrative: str
    scorecard: Scorecard
    error: Optional[str] = None
    status_code: int = 200

    def to_response(self) -> Dict[str, Any]:
        body = {
            "ok": self.ok,
            "data": self.narrative,
            "scorecard": self.scorecard.model_dump(mode="json"),
        }
        if self.error:
            body["error"] = self.error
        return body


def _require(value: Optional[str], field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"Missing required field: {field_name}", {"field": field_name})
    return text


def _language(language: Optional[str]) -> str:
    return (language or "").strip() or DEFAULT_RESPONSE_LANGUAGE


def build_documents_summary(documents: List[ComplianceDocument]) -> str:
    """Short numbered listing of the declared documents"""
    lines = []
    for index, doc in enumerate(documents, start=1):
        lines.append(
            f"{index}. Name: {doc.name}\n   Type: {doc.type}\n   Summary: {doc.summary}"
        )
    return "\n\n".join(lines)


def build_tender_prompt(company_profile: str, tender_text: str, language: str) -> str:
    return (
        f"COMPANY PROFILE:\n{company_profile}\n\n"
        f"---\n\n"
        f"TENDER TEXT:\n{tender_text}\n\n"
        f"---\n\n"
        f"Answer in {language}."
    )


def build_compliance_prompt(tender_id: str, documents: List[ComplianceDocument], language: str) -> str:
    return (
        f"TENDER: {tender_id}\n\n"
        f"SUBMITTED DOCUMENTS:\n{build_documents_summary(documents)}\n\n"
        f"---\n\n"
        f"Assess the documentary compliance of these documents against the tender.\n"
        f"Answer in {language}."
    )


def scorecard_from_text(raw_text: str) -> Scorecard:
    """Parse -> canonicalize -> score, degrading instead of failing"""
    findings = parse_findings(raw_text)
    if findings is None:
        return build_degraded_scorecard("No valid structured findings in the generated output")

    canonical = canonicalize_findings(findings)
    if canonical is None:
        return build_degraded_scorecard("Generated findings did not match any known section")

    return build_scorecard(canonical)


async def _assess(gateway: GenerationGateway, user_prompt: str, language: str, operation: str) -> ReviewResult:
    start = time.time()

    checks_call = gateway.generate(
        SYSTEM_PROMPT_CHECKS,
        user_prompt + "\n\nGenerate the structured checks.",
        task_type=f"{operation}:checks",
    )
    report_call = gateway.generate(
        SYSTEM_PROMPT_REPORT + f"\nAnswer in {language}.",
        user_prompt,
        task_type=f"{operation}:report",
    )
    checks_out, report_out = await asyncio.gather(checks_call, report_call, return_exceptions=True)

    elapsed = time.time() - start
    if isinstance(report_out, GeneratedText):
        if isinstance(checks_out, GeneratedText):
            scorecard = scorecard_from_text(checks_out.text)
        else:
            error_handler.log_error(checks_out, {"operation": operation, "call": "checks"})
            scorecard = build_degraded_scorecard(_failure_reason(checks_out))
        logger.info(f"{operation} completed in {elapsed:.2f}s (overall {scorecard.overall.status.value})")
        return ReviewResult(ok=True, narrative=report_out.text, scorecard=scorecard)

    error_handler.log_error(report_out, {"operation": operation, "call": "report"})
    logger.warning(f"{operation} failed after {elapsed:.2f}s: no narrative produced")
    status_code = report_out.status_code if isinstance(report_out, TenderMatchError) else 500
    reason = _failure_reason(report_out)
    # a failed assessment never publishes numbers, whatever the checks call returned
    return ReviewResult(
        ok=False,
        narrative="",
        scorecard=build_degraded_scorecard(reason),
        error=reason,
        status_code=status_code,
    )


def _failure_reason(error: BaseException) -> str:
    if isinstance(error, BudgetExceededError):
        return "Input too large for the generation budget; shorten the texts and retry"
    if isinstance(error, TenderMatchError):
        return error.message
    return "Generation service error"


async def run_tender_ready(gateway: GenerationGateway, company_profile: Optional[str],
                           tender_text: Optional[str], language: Optional[str] = None) -> ReviewResult:
    """Company profile vs. tender text"""
    profile = _require(company_profile, "companyProfile")
    tender = _require(tender_text, "tenderText")
    lang = _language(language)
    return await _assess(gateway, build_tender_prompt(profile, tender, lang), lang, "tender_ready")


async def run_compliance_check(gateway: GenerationGateway, tender_id: Optional[str],
                               documents: Optional[List[ComplianceDocument]],
                               language: Optional[str] = None) -> ReviewResult:
    """Declared documents vs. tender"""
    tender = _require(tender_id, "tenderId")
    docs = [doc for doc in (documents or []) if (doc.name or "").strip() or (doc.summary or "").strip()]
    if not docs:
        raise ValidationError("At least one document is required", {"field": "documents"})
    lang = _language(language)
    return await _assess(gateway, build_compliance_prompt(tender, docs, lang), lang, "compliance_check")
