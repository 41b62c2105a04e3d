"""
Check parsing and canonicalization for generated compliance findings.

The generator is untrusted: it may wrap JSON in prose or code fences, omit or
rename sections, or emit nothing usable. Everything that leaves this module is
either a fully typed Findings value or None.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from error_handler import ParseError
from scorecard import (
    CANONICAL_SECTIONS,
    Check,
    CheckResult,
    Findings,
    SectionFindings,
)
from shared_utils import normalize_identifier, strip_code_fences

logger = logging.getLogger(__name__)

RESULT_SYNONYMS = {
    "PASS": CheckResult.PASS,
    "PARTIAL": CheckResult.PARTIAL,
    "FAIL": CheckResult.FAIL,
    "ND": CheckResult.ND,
    "N/A": CheckResult.ND,
    "NA": CheckResult.ND,
    "UNKNOWN": CheckResult.ND,
    "NOT_DETERMINABLE": CheckResult.ND,
}

# canonical id -> accepted spellings (ids or labels, English and Italian)
SECTION_SYNONYMS = {
    "administrative_requirements": [
        "administrative", "administrative_requirements", "admin_requirements",
        "legal_requirements", "requisiti_amministrativi", "amministrativi",
        "requisiti_di_ordine_generale",
    ],
    "technical_requirements": [
        "technical", "technical_requirements", "technical_professional_requirements",
        "requisiti_tecnici", "requisiti_tecnico_professionali", "tecnici",
    ],
    "economic_requirements": [
        "economic", "economic_requirements", "financial", "financial_requirements",
        "economic_financial_requirements", "requisiti_economici",
        "requisiti_economico_finanziari", "economici",
    ],
    "general_documentation": [
        "general_documentation", "documentation", "general_documents", "documents",
        "documentazione_generale", "documentazione",
    ],
    "certifications": [
        "certifications", "certification", "certificates", "quality_certifications",
        "certificazioni", "certificazione",
    ],
}

_SECTION_LOOKUP: Dict[str, str] = {
    normalize_identifier(alias): canonical
    for canonical, aliases in SECTION_SYNONYMS.items()
    for alias in aliases
}


def _scalar_text(value: Any) -> Optional[str]:
    """Stripped text of a JSON scalar; containers are rejected rather than stringified"""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        raise ValueError("expected a scalar value")
    text = str(value).strip()
    return text or None


class RawCheck(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    label: Optional[str] = Field(default=None, validation_alias=AliasChoices("label", "name", "title"))
    result: CheckResult = Field(validation_alias=AliasChoices("status", "result"))
    evidence: List[str] = Field(default_factory=list)
    rationale: Optional[str] = None

    @field_validator("id", "label", "rationale", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        return _scalar_text(value)

    @field_validator("result", mode="before")
    @classmethod
    def _normalize_result(cls, value: Any) -> Any:
        if isinstance(value, str):
            key = value.strip().upper().replace(" ", "_")
            return RESULT_SYNONYMS.get(key, key)
        return value

    @field_validator("evidence", mode="before")
    @classmethod
    def _normalize_evidence(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        # nested containers are not evidence snippets
        snippets = (_scalar_text(item) for item in value if not isinstance(item, (dict, list)))
        return [snippet for snippet in snippets if snippet]


class RawSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("section_id", "id", "section"))
    label: Optional[str] = Field(default=None, validation_alias=AliasChoices("section_name", "label", "name", "title"))
    checks: List[Any] = Field(default_factory=list)

    @field_validator("id", "label", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        return _scalar_text(value)

    @field_validator("checks", mode="before")
    @classmethod
    def _checks_list(cls, value: Any) -> List[Any]:
        return value if isinstance(value, list) else []


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        pass

    # naive: first '{' ... last '}'
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ParseError("No JSON object found in generated text")
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ParseError("Generated text holds malformed JSON", {"original_error": str(e)}) from e
    except RecursionError as e:
        raise ParseError("Generated JSON is nested too deeply") from e


def _decode_checks(raw_checks: List[Any], section_id: str) -> List[Check]:
    checks: List[Check] = []
    seen = set()
    for idx, item in enumerate(raw_checks, start=1):
        try:
            raw = RawCheck.model_validate(item)
        except (PydanticValidationError, RecursionError) as e:
            logger.warning(f"Dropping invalid check #{idx} in section {section_id!r}: {type(e).__name__}")
            continue
        check_id = raw.id or f"check_{idx}"
        if check_id in seen:
            logger.warning(f"Dropping duplicate check {check_id!r} in section {section_id!r}")
            continue
        seen.add(check_id)
        checks.append(Check(
            id=check_id,
            result=raw.result,
            label=raw.label,
            evidence=raw.evidence,
            rationale=raw.rationale,
        ))
    return checks


def decode_findings(raw_text: str) -> Findings:
    """Decode then validate; raises ParseError when nothing typed can be produced"""
    text = strip_code_fences(raw_text or "")
    if not text:
        raise ParseError("Generated text is empty")

    payload = _load_json(text)
    if isinstance(payload, list):
        payload = {"sections": payload}
    if not isinstance(payload, dict) or not isinstance(payload.get("sections"), list):
        raise ParseError("Generated JSON has no 'sections' list")

    sections: List[SectionFindings] = []
    for idx, item in enumerate(payload["sections"], start=1):
        try:
            raw = RawSection.model_validate(item)
        except (PydanticValidationError, RecursionError) as e:
            logger.warning(f"Dropping invalid section #{idx}: {type(e).__name__}")
            continue
        section_id = raw.id or raw.label
        if not section_id:
            logger.warning(f"Dropping section #{idx}: no identifier or label")
            continue
        sections.append(SectionFindings(
            id=section_id,
            label=raw.label or section_id,
            checks=_decode_checks(raw.checks, section_id),
        ))

    return Findings(sections=sections)


def parse_findings(raw_text: str) -> Optional[Findings]:
    """Typed findings, or None when the text holds nothing decodable"""
    try:
        return decode_findings(raw_text)
    except ParseError as e:
        logger.warning(f"Could not parse findings: {e.message}")
        return None


def resolve_section_id(section_id: Optional[str], label: Optional[str] = None) -> Optional[str]:
    """Map an arbitrary id/label onto the canonical taxonomy, or None"""
    for candidate in (section_id, label):
        key = normalize_identifier(candidate)
        if key in _SECTION_LOOKUP:
            return _SECTION_LOOKUP[key]
    return None


def canonicalize_findings(findings: Findings) -> Optional[Findings]:
    """
    Fold findings onto the five canonical sections, in fixed order.

    Unknown sections are dropped; sections resolving to the same canonical id
    are merged; missing canonical sections come back with no checks.
    Returns None when not a single section could be mapped.
    """
    merged: Dict[str, List[Check]] = {canonical: [] for canonical, _ in CANONICAL_SECTIONS}
    mapped = 0

    for section in findings.sections:
        canonical = resolve_section_id(section.id, section.label)
        if canonical is None:
            logger.info(f"Excluding unknown section {section.id!r} ({section.label!r}) from scoring")
            continue
        mapped += 1
        existing = {check.id for check in merged[canonical]}
        for check in section.checks:
            if check.id in existing:
                logger.warning(f"Dropping duplicate check {check.id!r} merged into {canonical!r}")
                continue
            existing.add(check.id)
            merged[canonical].append(check)

    if mapped == 0:
        return None

    return Findings(sections=[
        SectionFindings(id=canonical, label=label, checks=merged[canonical])
        for canonical, label in CANONICAL_SECTIONS
    ])
