# backend/scoring.py
"""
Deterministic compliance scoring.

Single source of truth for every number in a scorecard. The model only ever
emits discrete check results; everything numeric is derived here from
(checks, weights) under one pinned formula version.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from scorecard import (
    Aggregate,
    Check,
    CheckResult,
    ConfidenceLevel,
    Findings,
    Meta,
    RiskLevel,
    Scorecard,
    Section,
    SectionFindings,
)
from shared_utils import SCORING_FORMULA_VERSION

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringFormula:
    """Every constant that shapes a score. Changing any of them means a new version."""
    version: str
    pass_threshold: float
    partial_threshold: float
    result_values: Mapping[CheckResult, Optional[float]]
    confidence_high: float
    confidence_medium: float
    default_weights: Mapping[str, float] = field(default_factory=dict)


FORMULA_V1 = ScoringFormula(
    version="score-formula-v1",
    pass_threshold=80.0,
    partial_threshold=50.0,
    result_values={
        CheckResult.PASS: 1.0,
        CheckResult.PARTIAL: 0.5,
        CheckResult.FAIL: 0.0,
        CheckResult.ND: None,
    },
    confidence_high=0.8,
    confidence_medium=0.5,
    default_weights={
        "administrative_requirements": 0.25,
        "technical_requirements": 0.30,
        "economic_requirements": 0.20,
        "general_documentation": 0.10,
        "certifications": 0.15,
    },
)

FORMULAS: Dict[str, ScoringFormula] = {
    FORMULA_V1.version: FORMULA_V1,
}

RISK_BY_STATUS = {
    CheckResult.PASS: RiskLevel.LOW,
    CheckResult.PARTIAL: RiskLevel.MEDIUM,
    CheckResult.FAIL: RiskLevel.HIGH,
    CheckResult.ND: RiskLevel.ND,
}

DEGRADED_SECTION_ID = "degraded"
DEGRADED_CHECK_ID = "generation_output_unusable"
DEFAULT_DEGRADED_REASON = "Assessment could not be completed"


def get_formula(version: str) -> ScoringFormula:
    try:
        return FORMULAS[version]
    except KeyError:
        raise ValueError(
            f"Unknown scoring formula version {version!r}; known: {sorted(FORMULAS)}"
        ) from None


# One formula per deployment; an unknown version fails at import time.
ACTIVE_FORMULA = get_formula(SCORING_FORMULA_VERSION)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _aggregate(raw: Optional[float], formula: ScoringFormula) -> Aggregate:
    if raw is None:
        return Aggregate(status=CheckResult.ND, score=None, raw=None)
    return Aggregate(
        status=status_from_raw(raw, formula),
        score=_round_half_up(raw * 100),
        raw=raw,
    )


def status_from_raw(raw: float, formula: ScoringFormula = ACTIVE_FORMULA) -> CheckResult:
    percent = raw * 100
    if percent >= formula.pass_threshold:
        return CheckResult.PASS
    if percent >= formula.partial_threshold:
        return CheckResult.PARTIAL
    return CheckResult.FAIL


def score_section(checks: Iterable[Check], formula: ScoringFormula = ACTIVE_FORMULA) -> Aggregate:
    """
    Mean of the determinable check values.
    All ND (or no checks) -> ND with no numbers, never a zero.
    """
    values = []
    for check in checks:
        value = formula.result_values.get(check.result)
        if value is not None:
            values.append(value)

    if not values:
        return _aggregate(None, formula)
    return _aggregate(sum(values) / len(values), formula)


def sanitize_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    """Negative, non-numeric and non-finite weights count as 0"""
    clean = {}
    for key, value in (weights or {}).items():
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = 0.0
        if not math.isfinite(number) or number < 0:
            number = 0.0
        clean[str(key)] = number
    return clean


def score_overall(sections: Iterable[Section], weights: Mapping[str, float],
                  formula: ScoringFormula = ACTIVE_FORMULA) -> Aggregate:
    """
    Weighted mean renormalized over the sections actually used.
    A section that is ND is left out of numerator and denominator alike.
    """
    weighted_sum = 0.0
    total_weight = 0.0

    for section in sections:
        if section.raw is None:
            continue
        weight = weights.get(section.id, 0.0)
        if weight <= 0:
            continue
        weighted_sum += section.raw * weight
        total_weight += weight

    if total_weight == 0:
        return _aggregate(None, formula)
    return _aggregate(weighted_sum / total_weight, formula)


def build_section(findings: SectionFindings, formula: ScoringFormula = ACTIVE_FORMULA) -> Section:
    aggregate = score_section(findings.checks, formula)
    return Section(
        id=findings.id,
        label=findings.label,
        checks=list(findings.checks),
        status=aggregate.status,
        score=aggregate.score,
        raw=aggregate.raw,
    )


def risk_level_for(overall: Aggregate) -> RiskLevel:
    return RISK_BY_STATUS[overall.status]


def confidence_for(sections: Iterable[Section], formula: ScoringFormula = ACTIVE_FORMULA) -> ConfidenceLevel:
    """Share of checks the model could actually determine"""
    total = 0
    determinable = 0
    for section in sections:
        for check in section.checks:
            total += 1
            if check.result != CheckResult.ND:
                determinable += 1

    if total == 0 or determinable == 0:
        return ConfidenceLevel.ND
    coverage = determinable / total
    if coverage >= formula.confidence_high:
        return ConfidenceLevel.HIGH
    if coverage >= formula.confidence_medium:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def _meta(formula: ScoringFormula, confidence: ConfidenceLevel, now: Optional[datetime]) -> Meta:
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return Meta(formula_version=formula.version, generated_at=stamp, confidence=confidence)


def build_scorecard(findings: Findings, weights: Optional[Mapping[str, float]] = None,
                    formula: ScoringFormula = ACTIVE_FORMULA,
                    now: Optional[datetime] = None) -> Scorecard:
    """Main entry point: canonical findings in, published scorecard out"""
    applied = sanitize_weights(formula.default_weights if weights is None else weights)

    sections: List[Section] = [build_section(s, formula) for s in findings.sections]
    overall = score_overall(sections, applied, formula)
    confidence = confidence_for(sections, formula)

    logger.info(
        f"Scorecard built: overall={overall.status.value} score={overall.score} "
        f"confidence={confidence.value} sections={len(sections)}"
    )
    return Scorecard(
        sections=sections,
        overall=overall,
        weights=applied,
        risk_level=risk_level_for(overall),
        meta=_meta(formula, confidence, now),
    )


def build_degraded_scorecard(reason: Optional[str] = None,
                             formula: ScoringFormula = ACTIVE_FORMULA,
                             now: Optional[datetime] = None) -> Scorecard:
    """Fallback whenever findings are unusable: all ND, no numbers"""
    try:
        text = str(reason).strip() if reason is not None else ""
    except Exception:
        text = ""
    text = text or DEFAULT_DEGRADED_REASON

    logger.warning(f"Returning degraded scorecard: {text}")

    check = Check(id=DEGRADED_CHECK_ID, result=CheckResult.ND, rationale=text)
    section = Section(
        id=DEGRADED_SECTION_ID,
        label=text,
        checks=[check],
        status=CheckResult.ND,
        score=None,
        raw=None,
    )
    return Scorecard(
        sections=[section],
        overall=Aggregate(status=CheckResult.ND, score=None, raw=None),
        weights={},
        risk_level=RiskLevel.ND,
        meta=_meta(formula, ConfidenceLevel.ND, now),
    )
