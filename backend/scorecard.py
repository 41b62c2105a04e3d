"""
Compliance scorecard schema.

Public, versioned contract returned to callers. Any change to field names or
meaning requires a new SCHEMA_VERSION.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "compliance-scorecard-v1"

# Fixed section taxonomy, in scorecard order
CANONICAL_SECTIONS = [
    ("administrative_requirements", "Administrative requirements"),
    ("technical_requirements", "Technical requirements"),
    ("economic_requirements", "Economic requirements"),
    ("general_documentation", "General documentation"),
    ("certifications", "Certifications"),
]
CANONICAL_SECTION_IDS = [section_id for section_id, _ in CANONICAL_SECTIONS]


class CheckResult(str, Enum):
    PASS = "PASS"
    PARTIAL = "PARTIAL"
    FAIL = "FAIL"
    ND = "ND"  # not determinable


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    ND = "ND"


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    ND = "ND"


class Check(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    result: CheckResult
    label: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)
    rationale: Optional[str] = None


class SectionFindings(BaseModel):
    """Checks for one section, before scoring"""
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    checks: List[Check] = Field(default_factory=list)


class Findings(BaseModel):
    model_config = ConfigDict(frozen=True)

    sections: List[SectionFindings] = Field(default_factory=list)


class Aggregate(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: CheckResult
    score: Optional[int] = None   # 0-100, None when ND
    raw: Optional[float] = None   # 0-1, None when ND


class Section(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    checks: List[Check]
    status: CheckResult
    score: Optional[int] = None
    raw: Optional[float] = None


class Meta(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: str = SCHEMA_VERSION
    formula_version: str
    determinism_mode: Literal["locked"] = "locked"
    generated_at: str
    confidence: Optional[ConfidenceLevel] = None


class Scorecard(BaseModel):
    model_config = ConfigDict(frozen=True)

    sections: List[Section]
    overall: Aggregate
    weights: Dict[str, float]
    risk_level: RiskLevel
    meta: Meta
