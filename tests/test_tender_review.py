# tests/test_tender_review.py
import asyncio

import pytest

from error_handler import ValidationError
from fakes import (
    SAMPLE_CHECKS_TEXT,
    SAMPLE_REPORT,
    RateLimitFailure,
    RoutingProvider,
    ServerFailure,
    make_gateway,
)
from scorecard import CANONICAL_SECTION_IDS, CheckResult, RiskLevel
from scoring import DEGRADED_SECTION_ID
from tender_review import (
    ComplianceDocument,
    build_documents_summary,
    run_compliance_check,
    run_tender_ready,
    scorecard_from_text,
)

PROFILE = "Acme Srl, IT services, turnover 2M EUR, ISO 9001 certified."
TENDER = "Open procedure for IT maintenance. Requires ISO 9001 and three comparable contracts."


def tender_ready(provider, **kwargs):
    gateway = make_gateway(provider, max_retries=1)
    return asyncio.run(run_tender_ready(gateway, PROFILE, TENDER, **kwargs))


def test_tender_ready_happy_path():
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=SAMPLE_REPORT)
    result = tender_ready(provider)

    assert result.ok is True
    assert result.status_code == 200
    assert result.narrative == SAMPLE_REPORT
    assert [s.id for s in result.scorecard.sections] == CANONICAL_SECTION_IDS
    assert result.scorecard.overall.score == 34
    assert result.scorecard.risk_level == RiskLevel.HIGH
    assert sorted(call["kind"] for call in provider.calls) == ["checks", "report"]

    body = result.to_response()
    assert body["ok"] is True
    assert body["data"] == SAMPLE_REPORT
    assert body["scorecard"]["meta"]["determinism_mode"] == "locked"
    assert "error" not in body


def test_prompts_carry_inputs_and_language():
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=SAMPLE_REPORT)
    tender_ready(provider, language="english")

    for call in provider.calls:
        assert PROFILE in call["content"]
        assert TENDER in call["content"]
        assert "Answer in english." in call["content"]
    report_call = next(call for call in provider.calls if call["kind"] == "report")
    assert "Answer in english." in report_call["system"]


def test_default_language_is_italian():
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=SAMPLE_REPORT)
    tender_ready(provider)
    assert all("Answer in italiano." in call["content"] for call in provider.calls)


def test_unparseable_checks_degrade_the_scorecard():
    provider = RoutingProvider(checks="Sorry, I cannot produce JSON today.", report=SAMPLE_REPORT)
    result = tender_ready(provider)

    assert result.ok is True
    assert result.narrative == SAMPLE_REPORT
    assert result.scorecard.sections[0].id == DEGRADED_SECTION_ID
    assert result.scorecard.overall.status == CheckResult.ND
    assert result.scorecard.overall.score is None


def test_unknown_sections_degrade_the_scorecard():
    checks = '{"sections": [{"section_id": "environmental", "checks": [{"id": "x", "status": "PASS"}]}]}'
    result = tender_ready(RoutingProvider(checks=checks, report=SAMPLE_REPORT))
    assert result.scorecard.sections[0].id == DEGRADED_SECTION_ID
    assert "did not match" in result.scorecard.sections[0].label


def test_checks_call_failure_keeps_the_narrative():
    provider = RoutingProvider(checks=RateLimitFailure("rate limited"), report=SAMPLE_REPORT)
    result = tender_ready(provider)

    assert result.ok is True
    assert result.narrative == SAMPLE_REPORT
    assert result.scorecard.sections[0].id == DEGRADED_SECTION_ID


def test_report_failure_returns_degraded_scorecard():
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=ServerFailure("provider down"))
    result = tender_ready(provider)

    assert result.ok is False
    assert result.status_code == 502
    assert result.narrative == ""
    assert result.error == "Generation service error from anthropic"
    assert [s.id for s in result.scorecard.sections] == [DEGRADED_SECTION_ID]
    assert result.scorecard.sections[0].label == result.error
    assert result.scorecard.overall.status == CheckResult.ND
    assert result.scorecard.risk_level == RiskLevel.ND

    body = result.to_response()
    assert body["ok"] is False
    assert body["data"] == ""
    assert body["error"] == result.error
    assert body["scorecard"]["overall"] == {"status": "ND", "score": None, "raw": None}


def test_oversized_input_reports_budget_error():
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=SAMPLE_REPORT)
    gateway = make_gateway(provider, tokens_per_minute=5000)

    result = asyncio.run(run_tender_ready(gateway, PROFILE, "clause " * 10000))

    assert result.ok is False
    assert result.status_code == 413
    assert "too large" in result.error
    assert result.scorecard.sections[0].id == DEGRADED_SECTION_ID
    assert provider.calls == []


@pytest.mark.parametrize("profile, tender, missing", [
    ("", TENDER, "companyProfile"),
    ("   ", TENDER, "companyProfile"),
    (PROFILE, None, "tenderText"),
])
def test_tender_ready_validates_before_generating(profile, tender, missing):
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=SAMPLE_REPORT)
    gateway = make_gateway(provider)

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(run_tender_ready(gateway, profile, tender))

    assert missing in exc_info.value.message
    assert exc_info.value.status_code == 400
    assert provider.calls == []


def test_compliance_check_happy_path():
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=SAMPLE_REPORT)
    gateway = make_gateway(provider)
    documents = [
        ComplianceDocument(name="DURC.pdf", type="certificate", summary="Valid until 2025-12"),
        ComplianceDocument(name="", type="", summary=""),
        ComplianceDocument(name="ISO9001.pdf", type="certification", summary="Quality management"),
    ]

    result = asyncio.run(run_compliance_check(gateway, "CIG-12345", documents))

    assert result.ok is True
    content = provider.calls[0]["content"]
    assert "TENDER: CIG-12345" in content
    assert "1. Name: DURC.pdf" in content
    assert "2. Name: ISO9001.pdf" in content


@pytest.mark.parametrize("tender_id, documents, message", [
    ("", [ComplianceDocument("a.pdf", "x", "y")], "tenderId"),
    ("CIG-1", [], "At least one document"),
    ("CIG-1", None, "At least one document"),
    ("CIG-1", [ComplianceDocument(" ", "", " ")], "At least one document"),
])
def test_compliance_check_validation(tender_id, documents, message):
    provider = RoutingProvider(checks=SAMPLE_CHECKS_TEXT, report=SAMPLE_REPORT)
    gateway = make_gateway(provider)

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(run_compliance_check(gateway, tender_id, documents))

    assert message in exc_info.value.message
    assert provider.calls == []


def test_documents_summary_numbering():
    summary = build_documents_summary([
        ComplianceDocument("a.pdf", "offer", "Economic offer"),
        ComplianceDocument("b.pdf", "form", "Signed form"),
    ])
    assert summary.startswith("1. Name: a.pdf")
    assert "   Type: offer" in summary
    assert "2. Name: b.pdf" in summary


def test_scorecard_from_text_never_raises():
    assert scorecard_from_text("").sections[0].id == DEGRADED_SECTION_ID
    assert scorecard_from_text(SAMPLE_CHECKS_TEXT).sections[0].id == "administrative_requirements"
    nested = '{"sections": [' + "[" * 200000 + "]" * 200000 + "]}"
    assert scorecard_from_text(nested).sections[0].id == DEGRADED_SECTION_ID
