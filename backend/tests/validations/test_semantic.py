import asyncio
from datetime import date

from finreview.validations.semantic import build_prompt, parse_verdict, validate_semantics


def test_valid_verdict_passes_through(scripted):
    cfg, provider = scripted({"isValid": True, "confidence": 0.92, "flags": [], "suggestions": [], "standardizedValue": "taxi driver"})
    r = asyncio.run(validate_semantics("cabbie", "applicantIncome.0.occupation", "Applicant occupation", config=cfg))
    assert r.is_valid and r.confidence == 0.92
    assert r.standardized_value == "taxi driver"
    assert "cabbie" in provider.prompts[0]


def test_out_of_vocabulary_flags_are_dropped():
    out = parse_verdict({"isValid": False, "confidence": 0.7, "flags": ["impossible_value", "informal_language"]}, -10)
    assert out.value.flags == ["impossible_value"]
    assert out.value.is_valid is False


def test_noise_only_rejection_becomes_review_not_block():
    out = parse_verdict({"isValid": False, "confidence": 0.6, "flags": ["informal_language"]}, "mum")
    assert out.status.value == "degraded"
    assert out.value.is_valid is True
    assert out.value.requires_review is True
    assert out.value.flags == []


def test_missing_verdict_is_a_failure():
    assert parse_verdict({"confidence": 0.9}, "x").status.value == "failed"
    assert parse_verdict(["isValid"], "x").status.value == "failed"


def _assert_fail_closed(r):
    assert r.is_valid is False
    assert r.requires_review is True
    assert r.flags == ["validation_error"]
    assert r.suggestions == ["Could not validate field"]
    assert r.confidence == 0.0


def test_provider_error_fails_closed(scripted):
    cfg, _ = scripted(RuntimeError("connection reset"))
    _assert_fail_closed(asyncio.run(validate_semantics("cashier", "occupation", config=cfg)))


def test_unparsable_and_refusal_fail_closed(scripted, refusal):
    cfg, _ = scripted("Sure! The value looks fine to me.")
    _assert_fail_closed(asyncio.run(validate_semantics("cashier", "occupation", config=cfg)))
    cfg2, _ = scripted(refusal())
    _assert_fail_closed(asyncio.run(validate_semantics("cashier", "occupation", config=cfg2)))


def test_mock_provider_reply_fails_closed(scripted):
    cfg, _ = scripted("{}")
    _assert_fail_closed(asyncio.run(validate_semantics("cashier", "occupation", config=cfg)))


def test_prompt_carries_current_date_for_employment_period():
    p = build_prompt("2019 - present", "applicantIncome.0.periodOfEmployment", today=date(2026, 3, 1))
    assert "Current date: 2026-03-01" in p
    assert "Current date" not in build_prompt("cashier", "applicantIncome.0.occupation")
