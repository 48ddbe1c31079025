import asyncio

import pytest

from finreview.records.paths import InvalidFieldPath
from finreview.schemas.record import FinancialRecord
from finreview.services.enforcement import (
    MSG_COMPLETE,
    MSG_STRICT,
    EnforcementStatus,
    enforce,
    find_missing_fields,
)


def record(**sections) -> FinancialRecord:
    return FinancialRecord.model_validate(sections)


def test_strict_mode_blocks_single_missing_income(scripted):
    cfg, provider = scripted(RuntimeError("not used in strict mode"))
    r = record(applicantIncome=[{"occupation": "cashier"}])
    out = asyncio.run(enforce(r, strict=True, config=cfg))
    assert out.can_proceed is False
    assert out.blocker_fields == ["applicantIncome[0].grossMonthlyIncomeSGD"]
    assert out.inferred_values == {}
    assert out.suggestions == [MSG_STRICT]
    assert out.status is EnforcementStatus.BLOCKED
    assert provider.prompts == []


def test_complete_record_proceeds(scripted):
    cfg, _ = scripted(RuntimeError("not called"))
    r = record(applicantIncome=[{"occupation": "cashier", "grossMonthlyIncomeSGD": 0}])
    out = asyncio.run(enforce(r, config=cfg))
    assert out.can_proceed and out.suggestions == [MSG_COMPLETE] and out.blocker_fields == []


def test_missing_fields_sorted_by_priority():
    r = record(
        householdIncome=[{"occupation": "driver", "grossMonthlyIncomeSGD": 1500}],
        applicantIncome=[{"grossMonthlyIncomeSGD": 1000}],
    )
    names = [m.field_name for m in find_missing_fields(r)]
    assert names == [
        "applicantIncome[0].occupation",
        "householdIncome[0].name",
        "householdIncome[0].relationshipToApplicant",
    ]


def test_personal_rules_only_when_requested():
    r = record(personal={"applicantName": "Tan"})
    assert find_missing_fields(r) == []
    missing = find_missing_fields(r, {"personal": ["applicantName", "nric"]})
    assert [m.field_name for m in missing] == ["personal.nric"]
    with pytest.raises(InvalidFieldPath):
        find_missing_fields(r, {"spouseIncome": ["name"]})


def test_fallback_blocks_on_critical_gap(scripted):
    cfg, _ = scripted("not json at all")
    out = asyncio.run(enforce(record(applicantIncome=[{"grossMonthlyIncomeSGD": 900}]), config=cfg))
    assert out.method == "fallback"
    assert out.can_proceed is False
    assert out.blocker_fields == ["applicantIncome[0].occupation"]


def test_fallback_allows_non_critical_gap_but_still_lists_it(scripted):
    cfg, _ = scripted(RuntimeError("down"))
    r = record(householdIncome=[{"name": "Ah Kow", "grossMonthlyIncomeSGD": 0}])
    out = asyncio.run(enforce(r, config=cfg))
    assert out.can_proceed is True
    assert out.blocker_fields == ["householdIncome[0].relationshipToApplicant"]


def test_model_judgment_infers_values_and_keeps_every_gap(scripted):
    cfg, _ = scripted(
        {
            "canProceed": True,
            "blockerFields": ["householdIncome.9.name"],
            "suggestions": ["Applicant marked unemployed"],
            "inferredValues": {"applicantIncome[0].grossMonthlyIncomeSGD": "0"},
        }
    )
    r = record(
        applicantIncome=[{"occupation": "unemployed"}],
        householdIncome=[{"name": "Ah Kow", "grossMonthlyIncomeSGD": 2000}],
    )
    out = asyncio.run(enforce(r, config=cfg))
    assert out.method == "model"
    assert out.can_proceed is True
    assert out.inferred_values == {"applicantIncome[0].grossMonthlyIncomeSGD": 0.0}
    # the relationship gap was neither inferred nor named, so it stays a blocker
    assert out.blocker_fields == ["householdIncome[0].relationshipToApplicant"]
    assert out.status is EnforcementStatus.CONDITIONAL_APPROVAL
    assert out.to_dict()["missingFields"][0]["fieldName"] == "applicantIncome[0].grossMonthlyIncomeSGD"
