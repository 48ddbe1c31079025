import asyncio

from finreview.ai.capability import CapabilityStatus
from finreview.schemas.record import FieldSource, FinancialRecord
from finreview.services.smart_mapping import (
    FieldMapping,
    collect_fragments,
    enhance_record,
    map_fragments,
    merge_mappings,
)


def test_collect_fragments_flattens_in_order():
    data = {"a": ["taxi driver", {"b": 2800, "c": None}], "d": "mother", "e": True, "f": 2.5}
    assert collect_fragments(data) == ["taxi driver", "2800", "mother", "2.5"]


def test_fragments_map_into_income_sections(scripted):
    cfg, _ = scripted(
        {
            "mappings": [
                {"category": "applicantIncome", "fieldName": "occupation", "extractedText": "taxi driver", "confidence": 0.9},
                {"category": "applicantIncome", "fieldName": "grossMonthlyIncomeSGD", "extractedText": "2800", "confidence": 0.8},
            ],
            "unmappedText": [],
            "confidence": 0.8,
        }
    )
    out = asyncio.run(map_fragments(["taxi driver", "2800", "mother"], config=cfg))
    assert {(m.category, m.field_name) for m in out.mappings} == {
        ("applicantIncome", "occupation"),
        ("applicantIncome", "grossMonthlyIncomeSGD"),
    }
    # never mentioned by the model, so it is reported rather than dropped
    assert out.unmapped_text == ["mother"]


def test_low_confidence_and_unknown_fields_become_unmapped(scripted):
    cfg, _ = scripted(
        {
            "mappings": [
                {"category": "householdIncome", "fieldName": "relationshipToApplicant", "extractedText": "mother", "confidence": 0.3},
                {"category": "householdIncome", "fieldName": "shoeSize", "extractedText": "42", "confidence": 0.9},
            ],
            "unmappedText": ["???"],
        }
    )
    out = asyncio.run(map_fragments(["mother", "42"], config=cfg))
    assert out.mappings == []
    assert out.unmapped_text == ["???", "mother", "42"]


def test_failure_returns_everything_unmapped(scripted):
    cfg, _ = scripted("I cannot map these")
    out = asyncio.run(map_fragments(["taxi driver", "2800"], config=cfg))
    assert out.status is CapabilityStatus.FAILED
    assert out.mappings == [] and out.confidence == 0.0
    assert out.unmapped_text == ["taxi driver", "2800"]


def test_merge_creates_first_row_and_keeps_old_value_as_alternative():
    rec = FinancialRecord.model_validate({"householdIncome": [{"name": "Ah Kow", "occupation": "cleaner"}, {"name": "Mei"}]})
    changed = merge_mappings(
        rec,
        [
            FieldMapping("applicantIncome", "grossMonthlyIncomeSGD", "$2,800", 0.8),
            FieldMapping("householdIncome", "occupation", "taxi driver", 0.9),
            FieldMapping("personal", "nric", "S1234567A", 0.95),
            FieldMapping("financial", "financialSituationNote", "Rent arrears", 0.7),
            FieldMapping("financial", "totalHouseholdIncome", "5000", 0.9),
        ],
    )
    assert changed == [
        "applicantIncome.0.grossMonthlyIncomeSGD",
        "householdIncome.0.occupation",
        "personal.nric",
        "financialSituationNote",
    ]
    assert rec.applicant_income[0].gross_monthly_income_sgd == 2800.0
    assert rec.household_income[0].occupation == "taxi driver"
    assert rec.household_income[1].occupation is None
    fc = rec.field_confidence["householdIncome.0.occupation"]
    assert fc.source is FieldSource.INFERRED and fc.alternatives == ["cleaner"] and fc.original_text == "taxi driver"
    assert rec.financial_situation_note == "Rent arrears"


def test_enhance_leaves_input_untouched(scripted):
    cfg, _ = scripted(
        {"mappings": [{"category": "applicantIncome", "fieldName": "occupation", "extractedText": "hawker", "confidence": 0.9}]}
    )
    original = FinancialRecord.model_validate({"financialSituationNote": "hawker at Tampines"})
    enhanced, result = asyncio.run(enhance_record(original, config=cfg))
    assert enhanced is not original
    assert original.applicant_income == []
    assert enhanced.applicant_income[0].occupation == "hawker"
    assert result.status is CapabilityStatus.OK


def test_enhance_failure_returns_original(scripted):
    cfg, _ = scripted(RuntimeError("down"))
    original = FinancialRecord.model_validate({"financialSituationNote": "hawker"})
    enhanced, result = asyncio.run(enhance_record(original, config=cfg))
    assert enhanced is original and result.status is CapabilityStatus.FAILED


def test_short_fragments_are_not_hidden_inside_mapped_text(scripted):
    cfg, _ = scripted(
        {
            "mappings": [
                {"category": "householdIncome", "fieldName": "grossMonthlyIncomeSGD", "extractedText": "2800", "confidence": 0.9},
                {"category": "householdIncome", "fieldName": "relationshipToApplicant", "extractedText": "grandmother", "confidence": 0.9},
            ],
            "unmappedText": [],
        }
    )
    out = asyncio.run(map_fragments(["2800", "0", "grandmother", "mother"], config=cfg))
    assert [m.text for m in out.mappings] == ["2800", "grandmother"]
    assert out.unmapped_text == ["0", "mother"]
