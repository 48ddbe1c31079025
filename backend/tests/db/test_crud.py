import pytest
from sqlalchemy import func, select

from finreview.schemas.record import (
    ApplicantIncome,
    FieldConfidence,
    FieldSource,
    FinancialRecord,
    HouseholdIncome,
    OtherIncomeSource,
    PersonalDetails,
    RecordStatus,
    ValidationResult,
)
from finreview.services.workflow import AuditEvent, AuditKind


def sample_record(**overrides):
    rec = FinancialRecord(
        applicant_income=[ApplicantIncome(occupation="Cashier", gross_monthly_income_sgd=2800.0)],
        household_income=[
            HouseholdIncome(name="Tan Ah Kow", relationship_to_applicant="father", gross_monthly_income_sgd=0.0),
            HouseholdIncome(name="Tan Mei", relationship_to_applicant="sibling", gross_monthly_income_sgd="about 1k"),
        ],
        other_income_sources=[OtherIncomeSource(description="CPF payout", amount_sgd=300.0)],
        personal=PersonalDetails(applicant_name="Tan Mei Ling", nric="S1234567D"),
        financial_situation_note="Single mother of two",
        confidence=0.92,
        flags=["low_confidence"],
    )
    rec.field_confidence["applicantIncome.0.occupation"] = FieldConfidence(
        value="Cashier", confidence=0.65, source=FieldSource.OCR, flags=["low_confidence"]
    )
    rec.field_validations["applicantIncome.0.occupation"] = ValidationResult(is_valid=True, confidence=0.9)
    for k, v in overrides.items():
        setattr(rec, k, v)
    return rec


def test_save_and_list_recent_round_trip(sqlite_db):
    from finreview.db import crud as dbcrud
    from finreview.db import session as sess

    events = [AuditEvent(AuditKind.FIELD_EDITED, "applicantIncome.0.occupation", detail={"before": "Cashr", "after": "Cashier"})]
    with sess.session_scope() as db:
        form_id = dbcrud.save_record(db, sample_record(), events)

    with sess.session_scope() as db:
        items = dbcrud.list_recent(db, limit=10)
        assert [it["id"] for it in items] == [form_id]
        rec = items[0]["record"]
        assert rec.personal.applicant_name == "Tan Mei Ling"
        assert [r.name for r in rec.household_income] == ["Tan Ah Kow", "Tan Mei"]
        # zero survives as a number, unparsed text as text
        assert rec.household_income[0].gross_monthly_income_sgd == 0.0
        assert rec.household_income[1].gross_monthly_income_sgd == "about 1k"
        assert rec.other_income_sources[0].amount_sgd == 300.0
        assert rec.field_confidence["applicantIncome.0.occupation"].confidence == 0.65

        history = dbcrud.history_for(db, form_id)
        kinds = [h.kind for h in history]
        assert kinds == ["field_edited", "validation_result"]
        assert history[0].detail == {"before": "Cashr", "after": "Cashier"}


def test_failed_child_insert_leaves_no_parent(sqlite_db):
    from finreview.db import crud as dbcrud
    from finreview.db import session as sess
    from finreview.db.models import FinancialForm

    with pytest.raises(RuntimeError):
        with sess.session_scope() as db:
            dbcrud.save_record(db, sample_record())
            raise RuntimeError("child insert failed")

    with sess.session_scope() as db:
        assert db.execute(select(func.count()).select_from(FinancialForm)).scalar() == 0


def test_analytics_summary(sqlite_db):
    from finreview.db import crud as dbcrud
    from finreview.db import session as sess

    with sess.session_scope() as db:
        dbcrud.save_record(db, sample_record(status=RecordStatus.APPROVED))
        dbcrud.save_record(db, sample_record(confidence=0.55, flags=[]))

    with sess.session_scope() as db:
        summary = dbcrud.analytics_summary(db)
    assert summary["totalForms"] == 2
    assert summary["byStatus"] == {"approved": 1, "pending_review": 1}
    assert summary["confidenceDistribution"]["0.9-1.0"] == 1
    assert summary["confidenceDistribution"]["0.0-0.6"] == 1
    assert summary["flagFrequency"] == {"low_confidence": 1}
    applicant = summary["income"]["applicantIncome"]
    assert applicant["count"] == 2 and applicant["avg"] == 2800.0
    household = summary["income"]["householdIncome"]
    assert household["count"] == 2 and household["min"] == 0.0


def test_storage_disabled_without_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    from finreview.db import session as sess

    assert sess.db_enabled() is False
    with pytest.raises(RuntimeError):
        with sess.session_scope():
            pass
