from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from finreview.db.models import (
    ApplicantIncomeRow,
    FieldConfidenceRow,
    FinancialForm,
    HouseholdIncomeRow,
    OtherIncomeRow,
    ValidationHistory,
)
from finreview.schemas.record import (
    ApplicantIncome,
    FieldConfidence,
    FinancialRecord,
    HouseholdIncome,
    OtherIncomeSource,
    PersonalDetails,
)
from finreview.validations.confidence import confidence_band


def _split_amount(value: Any) -> Tuple[Optional[float], Optional[str]]:
    """Numeric amounts go to the float column; unparsed text is kept verbatim."""
    if value is None:
        return None, None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value), None
    return None, str(value)


def _join_amount(num: Optional[float], text: Optional[str]) -> Any:
    return num if num is not None else text


def save_record(db: Session, record: FinancialRecord, events: Sequence[Any] = ()) -> str:
    """Insert the form, its child rows and its audit events; the caller owns the transaction."""
    form = FinancialForm(
        applicant_name=record.personal.applicant_name,
        nric=record.personal.nric,
        personal=record.personal.model_dump(by_alias=True),
        financial_situation_note=record.financial_situation_note or None,
        confidence=record.confidence,
        status=record.status.value,
        flags=list(record.flags),
        reviewer_id=record.reviewer_id,
        review_notes=record.review_notes,
        missing_mandatory_fields=list(record.missing_mandatory_fields),
    )
    db.add(form)
    db.flush()

    for i, row in enumerate(record.applicant_income):
        num, text = _split_amount(row.gross_monthly_income_sgd)
        db.add(
            ApplicantIncomeRow(
                form_id=form.id,
                position=i,
                occupation=row.occupation,
                gross_monthly_income_sgd=num,
                gross_monthly_income_text=text,
                period_of_employment=row.period_of_employment,
            )
        )
    for i, row in enumerate(record.household_income):
        num, text = _split_amount(row.gross_monthly_income_sgd)
        db.add(
            HouseholdIncomeRow(
                form_id=form.id,
                position=i,
                name=row.name,
                relationship_to_applicant=row.relationship_to_applicant,
                occupation=row.occupation,
                gross_monthly_income_sgd=num,
                gross_monthly_income_text=text,
            )
        )
    for i, row in enumerate(record.other_income_sources):
        num, text = _split_amount(row.amount_sgd)
        db.add(OtherIncomeRow(form_id=form.id, position=i, description=row.description, amount_sgd=num, amount_text=text))

    for path, fc in record.field_confidence.items():
        db.add(
            FieldConfidenceRow(
                form_id=form.id,
                field_path=path,
                value=fc.value,
                confidence=fc.confidence,
                source=fc.source.value,
                flags=list(fc.flags),
                alternatives=fc.alternatives,
                original_text=fc.original_text,
            )
        )

    for ev in events:
        db.add(ValidationHistory(form_id=form.id, kind=ev.kind.value, field_path=ev.path, detail=ev.detail, at=ev.at))
    for path, result in record.field_validations.items():
        db.add(
            ValidationHistory(
                form_id=form.id,
                kind="validation_result",
                field_path=path,
                detail=result.model_dump(by_alias=True, mode="json"),
            )
        )
    db.flush()
    return str(form.id)


def form_to_record(form: FinancialForm) -> FinancialRecord:
    return FinancialRecord(
        applicant_income=[
            ApplicantIncome(
                occupation=r.occupation,
                gross_monthly_income_sgd=_join_amount(r.gross_monthly_income_sgd, r.gross_monthly_income_text),
                period_of_employment=r.period_of_employment,
            )
            for r in form.applicant_income
        ],
        household_income=[
            HouseholdIncome(
                name=r.name,
                relationship_to_applicant=r.relationship_to_applicant,
                occupation=r.occupation,
                gross_monthly_income_sgd=_join_amount(r.gross_monthly_income_sgd, r.gross_monthly_income_text),
            )
            for r in form.household_income
        ],
        other_income_sources=[
            OtherIncomeSource(description=r.description, amount_sgd=_join_amount(r.amount_sgd, r.amount_text))
            for r in form.other_income_sources
        ],
        personal=PersonalDetails.model_validate(form.personal or {}),
        financial_situation_note=form.financial_situation_note or "",
        field_confidence={
            r.field_path: FieldConfidence(
                value=r.value,
                confidence=r.confidence,
                source=r.source,
                flags=r.flags or [],
                alternatives=r.alternatives,
                original_text=r.original_text,
            )
            for r in form.field_confidence
        },
        flags=form.flags or [],
        confidence=form.confidence,
        status=form.status,
        reviewer_id=form.reviewer_id,
        review_notes=form.review_notes,
        missing_mandatory_fields=form.missing_mandatory_fields or [],
    )


def list_recent(db: Session, limit: int = 50) -> List[Dict[str, Any]]:
    """Newest first; each item is ``{"id", "createdAt", "record"}``."""
    q = (
        select(FinancialForm)
        .options(
            selectinload(FinancialForm.applicant_income),
            selectinload(FinancialForm.household_income),
            selectinload(FinancialForm.other_income_sources),
            selectinload(FinancialForm.field_confidence),
        )
        .order_by(FinancialForm.created_at.desc())
        .limit(max(1, int(limit)))
    )
    out: List[Dict[str, Any]] = []
    for form in db.execute(q).scalars().all():
        out.append({"id": str(form.id), "createdAt": form.created_at.isoformat(), "record": form_to_record(form)})
    return out


def history_for(db: Session, form_id: str) -> List[ValidationHistory]:
    q = select(ValidationHistory).where(ValidationHistory.form_id == form_id).order_by(ValidationHistory.id)
    return list(db.execute(q).scalars().all())


def _income_stats(db: Session, column) -> Dict[str, Any]:
    count, avg, lo, hi = db.execute(
        select(func.count(column), func.avg(column), func.min(column), func.max(column)).where(column.is_not(None))
    ).one()
    return {
        "count": int(count or 0),
        "avg": round(float(avg), 2) if avg is not None else None,
        "min": float(lo) if lo is not None else None,
        "max": float(hi) if hi is not None else None,
    }


def analytics_summary(db: Session) -> Dict[str, Any]:
    """Aggregates over every saved form."""
    total = db.execute(select(func.count()).select_from(FinancialForm)).scalar() or 0
    by_status = {
        status: int(n)
        for status, n in db.execute(select(FinancialForm.status, func.count()).group_by(FinancialForm.status)).all()
    }

    bands: Counter = Counter({"0.9-1.0": 0, "0.8-0.9": 0, "0.7-0.8": 0, "0.6-0.7": 0, "0.0-0.6": 0})
    flag_counts: Counter = Counter()
    for conf, flags in db.execute(select(FinancialForm.confidence, FinancialForm.flags)).all():
        bands[confidence_band(conf or 0.0)] += 1
        flag_counts.update(flags or [])

    avg_conf = db.execute(select(func.avg(FinancialForm.confidence))).scalar()
    return {
        "totalForms": int(total),
        "byStatus": by_status,
        "averageConfidence": round(float(avg_conf), 4) if avg_conf is not None else None,
        "confidenceDistribution": dict(bands),
        "flagFrequency": dict(flag_counts.most_common()),
        "income": {
            "applicantIncome": _income_stats(db, ApplicantIncomeRow.gross_monthly_income_sgd),
            "householdIncome": _income_stats(db, HouseholdIncomeRow.gross_monthly_income_sgd),
            "otherIncomeSources": _income_stats(db, OtherIncomeRow.amount_sgd),
        },
    }
