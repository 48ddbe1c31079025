from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import CHAR, TypeDecorator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GUID(TypeDecorator):
    """Native UUID on PostgreSQL, CHAR(36) strings elsewhere."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return str(value)


class JSONX(TypeDecorator):
    """JSONB on PostgreSQL, JSON text elsewhere."""

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB(astext_type=Text()))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return json.dumps(value, ensure_ascii=False, default=str)

    def process_result_value(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return json.loads(value)


Base = declarative_base()


class FinancialForm(Base):
    __tablename__ = "financial_forms"
    id = Column(GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    applicant_name = Column(String(256))
    nric = Column(String(16))
    personal = Column(JSONX())
    financial_situation_note = Column(Text)
    confidence = Column(Float, nullable=False, default=0.0)
    status = Column(String(32), nullable=False, default="pending_review")
    flags = Column(JSONX())
    reviewer_id = Column(String(64))
    review_notes = Column(Text)
    missing_mandatory_fields = Column(JSONX())
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_financial_forms_created", "created_at"),
        Index("ix_financial_forms_status", "status"),
    )

    applicant_income = relationship(
        "ApplicantIncomeRow", back_populates="form", cascade="all, delete-orphan", order_by="ApplicantIncomeRow.position"
    )
    household_income = relationship(
        "HouseholdIncomeRow", back_populates="form", cascade="all, delete-orphan", order_by="HouseholdIncomeRow.position"
    )
    other_income_sources = relationship(
        "OtherIncomeRow", back_populates="form", cascade="all, delete-orphan", order_by="OtherIncomeRow.position"
    )
    field_confidence = relationship("FieldConfidenceRow", back_populates="form", cascade="all, delete-orphan")
    history = relationship(
        "ValidationHistory", back_populates="form", cascade="all, delete-orphan", order_by="ValidationHistory.id"
    )


class ApplicantIncomeRow(Base):
    __tablename__ = "applicant_income"
    id = Column(Integer, primary_key=True)
    form_id = Column(GUID(), ForeignKey("financial_forms.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    occupation = Column(String(256))
    gross_monthly_income_sgd = Column(Float)
    gross_monthly_income_text = Column(String(128))
    period_of_employment = Column(String(128))

    form = relationship("FinancialForm", back_populates="applicant_income")


class HouseholdIncomeRow(Base):
    __tablename__ = "household_income"
    id = Column(Integer, primary_key=True)
    form_id = Column(GUID(), ForeignKey("financial_forms.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    name = Column(String(256))
    relationship_to_applicant = Column(String(128))
    occupation = Column(String(256))
    gross_monthly_income_sgd = Column(Float)
    gross_monthly_income_text = Column(String(128))

    form = relationship("FinancialForm", back_populates="household_income")


class OtherIncomeRow(Base):
    __tablename__ = "other_income_sources"
    id = Column(Integer, primary_key=True)
    form_id = Column(GUID(), ForeignKey("financial_forms.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    description = Column(Text)
    amount_sgd = Column(Float)
    amount_text = Column(String(128))

    form = relationship("FinancialForm", back_populates="other_income_sources")


class FieldConfidenceRow(Base):
    __tablename__ = "field_confidence"
    id = Column(Integer, primary_key=True)
    form_id = Column(GUID(), ForeignKey("financial_forms.id", ondelete="CASCADE"), nullable=False)
    field_path = Column(String(128), nullable=False)
    value = Column(JSONX())
    confidence = Column(Float, nullable=False)
    source = Column(String(32), nullable=False)
    flags = Column(JSONX())
    alternatives = Column(JSONX())
    original_text = Column(Text)

    __table_args__ = (Index("ix_field_confidence_form_path", "form_id", "field_path"),)

    form = relationship("FinancialForm", back_populates="field_confidence")


class ValidationHistory(Base):
    __tablename__ = "validation_history"
    id = Column(Integer, primary_key=True)
    form_id = Column(GUID(), ForeignKey("financial_forms.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(48), nullable=False)
    field_path = Column(String(128))
    detail = Column(JSONX())
    at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_validation_history_at", "at"),)

    form = relationship("FinancialForm", back_populates="history")
