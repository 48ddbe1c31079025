from __future__ import annotations

import csv
import io

import pytest

from finreview.schemas.record import FinancialRecord, RecordStatus
from finreview.services.exporter import DEFAULT_HEADERS, build_rows, export_csv, export_xlsx, to_csv


def sample() -> FinancialRecord:
    return FinancialRecord.model_validate(
        {
            "applicantIncome": [{"occupation": "cashier", "grossMonthlyIncomeSGD": 1800.0}],
            "householdIncome": [{"name": "陈大明", "relationshipToApplicant": "father", "grossMonthlyIncomeSGD": 0}],
            "financialSituationNote": "Lost job, rent \"overdue\", needs help",
            "flags": ["unclear handwriting", "faded ink"],
            "confidence": 0.83,
            "status": "approved",
            "reviewerId": "rev-7",
        }
    )


def test_rows_cover_fields_and_record_metadata():
    rows = build_rows(sample())
    assert rows[0] == ("Financial Situation", "financialSituationNote", "Lost job, rent \"overdue\", needs help")
    assert ("Applicant Income 1", "grossMonthlyIncomeSGD", "1800") in rows
    assert ("Household Income 1", "grossMonthlyIncomeSGD", "0") in rows
    assert ("Record", "flags", "unclear handwriting; faded ink") in rows
    assert ("Record", "confidence", "0.83") in rows
    assert ("Record", "status", RecordStatus.APPROVED.value) in rows
    assert ("Record", "reviewerId", "rev-7") in rows


def test_csv_has_bom_header_and_quotes():
    text = to_csv(sample())
    assert text.startswith("\ufeff")
    parsed = list(csv.reader(io.StringIO(text.lstrip("\ufeff"))))
    assert tuple(parsed[0]) == DEFAULT_HEADERS
    assert parsed[1][2] == "Lost job, rent \"overdue\", needs help"
    assert ["Household Income 1", "name", "陈大明"] in parsed


def test_export_files(tmp_path):
    out = export_csv(tmp_path / "out" / "form.csv", sample())
    assert (tmp_path / "out" / "form.csv").read_text(encoding="utf-8").startswith("\ufeff")

    openpyxl = pytest.importorskip("openpyxl")
    xp = export_xlsx(tmp_path / "form.xlsx", sample())
    ws = openpyxl.load_workbook(xp).active
    assert [c.value for c in ws[1]] == list(DEFAULT_HEADERS)
    assert ws.max_row == len(build_rows(sample())) + 1
    assert out.endswith("form.csv")
