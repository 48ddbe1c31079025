from __future__ import annotations

import csv
import io
import os
from pathlib import Path
from typing import Any, List, Sequence, Tuple

try:
    from openpyxl import Workbook  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    Workbook = None  # type: ignore

from finreview.records.paths import FieldPath, Section
from finreview.schemas.record import FinancialRecord

DEFAULT_HEADERS: Tuple[str, ...] = ("section", "field", "value")

_ROW_LABELS = {
    Section.APPLICANT_INCOME: "Applicant Income",
    Section.HOUSEHOLD_INCOME: "Household Income",
    Section.OTHER_INCOME: "Other Income",
}


def _section_label(path: FieldPath) -> str:
    if path.section is Section.NOTE:
        return "Financial Situation"
    if path.section is Section.PERSONAL:
        return "Personal"
    return f"{_ROW_LABELS[path.section]} {(path.index or 0) + 1}"


def _fmt(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return "" if value is None else str(value)


def build_rows(record: FinancialRecord) -> List[Tuple[str, str, str]]:
    """(section, field, value) triples for every populated field plus record metadata."""
    rows: List[Tuple[str, str, str]] = []
    for path, value in record.iter_paths(populated_only=True):
        rows.append((_section_label(path), path.field or "financialSituationNote", _fmt(value)))
    rows.append(("Record", "flags", "; ".join(record.flags)))
    rows.append(("Record", "confidence", f"{record.confidence:.2f}"))
    rows.append(("Record", "status", record.status.value))
    if record.reviewer_id:
        rows.append(("Record", "reviewerId", record.reviewer_id))
    if record.review_notes:
        rows.append(("Record", "reviewNotes", record.review_notes))
    return rows


def to_csv(record: FinancialRecord, headers: Sequence[str] = DEFAULT_HEADERS) -> str:
    """CSV text prefixed with a UTF-8 BOM so spreadsheet apps pick the right encoding."""
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(list(headers))
    for row in build_rows(record):
        w.writerow(list(row))
    return "\ufeff" + buf.getvalue()


def export_csv(dest_path: str | os.PathLike[str], record: FinancialRecord) -> str:
    dest = Path(dest_path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    # newline="" keeps csv's \r\n row endings intact
    with dest.open("w", newline="", encoding="utf-8") as f:
        f.write(to_csv(record))
    return str(dest)


def export_xlsx(dest_path: str | os.PathLike[str], record: FinancialRecord, headers: Sequence[str] = DEFAULT_HEADERS) -> str:
    if Workbook is None:
        raise RuntimeError("openpyxl is not installed; cannot export xlsx")
    dest = Path(dest_path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    ws = wb.active
    ws.title = "financial_form"
    ws.append(list(headers))
    for row in build_rows(record):
        ws.append(list(row))
    wb.save(str(dest))
    return str(dest)
