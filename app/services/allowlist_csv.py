"""
CSV upload pipeline for the allowlist: tokenize, map the header, validate each
row into a ``CsvRecord`` and reject files that repeat an email.

Any failure aborts the whole batch before storage is touched.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.core.errors import AppError, ErrorKind
from app.schemas.enums import AllowedEmailStatus
from app.services.allowlist_validation import (
    LABEL_MAX_LENGTH,
    NOTES_MAX_LENGTH,
    assert_email,
    assert_status,
    ensure_max_length,
    normalize_email,
)
from app.services.csv_parser import is_blank_row, parse_csv

logger = logging.getLogger("app.allowlist.csv")

EMAIL_COLUMN = "email"
STATUS_COLUMN = "status"
LABEL_COLUMN = "label"
NOTES_COLUMN = "notes"


@dataclass
class CsvRecord:
    email: str
    row_number: int  # 1-based, header is row 1
    status: Optional[AllowedEmailStatus] = None
    label: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class DuplicateRow:
    email: str
    row: int
    duplicate_row: int

    def to_dict(self) -> Dict[str, object]:
        return {"email": self.email, "row": self.row, "duplicateRow": self.duplicate_row}


def build_header_index(header: List[str]) -> Dict[str, int]:
    """Maps lowercased, trimmed column names to their position."""
    return {column.strip().lower(): idx for idx, column in enumerate(header)}


def _cell(cells: List[str], index: Optional[int]) -> str:
    if index is None or index >= len(cells):
        return ""
    return (cells[index] or "").strip()


def _row_error(err: AppError, row_number: int) -> AppError:
    details = dict(err.details or {})
    details["row"] = row_number
    return AppError(err.kind, err.code, f"Row {row_number}: {err.message}", details)


def parse_row(cells: List[str], columns: Dict[str, int], row_number: int) -> CsvRecord:
    try:
        email = normalize_email(assert_email(_cell(cells, columns[EMAIL_COLUMN])))
    except AppError as err:
        raise AppError(
            ErrorKind.VALIDATION,
            "CSV_INVALID_EMAIL",
            f"Row {row_number}: {err.message}",
            {"row": row_number, "reason": err.code},
        ) from err

    record = CsvRecord(email=email, row_number=row_number)

    try:
        status_value = _cell(cells, columns.get(STATUS_COLUMN))
        if status_value:
            record.status = assert_status(status_value)
        record.label = ensure_max_length(
            _cell(cells, columns.get(LABEL_COLUMN)), LABEL_MAX_LENGTH
        )
        record.notes = ensure_max_length(
            _cell(cells, columns.get(NOTES_COLUMN)), NOTES_MAX_LENGTH
        )
    except AppError as err:
        raise _row_error(err, row_number) from err

    return record


def parse_allowlist_csv(csv_text: Optional[str]) -> List[CsvRecord]:
    """
    Turns uploaded CSV text into validated records.

    Raises:
        AppError: CSV_EMPTY, CSV_MISSING_EMAIL, CSV_INVALID_EMAIL, STATUS_INVALID,
            FIELD_TOO_LONG or CSV_DUPLICATED_IN_FILE for the first problem found.
    """
    if not csv_text or not csv_text.strip():
        raise AppError(ErrorKind.VALIDATION, "CSV_EMPTY", "The CSV file is empty.")

    rows = parse_csv(csv_text.strip())
    if not rows:
        raise AppError(ErrorKind.VALIDATION, "CSV_EMPTY", "The CSV file has no rows.")

    columns = build_header_index(rows[0])
    if EMAIL_COLUMN not in columns:
        raise AppError(
            ErrorKind.VALIDATION,
            "CSV_MISSING_EMAIL",
            "The required column 'email' is missing from the header.",
        )

    records: List[CsvRecord] = []
    for index, cells in enumerate(rows[1:], start=2):
        if is_blank_row(cells):
            continue
        records.append(parse_row(cells, columns, index))

    if not records:
        raise AppError(
            ErrorKind.VALIDATION, "CSV_EMPTY", "The CSV file has no data rows."
        )

    check_csv_duplicates(records)
    logger.info(f"Parsed {len(records)} allowlist rows from CSV")
    return records


def find_duplicate_rows(records: List[CsvRecord]) -> List[DuplicateRow]:
    seen: Dict[str, int] = {}
    duplicates: List[DuplicateRow] = []

    for record in records:
        first_row = seen.get(record.email)
        if first_row is not None:
            duplicates.append(DuplicateRow(record.email, first_row, record.row_number))
        else:
            seen[record.email] = record.row_number

    return duplicates


def check_csv_duplicates(records: List[CsvRecord]) -> None:
    duplicates = find_duplicate_rows(records)
    if duplicates:
        summary = ", ".join(
            f"{dup.email} (rows {dup.row},{dup.duplicate_row})" for dup in duplicates
        )
        raise AppError(
            ErrorKind.VALIDATION,
            "CSV_DUPLICATED_IN_FILE",
            f"The CSV contains the same email more than once: {summary}",
            {"duplicates": [dup.to_dict() for dup in duplicates]},
        )
