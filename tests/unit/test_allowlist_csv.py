import pytest

from app.core.errors import AppError
from app.schemas.enums import AllowedEmailStatus
from app.services.allowlist_csv import (
    CsvRecord,
    find_duplicate_rows,
    parse_allowlist_csv,
)


def _raises(csv_text):
    with pytest.raises(AppError) as exc:
        parse_allowlist_csv(csv_text)
    return exc.value


@pytest.mark.parametrize("csv_text", [None, "", "  \n \n"])
def test_empty_input(csv_text):
    assert _raises(csv_text).code == "CSV_EMPTY"


def test_header_only_has_no_data_rows():
    assert _raises("email,status\n").code == "CSV_EMPTY"


def test_blank_rows_only_after_header():
    assert _raises("email\n\n ,\n\nx").code == "CSV_INVALID_EMAIL"
    assert _raises("email,label\n,\n").code == "CSV_EMPTY"


def test_missing_email_column():
    err = _raises("mail,status\na@x.com,active")
    assert err.code == "CSV_MISSING_EMAIL"


def test_header_is_case_and_space_insensitive():
    records = parse_allowlist_csv(" Email , STATUS \nA@X.com,Active")
    assert records[0].email == "a@x.com"
    assert records[0].status is AllowedEmailStatus.ACTIVE


def test_records_are_normalized_and_numbered():
    records = parse_allowlist_csv(
        "label,email,notes,status\n"
        "cohort-a, Jane@Example.com ,\"first, second\",\n"
        "\n"
        ",bob@example.com,,revoked\n"
    )
    assert records == [
        CsvRecord(
            email="jane@example.com",
            row_number=2,
            status=None,
            label="cohort-a",
            notes="first, second",
        ),
        CsvRecord(
            email="bob@example.com",
            row_number=4,
            status=AllowedEmailStatus.REVOKED,
            label=None,
            notes=None,
        ),
    ]


def test_short_rows_default_missing_cells():
    records = parse_allowlist_csv("email,status,label\na@x.com")
    assert records[0].status is None
    assert records[0].label is None


def test_invalid_email_reports_row_and_reason():
    err = _raises("email\na@x.com\nnot-an-email")
    assert err.code == "CSV_INVALID_EMAIL"
    assert err.details == {"row": 3, "reason": "EMAIL_INVALID"}


def test_invalid_status_reports_row():
    err = _raises("email,status\na@x.com,archived")
    assert err.code == "STATUS_INVALID"
    assert err.details["row"] == 2


def test_label_too_long_reports_row():
    err = _raises("email,label\na@x.com," + "x" * 65)
    assert err.code == "FIELD_TOO_LONG"
    assert err.details == {"max": 64, "row": 2}


def test_duplicates_in_rows_3_and_7():
    csv_text = "\n".join(
        [
            "email",
            "a@x.com",
            "dup@x.com",
            "b@x.com",
            "c@x.com",
            "d@x.com",
            " DUP@x.com ",
        ]
    )
    err = _raises(csv_text)
    assert err.code == "CSV_DUPLICATED_IN_FILE"
    assert err.details == {
        "duplicates": [{"email": "dup@x.com", "row": 3, "duplicateRow": 7}]
    }


def test_every_duplicate_pair_is_listed():
    records = [
        CsvRecord(email="a@x.com", row_number=2),
        CsvRecord(email="a@x.com", row_number=3),
        CsvRecord(email="b@x.com", row_number=4),
        CsvRecord(email="a@x.com", row_number=5),
        CsvRecord(email="b@x.com", row_number=6),
    ]
    pairs = [(d.email, d.row, d.duplicate_row) for d in find_duplicate_rows(records)]
    assert pairs == [
        ("a@x.com", 2, 3),
        ("a@x.com", 2, 5),
        ("b@x.com", 4, 6),
    ]
