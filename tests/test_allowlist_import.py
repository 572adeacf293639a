import dataclasses
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.errors import AppError, ErrorKind
from app.models import AllowedEmail
from app.schemas.allowlist import AllowlistCreate
from app.schemas.enums import AllowedEmailStatus, AuditOperation, ImportMode
from app.services import allowlist_import_service, allowlist_service
from app.services.allowlist_csv import parse_allowlist_csv
from app.services.audit_service import AuditRecorder

REQUEST_ID = "allowlist_222222222222"


def _seed(db, staff_user, recorder, email, status="pending", label=None):
    allowlist_service.create_allowlist_entry(
        db,
        AllowlistCreate(email=email, status=status, label=label),
        staff_user_id=staff_user.id,
        request_id="allowlist_seed00000000",
        recorder=recorder,
    )


def _import(db, staff_user, recorder, csv_text, mode):
    return allowlist_import_service.import_allowlist_csv(
        db,
        parse_allowlist_csv(csv_text),
        mode,
        staff_user_id=staff_user.id,
        request_id=REQUEST_ID,
        recorder=recorder,
    )


def _count(db):
    return db.scalar(select(func.count()).select_from(AllowedEmail))


def _import_audits(audit_rows):
    return [row for row in audit_rows() if row.operation is AuditOperation.CSV_IMPORT]


def test_import_mode_parse():
    assert ImportMode.parse("upsert") is ImportMode.UPSERT
    assert ImportMode.parse(" UPSERT ") is ImportMode.UPSERT
    assert ImportMode.parse("insert") is ImportMode.INSERT
    assert ImportMode.parse("merge") is ImportMode.INSERT
    assert ImportMode.parse(None) is ImportMode.INSERT


def test_upsert_into_empty_storage(db, staff_user, recorder, audit_rows):
    result = _import(
        db,
        staff_user,
        recorder,
        "email,status\na@x.com,pending\nB@X.com,active\n",
        ImportMode.UPSERT,
    )

    assert result.inserted_count == 2
    assert result.updated_count == 0

    audits = _import_audits(audit_rows)
    assert [a.email for a in audits] == ["a@x.com", "b@x.com"]
    assert all(a.prev is None for a in audits)
    assert all(a.request_id == REQUEST_ID for a in audits)
    assert db.get(AllowedEmail, "b@x.com").status is AllowedEmailStatus.ACTIVE


def test_insert_mode_writes_all_rows(db, staff_user, recorder, audit_rows):
    result = _import(
        db,
        staff_user,
        recorder,
        "email,label,notes\na@x.com,cohort-a,\"first, note\"\nb@x.com,,",
        ImportMode.INSERT,
    )

    assert (result.inserted_count, result.updated_count) == (2, 0)
    entry = db.get(AllowedEmail, "a@x.com")
    assert entry.status is AllowedEmailStatus.PENDING
    assert entry.notes == "first, note"
    assert entry.created_by == staff_user.id

    audits = _import_audits(audit_rows)
    assert len(audits) == 2
    assert all(a.prev is None and a.next["status"] == "pending" for a in audits)


def test_insert_mode_is_all_or_nothing(db, staff_user, recorder, audit_rows):
    _seed(db, staff_user, recorder, "b@x.com")
    _seed(db, staff_user, recorder, "d@x.com")

    with pytest.raises(AppError) as exc:
        _import(
            db,
            staff_user,
            recorder,
            "email\na@x.com\nd@x.com\nc@x.com\nB@x.com",
            ImportMode.INSERT,
        )

    assert exc.value.kind is ErrorKind.CONFLICT
    assert exc.value.code == "ALLOWLIST_EXISTS"
    assert exc.value.details == {"emails": ["b@x.com", "d@x.com"]}
    assert _count(db) == 2
    assert _import_audits(audit_rows) == []


def test_upsert_classifies_by_prior_presence(db, staff_user, recorder, audit_rows):
    _seed(db, staff_user, recorder, "a@x.com", status="active", label="old")

    result = _import(
        db,
        staff_user,
        recorder,
        "email,status,label\na@x.com,pending,new\nc@x.com,revoked,",
        ImportMode.UPSERT,
    )

    assert (result.inserted_count, result.updated_count) == (1, 1)
    assert result.inserted_count + result.updated_count == 2

    db.expire_all()
    # Imports bypass the transition guard: active -> pending is written as given
    updated = db.get(AllowedEmail, "a@x.com")
    assert updated.status is AllowedEmailStatus.PENDING
    assert updated.label == "new"
    assert db.get(AllowedEmail, "c@x.com").status is AllowedEmailStatus.REVOKED

    audits = {a.email: a for a in _import_audits(audit_rows)}
    assert audits["a@x.com"].prev["status"] == "active"
    assert audits["a@x.com"].prev["label"] == "old"
    assert audits["a@x.com"].next["status"] == "pending"
    assert audits["c@x.com"].prev is None


def test_upsert_overwrites_omitted_columns_with_defaults(db, staff_user, recorder):
    _seed(db, staff_user, recorder, "a@x.com", status="active", label="keep?")

    _import(db, staff_user, recorder, "email\na@x.com", ImportMode.UPSERT)

    db.expire_all()
    entry = db.get(AllowedEmail, "a@x.com")
    assert entry.status is AllowedEmailStatus.PENDING
    assert entry.label is None


def test_empty_record_list_writes_nothing(db, staff_user, recorder):
    result = allowlist_import_service.import_allowlist_csv(
        db, [], ImportMode.UPSERT, staff_user.id, REQUEST_ID, recorder=recorder
    )
    assert (result.inserted_count, result.updated_count) == (0, 0)


@pytest.mark.parametrize(
    "mode, writer, message",
    [
        (ImportMode.INSERT, "_insert_rows", "Importing the CSV into the allowlist failed."),
        (ImportMode.UPSERT, "_upsert_rows", "Overwriting the allowlist from CSV failed."),
    ],
)
def test_storage_failure_fails_whole_import(
    db, staff_user, recorder, audit_rows, mode, writer, message
):
    failure = OperationalError("INSERT", {}, Exception("connection reset"))
    with patch.object(allowlist_import_service, writer, side_effect=failure):
        with pytest.raises(AppError) as exc:
            _import(db, staff_user, recorder, "email\na@x.com\nb@x.com", mode)

    assert exc.value.kind is ErrorKind.INTERNAL
    assert exc.value.code == "ALLOWLIST_IMPORT_FAILED"
    assert exc.value.message == message
    assert _count(db) == 0
    assert audit_rows() == []


def test_audit_failures_do_not_fail_import(db, staff_user, session_factory, audit_rows):
    class FlakyRecorder(AuditRecorder):
        def record(self, event):
            if event.email == "b@x.com":
                # staff_user_id is NOT NULL, so this insert fails inside record()
                event = dataclasses.replace(event, staff_user_id=None)
            return super().record(event)

    result = _import(
        db,
        staff_user,
        FlakyRecorder(session_factory, max_workers=2),
        "email\na@x.com\nb@x.com\nc@x.com",
        ImportMode.INSERT,
    )

    assert (result.inserted_count, result.updated_count) == (3, 0)
    assert _count(db) == 3
    assert sorted(a.email for a in _import_audits(audit_rows)) == ["a@x.com", "c@x.com"]


def test_insert_race_with_single_create_is_a_conflict(db, staff_user, recorder, audit_rows):
    _seed(db, staff_user, recorder, "b@x.com")

    # The existence check misses b@x.com, as if it was created right after
    with patch.object(
        allowlist_import_service,
        "fetch_existing_emails",
        side_effect=[[], ["b@x.com"]],
    ):
        with pytest.raises(AppError) as exc:
            _import(db, staff_user, recorder, "email\na@x.com\nb@x.com", ImportMode.INSERT)

    assert exc.value.kind is ErrorKind.CONFLICT
    assert exc.value.code == "ALLOWLIST_EXISTS"
    assert exc.value.details == {"emails": ["b@x.com"]}
    assert _count(db) == 1
    assert _import_audits(audit_rows) == []
