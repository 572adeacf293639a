"""
Bulk CSV import for the allowlist.

Two modes:

- ``insert``: every email must be new. If any already exists the whole file is
  rejected (409) and nothing is written.
- ``upsert``: one batch ``INSERT .. ON CONFLICT (email) DO UPDATE``. Rows whose
  email existed before the write count as updated, the rest as inserted.

Imports are administrative overrides: status values are written as given and
the single-record transition rules do not apply. The pre-fetch used for audit
``prev`` snapshots is not isolated from concurrent single-record updates, so a
racing update can leave a stale ``prev`` in the audit trail.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import AppError, ErrorKind
from app.models import AllowedEmail
from app.schemas.allowlist import ImportResult
from app.schemas.enums import AllowedEmailStatus, AuditOperation, ImportMode
from app.services.allowlist_csv import CsvRecord
from app.services.allowlist_service import fetch_rows_by_emails, utcnow
from app.services.audit_service import (
    AuditEvent,
    AuditRecorder,
    Snapshot,
    summarize_allowlist_row,
)

logger = logging.getLogger("app.allowlist.import")

# Columns overwritten when an imported email already exists
UPSERT_COLUMNS = ("status", "label", "notes", "created_by", "updated_at")

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def build_payloads(records: List[CsvRecord], staff_user_id: uuid.UUID) -> List[Dict[str, Any]]:
    now = utcnow()
    return [
        {
            "email": record.email,
            "status": record.status or AllowedEmailStatus.PENDING,
            "label": record.label,
            "notes": record.notes,
            "created_by": staff_user_id,
            "created_at": now,
            "updated_at": now,
        }
        for record in records
    ]


def fetch_existing_emails(db: Session, emails: List[str]) -> List[str]:
    if not emails:
        return []
    stmt = select(AllowedEmail.email).where(AllowedEmail.email.in_(emails))
    try:
        return list(db.scalars(stmt).all())
    except SQLAlchemyError as e:
        logger.error(f"Failed to check existing allowlist emails: {e}", exc_info=True)
        raise AppError(
            ErrorKind.INTERNAL, "ALLOWLIST_FETCH_FAILED", "Could not load the allowlist."
        ) from e


def _upsert_statement(db: Session, payloads: List[Dict[str, Any]]):
    dialect = db.get_bind().dialect.name
    dialect_insert = _UPSERT_DIALECTS.get(dialect)
    if dialect_insert is None:
        raise AppError(
            ErrorKind.INTERNAL,
            "ALLOWLIST_IMPORT_FAILED",
            f"CSV upsert is not supported on the '{dialect}' database.",
        )

    stmt = dialect_insert(AllowedEmail).values(payloads)
    stmt = stmt.on_conflict_do_update(
        index_elements=[AllowedEmail.email],
        set_={column: getattr(stmt.excluded, column) for column in UPSERT_COLUMNS},
    )
    return stmt.returning(AllowedEmail)


def _import_failed(mode: ImportMode) -> AppError:
    message = (
        "Overwriting the allowlist from CSV failed."
        if mode is ImportMode.UPSERT
        else "Importing the CSV into the allowlist failed."
    )
    return AppError(ErrorKind.INTERNAL, "ALLOWLIST_IMPORT_FAILED", message)


def _already_exists(existing: List[str]) -> AppError:
    return AppError(
        ErrorKind.CONFLICT,
        "ALLOWLIST_EXISTS",
        "Some emails in the CSV are already on the allowlist.",
        {"emails": sorted(existing)},
    )


def _insert_rows(db: Session, payloads: List[Dict[str, Any]]) -> List[AllowedEmail]:
    return list(db.scalars(insert(AllowedEmail).returning(AllowedEmail), payloads).all())


def _upsert_rows(db: Session, payloads: List[Dict[str, Any]]) -> List[AllowedEmail]:
    stmt = _upsert_statement(db, payloads)
    return list(
        db.scalars(stmt, execution_options={"populate_existing": True}).all()
    )


def import_allowlist_csv(
    db: Session,
    records: List[CsvRecord],
    mode: ImportMode,
    staff_user_id: uuid.UUID,
    request_id: str,
    recorder: Optional[AuditRecorder] = None,
) -> ImportResult:
    """
    Writes validated CSV records and records one ``csv-import`` audit row per
    written entry.

    Raises:
        AppError: ALLOWLIST_EXISTS (insert mode, lists every pre-existing email),
            ALLOWLIST_FETCH_FAILED or ALLOWLIST_IMPORT_FAILED.
    """
    if not records:
        return ImportResult(inserted_count=0, updated_count=0)

    emails = [record.email for record in records]
    payloads = build_payloads(records, staff_user_id)
    previous: Dict[str, Snapshot] = {}

    if mode is ImportMode.INSERT:
        existing = fetch_existing_emails(db, emails)
        if existing:
            raise _already_exists(existing)
    else:
        try:
            previous = {
                row.email: summarize_allowlist_row(row)
                for row in fetch_rows_by_emails(db, emails)
            }
        except SQLAlchemyError as e:
            logger.error(f"Failed to load allowlist rows before upsert: {e}", exc_info=True)
            raise AppError(
                ErrorKind.INTERNAL, "ALLOWLIST_FETCH_FAILED", "Could not load the allowlist."
            ) from e

    # Single batch write; any storage error fails the whole import
    try:
        if mode is ImportMode.INSERT:
            rows = _insert_rows(db, payloads)
        else:
            rows = _upsert_rows(db, payloads)
        written = [(row.email, summarize_allowlist_row(row)) for row in rows]
        db.commit()
    except AppError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        if mode is not ImportMode.INSERT:
            logger.error(f"CSV upsert of {len(payloads)} rows failed: {e}", exc_info=True)
            raise _import_failed(mode) from e
        # An email was added between the existence check and the insert
        raise _already_exists(fetch_existing_emails(db, emails)) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"CSV {mode.value} of {len(payloads)} rows failed: {e}", exc_info=True
        )
        raise _import_failed(mode) from e

    updated_count = sum(1 for email, _ in written if email in previous)
    inserted_count = len(written) - updated_count

    logger.info(
        f"CSV {mode.value} committed: {inserted_count} inserted, {updated_count} updated",
        extra={"staff_user_id": str(staff_user_id)},
    )

    events = [
        AuditEvent(
            request_id=request_id,
            operation=AuditOperation.CSV_IMPORT,
            email=email,
            staff_user_id=staff_user_id,
            prev=previous.get(email),
            next=snapshot,
        )
        for email, snapshot in written
    ]
    (recorder or AuditRecorder.for_session(db)).record_many(events)

    return ImportResult(inserted_count=inserted_count, updated_count=updated_count)
