import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import AppError, ErrorKind
from app.models import AllowedEmail
from app.schemas.allowlist import AllowlistCreate, AllowlistUpdate
from app.schemas.enums import AllowedEmailStatus, AuditOperation
from app.services.allowlist_validation import (
    LABEL_MAX_LENGTH,
    NOTES_MAX_LENGTH,
    assert_email,
    assert_status,
    ensure_max_length,
    normalize_email,
)
from app.services.audit_service import AuditEvent, AuditRecorder, summarize_allowlist_row
from app.services.status_transitions import assert_status_transition

logger = logging.getLogger("app.allowlist")

LIKE_ESCAPE = "\\"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def escape_like(term: str) -> str:
    """Escapes LIKE metacharacters so user input only matches literally."""
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def parse_status_filter(value: Optional[str]) -> Optional[AllowedEmailStatus]:
    if not value:
        return None
    return assert_status(value)


def fetch_rows_by_emails(db: Session, emails: Sequence[str]) -> List[AllowedEmail]:
    if not emails:
        return []
    stmt = select(AllowedEmail).where(AllowedEmail.email.in_(list(emails)))
    return list(db.scalars(stmt).all())


# ============= Queries =============


def list_allowlist_entries(
    db: Session,
    status: Optional[AllowedEmailStatus] = None,
    search: Optional[str] = None,
) -> List[AllowedEmail]:
    """
    Allowlist entries, most recently updated first.
    ``search`` is a case-insensitive substring match on email or label.
    """
    stmt = select(AllowedEmail)

    if status:
        stmt = stmt.where(AllowedEmail.status == status)

    keyword = (search or "").strip()
    if keyword:
        pattern = f"%{escape_like(keyword)}%"
        stmt = stmt.where(
            or_(
                AllowedEmail.email.ilike(pattern, escape=LIKE_ESCAPE),
                AllowedEmail.label.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )

    stmt = stmt.order_by(AllowedEmail.updated_at.desc(), AllowedEmail.email.asc())

    try:
        return list(db.scalars(stmt).all())
    except SQLAlchemyError as e:
        logger.error(f"Failed to list allowlist entries: {e}", exc_info=True)
        raise AppError(
            ErrorKind.INTERNAL,
            "ALLOWLIST_FETCH_FAILED",
            "Could not load the allowlist.",
        ) from e


# ============= Mutations =============


def _assert_not_existing(db: Session, email: str) -> None:
    try:
        existing = db.get(AllowedEmail, email)
    except SQLAlchemyError as e:
        raise AppError(
            ErrorKind.INTERNAL, "ALLOWLIST_FETCH_FAILED", "Could not load the allowlist."
        ) from e
    if existing:
        raise AppError(
            ErrorKind.CONFLICT, "ALLOWLIST_EXISTS", "This email is already on the allowlist."
        )


def create_allowlist_entry(
    db: Session,
    payload: AllowlistCreate,
    staff_user_id: uuid.UUID,
    request_id: str,
    recorder: Optional[AuditRecorder] = None,
) -> AllowedEmail:
    # 1. Validation (no storage access before this point)
    email = normalize_email(assert_email(payload.email))
    status = assert_status(payload.status)
    label = ensure_max_length(payload.label, LABEL_MAX_LENGTH)
    notes = ensure_max_length(payload.notes, NOTES_MAX_LENGTH)

    # 2. Uniqueness (the primary key catches races at commit)
    _assert_not_existing(db, email)

    # 3. Insert
    now = utcnow()
    entry = AllowedEmail(
        email=email,
        status=status,
        label=label,
        notes=notes,
        created_by=staff_user_id,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(entry)
        db.flush()
        snapshot = summarize_allowlist_row(entry)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AppError(
            ErrorKind.CONFLICT, "ALLOWLIST_EXISTS", "This email is already on the allowlist."
        ) from None
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Allowlist insert failed for {email}: {e}", exc_info=True)
        raise AppError(
            ErrorKind.INTERNAL,
            "ALLOWLIST_INSERT_FAILED",
            "Could not add the email to the allowlist.",
        ) from e

    logger.info(f"Allowlist entry created: {email} ({status.value})")

    # 4. Audit (best effort)
    (recorder or AuditRecorder.for_session(db)).record(
        AuditEvent(
            request_id=request_id,
            operation=AuditOperation.INSERT,
            email=email,
            staff_user_id=staff_user_id,
            prev=None,
            next=snapshot,
        )
    )
    return entry


def update_allowlist_entry(
    db: Session,
    email: str,
    payload: AllowlistUpdate,
    staff_user_id: uuid.UUID,
    request_id: str,
    recorder: Optional[AuditRecorder] = None,
) -> AllowedEmail:
    if not payload.status and payload.label is None and payload.notes is None:
        raise AppError(
            ErrorKind.VALIDATION,
            "ALLOWLIST_EMPTY_UPDATE",
            "Provide at least one of status, label or notes.",
        )

    normalized_email = normalize_email(assert_email(email))

    try:
        current = db.get(AllowedEmail, normalized_email)
    except SQLAlchemyError as e:
        raise AppError(
            ErrorKind.INTERNAL, "ALLOWLIST_FETCH_FAILED", "Could not load the allowlist."
        ) from e

    if not current:
        raise AppError(
            ErrorKind.NOT_FOUND,
            "ALLOWLIST_NOT_FOUND",
            "The email address is not on the allowlist.",
        )

    prev_snapshot = summarize_allowlist_row(current)

    next_status = assert_status(payload.status) if payload.status else current.status
    assert_status_transition(current.status, next_status)

    # A field sent as null clears it; a field left out keeps the stored value
    provided = payload.model_fields_set
    label = (
        ensure_max_length(payload.label, LABEL_MAX_LENGTH)
        if "label" in provided
        else current.label
    )
    notes = (
        ensure_max_length(payload.notes, NOTES_MAX_LENGTH)
        if "notes" in provided
        else current.notes
    )

    try:
        current.status = next_status
        current.label = label
        current.notes = notes
        current.updated_at = utcnow()
        db.flush()
        next_snapshot = summarize_allowlist_row(current)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Allowlist update failed for {normalized_email}: {e}", exc_info=True)
        raise AppError(
            ErrorKind.INTERNAL,
            "ALLOWLIST_UPDATE_FAILED",
            "Could not update the allowlist entry.",
        ) from e

    logger.info(
        f"Allowlist entry updated: {normalized_email} "
        f"({prev_snapshot['status']} -> {next_status.value})"
    )

    (recorder or AuditRecorder.for_session(db)).record(
        AuditEvent(
            request_id=request_id,
            operation=AuditOperation.UPDATE,
            email=normalized_email,
            staff_user_id=staff_user_id,
            prev=prev_snapshot,
            next=next_snapshot,
        )
    )
    return current
