import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.schemas.enums import AllowedEmailStatus, AuditOperation

EMAIL_MAX_LENGTH = 320
REQUEST_ID_MAX_LENGTH = 64
LABEL_MAX_LENGTH = 64
NOTES_MAX_LENGTH = 512


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class AllowedEmail(Base):
    """
    Allowlist entry: one normalized email and its membership status.
    """
    __tablename__ = "allowed_emails"

    # Normalized (trimmed, lowercase) email is the identity key
    email: Mapped[str] = mapped_column(String(EMAIL_MAX_LENGTH), primary_key=True)

    status: Mapped[AllowedEmailStatus] = mapped_column(
        Enum(
            AllowedEmailStatus,
            name="allowed_email_status",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=AllowedEmailStatus.PENDING,
        index=True,
    )
    label: Mapped[Optional[str]] = mapped_column(String(LABEL_MAX_LENGTH), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(NOTES_MAX_LENGTH), nullable=True)

    invited_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        index=True,
    )


class AllowlistAuditLog(Base):
    """Append-only before/after record of every allowlist mutation."""
    __tablename__ = "allowlist_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # One external operation may fan out to many rows (CSV import)
    request_id: Mapped[str] = mapped_column(
        String(REQUEST_ID_MAX_LENGTH), nullable=False, index=True
    )
    operation: Mapped[AuditOperation] = mapped_column(
        Enum(
            AuditOperation,
            name="allowlist_audit_operation",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # Soft reference: history outlives later changes to the entry
    email: Mapped[str] = mapped_column(String(EMAIL_MAX_LENGTH), nullable=False, index=True)
    staff_user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("app_users.id"), nullable=False
    )

    prev: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    next: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
