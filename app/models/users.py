import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.schemas.enums import AppUserRole


class AppUser(Base):
    """
    Application user (linked to a Firebase account by UID).
    Staff rows are the acting identity recorded on allowlist mutations.
    """
    __tablename__ = "app_users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # Firebase UID; looked up on every staff request
    auth_uid: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True, index=True
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AppUserRole.STUDENT.value,
        server_default=AppUserRole.STUDENT.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now()
    )
