"""
Best-effort audit trail for allowlist mutations.

Audit rows are written after the primary mutation has committed, each in its
own session. A failed audit write is logged and dropped: it never fails the
operation that triggered it.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.models import AllowedEmail, AllowlistAuditLog
from app.schemas.enums import AuditOperation

logger = logging.getLogger("app.allowlist.audit")

Snapshot = Dict[str, Any]


@dataclass(frozen=True)
class AuditEvent:
    request_id: str
    operation: AuditOperation
    email: str
    staff_user_id: uuid.UUID
    prev: Optional[Snapshot]
    next: Optional[Snapshot]


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def summarize_allowlist_row(row: AllowedEmail) -> Snapshot:
    """JSON-safe snapshot of an allowlist row, stored as audit prev/next."""
    return {
        "email": row.email,
        "status": row.status.value if row.status is not None else None,
        "label": row.label,
        "invited_at": _isoformat(row.invited_at),
        "expires_at": _isoformat(row.expires_at),
        "notes": row.notes,
        "created_by": str(row.created_by) if row.created_by else None,
        "updated_at": _isoformat(row.updated_at),
        "created_at": _isoformat(row.created_at),
    }


class AuditRecorder:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.max_workers = max_workers or settings.AUDIT_MAX_WORKERS

    @classmethod
    def for_session(cls, db: Session) -> "AuditRecorder":
        """Recorder writing through the same engine as ``db``."""
        return cls(sessionmaker(bind=db.get_bind(), autoflush=False))

    def record(self, event: AuditEvent) -> bool:
        """Writes one audit row. Returns False instead of raising on failure."""
        try:
            with self.session_factory() as session:
                session.add(
                    AllowlistAuditLog(
                        request_id=event.request_id,
                        operation=event.operation,
                        email=event.email,
                        staff_user_id=event.staff_user_id,
                        prev=event.prev,
                        next=event.next,
                    )
                )
                session.commit()
            return True
        except Exception as e:
            logger.error(
                f"Failed to insert audit log for {event.email}: {e}",
                exc_info=True,
                extra={"operation": event.operation.value, "audit_request_id": event.request_id},
            )
            return False

    def record_many(self, events: Sequence[AuditEvent]) -> int:
        """
        Dispatches every event concurrently and waits for all of them to settle.
        Completion order is unspecified. Returns the number of rows written.
        """
        if not events:
            return 0

        workers = max(1, min(self.max_workers, len(events)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="audit") as executor:
            results: List[bool] = list(executor.map(self.record, events))

        written = sum(results)
        if written < len(events):
            logger.warning(
                f"Audit trail incomplete: {len(events) - written} of {len(events)} writes failed",
                extra={"audit_request_id": events[0].request_id},
            )
        return written
