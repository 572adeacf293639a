from typing import Dict, FrozenSet

from app.core.errors import AppError, ErrorKind
from app.schemas.enums import AllowedEmailStatus

# Only the single-record update path is guarded; CSV imports write status directly.
ALLOWED_TRANSITIONS: Dict[AllowedEmailStatus, FrozenSet[AllowedEmailStatus]] = {
    AllowedEmailStatus.PENDING: frozenset({AllowedEmailStatus.ACTIVE}),
    AllowedEmailStatus.ACTIVE: frozenset({AllowedEmailStatus.REVOKED}),
    AllowedEmailStatus.REVOKED: frozenset({AllowedEmailStatus.ACTIVE}),
}


def is_transition_allowed(
    current: AllowedEmailStatus, requested: AllowedEmailStatus
) -> bool:
    if current == requested:
        return True
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_status_transition(
    current: AllowedEmailStatus, requested: AllowedEmailStatus
) -> None:
    if not is_transition_allowed(current, requested):
        raise AppError(
            ErrorKind.VALIDATION,
            "STATUS_TRANSITION_FORBIDDEN",
            f"Changing status from {current.value} to {requested.value} is not allowed.",
            {"from": current.value, "to": requested.value},
        )
