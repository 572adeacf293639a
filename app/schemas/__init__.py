from app.schemas.allowlist import (
    AllowedEmailRead,
    AllowlistCreate,
    AllowlistEntryResponse,
    AllowlistImportRequest,
    AllowlistImportResponse,
    AllowlistListResponse,
    AllowlistUpdate,
    ImportResult,
)
from app.schemas.enums import AllowedEmailStatus, AppUserRole, AuditOperation, ImportMode

__all__ = [
    "AllowedEmailRead",
    "AllowlistCreate",
    "AllowlistEntryResponse",
    "AllowlistImportRequest",
    "AllowlistImportResponse",
    "AllowlistListResponse",
    "AllowlistUpdate",
    "ImportResult",
    "AllowedEmailStatus",
    "AppUserRole",
    "AuditOperation",
    "ImportMode",
]
