from app.models.allowlist import AllowedEmail, AllowlistAuditLog
from app.models.base import Base
from app.models.users import AppUser

# Export all for convenience
__all__ = [
    "Base",
    "AppUser",
    "AllowedEmail",
    "AllowlistAuditLog",
]
