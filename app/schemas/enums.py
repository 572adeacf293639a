from enum import Enum


class AllowedEmailStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REVOKED = "revoked"


class AuditOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    CSV_IMPORT = "csv-import"


class ImportMode(str, Enum):
    INSERT = "insert"
    UPSERT = "upsert"

    @classmethod
    def parse(cls, value: str | None) -> "ImportMode":
        """Anything other than ``upsert`` selects insert mode."""
        if value and value.strip().lower() == cls.UPSERT.value:
            return cls.UPSERT
        return cls.INSERT


class AppUserRole(str, Enum):
    STUDENT = "student"
    STAFF = "staff"
