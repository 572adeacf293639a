from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.enums import AllowedEmailStatus

# Request bodies are deliberately loose: field rules live in
# app.services.allowlist_validation so every path reports the same error codes.


# --- REQUESTS ---
class AllowlistCreate(BaseModel):
    email: Optional[str] = None
    status: Optional[str] = AllowedEmailStatus.PENDING.value
    label: Optional[str] = None
    notes: Optional[str] = None


class AllowlistUpdate(BaseModel):
    """Schema for PATCH /allowlist/{email} - all fields optional."""

    status: Optional[str] = None
    label: Optional[str] = None
    notes: Optional[str] = None


class AllowlistImportRequest(BaseModel):
    csv: Optional[str] = None
    mode: Optional[str] = None


# --- RESPONSES ---
class AllowedEmailRead(BaseModel):
    email: str
    status: AllowedEmailStatus
    label: Optional[str] = None
    notes: Optional[str] = None
    invited_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ImportResult(BaseModel):
    inserted_count: int = Field(alias="insertedCount")
    updated_count: int = Field(alias="updatedCount")
    model_config = ConfigDict(populate_by_name=True)


# --- ENVELOPES ({"requestId": ..., "data": ...}) ---
class AllowlistListResponse(BaseModel):
    request_id: str = Field(alias="requestId")
    data: List[AllowedEmailRead]
    model_config = ConfigDict(populate_by_name=True)


class AllowlistEntryResponse(BaseModel):
    request_id: str = Field(alias="requestId")
    data: AllowedEmailRead
    model_config = ConfigDict(populate_by_name=True)


class AllowlistImportResponse(BaseModel):
    request_id: str = Field(alias="requestId")
    data: ImportResult
    model_config = ConfigDict(populate_by_name=True)
