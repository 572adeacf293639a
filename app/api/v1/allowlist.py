import json
import logging
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.dependencies import StaffContext, get_request_id, require_staff
from app.core.errors import AppError, ErrorKind
from app.db.database import get_raw_db
from app.schemas.allowlist import (
    AllowedEmailRead,
    AllowlistCreate,
    AllowlistEntryResponse,
    AllowlistImportRequest,
    AllowlistImportResponse,
    AllowlistListResponse,
    AllowlistUpdate,
)
from app.schemas.enums import ImportMode
from app.services import allowlist_import_service, allowlist_service
from app.services.allowlist_csv import parse_allowlist_csv

# Configure structured logging
logger = logging.getLogger("app.api.allowlist")

router = APIRouter()


@dataclass
class ImportUpload:
    csv_text: Optional[str]
    mode: ImportMode


async def read_import_upload(
    request: Request,
    mode: Optional[str] = Query(None, description="'upsert' to overwrite existing rows"),
) -> ImportUpload:
    """
    Accepts either a JSON body ``{"csv": "...", "mode": "..."}`` or the raw CSV
    text as the body with the mode in the query string.
    """
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise AppError(
                ErrorKind.VALIDATION,
                "VALIDATION_FAILED",
                "The request body is not valid JSON.",
            ) from None

        if not isinstance(body, dict):
            raise AppError(
                ErrorKind.VALIDATION,
                "VALIDATION_FAILED",
                "The request body must be a JSON object.",
            )

        payload = AllowlistImportRequest.model_validate(
            {
                "csv": body.get("csv") if isinstance(body.get("csv"), str) else None,
                "mode": body.get("mode") if isinstance(body.get("mode"), str) else None,
            }
        )
        return ImportUpload(payload.csv, ImportMode.parse(payload.mode or mode))

    raw = await request.body()
    return ImportUpload(raw.decode("utf-8", errors="replace"), ImportMode.parse(mode))


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.get(
    "",
    response_model=AllowlistListResponse,
    summary="List Allowlist",
    description="Allowlist entries, most recently updated first.",
)
def list_allowlist(
    db: Annotated[Session, Depends(get_raw_db)],
    staff: Annotated[StaffContext, Depends(require_staff)],
    request_id: Annotated[str, Depends(get_request_id)],
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
) -> AllowlistListResponse:
    entries = allowlist_service.list_allowlist_entries(
        db,
        status=allowlist_service.parse_status_filter(status_filter),
        search=search,
    )
    return AllowlistListResponse(
        request_id=request_id,
        data=[AllowedEmailRead.model_validate(entry) for entry in entries],
    )


@router.post(
    "",
    response_model=AllowlistEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Email",
)
def create_allowlist_entry(
    payload: AllowlistCreate,
    db: Annotated[Session, Depends(get_raw_db)],
    staff: Annotated[StaffContext, Depends(require_staff)],
    request_id: Annotated[str, Depends(get_request_id)],
) -> AllowlistEntryResponse:
    entry = allowlist_service.create_allowlist_entry(
        db, payload, staff_user_id=staff.app_user_id, request_id=request_id
    )
    return AllowlistEntryResponse(
        request_id=request_id, data=AllowedEmailRead.model_validate(entry)
    )


@router.patch(
    "/{email}",
    response_model=AllowlistEntryResponse,
    summary="Update Email",
    description="Changes status, label or notes of one allowlist entry.",
)
def update_allowlist_entry(
    email: str,
    payload: AllowlistUpdate,
    db: Annotated[Session, Depends(get_raw_db)],
    staff: Annotated[StaffContext, Depends(require_staff)],
    request_id: Annotated[str, Depends(get_request_id)],
) -> AllowlistEntryResponse:
    entry = allowlist_service.update_allowlist_entry(
        db, email, payload, staff_user_id=staff.app_user_id, request_id=request_id
    )
    return AllowlistEntryResponse(
        request_id=request_id, data=AllowedEmailRead.model_validate(entry)
    )


@router.post(
    "/import",
    response_model=AllowlistImportResponse,
    summary="Import CSV",
    description="Bulk insert (default) or upsert of allowlist rows from CSV text.",
)
def import_allowlist(
    staff: Annotated[StaffContext, Depends(require_staff)],
    upload: Annotated[ImportUpload, Depends(read_import_upload)],
    db: Annotated[Session, Depends(get_raw_db)],
    request_id: Annotated[str, Depends(get_request_id)],
) -> AllowlistImportResponse:
    records = parse_allowlist_csv(upload.csv_text)
    logger.info(
        f"CSV import requested by {staff.email}: {len(records)} rows, mode={upload.mode.value}"
    )
    result = allowlist_import_service.import_allowlist_csv(
        db,
        records,
        upload.mode,
        staff_user_id=staff.app_user_id,
        request_id=request_id,
    )
    return AllowlistImportResponse(request_id=request_id, data=result)
