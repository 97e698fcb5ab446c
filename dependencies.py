from fastapi import Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_async_db
from media.audit import SqlAuditLog
from media.errors import ValidationError
from media.pipeline import MediaPipeline
from media.reconcile import OrphanLedger
from media.scanner import Scanner
from media.uploader import RemoteUploader
from schemas.upload import UploadCategory


def get_current_user_id(x_user_id: str | None = Header(None)) -> str:
    """Identity is established upstream; this service only reads it."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id.strip()


def parse_category(
    upload_type: str = Query(..., alias="uploadType", description="location|avatar|banner")
) -> UploadCategory:
    try:
        return UploadCategory(upload_type)
    except ValueError:
        raise ValidationError("Invalid uploadType", "INVALID_TYPE")


def get_scanner(request: Request) -> Scanner:
    return request.app.state.scanner


def get_uploader(request: Request) -> RemoteUploader:
    return request.app.state.uploader


def get_audit_log(db: AsyncSession = Depends(get_async_db)) -> SqlAuditLog:
    return SqlAuditLog(db)


def get_orphan_ledger(db: AsyncSession = Depends(get_async_db)) -> OrphanLedger:
    return OrphanLedger(db)


def get_pipeline(
    scanner: Scanner = Depends(get_scanner),
    uploader: RemoteUploader = Depends(get_uploader),
    audit: SqlAuditLog = Depends(get_audit_log),
) -> MediaPipeline:
    return MediaPipeline(scanner, uploader, audit, get_settings())
