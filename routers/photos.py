import json
import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status

from config import get_settings
from dependencies import (
    get_current_user_id,
    get_orphan_ledger,
    get_pipeline,
    get_scanner,
    get_uploader,
    parse_category,
)
from media.errors import PersistenceGap, ValidationError
from media.pipeline import MediaPipeline
from media.reconcile import OrphanLedger
from media.scanner import Scanner
from media.uploader import RemoteUploader
from schemas.upload import (
    ErrorResponse,
    FileRead,
    OrphanReport,
    ScannerStatus,
    SignedCredential,
    UploadCategory,
    UploadRead,
    UploadResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/photos",
    tags=["photos"],
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)


def _parse_metadata(raw: str | None, filename: str) -> dict | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse metadata for %s: %s", filename, exc)
        return None
    return parsed if isinstance(parsed, dict) else None


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_photo(
    request: Request,
    photo: UploadFile | None = File(None),
    upload_type: str | None = Form(None, alias="uploadType"),
    metadata: str | None = Form(None),
    token: str | None = Form(None),
    signature: str | None = Form(None),
    expire: int | None = Form(None),
    user_id: str = Depends(get_current_user_id),
    pipeline: MediaPipeline = Depends(get_pipeline),
):
    if photo is None:
        raise ValidationError("No file provided", "NO_FILE")
    if upload_type not in {c.value for c in UploadCategory}:
        raise ValidationError("Invalid uploadType", "INVALID_TYPE")

    filename = photo.filename or "upload"
    raw_metadata = None
    if upload_type == UploadCategory.location.value:
        raw_metadata = _parse_metadata(metadata, filename)

    credential = None
    if token and signature and expire:
        credential = SignedCredential(
            token=token,
            signature=signature,
            expire=expire,
            public_key=get_settings().imagekit_public_key,
        )

    data = await photo.read()
    try:
        result = await pipeline.ingest(
            data,
            filename,
            photo.content_type,
            upload_type,
            user_id,
            raw_metadata=raw_metadata,
            credential=credential,
            ip_address=_client_ip(request),
        )
    finally:
        await photo.close()

    return UploadResponse(
        upload=UploadRead(
            file_id=result.reference.asset_id,
            file_path=result.reference.path,
            url=result.reference.url,
            thumbnail_url=result.reference.thumbnail_url,
            width=result.width,
            height=result.height,
        ),
        file=FileRead(
            original_filename=result.original_filename,
            size=result.size,
            mime_type=result.mime_type,
        ),
        metadata=result.metadata,
    )


@router.get("/credential", response_model=SignedCredential)
async def issue_credential(
    category: UploadCategory = Depends(parse_category),
    user_id: str = Depends(get_current_user_id),
    uploader: RemoteUploader = Depends(get_uploader),
):
    return await uploader.request_credential(category, user_id)


@router.get("/scanner", response_model=ScannerStatus)
async def scanner_status(scanner: Scanner = Depends(get_scanner)):
    return scanner.status()


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_photo(
    asset_id: str,
    user_id: str = Depends(get_current_user_id),
    uploader: RemoteUploader = Depends(get_uploader),
):
    logger.info("User %s deleting asset %s", user_id, asset_id)
    await uploader.delete(asset_id)


@router.post("/orphans", status_code=status.HTTP_202_ACCEPTED)
async def report_orphan(
    report: OrphanReport,
    user_id: str = Depends(get_current_user_id),
    ledger: OrphanLedger = Depends(get_orphan_ledger),
):
    gap = PersistenceGap(report.asset_id, report.path, report.reason)
    orphan = await ledger.record(gap, user_id)
    queued = ledger.enqueue(orphan.asset_id)
    return {"assetId": orphan.asset_id, "queued": queued}
