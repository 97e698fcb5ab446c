"""
Server-side ingestion of one uploaded photo.

    received -> validated -> scanned -> [normalized] -> [compressed]
             -> uploaded -> metadata_attached

Any step may end in ``rejected`` instead. Cheap checks run first; an infected
verdict stops everything before the file is decoded. Metadata always comes
from the bytes as uploaded, never from the converted asset.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum

from fastapi.concurrency import run_in_threadpool

from config import Settings, get_settings
from media.audit import PHOTO_UPLOAD_BLOCKED, AuditLog
from media.compressor import compress
from media.errors import MediaError, SecurityViolation
from media.exif import extract_raw_metadata
from media.normalizer import BASELINE_MIME, normalize
from media.sanitizer import sanitize
from media.scanner import Scanner
from media.uploader import RemoteUploader, upload_with_retry
from media.validator import validate
from schemas.upload import (
    RemoteReference,
    SanitizedMetadata,
    ScanVerdict,
    SignedCredential,
    UploadCategory,
)

logger = logging.getLogger(__name__)


class PhotoState(str, Enum):
    received = "received"
    validated = "validated"
    scanned = "scanned"
    normalized = "normalized"
    compressed = "compressed"
    uploaded = "uploaded"
    metadata_attached = "metadata_attached"
    rejected = "rejected"


def _advance(states: list, state: PhotoState, filename: str):
    states.append(state)
    logger.debug("%s -> %s", filename, state.value)


@dataclass
class IngestResult:
    reference: RemoteReference
    original_filename: str
    size: int
    mime_type: str
    width: int | None
    height: int | None
    verdict: ScanVerdict
    metadata: SanitizedMetadata | None = None
    compression_shortfall: bool = False
    states: list[PhotoState] = field(default_factory=list)


class MediaPipeline:
    def __init__(
        self,
        scanner: Scanner,
        uploader: RemoteUploader,
        audit: AuditLog | None = None,
        settings: Settings | None = None,
    ):
        self.scanner = scanner
        self.uploader = uploader
        self.audit = audit
        self.settings = settings or get_settings()

    async def ingest(
        self,
        data: bytes,
        filename: str,
        declared_mime: str | None,
        category: UploadCategory | str,
        user_id: int | str,
        raw_metadata: dict | None = None,
        credential: SignedCredential | None = None,
        ip_address: str | None = None,
    ) -> IngestResult:
        states = [PhotoState.received]
        try:
            return await self._run(
                states, data, filename, declared_mime, category, user_id,
                raw_metadata, credential, ip_address,
            )
        except MediaError as exc:
            states.append(PhotoState.rejected)
            logger.warning(
                "Rejected %s after %s: %s",
                filename, states[-2].value, exc.code,
            )
            raise

    async def _run(
        self, states, data, filename, declared_mime, category, user_id,
        raw_metadata, credential, ip_address,
    ) -> IngestResult:
        checked = validate(data, filename, declared_mime, category, self.settings)
        category = checked.category
        _advance(states, PhotoState.validated, filename)
        logger.info("Processing %s (%.2f KB) as %s", filename, checked.size / 1024, category.value)

        verdict = await self.scanner.scan(data, filename)
        if verdict.infected:
            await self._block(verdict, filename, category, user_id, ip_address)
        if not verdict.scanner_available:
            logger.warning("%s passed without a scan (scanner unavailable)", filename)
        _advance(states, PhotoState.scanned, filename)

        if category is UploadCategory.location and raw_metadata is None:
            raw_metadata = await run_in_threadpool(extract_raw_metadata, data)

        asset = await run_in_threadpool(normalize, data, checked.effective_mime)
        if asset.data is not data:
            _advance(states, PhotoState.normalized, filename)

        final = asset.data
        width, height = asset.width, asset.height
        shortfall = False
        if asset.mime_type == BASELINE_MIME:
            result = await run_in_threadpool(compress, asset.data, category, self.settings)
            shortfall = result.shortfall
            if result.data is not asset.data:
                final = result.data
                width, height = result.width, result.height
                _advance(states, PhotoState.compressed, filename)

        reference = await upload_with_retry(
            self.uploader,
            final,
            self.uploader.filename_for(category, user_id, filename),
            self.uploader.folder_for(category, user_id),
            category,
            user_id,
            credential=credential,
            tags=[category.value, f"user-{user_id}"],
        )
        _advance(states, PhotoState.uploaded, filename)
        logger.info("Upload successful: %s", reference.path)

        metadata = None
        if category is UploadCategory.location:
            metadata = sanitize(raw_metadata)
            _advance(states, PhotoState.metadata_attached, filename)

        return IngestResult(
            reference=reference,
            original_filename=filename,
            size=len(final),
            mime_type=asset.mime_type,
            width=reference.width or width,
            height=reference.height or height,
            verdict=verdict,
            metadata=metadata,
            compression_shortfall=shortfall,
            states=states,
        )

    async def _block(self, verdict, filename, category, user_id, ip_address):
        if self.audit is not None:
            try:
                await self.audit.security_event(
                    str(user_id),
                    PHOTO_UPLOAD_BLOCKED,
                    {
                        "viruses": verdict.matched_signatures,
                        "uploadType": category.value,
                        "filename": filename,
                        "scannerAvailable": verdict.scanner_available,
                    },
                    ip_address,
                )
            except Exception:
                # the block stands even when the audit trail cannot be written
                logger.exception("Failed to record blocked upload of %s", filename)
        if verdict.scanner_available:
            raise SecurityViolation(signatures=verdict.matched_signatures)
        raise SecurityViolation("Security scanning service unavailable", "SCANNER_UNAVAILABLE")
