"""
Client-side staging of photos before they are committed.

Photos sit here, with a preview each, until the user saves. ``upload_all``
then sends them one at a time, each with its own freshly issued credential,
and stops at the first failure. Photos that already went up stay up; calling
``upload_all`` again only retries what is not ``done``.
"""
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from config import Settings, get_settings
from media.errors import MediaError, UploadError, ValidationError
from media.normalizer import read_geometry
from media.uploader import ProgressCallback, upload_with_retry
from schemas.upload import RemoteReference, SignedCredential, UploadCategory
from staging.preview import PreviewFactory, PreviewHandle, TempFilePreviewFactory

logger = logging.getLogger(__name__)

MAX_PHOTOS_PER_BATCH = 20

mimetypes.add_type("image/heic", ".heic")
mimetypes.add_type("image/heif", ".heif")


class UploadState(str, Enum):
    idle = "idle"
    uploading = "uploading"
    done = "done"
    error = "error"


@dataclass
class StagedPhoto:
    id: str
    data: bytes
    preview: PreviewHandle
    original_filename: str
    size: int
    mime_type: str
    width: int | None = None
    height: int | None = None
    is_primary: bool = False
    state: UploadState = UploadState.idle
    progress: int = 0
    caption: str | None = None
    error: str | None = None
    reference: RemoteReference | None = None


class PhotoSink(Protocol):
    def folder_for(self, category: UploadCategory, user_id: int | str) -> str: ...

    def filename_for(self, category: UploadCategory, user_id: int | str, original: str) -> str: ...

    async def request_credential(
        self, category: UploadCategory, user_id: int | str
    ) -> SignedCredential: ...

    async def upload(
        self,
        data: bytes,
        filename: str,
        folder: str,
        credential: SignedCredential,
        progress: ProgressCallback | None = None,
        content_type: str | None = None,
    ) -> RemoteReference: ...


class BatchUploadError(Exception):
    def __init__(self, photo_id: str, cause: MediaError):
        super().__init__(f"{photo_id}: {cause.message}")
        self.photo_id = photo_id
        self.cause = cause


class StagingCache:
    def __init__(
        self,
        sink: PhotoSink,
        user_id: int | str,
        category: UploadCategory = UploadCategory.location,
        previews: PreviewFactory | None = None,
        max_photos: int = MAX_PHOTOS_PER_BATCH,
        settings: Settings | None = None,
    ):
        self.sink = sink
        self.user_id = user_id
        self.category = UploadCategory(category)
        self.previews = previews or TempFilePreviewFactory()
        self.max_photos = max_photos
        self.max_bytes = (settings or get_settings()).max_bytes[self.category]
        self._photos: list[StagedPhoto] = []
        self._uploading = False

    @property
    def photos(self) -> list[StagedPhoto]:
        return list(self._photos)

    @property
    def primary(self) -> StagedPhoto | None:
        return next((p for p in self._photos if p.is_primary), None)

    @property
    def is_uploading(self) -> bool:
        return self._uploading

    def __len__(self) -> int:
        return len(self._photos)

    def _get(self, photo_id: str) -> StagedPhoto:
        for photo in self._photos:
            if photo.id == photo_id:
                return photo
        raise KeyError(photo_id)

    def add(self, data: bytes, filename: str, mime_type: str | None = None) -> StagedPhoto:
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or ""
        if not mime_type.startswith("image/"):
            raise ValidationError("File must be an image", "INVALID_FILE_TYPE")
        if len(data) > self.max_bytes:
            raise ValidationError(
                f"File size must be less than {self.max_bytes // (1024 * 1024)}MB",
                "FILE_TOO_LARGE",
            )
        if len(self._photos) >= self.max_photos:
            raise ValidationError(f"Maximum {self.max_photos} photos allowed", "TOO_MANY_PHOTOS")

        width, height = read_geometry(data)
        preview = self.previews.create(data, filename)
        photo = StagedPhoto(
            id=f"staged-{uuid.uuid4().hex[:12]}",
            data=data,
            preview=preview,
            original_filename=filename,
            size=len(data),
            mime_type=mime_type,
            width=width,
            height=height,
            is_primary=not self._photos,
        )
        self._photos.append(photo)
        logger.debug("Staged %s as %s (%sx%s)", filename, photo.id, width, height)
        return photo

    def add_path(self, path: str | Path) -> StagedPhoto:
        path = Path(path)
        return self.add(path.read_bytes(), path.name)

    def remove(self, photo_id: str) -> bool:
        try:
            photo = self._get(photo_id)
        except KeyError:
            return False
        self._photos.remove(photo)
        photo.preview.release()
        if photo.is_primary and self._photos:
            self._photos[0].is_primary = True
        return True

    def set_primary(self, photo_id: str):
        target = self._get(photo_id)
        for photo in self._photos:
            photo.is_primary = photo is target

    def update_caption(self, photo_id: str, text: str | None):
        self._get(photo_id).caption = text

    def _holds(self, photo: StagedPhoto) -> bool:
        return any(p is photo for p in self._photos)

    async def upload_all(self) -> list[RemoteReference]:
        if self._uploading:
            raise RuntimeError("upload already in progress")
        self._uploading = True
        try:
            # strictly one photo in flight at a time; remove() and clear() may run between awaits
            for photo in list(self._photos):
                if photo.state is UploadState.done or not self._holds(photo):
                    continue
                await self._upload_one(photo)
        finally:
            self._uploading = False
        return [p.reference for p in self._photos if p.reference is not None]

    async def _upload_one(self, photo: StagedPhoto):
        photo.state = UploadState.uploading
        photo.progress = 0
        photo.error = None

        def on_progress(pct: int):
            photo.progress = pct

        try:
            reference = await upload_with_retry(
                self.sink,
                photo.data,
                self.sink.filename_for(self.category, self.user_id, photo.original_filename),
                self.sink.folder_for(self.category, self.user_id),
                self.category,
                self.user_id,
                progress=on_progress,
                content_type=photo.mime_type,
            )
        except MediaError as exc:
            self._fail(photo, exc)
            raise BatchUploadError(photo.id, exc) from exc
        except Exception as exc:
            logger.exception("Unexpected failure uploading %s", photo.id)
            cause = UploadError(retryable=False)
            self._fail(photo, cause)
            raise BatchUploadError(photo.id, cause) from exc

        photo.state = UploadState.done
        photo.progress = 100
        photo.reference = reference
        logger.info("Uploaded %s -> %s", photo.id, reference.path)

    def _fail(self, photo: StagedPhoto, exc: MediaError):
        photo.state = UploadState.error
        photo.error = exc.message
        logger.error("Upload of %s failed: %s", photo.id, exc.code)

    def clear(self):
        photos, self._photos = self._photos, []
        for photo in photos:
            photo.preview.release()

    def __enter__(self) -> "StagingCache":
        return self

    def __exit__(self, *exc_info):
        self.clear()

    async def __aenter__(self) -> "StagingCache":
        return self

    async def __aexit__(self, *exc_info):
        self.clear()
