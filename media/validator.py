import io
import logging
from dataclasses import dataclass
from pathlib import PurePath

from PIL import Image, UnidentifiedImageError

from config import Settings, get_settings
from media.errors import ValidationError
from schemas.upload import UploadCategory

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/heic", "image/heif", "image/tiff"})
EXTENSION_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}
HEIF_BRANDS = {
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"heim": "image/heic",
    b"heis": "image/heic",
    b"hevc": "image/heic",
    b"mif1": "image/heif",
    b"msf1": "image/heif",
}
ALLOWED_PIL_FORMATS = frozenset({"JPEG", "MPO", "TIFF", "HEIF"})


@dataclass
class ValidatedUpload:
    filename: str
    size: int
    declared_mime: str
    effective_mime: str
    category: UploadCategory


def extension_of(filename: str) -> str:
    return PurePath(filename or "").suffix.lower()


def sniff_mime(data: bytes) -> str | None:
    """Identify an allowed encoding from its leading bytes."""
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] in (b"II*\x00", b"MM\x00*"):
        return "image/tiff"
    if data[4:8] == b"ftyp":
        return HEIF_BRANDS.get(data[8:12])
    return None


def foreign_format(data: bytes) -> str | None:
    """Name the image format Pillow finds in data when it is not an allowed one."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except Image.DecompressionBombError:
        return "oversized image"
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    if fmt in ALLOWED_PIL_FORMATS:
        return None
    return fmt


def validate(
    data: bytes,
    filename: str,
    declared_mime: str | None,
    category: UploadCategory | str,
    settings: Settings | None = None,
) -> ValidatedUpload:
    settings = settings or get_settings()
    try:
        category = UploadCategory(category)
    except ValueError:
        raise ValidationError("Invalid uploadType", "INVALID_TYPE")

    declared = (declared_mime or "").lower()
    ext = extension_of(filename)
    if declared not in ALLOWED_MIME_TYPES and ext not in EXTENSION_MIME:
        logger.warning("Rejected %s: type %r, extension %r", filename, declared, ext)
        raise ValidationError()

    if not data:
        raise ValidationError("File is empty", "EMPTY_FILE")

    ceiling = settings.max_bytes[category]
    if len(data) > ceiling:
        logger.warning(
            "Rejected %s: %d bytes over %s ceiling %d", filename, len(data), category.value, ceiling
        )
        raise ValidationError(
            f"File size must be less than {ceiling // (1024 * 1024)}MB", "FILE_TOO_LARGE"
        )

    sniffed = sniff_mime(data)
    if sniffed is None:
        foreign = foreign_format(data)
        if foreign:
            logger.warning("Rejected %s: content is %s", filename, foreign)
            raise ValidationError()

    # extension and declared type only label payloads nothing could classify
    effective = sniffed or EXTENSION_MIME.get(ext) or declared
    if effective in ("image/heic", "image/heif"):
        logger.info("HEIC format detected: %s", filename)

    return ValidatedUpload(
        filename=filename,
        size=len(data),
        declared_mime=declared,
        effective_mime=effective,
        category=category,
    )
