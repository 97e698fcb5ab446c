import io
import logging
from datetime import datetime

from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from media.errors import ConversionError
from schemas.upload import ProcessedAsset

register_heif_opener()

logger = logging.getLogger(__name__)

BASELINE_MIME = "image/jpeg"
CONVERTIBLE_MIME = frozenset({"image/heic", "image/heif", "image/tiff"})
CONVERSION_QUALITY = 90

TAG_ORIENTATION = 0x0112
TAG_DATETIME = 0x0132
TAG_EXIF_IFD = 0x8769
TAG_DATETIME_ORIGINAL = 0x9003
EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def read_geometry(data: bytes) -> tuple[int | None, int | None]:
    """Width and height from the header only; (None, None) if unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError):
        return None, None


def _captured_at(exif: Image.Exif) -> str | None:
    value = exif.get_ifd(TAG_EXIF_IFD).get(TAG_DATETIME_ORIGINAL) or exif.get(TAG_DATETIME)
    if isinstance(value, bytes):
        value = value.decode("ascii", "ignore")
    return value.strip("\x00 ") if value else None


def _carried_exif(source: Image.Image) -> tuple[Image.Exif, datetime | None]:
    src = source.getexif()
    out = Image.Exif()
    if TAG_ORIENTATION in src:
        out[TAG_ORIENTATION] = src[TAG_ORIENTATION]

    captured_raw = _captured_at(src)
    captured = None
    if captured_raw:
        out[TAG_DATETIME] = captured_raw
        out[TAG_EXIF_IFD] = {TAG_DATETIME_ORIGINAL: captured_raw}
        try:
            captured = datetime.strptime(captured_raw, EXIF_DATETIME_FORMAT)
        except ValueError:
            logger.info("Unparseable capture time %r kept verbatim", captured_raw)
    return out, captured


def _to_jpeg(data: bytes) -> ProcessedAsset:
    with Image.open(io.BytesIO(data)) as img:
        # multi-page TIFFs: always the first frame
        img.seek(0)
        img.load()
        exif, captured = _carried_exif(img)
        rgb = img.convert("RGB") if img.mode != "RGB" else img
        buf = io.BytesIO()
        rgb.save(buf, format="JPEG", quality=CONVERSION_QUALITY, exif=exif.tobytes())
        width, height = rgb.size
    return ProcessedAsset(
        data=buf.getvalue(),
        mime_type=BASELINE_MIME,
        width=width,
        height=height,
        captured_at=captured,
    )


def normalize(data: bytes, mime_type: str) -> ProcessedAsset:
    mime_type = (mime_type or "").lower()
    if mime_type == BASELINE_MIME:
        width, height = read_geometry(data)
        return ProcessedAsset(data=data, mime_type=BASELINE_MIME, width=width, height=height)

    if mime_type not in CONVERTIBLE_MIME:
        raise ConversionError(code="UNSUPPORTED_FORMAT")

    logger.info("Converting %s to JPEG", mime_type)
    try:
        asset = _to_jpeg(data)
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, EOFError) as exc:
        logger.error("Conversion of %s failed: %s", mime_type, exc)
        raise ConversionError() from exc

    if not asset.data:
        raise ConversionError()
    logger.info(
        "Converted to JPEG %dx%d (%.2f KB)", asset.width, asset.height, len(asset.data) / 1024
    )
    return asset
