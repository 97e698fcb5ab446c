"""
Adaptive JPEG compression toward a per-category byte target.

Two bounded phases: a quality ladder at the original geometry, then at most
one downscale pass. The result is best effort; an unmet target is logged, the
upload still proceeds, and the output is never larger than the input.
"""
import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from config import Settings, get_settings
from schemas.upload import UploadCategory

logger = logging.getLogger(__name__)

QUALITY_START = 90
QUALITY_FLOOR = 60
QUALITY_STEP = 10
SCALE_FACTOR = 0.9
SCALED_QUALITY = 85


@dataclass
class CompressionResult:
    data: bytes
    width: int | None
    height: int | None
    quality: int | None = None
    scaled: bool = False
    shortfall: bool = False


def _encode(
    img: Image.Image,
    quality: int,
    size: tuple[int, int] | None = None,
    exif: bytes | None = None,
) -> bytes:
    work = img.resize(size, Image.LANCZOS) if size else img
    buf = io.BytesIO()
    if exif:
        work.save(buf, format="JPEG", quality=quality, optimize=True, exif=exif)
    else:
        work.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def compress(
    data: bytes, category: UploadCategory | str, settings: Settings | None = None
) -> CompressionResult:
    settings = settings or get_settings()
    target = settings.target_bytes[UploadCategory(category)]

    try:
        with Image.open(io.BytesIO(data)) as src:
            width, height = src.size
            if len(data) <= target:
                return CompressionResult(data=data, width=width, height=height)

            logger.info(
                "Compressing %dx%d from %.2fMB toward %.2fMB",
                width, height, len(data) / (1024 * 1024), target / (1024 * 1024),
            )
            exif = src.info.get("exif")
            img = src.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Compression skipped, image not decodable: %s", exc)
        return CompressionResult(data=data, width=None, height=None, shortfall=len(data) > target)

    best = CompressionResult(data=data, width=width, height=height)

    for quality in range(QUALITY_START, QUALITY_FLOOR - 1, -QUALITY_STEP):
        candidate = _encode(img, quality, exif=exif)
        logger.debug("Quality %d: %d bytes", quality, len(candidate))
        if len(candidate) < len(best.data):
            best = CompressionResult(candidate, width, height, quality=quality)
        if len(candidate) <= target:
            logger.info("Compressed to %d bytes at quality %d", len(candidate), quality)
            return best

    new_size = (max(1, round(width * SCALE_FACTOR)), max(1, round(height * SCALE_FACTOR)))
    logger.info("Reducing dimensions to %dx%d", *new_size)
    candidate = _encode(img, SCALED_QUALITY, new_size, exif=exif)
    if len(candidate) < len(best.data):
        best = CompressionResult(
            candidate, new_size[0], new_size[1], quality=SCALED_QUALITY, scaled=True
        )

    if len(best.data) > target:
        best.shortfall = True
        logger.warning(
            "Compression shortfall: %d bytes, target %d (input %d)",
            len(best.data), target, len(data),
        )
    return best
