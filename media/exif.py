"""Raw metadata from the uploaded (pre-conversion) bytes.

Produces the same loose shape the browser sends in the ``metadata`` form
field, so both sources go through one sanitizer.
"""
import io
import logging

import exifread
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

GPS_IFD = 0x8825
DT_KEYS = ["EXIF DateTimeOriginal", "EXIF DateTimeDigitized", "Image DateTime"]
STRING_KEYS = {
    "focalLength": "EXIF FocalLength",
    "aperture": "EXIF FNumber",
    "exposureTime": "EXIF ExposureTime",
    "exposureMode": "EXIF ExposureMode",
    "whiteBalance": "EXIF WhiteBalance",
    "flash": "EXIF Flash",
    "colorSpace": "EXIF ColorSpace",
}


def _to_deg(values, ref):
    if not values or len(values) < 3:
        return None
    try:
        d, m, s = (float(v) for v in values[:3])
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    deg = d + m / 60 + s / 3600
    if ref in ("S", "W"):
        deg *= -1
    return deg


def _first_number(tag):
    if tag is None:
        return None
    values = getattr(tag, "values", None)
    if not values:
        return None
    try:
        return float(values[0])
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _gps(data: bytes) -> dict:
    try:
        with Image.open(io.BytesIO(data)) as img:
            gps_info = img.getexif().get_ifd(GPS_IFD)
    except (UnidentifiedImageError, OSError, ValueError):
        return {}
    if not gps_info:
        return {}

    out = {
        "lat": _to_deg(gps_info.get(2), gps_info.get(1)),
        "lng": _to_deg(gps_info.get(4), gps_info.get(3)),
    }
    altitude = gps_info.get(6)
    if altitude is not None:
        try:
            alt = float(altitude)
            out["altitude"] = -alt if gps_info.get(5) in (1, b"\x01") else alt
        except (TypeError, ValueError, ZeroDivisionError):
            pass
    return out


def extract_raw_metadata(data: bytes) -> dict:
    try:
        tags = exifread.process_file(io.BytesIO(data), details=False)
    except Exception as exc:  # exifread raises bare exceptions on odd files
        logger.info("No readable EXIF: %s", exc)
        tags = {}

    raw: dict = _gps(data)

    for key in DT_KEYS:
        if key in tags:
            raw["dateTaken"] = str(tags[key])
            break

    make, model = tags.get("Image Make"), tags.get("Image Model")
    if make or model:
        raw["camera"] = {"make": str(make) if make else None, "model": str(model) if model else None}
    lens_make, lens_model = tags.get("EXIF LensMake"), tags.get("EXIF LensModel")
    if lens_make or lens_model:
        raw["lens"] = {
            "make": str(lens_make) if lens_make else None,
            "model": str(lens_model) if lens_model else None,
        }

    iso = _first_number(tags.get("EXIF ISOSpeedRatings"))
    if iso is not None:
        raw["iso"] = iso
    orientation = _first_number(tags.get("Image Orientation"))
    if orientation is not None:
        raw["orientation"] = orientation

    for field, key in STRING_KEYS.items():
        if key in tags:
            raw[field] = str(tags[key])

    return raw
