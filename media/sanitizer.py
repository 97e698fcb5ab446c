import logging
import math
from datetime import datetime, timezone
from typing import Any

from bs4 import BeautifulSoup

from schemas.upload import SanitizedMetadata

logger = logging.getLogger(__name__)

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
STRING_FIELDS = {
    "focal_length": "focalLength",
    "aperture": "aperture",
    "exposure_time": "exposureTime",
    "exposure_mode": "exposureMode",
    "white_balance": "whiteBalance",
    "flash": "flash",
    "color_space": "colorSpace",
}


def sanitize_text(value: Any) -> str | None:
    """Strip every tag and attribute; None for non-strings and blanks."""
    if not isinstance(value, str):
        return None
    soup = BeautifulSoup(value, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text().strip()
    text = text.replace("<", "&lt;").replace(">", "&gt;")
    return text or None


def finite_number(value: Any, low: float | None = None, high: float | None = None) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    if (low is not None and value < low) or (high is not None and value > high):
        return None
    return float(value)


def parse_date_taken(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    try:
        parsed = datetime.strptime(raw, EXIF_DATETIME_FORMAT)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


def _nested(raw: dict, group: str, key: str) -> Any:
    section = raw.get(group)
    return section.get(key) if isinstance(section, dict) else None


def sanitize(raw: dict | None) -> SanitizedMetadata:
    raw = raw if isinstance(raw, dict) else {}

    lat = finite_number(raw.get("lat"), -90, 90)
    lng = finite_number(raw.get("lng"), -180, 180)

    fields = {
        "gps_latitude": lat,
        "gps_longitude": lng,
        "gps_altitude": finite_number(raw.get("altitude")),
        "date_taken": parse_date_taken(raw.get("dateTaken")),
        "camera_make": sanitize_text(_nested(raw, "camera", "make")),
        "camera_model": sanitize_text(_nested(raw, "camera", "model")),
        "lens_make": sanitize_text(_nested(raw, "lens", "make")),
        "lens_model": sanitize_text(_nested(raw, "lens", "model")),
        "iso": finite_number(raw.get("iso")),
        "orientation": finite_number(raw.get("orientation")),
    }
    for attr, key in STRING_FIELDS.items():
        fields[attr] = sanitize_text(raw.get(key))

    return SanitizedMetadata(has_gps=lat is not None and lng is not None, **fields)
