import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

MB = 1024 * 1024


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"

    clamav_host: str = "localhost"
    clamav_port: int = 3310
    clamav_timeout: float = 60.0
    disable_virus_scan: bool = False
    # Unreachable scanner lets uploads through unless this is set.
    virus_scan_fail_closed: bool = False

    max_bytes: dict[str, int] = field(
        default_factory=lambda: {"location": 10 * MB, "avatar": 5 * MB, "banner": 10 * MB}
    )
    target_bytes: dict[str, int] = field(
        default_factory=lambda: {"location": 2 * MB, "avatar": 1 * MB, "banner": 2 * MB}
    )

    imagekit_public_key: str = ""
    imagekit_private_key: str = ""
    imagekit_url_endpoint: str = "https://ik.imagekit.io/demo"
    imagekit_upload_url: str = "https://upload.imagekit.io/api/v1/files/upload"
    imagekit_api_url: str = "https://api.imagekit.io/v1"
    credential_ttl: int = 300

    create_tables: bool = False


def _build_settings() -> Settings:
    return Settings(
        app_env="production" if os.getenv("APP_ENV") == "production" else "development",
        clamav_host=os.getenv("CLAMAV_HOST", "localhost"),
        clamav_port=int(os.getenv("CLAMAV_PORT", "3310")),
        clamav_timeout=_env_float("CLAMAV_TIMEOUT", 60.0),
        disable_virus_scan=_env_bool("DISABLE_VIRUS_SCAN"),
        virus_scan_fail_closed=_env_bool("VIRUS_SCAN_FAIL_CLOSED"),
        max_bytes={
            "location": int(_env_float("MAX_PHOTO_MB", 10) * MB),
            "avatar": int(_env_float("MAX_AVATAR_MB", 5) * MB),
            "banner": int(_env_float("MAX_BANNER_MB", 10) * MB),
        },
        target_bytes={
            "location": int(_env_float("TARGET_PHOTO_MB", 2) * MB),
            "avatar": int(_env_float("TARGET_AVATAR_MB", 1) * MB),
            "banner": int(_env_float("TARGET_BANNER_MB", 2) * MB),
        },
        imagekit_public_key=os.getenv("IMAGEKIT_PUBLIC_KEY", ""),
        imagekit_private_key=os.getenv("IMAGEKIT_PRIVATE_KEY", ""),
        imagekit_url_endpoint=os.getenv(
            "IMAGEKIT_URL_ENDPOINT", "https://ik.imagekit.io/demo"
        ).rstrip("/"),
        imagekit_upload_url=os.getenv(
            "IMAGEKIT_UPLOAD_URL", "https://upload.imagekit.io/api/v1/files/upload"
        ),
        imagekit_api_url=os.getenv(
            "IMAGEKIT_API_URL", "https://api.imagekit.io/v1"
        ).rstrip("/"),
        credential_ttl=int(os.getenv("CREDENTIAL_TTL", "300")),
        create_tables=_env_bool("DB_CREATE_TABLES"),
    )


@lru_cache
def get_settings() -> Settings:
    """Read the environment once per process."""
    return _build_settings()
