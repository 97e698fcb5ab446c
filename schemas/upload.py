from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class UploadCategory(str, Enum):
    location = "location"
    avatar = "avatar"
    banner = "banner"


class ScanVerdict(BaseModel):
    infected: bool
    matched_signatures: list[str] = Field(default_factory=list)
    scanner_available: bool
    error: str | None = None


@dataclass
class ProcessedAsset:
    data: bytes
    mime_type: str
    width: int | None = None
    height: int | None = None
    captured_at: datetime | None = None


class SignedCredential(BaseModel):
    token: str
    signature: str
    expire: int
    public_key: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class RemoteReference(BaseModel):
    asset_id: str
    path: str
    url: str
    thumbnail_url: str
    width: int | None = None
    height: int | None = None


class SanitizedMetadata(BaseModel):
    has_gps: bool = Field(False, alias="hasGPS")
    gps_latitude: float | None = None
    gps_longitude: float | None = None
    gps_altitude: float | None = None
    date_taken: str | None = None
    camera_make: str | None = None
    camera_model: str | None = None
    lens_make: str | None = None
    lens_model: str | None = None
    iso: float | None = None
    orientation: float | None = None
    focal_length: str | None = None
    aperture: str | None = None
    exposure_time: str | None = None
    exposure_mode: str | None = None
    white_balance: str | None = None
    flash: str | None = None
    color_space: str | None = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class UploadRead(BaseModel):
    file_id: str
    file_path: str
    url: str
    thumbnail_url: str
    width: int | None
    height: int | None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class FileRead(BaseModel):
    original_filename: str
    size: int
    mime_type: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class UploadResponse(BaseModel):
    upload: UploadRead
    file: FileRead
    metadata: SanitizedMetadata | None = None


class ErrorResponse(BaseModel):
    error: str
    code: str


class ScannerStatus(BaseModel):
    available: bool
    host: str
    port: int
    posture: str
    fail_closed: bool
    disabled: bool


class OrphanReport(BaseModel):
    asset_id: str
    path: str | None = None
    reason: str | None = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
