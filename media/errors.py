"""Failure classes of the ingestion pipeline.

Messages are generic per class; anything specific (signature names, library
errors) goes to the log, never into ``message``.
"""


class MediaError(Exception):
    status_code = 500
    code = "UPLOAD_ERROR"
    message = "Upload failed"

    def __init__(self, message: str | None = None, code: str | None = None):
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(MediaError):
    status_code = 400
    code = "INVALID_FILE_TYPE"
    message = "File must be JPEG, HEIC, or TIFF format"


class SecurityViolation(MediaError):
    status_code = 400
    code = "SECURITY_VIOLATION"
    message = "File failed security scan"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        signatures: list[str] | None = None,
    ):
        super().__init__(message, code)
        self.signatures = list(signatures or [])


class ConversionError(MediaError):
    status_code = 500
    code = "CONVERSION_ERROR"
    message = "Failed to process image format"


class UploadError(MediaError):
    status_code = 500
    code = "CDN_ERROR"
    message = "Failed to upload to CDN"

    def __init__(
        self, message: str | None = None, code: str | None = None, retryable: bool = True
    ):
        super().__init__(message, code)
        self.retryable = retryable


class PersistenceGap(MediaError):
    """Upload reached the store but the caller's record write did not."""

    status_code = 500
    code = "PERSISTENCE_GAP"
    message = "Uploaded asset is not linked to a record"

    def __init__(self, asset_id: str, path: str | None = None, reason: str | None = None):
        super().__init__()
        self.asset_id = asset_id
        self.path = path
        self.reason = reason
