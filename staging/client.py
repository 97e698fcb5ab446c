"""Staging sink that goes through this service's ``/photos`` endpoints."""
import io
import logging
import mimetypes

import httpx

from media.errors import (
    ConversionError,
    MediaError,
    SecurityViolation,
    UploadError,
    ValidationError,
)
from media.uploader import ProgressCallback, ProgressReader
from schemas.upload import RemoteReference, SignedCredential, UploadCategory

logger = logging.getLogger(__name__)

SECURITY_CODES = {"SECURITY_VIOLATION", "SCANNER_UNAVAILABLE"}
CONVERSION_CODES = {"CONVERSION_ERROR", "UNSUPPORTED_FORMAT"}


def _error_from_response(resp: httpx.Response) -> MediaError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    message = body.get("error") or f"Upload failed ({resp.status_code})"
    code = body.get("code")

    if code in SECURITY_CODES:
        return SecurityViolation(message, code)
    if resp.status_code < 500:
        return ValidationError(message, code)
    if code in CONVERSION_CODES:
        return ConversionError(message, code)
    # the server already retried the store once
    return UploadError(message, code, retryable=False)


class PipelineClient:
    def __init__(
        self,
        base_url: str,
        user_id: int | str,
        category: UploadCategory = UploadCategory.location,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ):
        self.user_id = user_id
        self.category = UploadCategory(category)
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"X-User-Id": str(user_id)}

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "PipelineClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    # the server names and places the asset
    def folder_for(self, category: UploadCategory | str, user_id: int | str) -> str:
        return ""

    def filename_for(self, category: UploadCategory | str, user_id: int | str, original: str) -> str:
        return original

    async def request_credential(
        self, category: UploadCategory | str, user_id: int | str
    ) -> SignedCredential:
        try:
            resp = await self._client.get(
                "/photos/credential",
                params={"uploadType": UploadCategory(category).value},
                headers={"X-User-Id": str(user_id)},
            )
        except httpx.HTTPError as exc:
            raise UploadError("Could not obtain upload credential", "CREDENTIAL_ERROR") from exc
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        return SignedCredential.model_validate(resp.json())

    async def upload(
        self,
        data: bytes,
        filename: str,
        folder: str,
        credential: SignedCredential,
        progress: ProgressCallback | None = None,
        content_type: str | None = None,
    ) -> RemoteReference:
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        body = ProgressReader(data, progress) if progress else io.BytesIO(data)
        form = {
            "uploadType": self.category.value,
            "token": credential.token,
            "signature": credential.signature,
            "expire": str(credential.expire),
        }
        try:
            resp = await self._client.post(
                "/photos/upload",
                data=form,
                files={"photo": (filename, body, content_type)},
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            logger.error("Upload of %s did not reach the server: %s", filename, exc)
            raise UploadError() from exc

        if resp.status_code >= 400:
            raise _error_from_response(resp)

        try:
            upload = resp.json()["upload"]
            reference = RemoteReference(
                asset_id=upload["fileId"],
                path=upload["filePath"],
                url=upload["url"],
                thumbnail_url=upload["thumbnailUrl"],
                width=upload.get("width"),
                height=upload.get("height"),
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Unreadable upload response for %s: %s", filename, resp.text[:500])
            raise UploadError(retryable=False) from exc
        if progress:
            progress(100)
        return reference
