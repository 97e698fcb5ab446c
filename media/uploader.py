"""
Direct upload to the remote object store (ImageKit-compatible protocol).

Every file gets its own signed credential: a random token, a short expiry and
an HMAC-SHA1 signature over both. Credentials are spent on first use; the
ledger makes that hold across workers.
"""
import hashlib
import hmac
import io
import logging
import re
import time
import uuid
from typing import Callable, Protocol
from urllib.parse import quote

import httpx

from config import Settings, get_settings
from media.errors import UploadError
from schemas.upload import RemoteReference, SignedCredential, UploadCategory

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
THUMBNAIL_SIZE = 400


class CredentialLedger(Protocol):
    async def claim(self, token: str, ttl: int) -> bool: ...


class ProgressReader(io.BytesIO):
    """File-like body that reports percentage as httpx pulls chunks."""

    def __init__(self, data: bytes, callback: ProgressCallback):
        super().__init__(data)
        self._total = max(len(data), 1)
        self._callback = callback

    def read(self, size: int | None = -1) -> bytes:
        chunk = super().read(size)
        if chunk:
            self._callback(min(100, self.tell() * 100 // self._total))
        return chunk


def _slug(filename: str) -> str:
    stem = re.sub(r"\.[^/.]+$", "", filename or "photo")
    return re.sub(r"[^A-Za-z0-9_-]+", "-", stem).strip("-") or "photo"


class RemoteUploader:
    def __init__(
        self,
        ledger: CredentialLedger,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self.ledger = ledger
        self._client = client or httpx.AsyncClient(timeout=60.0)
        self._clock = clock

    async def aclose(self):
        await self._client.aclose()

    # naming

    def folder_for(self, category: UploadCategory | str, user_id: int | str) -> str:
        kind = {"location": "photos", "avatar": "avatars", "banner": "banners"}[
            UploadCategory(category).value
        ]
        return f"/{self.settings.app_env}/users/{user_id}/{kind}"

    def filename_for(
        self, category: UploadCategory | str, user_id: int | str, original: str
    ) -> str:
        ts = int(self._clock() * 1000)
        category = UploadCategory(category)
        if category is UploadCategory.location:
            return f"photo-{ts}-{_slug(original)}.jpg"
        return f"{category.value}-{user_id}-{ts}.jpg"

    def build_url(self, path: str, **transforms: int | str) -> str:
        clean = path if path.startswith("/") else f"/{path}"
        url = f"{self.settings.imagekit_url_endpoint}{quote(clean)}"
        if transforms:
            tr = ",".join(f"{k}-{v}" for k, v in transforms.items())
            url = f"{url}?tr={tr}"
        return url

    # credentials

    def _sign(self, token: str, expire: int) -> str:
        return hmac.new(
            self.settings.imagekit_private_key.encode(),
            f"{token}{expire}".encode(),
            hashlib.sha1,
        ).hexdigest()

    async def request_credential(
        self, category: UploadCategory | str, user_id: int | str
    ) -> SignedCredential:
        token = str(uuid.uuid4())
        expire = int(self._clock()) + self.settings.credential_ttl
        logger.debug("Issued credential for user %s (%s)", user_id, UploadCategory(category).value)
        return SignedCredential(
            token=token,
            signature=self._sign(token, expire),
            expire=expire,
            public_key=self.settings.imagekit_public_key,
        )

    def verify(self, credential: SignedCredential) -> bool:
        expected = self._sign(credential.token, credential.expire)
        return hmac.compare_digest(expected, credential.signature)

    async def _spend(self, credential: SignedCredential):
        remaining = credential.expire - int(self._clock())
        if remaining <= 0:
            raise UploadError("Upload credential expired", "CREDENTIAL_EXPIRED")
        if not self.verify(credential):
            raise UploadError(
                "Upload credential is not valid", "CREDENTIAL_INVALID", retryable=False
            )
        if not await self.ledger.claim(credential.token, remaining):
            raise UploadError(
                "Upload credential already used", "CREDENTIAL_REUSED", retryable=False
            )

    # transfer

    async def upload(
        self,
        data: bytes,
        filename: str,
        folder: str,
        credential: SignedCredential,
        progress: ProgressCallback | None = None,
        tags: list[str] | None = None,
        content_type: str | None = None,
    ) -> RemoteReference:
        await self._spend(credential)

        body = ProgressReader(data, progress) if progress else io.BytesIO(data)
        form = {
            "fileName": filename,
            "folder": folder,
            "publicKey": credential.public_key,
            "signature": credential.signature,
            "expire": str(credential.expire),
            "token": credential.token,
            "useUniqueFileName": "true",
        }
        if tags:
            form["tags"] = ",".join(tags)

        logger.info("Uploading to store: %s/%s", folder, filename)
        try:
            resp = await self._client.post(
                self.settings.imagekit_upload_url,
                data=form,
                files={"file": (filename, body, content_type or "image/jpeg")},
            )
        except httpx.HTTPError as exc:
            logger.error("Store upload transport failure: %s", exc)
            raise UploadError() from exc

        if resp.status_code >= 400:
            logger.error("Store rejected upload (%s): %s", resp.status_code, resp.text[:500])
            raise UploadError()

        try:
            payload = resp.json()
            asset_id = payload["fileId"]
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Store sent an unreadable upload response: %s", resp.text[:500])
            raise UploadError() from exc
        path = payload.get("filePath") or f"{folder}/{payload.get('name', filename)}"
        if progress:
            progress(100)
        return RemoteReference(
            asset_id=asset_id,
            path=path,
            url=payload.get("url") or self.build_url(path),
            thumbnail_url=self.build_url(path, w=THUMBNAIL_SIZE, h=THUMBNAIL_SIZE),
            width=payload.get("width"),
            height=payload.get("height"),
        )

    async def delete(self, asset_id: str) -> None:
        url = f"{self.settings.imagekit_api_url}/files/{quote(asset_id, safe='')}"
        try:
            resp = await self._client.delete(
                url, auth=(self.settings.imagekit_private_key, "")
            )
        except httpx.HTTPError as exc:
            raise UploadError("Failed to delete from CDN", "CDN_DELETE_ERROR") from exc
        if resp.status_code == 404:
            logger.info("Asset %s already gone", asset_id)
            return
        if resp.status_code >= 400:
            logger.error("Store refused delete of %s (%s)", asset_id, resp.status_code)
            raise UploadError("Failed to delete from CDN", "CDN_DELETE_ERROR")
        logger.info("Deleted asset %s", asset_id)


async def upload_with_retry(
    uploader,
    data: bytes,
    filename: str,
    folder: str,
    category: UploadCategory | str,
    user_id: int | str,
    credential: SignedCredential | None = None,
    progress: ProgressCallback | None = None,
    **kwargs,
) -> RemoteReference:
    """Upload once; on a retryable failure, once more with a fresh credential."""
    credential = credential or await uploader.request_credential(category, user_id)
    try:
        return await uploader.upload(data, filename, folder, credential, progress=progress, **kwargs)
    except UploadError as exc:
        if not exc.retryable:
            raise
        logger.warning("Upload of %s failed (%s), retrying with fresh credential", filename, exc.code)

    fresh = await uploader.request_credential(category, user_id)
    return await uploader.upload(data, filename, folder, fresh, progress=progress, **kwargs)
