"""Preview handles owned by the staging cache.

A handle is released exactly once no matter how many code paths try; the
second and later ``release()`` calls are no-ops that return False.
"""
import io
import logging
import os
import tempfile
from typing import Callable, Protocol

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

PREVIEW_SIZE = (400, 400)


class PreviewHandle:
    def __init__(self, ref: str, releaser: Callable[[str], None]):
        self.ref = ref
        self._releaser = releaser
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        if self._released:
            return False
        self._released = True
        self._releaser(self.ref)
        return True

    def __enter__(self) -> "PreviewHandle":
        return self

    def __exit__(self, *exc_info):
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"<PreviewHandle {self.ref} {state}>"


class PreviewFactory(Protocol):
    def create(self, data: bytes, filename: str) -> PreviewHandle: ...


def _unlink(path: str):
    try:
        os.unlink(path)
    except FileNotFoundError:
        logger.debug("Preview %s already removed", path)


class TempFilePreviewFactory:
    """Writes a small JPEG thumbnail to a temp file per staged photo."""

    def __init__(self, size: tuple[int, int] = PREVIEW_SIZE, directory: str | None = None):
        self.size = size
        self.directory = directory

    def _thumbnail(self, data: bytes) -> bytes:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.thumbnail(self.size)
                buf = io.BytesIO()
                img.convert("RGB").save(buf, format="JPEG", quality=80)
                return buf.getvalue()
        except (UnidentifiedImageError, OSError, ValueError):
            # undecodable here; the server reports real geometry later
            return data

    def create(self, data: bytes, filename: str) -> PreviewHandle:
        fd, path = tempfile.mkstemp(prefix="preview-", suffix=".jpg", dir=self.directory)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(self._thumbnail(data))
        except OSError:
            _unlink(path)
            raise
        return PreviewHandle(path, _unlink)
