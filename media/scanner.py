"""
ClamAV-backed malware scanning.

The daemon is reached with INSTREAM over TCP; the buffer is streamed in chunks
and only the verdict line is read back. What happens when the daemon cannot
answer is a deployment decision (``ScanPosture``), not a per-call one.
"""
import io
import logging
import threading
from enum import Enum
from typing import Callable

import clamd
from fastapi.concurrency import run_in_threadpool

from config import Settings, get_settings
from schemas.upload import ScannerStatus, ScanVerdict

logger = logging.getLogger(__name__)


class ScanPosture(str, Enum):
    disabled = "disabled"
    fail_open = "fail_open"
    fail_closed = "fail_closed"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScanPosture":
        if settings.disable_virus_scan:
            return cls.disabled
        if settings.virus_scan_fail_closed:
            return cls.fail_closed
        return cls.fail_open


class Scanner:
    def __init__(
        self,
        host: str = "localhost",
        port: int = 3310,
        timeout: float = 60.0,
        posture: ScanPosture = ScanPosture.fail_open,
        client_factory: Callable[..., clamd.ClamdNetworkSocket] = clamd.ClamdNetworkSocket,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.posture = posture
        self._client_factory = client_factory
        self._client: clamd.ClamdNetworkSocket | None = None
        self.available = False
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Scanner":
        settings = settings or get_settings()
        return cls(
            host=settings.clamav_host,
            port=settings.clamav_port,
            timeout=settings.clamav_timeout,
            posture=ScanPosture.from_settings(settings),
        )

    def connect(self) -> bool:
        if self.posture is ScanPosture.disabled:
            logger.warning("Virus scanning is DISABLED via DISABLE_VIRUS_SCAN")
            self.available = False
            return False
        self._client = self._client_factory(host=self.host, port=self.port, timeout=self.timeout)
        return self.health_check()

    def health_check(self) -> bool:
        if self._client is None:
            self.available = False
            return False
        try:
            self._client.ping()
        except (clamd.ClamdError, OSError) as exc:
            logger.error("ClamAV not reachable at %s:%s: %s", self.host, self.port, exc)
            self.available = False
        else:
            self.available = True
        return self.available

    def status(self) -> ScannerStatus:
        return ScannerStatus(
            available=self.available,
            host=self.host,
            port=self.port,
            posture=self.posture.value,
            fail_closed=self.posture is ScanPosture.fail_closed,
            disabled=self.posture is ScanPosture.disabled,
        )

    async def scan(self, data: bytes, filename: str = "unknown") -> ScanVerdict:
        if self.posture is ScanPosture.disabled:
            return ScanVerdict(infected=False, scanner_available=False)
        return await run_in_threadpool(self._scan_sync, data, filename)

    def _scan_sync(self, data: bytes, filename: str) -> ScanVerdict:
        # scans run on worker threads; only one of them may reconnect
        with self._lock:
            if self._client is None or not self.available:
                self.connect()
            client, available = self._client, self.available
        if not available:
            return self._unavailable(filename, "Security scanning service unavailable")

        logger.info("Scanning %s (%.2f KB)", filename, len(data) / 1024)
        try:
            result = client.instream(io.BytesIO(data))
        except (clamd.ClamdError, OSError) as exc:
            # includes socket timeouts; reconnect on the next call
            self.available = False
            return self._unavailable(filename, str(exc) or exc.__class__.__name__)

        status, signature = result.get("stream", ("ERROR", "empty response"))
        if status == "FOUND":
            logger.error("INFECTED: %s - %s", filename, signature)
            return ScanVerdict(
                infected=True, matched_signatures=[signature], scanner_available=True
            )
        if status != "OK":
            return self._unavailable(filename, f"scanner error: {signature}")

        logger.info("CLEAN: %s", filename)
        return ScanVerdict(infected=False, scanner_available=True)

    def _unavailable(self, filename: str, error: str) -> ScanVerdict:
        if self.posture is ScanPosture.fail_closed:
            logger.error("REJECTED %s - scanner unavailable (fail-closed): %s", filename, error)
            return ScanVerdict(infected=True, scanner_available=False, error=error)
        logger.warning("ALLOWED %s - scanner unavailable (fail-open): %s", filename, error)
        return ScanVerdict(infected=False, scanner_available=False, error=error)
