"""
Check that the configured ClamAV daemon actually catches something.

Usage:
    python scripts/scan_selftest.py --host localhost --port 3310

Streams the EICAR test string and a small clean JPEG through the scanner and
exits non-zero if either verdict is wrong.
"""

import argparse
import asyncio
import io
import sys

from PIL import Image

from config import get_settings
from media.scanner import ScanPosture, Scanner

EICAR = rb"X5O!P%@AP[4\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


def _clean_jpeg() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (32, 32), (120, 160, 200)).save(buf, format="JPEG")
    return buf.getvalue()


async def selftest(host: str, port: int, timeout: float) -> bool:
    scanner = Scanner(host=host, port=port, timeout=timeout, posture=ScanPosture.fail_closed)
    if not scanner.connect():
        print(f"ClamAV not reachable at {host}:{port}")
        return False

    eicar = await scanner.scan(EICAR, "eicar.com")
    clean = await scanner.scan(_clean_jpeg(), "clean.jpg")

    print(f"eicar: infected={eicar.infected} signatures={eicar.matched_signatures}")
    print(f"clean: infected={clean.infected}")
    return eicar.infected and eicar.scanner_available and not clean.infected


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="ClamAV self-test for the media pipeline")
    parser.add_argument("--host", default=settings.clamav_host, help="clamd host")
    parser.add_argument("--port", type=int, default=settings.clamav_port, help="clamd port")
    parser.add_argument("--timeout", type=float, default=10.0, help="Socket timeout in seconds")
    return parser.parse_args()


def main():
    args = parse_args()
    ok = asyncio.run(selftest(args.host, args.port, args.timeout))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
