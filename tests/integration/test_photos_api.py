import httpx
import pytest
import pytest_asyncio

from dependencies import get_orphan_ledger, get_pipeline, get_scanner, get_uploader
from imaging import make_jpeg, make_png
from main import app
from media.pipeline import MediaPipeline
from media.scanner import ScanPosture, Scanner
from media.uploader import RemoteUploader
from schemas.upload import ScanVerdict

HEADERS = {"X-User-Id": "42"}


class FakeScanner:
    def __init__(self):
        self.verdict = ScanVerdict(infected=False, scanner_available=True)

    async def scan(self, data, filename="unknown"):
        return self.verdict


class FakeAudit:
    def __init__(self):
        self.events = []

    async def security_event(self, user_id, event_type, metadata, ip_address=None):
        self.events.append((user_id, event_type, metadata, ip_address))


class FakeOrphanLedger:
    def __init__(self):
        self.recorded = []

    async def record(self, gap, user_id=None):
        self.recorded.append((gap, user_id))
        return gap

    def enqueue(self, asset_id):
        return True


def store(request: httpx.Request) -> httpx.Response:
    if request.method == "DELETE":
        return httpx.Response(204)
    return httpx.Response(
        200,
        json={
            "fileId": "file_abc",
            "filePath": "/development/users/42/photos/photo.jpg",
            "url": "https://ik.example.com/demo/development/users/42/photos/photo.jpg",
            "width": 64,
            "height": 48,
        },
    )


@pytest_asyncio.fixture
async def env(settings, ledger):
    scanner = FakeScanner()
    audit = FakeAudit()
    orphans = FakeOrphanLedger()
    uploader = RemoteUploader(
        ledger=ledger,
        settings=settings,
        client=httpx.AsyncClient(transport=httpx.MockTransport(store)),
    )

    app.dependency_overrides[get_pipeline] = lambda: MediaPipeline(scanner, uploader, audit, settings)
    app.dependency_overrides[get_uploader] = lambda: uploader
    app.dependency_overrides[get_scanner] = lambda: Scanner(posture=ScanPosture.disabled)
    app.dependency_overrides[get_orphan_ledger] = lambda: orphans

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client, scanner, audit, orphans

    app.dependency_overrides.clear()
    await uploader.aclose()


@pytest.mark.asyncio
async def test_health(env):
    client, *_ = env
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


@pytest.mark.asyncio
async def test_upload_location_photo(env):
    client, *_ = env

    resp = await client.post(
        "/photos/upload",
        headers=HEADERS,
        data={"uploadType": "location", "metadata": '{"lat": 1.5, "lng": 2.5}'},
        files={"photo": ("beach.jpg", make_jpeg(), "image/jpeg")},
    )

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["upload"]["fileId"] == "file_abc"
    assert body["upload"]["thumbnailUrl"].endswith("?tr=w-400,h-400")
    assert body["file"]["originalFilename"] == "beach.jpg"
    assert body["file"]["mimeType"] == "image/jpeg"
    assert body["metadata"]["hasGPS"] is True
    assert body["metadata"]["gpsLatitude"] == 1.5


@pytest.mark.asyncio
async def test_upload_avatar_has_no_metadata(env):
    client, *_ = env

    resp = await client.post(
        "/photos/upload",
        headers=HEADERS,
        data={"uploadType": "avatar", "metadata": '{"lat": 1.5, "lng": 2.5}'},
        files={"photo": ("me.jpg", make_jpeg(), "image/jpeg")},
    )

    assert resp.status_code == 201, resp.text
    assert resp.json()["metadata"] is None


@pytest.mark.asyncio
async def test_malformed_metadata_is_ignored(env):
    client, *_ = env

    resp = await client.post(
        "/photos/upload",
        headers=HEADERS,
        data={"uploadType": "location", "metadata": "{not json"},
        files={"photo": ("a.jpg", make_jpeg(), "image/jpeg")},
    )

    assert resp.status_code == 201, resp.text
    assert resp.json()["metadata"]["hasGPS"] is False


@pytest.mark.asyncio
async def test_missing_identity_is_unauthorized(env):
    client, *_ = env

    resp = await client.post(
        "/photos/upload",
        data={"uploadType": "location"},
        files={"photo": ("a.jpg", make_jpeg(), "image/jpeg")},
    )

    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_missing_file(env):
    client, *_ = env
    resp = await client.post("/photos/upload", headers=HEADERS, data={"uploadType": "location"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No file provided", "code": "NO_FILE"}


@pytest.mark.asyncio
async def test_bad_upload_type(env):
    client, *_ = env
    resp = await client.post(
        "/photos/upload",
        headers=HEADERS,
        data={"uploadType": "cover"},
        files={"photo": ("a.jpg", make_jpeg(), "image/jpeg")},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_TYPE"


@pytest.mark.asyncio
async def test_wrong_format(env):
    client, *_ = env
    resp = await client.post(
        "/photos/upload",
        headers=HEADERS,
        data={"uploadType": "location"},
        files={"photo": ("shot.png", make_png(), "image/png")},
    )
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "File must be JPEG, HEIC, or TIFF format",
        "code": "INVALID_FILE_TYPE",
    }


@pytest.mark.asyncio
async def test_infected_upload_is_rejected(env):
    client, scanner, audit, _ = env
    scanner.verdict = ScanVerdict(
        infected=True, matched_signatures=["Win.Test.EICAR_HDB-1"], scanner_available=True
    )

    resp = await client.post(
        "/photos/upload",
        headers={**HEADERS, "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        data={"uploadType": "location"},
        files={"photo": ("evil.jpg", make_jpeg(), "image/jpeg")},
    )

    assert resp.status_code == 400
    assert resp.json() == {"error": "File failed security scan", "code": "SECURITY_VIOLATION"}
    assert audit.events[0][0] == "42"
    assert audit.events[0][3] == "203.0.113.9"


@pytest.mark.asyncio
async def test_issue_credential(env):
    client, *_ = env
    resp = await client.get("/photos/credential", params={"uploadType": "banner"}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"token", "signature", "expire", "publicKey"}
    assert body["publicKey"] == "public_test"


@pytest.mark.asyncio
async def test_issue_credential_bad_type(env):
    client, *_ = env
    resp = await client.get("/photos/credential", params={"uploadType": "x"}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_TYPE"


@pytest.mark.asyncio
async def test_credential_then_upload_spends_it_once(env):
    client, *_ = env
    cred = (
        await client.get("/photos/credential", params={"uploadType": "avatar"}, headers=HEADERS)
    ).json()
    form = {
        "uploadType": "avatar",
        "token": cred["token"],
        "signature": cred["signature"],
        "expire": str(cred["expire"]),
    }

    first = await client.post(
        "/photos/upload", headers=HEADERS, data=form,
        files={"photo": ("a.jpg", make_jpeg(), "image/jpeg")},
    )
    second = await client.post(
        "/photos/upload", headers=HEADERS, data=form,
        files={"photo": ("b.jpg", make_jpeg(), "image/jpeg")},
    )

    assert first.status_code == 201
    assert second.status_code == 500
    assert second.json() == {"error": "Upload credential already used", "code": "CREDENTIAL_REUSED"}


@pytest.mark.asyncio
async def test_scanner_status(env):
    client, *_ = env
    resp = await client.get("/photos/scanner")
    assert resp.status_code == 200
    assert resp.json()["posture"] == "disabled"
    assert resp.json()["disabled"] is True


@pytest.mark.asyncio
async def test_delete_photo(env):
    client, *_ = env
    resp = await client.delete("/photos/file_abc", headers=HEADERS)
    assert resp.status_code == 204


@pytest.mark.asyncio
async def test_report_orphan(env):
    client, _, _, orphans = env

    resp = await client.post(
        "/photos/orphans",
        headers=HEADERS,
        json={"assetId": "file_abc", "path": "/x/y.jpg", "reason": "record insert failed"},
    )

    assert resp.status_code == 202
    assert resp.json() == {"assetId": "file_abc", "queued": True}
    gap, user_id = orphans.recorded[0]
    assert (gap.asset_id, gap.reason, user_id) == ("file_abc", "record insert failed", "42")
