import pytest

from config import MB, Settings


@pytest.fixture
def settings():
    return Settings(
        app_env="development",
        imagekit_public_key="public_test",
        imagekit_private_key="private_test",
        imagekit_url_endpoint="https://ik.example.com/demo",
        imagekit_upload_url="https://upload.example.com/api/v1/files/upload",
        imagekit_api_url="https://api.example.com/v1",
        max_bytes={"location": 10 * MB, "avatar": 5 * MB, "banner": 10 * MB},
        target_bytes={"location": 2 * MB, "avatar": 1 * MB, "banner": 2 * MB},
    )


class MemoryLedger:
    def __init__(self):
        self.claimed: list[str] = []

    async def claim(self, token: str, ttl: int) -> bool:
        if token in self.claimed:
            return False
        self.claimed.append(token)
        return True


@pytest.fixture
def ledger():
    return MemoryLedger()
