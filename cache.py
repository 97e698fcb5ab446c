import os

from dotenv import load_dotenv
from redis import asyncio as aioredis

Redis = aioredis.Redis
from_url = aioredis.from_url

load_dotenv()

_redis: Redis | None = None
CREDENTIAL_KEY_PREFIX = "credential:used:"


def _build_redis_url() -> str:
    if raw := os.getenv("REDIS_URL"):
        return raw

    host = os.getenv("REDIS_HOST", "localhost")
    port = os.getenv("REDIS_PORT", "6379")
    db = os.getenv("REDIS_DB", "0")
    return f"redis://{host}:{port}/{db}"


REDIS_URL = _build_redis_url()


async def init_redis() -> Redis:
    """Create a single async Redis client for the process."""
    global _redis
    if _redis is None:
        _redis = from_url(
            REDIS_URL,
            decode_responses=True,
        )
    return _redis


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.close()
        _redis = None


def make_credential_key(token: str) -> str:
    return f"{CREDENTIAL_KEY_PREFIX}{token}"


async def claim_credential(token: str, ttl: int, r: Redis | None = None) -> bool:
    """Mark a signed credential as spent. False if it was spent before."""
    r = r or await init_redis()
    return bool(await r.set(make_credential_key(token), "1", ex=max(int(ttl), 1), nx=True))


class RedisCredentialLedger:
    """Single-use bookkeeping for upload credentials, shared across workers."""

    def __init__(self, r: Redis | None = None):
        self._r = r

    async def claim(self, token: str, ttl: int) -> bool:
        return await claim_credential(token, ttl, self._r)
