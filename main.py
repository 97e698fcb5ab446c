import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import celery_app  # noqa: F401  (binds shared tasks to the configured broker)
from cache import RedisCredentialLedger, close_redis, init_redis
from config import get_settings
from database import create_tables
from media.errors import MediaError
from media.scanner import Scanner
from media.uploader import RemoteUploader
from routers import photos

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if get_settings().create_tables:
        await create_tables()

    scanner = Scanner.from_settings()
    await run_in_threadpool(scanner.connect)
    redis_client = await init_redis()
    uploader = RemoteUploader(ledger=RedisCredentialLedger(redis_client))

    app.state.scanner = scanner
    app.state.redis = redis_client
    app.state.uploader = uploader
    logger.info("Scanner %s (%s)", "available" if scanner.available else "unavailable", scanner.posture.value)
    try:
        yield
    finally:
        await uploader.aclose()
        await close_redis()


app = FastAPI(title="Media Ingest API", lifespan=lifespan)

origins = [
    "http://127.0.0.1:3000",
    "http://localhost:3000",
    "http://127.0.0.1:8000",
    "http://localhost:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MediaError)
async def media_error_handler(request: Request, exc: MediaError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = "UNAUTHORIZED" if exc.status_code == 401 else f"HTTP_{exc.status_code}"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": code},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request", "code": "INVALID_REQUEST"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Upload failed", "code": "UPLOAD_ERROR"})


@app.get("/health")
async def health():
    return {"ok": True}


app.include_router(photos.router)
