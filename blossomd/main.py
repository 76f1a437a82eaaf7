"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from blossomd.config import get_settings
from blossomd.errors import CORS_HEADERS, BlossomError
from blossomd.files.routes import router as blossom_router
from blossomd.files.service import BlobStorage
from blossomd.limiter import limiter
from blossomd.whitelist.routes import router as admin_router
from blossomd.whitelist.service import ConfigStore

log = logging.getLogger(__name__)

EXPOSE_HEADERS = "X-Reason, Content-Range, Content-Length, Accept-Ranges"


def _setup_logging() -> None:
    """Configure logging from settings (stderr always; optional file)."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("blossomd")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and settings.log_file.strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)


_setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load config, warm the hash cache and start watching on startup; stop on shutdown."""
    settings = get_settings()
    config_store = ConfigStore(settings.config_file)
    config_store.initialize()
    storage = BlobStorage(
        settings.blob_path,
        settings.cache_file,
        watch_enabled=settings.watch_enabled,
        force_polling=settings.watch_force_polling,
        debounce_ms=settings.watch_debounce_ms,
        sweep_interval=settings.sweep_interval_seconds,
        wait_for_initial_scan=settings.wait_for_initial_scan,
    )
    app.state.settings = settings
    app.state.config_store = config_store
    app.state.storage = storage
    log.info("Startup: blob dir %s", storage.blob_dir)
    await storage.start()
    log.info("Startup complete (%d cached blobs)", storage.entry_count)
    yield
    log.info("Shutdown")
    await storage.stop()


app = FastAPI(title="blossomd", version="0.1.0", lifespan=lifespan)


@app.middleware("http")
async def add_default_headers(request: Request, call_next):
    """Every response is readable cross-origin; no content sniffing."""
    response = await call_next(request)
    response.headers.setdefault("Access-Control-Allow-Origin", "*")
    response.headers.setdefault("Access-Control-Expose-Headers", EXPOSE_HEADERS)
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


@app.exception_handler(BlossomError)
async def blossom_exception_handler(request: Request, exc: BlossomError):
    return exc.to_response()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Framework errors (unknown route, wrong method) also carry X-Reason."""
    detail = exc.detail if isinstance(exc.detail, str) else "Request error"
    headers = {**CORS_HEADERS, "X-Reason": detail, **(exc.headers or {})}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Return generic 500 without leaking stack trace or internals."""
    if isinstance(exc, HTTPException):
        raise exc
    log.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers={**CORS_HEADERS, "X-Reason": "Internal server error"},
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.get("/health")
@limiter.exempt
def health() -> JSONResponse:
    """Liveness check. Exempt from rate limiting."""
    return JSONResponse(content={"status": "ok"})


app.include_router(admin_router)
app.include_router(blossom_router)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("blossomd.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
