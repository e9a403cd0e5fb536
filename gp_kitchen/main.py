"""
GP Kitchen
FastAPI application entry point

Run with:
    uvicorn gp_kitchen.main:app --host 0.0.0.0 --port 8002
    python -m gp_kitchen.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gp_kitchen import __version__
from gp_kitchen.config import settings
from gp_kitchen.db import (
    DatabaseUnavailableError,
    close_connections,
    ensure_indexes,
    init_mongodb,
    init_redis,
)
from gp_kitchen.models.response import ApiResponse
from gp_kitchen.routers import admin, auth, cache, cookbooks, health, items, recipes
from gp_kitchen.scheduler import shutdown_scheduler, start_scheduler
from gp_kitchen.services.auth_service import get_auth_service
from gp_kitchen.services.item_service import get_item_service

# ── Logging ───────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks"""
    logger.info("=" * 60)
    logger.info(f"GP Kitchen v{__version__} starting")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   Dev mode  : {settings.DEV_MODE}")
    logger.info("=" * 60)

    # a failed connection is logged and the service starts degraded
    mongo_ok = await init_mongodb()
    redis_ok = await init_redis()

    if mongo_ok:
        await ensure_indexes()
        await get_item_service().ensure_coins()
        await get_auth_service().ensure_admin()
        if not redis_ok:
            logger.warning("Redis unavailable, history cache falls back to MongoDB + files")
    else:
        logger.warning("MongoDB unavailable, data routes will answer 503")

    poller = mongo_ok and settings.POLLER_ENABLED
    if poller:
        start_scheduler()

    yield

    logger.info("GP Kitchen shutting down...")
    if poller:
        shutdown_scheduler()
    await close_connections()
    logger.info("GP Kitchen stopped")


# ── Application ───────────────────────────────────────────
app = FastAPI(
    title="GP Kitchen",
    description=(
        "Grand Exchange recipe profit tracker:\n"
        "- recipes of input and output items, profit after GE tax\n"
        "- instant and patient pricing modes\n"
        "- admin-curated cookbooks users can import\n"
        "- prices and volumes polled from the OSRS Wiki prices API\n\n"
        "**Layers**\n"
        "```\n"
        "Acquisition Layer  ← prices API and icon cache\n"
        "Cache Layer        ← Redis / MongoDB / file cache\n"
        "Processing Layer   ← volume aggregation\n"
        "Analysis Layer     ← GE tax and profit\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS ──────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[auth.CSRF_HEADER],
)


# ── Request timing ────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── Exception handlers ────────────────────────────────────
def _envelope(status_code: int, error: str, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse.fail(error=error, message=message).model_dump(),
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = str(exc.detail)
    return _envelope(exc.status_code, detail, detail, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    return _envelope(422, "Invalid request", problems)


@app.exception_handler(DatabaseUnavailableError)
async def database_unavailable_handler(request: Request, exc: DatabaseUnavailableError):
    logger.warning(f"{request.method} {request.url.path}: {exc}")
    return _envelope(503, "Database unavailable", str(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _envelope(500, "Internal server error", str(exc))


# ── Routers ───────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(items.router)
app.include_router(recipes.router)
app.include_router(cookbooks.router)
app.include_router(admin.router)
app.include_router(cache.router)


# ── Root ──────────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "GP Kitchen",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


def run() -> None:
    uvicorn.run(
        "gp_kitchen.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


# ── Direct run ────────────────────────────────────────────
if __name__ == "__main__":
    run()
