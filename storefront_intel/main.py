"""
main.py — Storefront Intelligence service

FastAPI app: lifespan wiring, request-ID middleware, structured error
handlers, health check, and router mounts.

Business Rules:
- Every response carries an 8-char X-Request-ID
- Errors are returned as ErrorResponse JSON
- Long-lived objects (pixel outbox, dispatcher, capture sessions, offer
  cache) are built once in the lifespan and stored on app.state
- Shutdown waits briefly for best-effort sends before closing the HTTP client

Called by: uvicorn (storefront_intel.main:app)
Depends on: config, logging_config, destinations, services/dispatcher,
            capture/session, cache/offer_cache, routers
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .cache.offer_cache import OfferCache
from .capture.session import SessionRegistry
from .config import settings
from .destinations import PixelOutbox, build_destinations, log_destination_status
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import capture, intelligence
from .schemas.errors import ErrorResponse
from .services.dispatcher import Dispatcher

log = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    log_destination_status()

    outbox = PixelOutbox()
    dispatcher = Dispatcher(build_destinations(settings, outbox))
    app.state.pixel_outbox = outbox
    app.state.dispatcher = dispatcher
    app.state.registry = SessionRegistry(dispatcher, settings)
    app.state.offer_cache = OfferCache(settings.offer_cache_ttl_seconds)
    log.info(f"Dispatcher ready with {len(dispatcher.destinations)} destinations")
    yield
    app.state.registry.close()
    await dispatcher.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await close_clients()


app = FastAPI(title="Storefront Intelligence", version="1.0.0", lifespan=lifespan)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    start = time.perf_counter()
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
    if response.status_code >= 500:
        log.error(f"[{request_id}] {request.method} {request.url.path} → {response.status_code}")
    return response


def _error(request: Request, status_code: int, error: str, detail: list | None = None) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", ""),
        path=request.url.path,
        detail=detail,
    )
    return JSONResponse(body.model_dump(), status_code=status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return _error(request, 422, "Validation error", detail)


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(intelligence.router)
app.include_router(capture.router)
