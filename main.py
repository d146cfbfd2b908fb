"""
FastAPI Application Entry Point
Seller Analytics - order import and reconciliation backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from contextvars import ContextVar
from typing import Callable, Optional
import asyncio
import json
import logging
import os
import sys
import time
import uuid as _uuid

import settings
from database import init_db, check_db_health, get_pool_status
from routers import (
    uploads,
    shipping,
    cogs,
    preferences,
)
from routes.admin_routes import router as admin_router

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)


# ---- Logging setup (JSON lines, one per record) ----
class JsonFormatter(logging.Formatter):
    """Structured log line carrying the request id and tenant of the current request."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = request_id_var.get()
        if request_id:
            payload["requestId"] = request_id
        tenant_id = tenant_id_var.get()
        if tenant_id:
            payload["tenant"] = tenant_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)  # RequestContextMiddleware logs each request
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # bump to INFO to see SQL
    logging.getLogger("openpyxl").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Seller Analytics API",
    description="Marketplace order import, reconciliation and cost tracking",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
)


# ---- Request context + access logging ----
class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        request.state.request_id = request_id
        rid_token = request_id_var.set(request_id)
        tenant_token = tenant_id_var.set(settings.sanitize_tenant_id(request.headers.get("X-Tenant-Id")))
        start = time.perf_counter()
        try:
            # Upload bodies are never read here
            logger.info(f"REQ {request.method} {request.url.path}")
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(f"Uncaught exception in {request.method} {request.url.path}")
                raise
            dur_ms = int((time.perf_counter() - start) * 1000)
            logger.info(f"RES {request.method} {request.url.path} status={response.status_code} durMs={dur_ms}")
            response.headers["X-Request-Id"] = request_id
            return response
        finally:
            tenant_id_var.reset(tenant_token)
            request_id_var.reset(rid_token)


app.add_middleware(RequestContextMiddleware)


@app.get("/")
async def root():
    return {"ok": True, "service": "seller-analytics"}


@app.get("/healthz")
async def healthz():
    """Liveness probe, no database access."""
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    db_health = await check_db_health()
    return {
        "status": "healthy" if db_health["status"] == "healthy" else "degraded",
        "database": db_health,
        "timestamp": time.time(),
    }


@app.get("/api/health/pool")
async def api_health_pool():
    return {"pool": await get_pool_status(), "timestamp": time.time()}


# --- Error handlers: every error body is {"error": ...} ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"error": "Validation failed", "detail": exc.errors()})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "requestId": getattr(request.state, "request_id", None)},
    )


# --- Routers ---
app.include_router(uploads.router, prefix="/api", tags=["uploads"])
app.include_router(shipping.router, prefix="/api", tags=["shipping"])
app.include_router(cogs.router, prefix="/api", tags=["cogs"])
app.include_router(preferences.router, prefix="/api", tags=["preferences"])
app.include_router(admin_router, prefix="/api", tags=["admin"])


@app.on_event("startup")
async def startup():
    logger.info("Starting Seller Analytics API...")
    if not settings.INIT_DB_ON_STARTUP:
        logger.info("Skipping DB init on startup (schema is managed by alembic)")
        return
    try:
        await asyncio.wait_for(init_db(), timeout=settings.INIT_DB_TIMEOUT_SECONDS)
        logger.info("Database tables created")
    except asyncio.TimeoutError:
        logger.error(f"DB init timed out after {settings.INIT_DB_TIMEOUT_SECONDS}s, continuing without init")
    except Exception as e:
        logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down Seller Analytics API...")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8080)))
