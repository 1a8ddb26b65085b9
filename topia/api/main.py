"""
topia.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn topia.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from topia.api.deps import get_engine  # noqa: E402
from topia.api.routes.currency import router as currency_router  # noqa: E402
from topia.errors import (  # noqa: E402
    AlreadyClaimed,
    CurrencyError,
    InsufficientBalance,
    InvalidAmount,
    InvalidSettings,
    NotCurrencyManager,
    RepositoryError,
    SelfTransfer,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[CurrencyError], int] = {
    InvalidAmount: status.HTTP_400_BAD_REQUEST,
    InvalidSettings: status.HTTP_400_BAD_REQUEST,
    SelfTransfer: status.HTTP_400_BAD_REQUEST,
    NotCurrencyManager: status.HTTP_403_FORBIDDEN,
    InsufficientBalance: status.HTTP_409_CONFLICT,
    AlreadyClaimed: status.HTTP_409_CONFLICT,
    RepositoryError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — release pooled connections on exit."""
    logger.info("Topia API started")
    yield
    if get_engine.cache_info().currsize:
        get_engine().dispose()
    logger.info("Topia API shutting down")


app = FastAPI(
    title="Topia Dashboard API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(currency_router, prefix="/api")


@app.exception_handler(CurrencyError)
async def currency_error_handler(request: Request, exc: CurrencyError) -> JSONResponse:
    code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, RepositoryError):
        logger.error("%s %s → %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}
