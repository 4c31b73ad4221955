"""FastAPI application setup for Chat Archive."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chat_archive.api.dependencies import get_app_settings, get_database
from chat_archive.api.routes_admin import router as admin_router
from chat_archive.api.routes_query import router as query_router
from chat_archive.api.routes_sync import router as sync_router
from chat_archive.core.errors import StorageError
from chat_archive.core.logging import configure_logging

configure_logging()

app = FastAPI(
    title="Chat Archive",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(sync_router, prefix="", tags=["sync"])
app.include_router(query_router, prefix="", tags=["query"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_database()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
