"""filedrop HTTP API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from filedrop.api.files import app_files
from filedrop.core.config.settings import settings
from filedrop.core.database.connection import init_db
from filedrop.features.storage.domain.errors import (
    Conflict,
    ConsistencyError,
    NotFound,
    StorageIOError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Storage root: {settings.STORAGE_ROOT}")
    settings.ensure_dirs()
    init_db()
    yield


app = FastAPI(
    title="filedrop",
    description=__doc__ if __doc__ else "",
    openapi_tags=[
        dict(name="files", description="Endpoints to upload, retrieve, and delete files"),
    ],
    lifespan=lifespan,
)
app.include_router(app_files)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "File not found"})


@app.exception_handler(StorageIOError)
async def storage_error_handler(request: Request, exc: StorageIOError):
    logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Storage error"})


@app.exception_handler(ConsistencyError)
@app.exception_handler(Conflict)
async def internal_error_handler(request: Request, exc: Exception):
    # Details are in the server log; don't leak storage layout to clients
    logger.error(f"Internal error on {request.method} {request.url.path}: {exc!r}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal Server Error"}
    )
