"""StudioBook API application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studiobook.core.config import settings
from studiobook.core.errors import (
    AlreadyCancelledError,
    BookingError,
    InsufficientPointsError,
    InvalidCapError,
    InvalidRangeError,
    MisalignedSlotError,
    NotFoundError,
    PastSlotError,
    PeakQuotaExceededError,
    SlotConflictError,
    StoreContentionError,
)
from studiobook.routes import admin, bookings

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidRangeError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    MisalignedSlotError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PastSlotError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InsufficientPointsError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PeakQuotaExceededError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidCapError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    SlotConflictError: status.HTTP_409_CONFLICT,
    AlreadyCancelledError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    StoreContentionError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url=f"{settings.api_prefix}/docs",
    openapi_url=f"{settings.api_prefix}/openapi.json",
    lifespan=lifespan,
)

# CORS - permissive in dev, lock down in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Render engine errors as {rule, message} with a status code per error class."""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": [{"rule": exc.rule, "message": exc.message}]},
    )


# Mount routes
app.include_router(bookings.router, prefix=settings.api_prefix)
app.include_router(admin.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
