"""
Main FastAPI application for CivicSense
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import logging
import os
import time

from civicsense.config import settings
from civicsense.db.database import init_db
from civicsense.errors import CivicSenseError
from civicsense.api import auth, issues, stats, classify, system
from civicsense.services.storage_service import LocalImageStore, image_store

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting CivicSense API ({settings.APP_ENV})...")
    init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down CivicSense API...")


app = FastAPI(
    title="CivicSense API",
    description="Civic issue reporting with community verification and authority workflow",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed = time.time() - start
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    logger.debug(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.3f}s)")
    return response


# Error handlers

@app.exception_handler(CivicSenseError)
async def civicsense_error_handler(request: Request, exc: CivicSenseError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    body = {"success": False, "error": exc.message, "code": exc.code}
    if exc.detail is not None:
        body["detail"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Validation failed",
            "code": "ValidationError",
            "errors": errors,
        }
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    body = {"success": False, "error": "Internal server error", "code": "InternalError"}
    if settings.APP_DEBUG and not settings.is_production:
        body["detail"] = str(exc)
    return JSONResponse(status_code=500, content=body)


# Include routers
prefix = settings.API_PREFIX
app.include_router(system.router, prefix=prefix, tags=["System"])
app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["Auth"])
app.include_router(issues.router, prefix=f"{prefix}/issues", tags=["Issues"])
app.include_router(stats.router, prefix=f"{prefix}/stats", tags=["Stats"])
app.include_router(classify.router, prefix=f"{prefix}/classify", tags=["Classify"])

# Locally stored uploads
if isinstance(image_store, LocalImageStore):
    os.makedirs(image_store.root, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=image_store.root), name="uploads")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "CivicSense API",
        "version": "1.0.0",
        "status": "running"
    }
