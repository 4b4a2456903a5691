# school_admin/main.py - FastAPI application entry point
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import traceback
import time

from school_admin.core.config import settings
from school_admin.core.db import db_manager, get_engine, health_check as db_health_check
from school_admin.models import Base
from school_admin.api.routers import academic, students, enrollments, fees, invoices, clearances


logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting {settings.API_TITLE} ({settings.ENV})")
    logger.info(f"Database URL: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'local'}")

    engine = get_engine()

    # Migrations own the schema outside development
    if settings.is_development:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)

    yield

    logger.info(f"Shutting down {settings.API_TITLE}")
    db_manager.close()


app = FastAPI(
    title=settings.API_TITLE,
    description="Student onboarding, fee assignment, invoicing and clearance",
    version=settings.API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")
    return response


app.add_middleware(CORSMiddleware, **settings.get_cors_config())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    logger.error(traceback.format_exc())
    if settings.is_development and settings.DEBUG:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
def health():
    return {
        "status": "healthy",
        "environment": settings.ENV,
        "version": settings.API_VERSION,
        "database": db_health_check(),
    }


app.include_router(academic.router, prefix="/api/academic", tags=["Academic Calendar"])
app.include_router(students.router, prefix="/api/students", tags=["Students"])
app.include_router(enrollments.router, prefix="/api/enrollments", tags=["Enrollments"])
app.include_router(fees.router, prefix="/api/fees", tags=["Fees"])
app.include_router(invoices.router, prefix="/api/invoices", tags=["Invoices"])
app.include_router(clearances.router, prefix="/api/clearances", tags=["Clearances"])
