"""
College ERP REST API: authentication, academics, fees, library, notices and timetables.
"""
import shutil
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi_mail import FastMail, ConnectionConfig
from sqlalchemy import text

import config
from database.connection import Database
from core.errors import register_exception_handlers
from core.logger import logger
from middleware.security import (
    InMemoryRateLimitStore, RateLimitMiddleware, SecurityHeadersMiddleware,
    setup_cors, setup_trusted_hosts
)
from middleware.auth_middleware import AuthRequiredMiddleware
from services.audit_service import AuditService
from routers.auth import router as auth_router
from routers.students import router as students_router
from routers.faculty import router as faculty_router
from routers.admin import router as admin_router
from routers.courses import router as courses_router
from routers.attendance import router as attendance_router
from routers.fees import router as fees_router
from routers.library import router as library_router
from routers.notices import router as notices_router
from routers.timetable import router as timetable_router


def build_mail_client():
    """FastMail client for verification and reset emails, or None without SMTP credentials."""
    if not (config.SMTP_USER and config.SMTP_PASSWORD):
        logger.warning("SMTP credentials not set (SMTP_USER/SMTP_PASSWORD). Emails will not be sent.")
        return None
    try:
        mail_conf = ConnectionConfig(
            MAIL_USERNAME=config.SMTP_USER,
            MAIL_PASSWORD=config.SMTP_PASSWORD,
            MAIL_FROM=config.SMTP_FROM_EMAIL or config.SMTP_USER,
            MAIL_FROM_NAME=config.SMTP_FROM_NAME,
            MAIL_PORT=config.SMTP_PORT,
            MAIL_SERVER=config.SMTP_HOST,
            MAIL_STARTTLS=config.SMTP_USE_TLS,
            MAIL_SSL_TLS=config.SMTP_USE_SSL,
            USE_CREDENTIALS=True,
            VALIDATE_CERTS=True,
        )
        logger.info("FastAPI-Mail initialized successfully")
        return FastMail(mail_conf)
    except Exception as e:
        logger.error(f"Failed to initialize FastAPI-Mail: {e}", exc_info=True)
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database and mail client on startup, release connections on shutdown."""
    logger.info("=" * 60)
    logger.info(f"Starting {config.APP_NAME} v{config.APP_VERSION}...")
    logger.info("=" * 60)

    try:
        config.db = Database(
            database_url=config.DATABASE_URL,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW
        )
        config.db.create_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise

    with config.db.get_session() as db:
        AuditService.purge_expired(db)

    app.state.mail = build_mail_client()

    logger.info(f"Server ready. Environment: {config.ENVIRONMENT}")
    logger.info("API Docs: http://localhost:8000/docs")

    yield

    logger.info("Shutting down...")
    if config.db:
        config.db.engine.dispose()
        logger.info("Database connections closed")


app = FastAPI(
    title=config.APP_NAME,
    description="College ERP backend: students, faculty, courses, attendance, fees, library, notices and timetables",
    version=config.APP_VERSION,
    lifespan=lifespan
)

# Shared by the global middleware limit and the per-route login/reset limiters
rate_limit_store = InMemoryRateLimitStore()
app.state.rate_limit_store = rate_limit_store
app.state.mail = None

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    store=rate_limit_store,
    max_requests=config.RATE_LIMIT_MAX_REQUESTS,
    window_seconds=config.RATE_LIMIT_WINDOW_MINUTES * 60
)
app.add_middleware(AuthRequiredMiddleware)
setup_cors(app, config.CORS_ORIGINS)
if config.ENVIRONMENT == "production":
    setup_trusted_hosts(app, config.TRUSTED_HOSTS)

register_exception_handlers(app)

app.include_router(auth_router)
app.include_router(students_router, prefix="/api/student")
app.include_router(students_router, prefix="/api/students", include_in_schema=False)
app.include_router(faculty_router)
app.include_router(admin_router)
app.include_router(courses_router)
app.include_router(attendance_router)
app.include_router(fees_router)
app.include_router(library_router)
app.include_router(notices_router)
app.include_router(timetable_router)

# Course materials uploaded by faculty
app.mount("/uploads", StaticFiles(directory=str(config.UPLOADS_DIR), check_dir=False), name="uploads")


@app.get("/")
async def root():
    """Root endpoint with API information. Public endpoint."""
    return {
        "message": config.APP_NAME,
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring. Public endpoint."""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": config.ENVIRONMENT,
        "checks": {}
    }

    try:
        if config.db is None:
            health_status["checks"]["database"] = {"status": "error", "error": "not initialized"}
            health_status["status"] = "degraded"
        else:
            with config.db.get_session() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "ok"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "error", "error": str(e)}
        health_status["status"] = "degraded"

    try:
        disk_usage = shutil.disk_usage(config.UPLOADS_DIR)
        free_gb = disk_usage.free / (1024 ** 3)
        health_status["checks"]["disk"] = {
            "free_gb": round(free_gb, 2),
            "percent_free": round((disk_usage.free / disk_usage.total) * 100, 2)
        }
        if free_gb < 1:
            health_status["status"] = "degraded"
    except OSError as e:
        health_status["checks"]["disk"] = {"error": str(e)}

    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
