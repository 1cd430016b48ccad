"""
CRM Notifications API - Main Application

SECURITY FEATURES:
- Conditional API docs (disabled in production by default)
- Structured logging without sensitive data
- Production-hardened configuration
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from crm_notifications.api.v2.router import api_router
from crm_notifications.config import settings
from crm_notifications.core.sentry import init_sentry
from crm_notifications.database import async_session_maker, init_db
from crm_notifications.exceptions import CRMException, RepositoryError, create_exception_handlers
from crm_notifications.services.event_sources import InMemoryEventSource, PostgresEventSource
from crm_notifications.services.websocket_manager import NotificationConnectionManager
from crm_notifications.tasks.connection_sweeper import start_connection_sweeper, stop_connection_sweeper

# Import all models to register them with SQLAlchemy metadata before init_db()
from crm_notifications.models import User, UserNotification, UserSettings  # noqa: F401

# Configure secure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_event_source():
    if settings.REALTIME_BACKEND == "postgres":
        return PostgresEventSource(settings.asyncpg_dsn, channel=settings.REALTIME_CHANNEL)
    return InMemoryEventSource()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting CRM Notifications API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    init_sentry()
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        # SECURITY: Don't log full exception details which may contain credentials
        logger.error(f"Database initialization failed: {type(e).__name__}")
        logger.warning("App starting without database - some features may not work")

    event_source = build_event_source()
    manager = NotificationConnectionManager(event_source)
    app.state.event_source = event_source
    app.state.connection_manager = manager
    app.state.session_factory = async_session_maker
    logger.info(f"Realtime backend: {settings.REALTIME_BACKEND}")

    start_connection_sweeper(manager)
    yield
    # Shutdown
    logger.info("Shutting down CRM Notifications API...")
    stop_connection_sweeper()
    await manager.shutdown()


# SECURITY: Conditionally enable docs based on settings
docs_url = "/docs" if settings.DOCS_ENABLED else None
redoc_url = "/redoc" if settings.DOCS_ENABLED else None

app = FastAPI(
    title="CRM Notifications API",
    description="In-app notifications, preferences and realtime delivery for the sales CRM",
    version=settings.VERSION,
    docs_url=docs_url,
    redoc_url=redoc_url,
    lifespan=lifespan,
)

# CORS middleware
# SECURITY: Restrict origins to known frontend URLs
allowed_origins = [settings.FRONTEND_URL]
if not settings.is_production:
    allowed_origins.extend([
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# RFC 7807 error responses
handlers = create_exception_handlers()
app.add_exception_handler(CRMException, handlers["crm"])
app.add_exception_handler(StarletteHTTPException, handlers["http"])
app.add_exception_handler(RequestValidationError, handlers["validation"])
app.add_exception_handler(RepositoryError, handlers["repository"])
app.add_exception_handler(Exception, handlers["generic"])

# Include routers
app.include_router(api_router, prefix="/api/v2")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    response = {
        "name": "CRM Notifications API",
        "version": settings.VERSION,
        "health": "/health",
    }
    if settings.DOCS_ENABLED:
        response["docs"] = "/docs"
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crm_notifications.main:app",
        host="0.0.0.0",
        port=5001,
        reload=settings.DEBUG,
    )
