from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from contextlib import asynccontextmanager

from docservice.config import get_settings
from docservice.database import check_db_connection, init_db
from docservice.api.retention_routes import router as retention_router
from docservice.api.document_routes import router as document_router
from docservice.metrics import metrics_router, metrics_middleware
from docservice.services.scheduler import start_scheduler, stop_scheduler
from docservice.services.retention_runtime import shutdown_retention_runtime
from docservice.logging_config import setup_logging, log_requests_middleware
from docservice.error_handlers import register_error_handlers

settings = get_settings()

# Configure production logging with rotation
setup_logging(
    log_level=settings.log_level,
    log_dir=settings.log_dir,
    app_name="docservice-api",
    enable_json=settings.log_json
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown tasks"""
    # Startup
    logger.info("Starting application...")

    if settings.auto_create_tables:
        init_db()
        logger.info("Database tables created")

    # Celery beat owns periodic runs when Celery is enabled
    scheduler_enabled = settings.enable_retention_scheduler and not settings.use_celery
    if scheduler_enabled:
        start_scheduler()
        logger.info("Retention scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if scheduler_enabled:
        stop_scheduler()
        logger.info("Retention scheduler stopped")
    shutdown_retention_runtime()


app = FastAPI(
    title=settings.app_name,
    description="HR document retention and lifecycle policy engine",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
)

# Add CORS middleware
cors_origins = settings.cors_origin_list or (["*"] if settings.debug else [])
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register error handlers
register_error_handlers(app)

# Add request logging middleware
if settings.enable_request_logging:
    app.middleware("http")(log_requests_middleware)

# Include API routers
app.include_router(retention_router, prefix="/api")
app.include_router(document_router, prefix="/api")
app.include_router(metrics_router)

# Add metrics collection middleware
app.middleware("http")(metrics_middleware)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "HR Document Retention Service",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint with database connectivity test"""
    db_connected = check_db_connection()

    logger.debug("Health check performed", extra={"db_connected": db_connected})

    return {
        "status": "healthy" if db_connected else "unhealthy",
        "service": settings.app_name,
        "database": "connected" if db_connected else "disconnected"
    }
