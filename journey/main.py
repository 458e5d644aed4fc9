"""FastAPI application entry point."""
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from journey.config import get_settings
from journey.api import graph, layout, exchange

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Journey graph editing, validation and auto-layout",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware for the canvas frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(graph.router, prefix="/api", tags=["graph"])
app.include_router(layout.router, prefix="/api", tags=["layout"])
app.include_router(exchange.router, prefix="/api", tags=["exchange"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "0.1.0",
        "storage_backend": settings.storage_backend,
    }


@app.on_event("startup")
async def startup_event():
    """Application startup handler."""
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        debug=settings.debug,
        storage_backend=settings.storage_backend,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown handler. Writes any edit still waiting for the autosave."""
    from journey.services.session import _session

    if _session is not None:
        await _session.flush()
    logger.info("application_shutdown")
