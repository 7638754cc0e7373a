"""Loyalty DAO Governance API - Main Application"""
import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from loyalty_dao.config import get_settings
from loyalty_dao.api.v1.router import api_router
from loyalty_dao.errors import GovernanceError, error_payload
from loyalty_dao.models.database import init_db, close_db
from loyalty_dao.services.sweeper import start_proposal_sweeper, stop_proposal_sweeper

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
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Loyalty DAO API", version=settings.app_version)

    await init_db()
    logger.info("Database initialized")

    # Resolve closed voting windows and execute passed proposals in the background
    if settings.sweeper_enabled:
        await start_proposal_sweeper(
            interval_seconds=settings.sweep_interval_seconds,
            auto_execute=settings.auto_execute,
        )

    yield

    # Cleanup
    await stop_proposal_sweeper()
    await close_db()
    logger.info("Loyalty DAO API shutdown complete")


async def governance_error_handler(request: Request, exc: GovernanceError) -> JSONResponse:
    """Render governance errors as structured JSON"""
    if exc.status_code >= 500:
        logger.error("Governance request failed", path=request.url.path, error=exc.code, detail=exc.detail)
    else:
        logger.info("Governance request rejected", path=request.url.path, error=exc.code, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=error_payload(exc, path=request.url.path))


def create_app() -> FastAPI:
    """Create FastAPI application"""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Governance and parameter-change proposals for loyalty programs",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GovernanceError, governance_error_handler)

    # Include routers
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": settings.app_version,
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "loyalty_dao.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
