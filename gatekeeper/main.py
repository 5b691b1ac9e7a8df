import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatekeeper.config import settings
from gatekeeper.database import Base, engine
from gatekeeper.exception_handlers import register_exception_handlers
from gatekeeper.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from gatekeeper.middleware.rate_limit import configure_rate_limiting
from gatekeeper.routes import auth, two_factor
from gatekeeper.scheduler import shutdown_scheduler, start_scheduler
from gatekeeper.utils.nonce_cache import close_nonce_cache, get_nonce_cache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up the application...")
    if settings.debug:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (if not existing).")

    await get_nonce_cache()
    start_scheduler()
    yield

    logger.info("Shutting down the application...")
    shutdown_scheduler()
    await close_nonce_cache()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    setup_structured_logging(settings.log_level, json_format=settings.log_json)

    app = FastAPI(
        title=settings.app_name,
        description="Two-factor authentication service",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(StructuredLoggingMiddleware)

    register_exception_handlers(app)
    configure_rate_limiting(app)

    app.include_router(auth.router, prefix="/api/v1/auth")
    app.include_router(two_factor.router, prefix="/api/v1/2fa")

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
