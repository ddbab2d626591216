"""
Delivery Market - Main FastAPI Application
"""
from fastapi import FastAPI

from delivery_market import __version__
from delivery_market.api.routes import router as api_router
from delivery_market.core.config import settings
from delivery_market.core.logging import get_logger, setup_logging
from delivery_market.core.middleware import setup_exception_handlers, setup_middleware
from delivery_market.db.change_feed import ChangeFeed
from delivery_market.db.database import Base, engine

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME,
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {
        "name": "Deliveries",
        "description": "Create deliveries, claim them, advance through the lifecycle, attach proof and feedback.",
    },
    {"name": "Wallets", "description": "Driver balance and append-only transaction ledger."},
    {"name": "Analytics", "description": "Seller counters and driver earnings windows."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version=__version__,
    description="Delivery marketplace connecting sellers with independent drivers.",
    openapi_tags=_OPENAPI_TAGS,
)

# one feed per process; stores publish committed writes to it
app.state.feed = ChangeFeed()

setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    # import registers every model on Base.metadata
    import delivery_market.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    from delivery_market.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get("/health", tags=["Health"], summary="Liveness check")
async def health_check() -> dict[str, str]:
    """התהליך חי ומגיב - לא בודק תלויות חיצוניות."""
    return {"status": "healthy"}
