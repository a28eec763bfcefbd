"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bookkeeper import __version__
from bookkeeper.budgets import routes as budget_routes
from bookkeeper.config import settings
from bookkeeper.database import AsyncSessionLocal
from bookkeeper.forecast import routes as forecast_routes
from bookkeeper.locks.manager import SyncLockManager
from bookkeeper.middleware.rate_limit import limiter, setup_rate_limiting
from bookkeeper.xero import routes as xero_routes
from bookkeeper.xero.rate_limiter import RateLimiterRegistry
from bookkeeper.xero.scheduler import CashFlowSyncScheduler, setup_apscheduler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create process-wide managers at start-up and dispose of them at shutdown."""
    lock_manager = SyncLockManager(
        default_timeout=settings.LOCK_DEFAULT_TIMEOUT_SECONDS,
        cleanup_interval=settings.LOCK_CLEANUP_INTERVAL_SECONDS,
    )
    lock_manager.start()
    app.state.lock_manager = lock_manager
    app.state.rate_limiters = RateLimiterRegistry(settings)

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        jobs = CashFlowSyncScheduler(AsyncSessionLocal, lock_manager, app.state.rate_limiters, settings)
        scheduler = AsyncIOScheduler()
        setup_apscheduler(scheduler, jobs, settings)
        scheduler.start()
    logger.info(f"Bookkeeper API {__version__} started ({settings.APP_ENV})")

    yield

    if scheduler:
        scheduler.shutdown(wait=False)
    await lock_manager.stop()
    app.state.rate_limiters.clear()
    logger.info("Bookkeeper API stopped")


# Create FastAPI app
app = FastAPI(
    title="Bookkeeper API",
    description="Xero-synced bookkeeping with daily cash flow forecasting",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)

# Include routers
app.include_router(forecast_routes.router, prefix=f"{settings.API_V1_PREFIX}/cashflow", tags=["Cash Flow Forecast"])
app.include_router(budget_routes.router, prefix=f"{settings.API_V1_PREFIX}/cashflow", tags=["Budgets"])
app.include_router(xero_routes.router, prefix=f"{settings.API_V1_PREFIX}/xero", tags=["Xero"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Bookkeeper API",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
@limiter.exempt
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bookkeeper.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
