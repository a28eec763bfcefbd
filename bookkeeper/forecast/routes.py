"""Cash flow forecast API routes."""
import logging
import uuid
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from bookkeeper.config import settings
from bookkeeper.database import AsyncSessionLocal
from bookkeeper.forecast.engine import CashFlowEngine, InvalidForecastHorizon
from bookkeeper.forecast.schemas import (
    ForecastResponse,
    RegenerateForecastRequest,
    RegenerateForecastResponse,
    StoredForecastDayResponse,
)
from bookkeeper.forecast.sources import ForecastDataError, ForecastRepository
from bookkeeper.locks.manager import LockResource, LockUnavailable, SyncLockManager, get_lock_manager

logger = logging.getLogger(__name__)

router = APIRouter()


def get_forecast_repository() -> ForecastRepository:
    return ForecastRepository(AsyncSessionLocal)


def get_cashflow_engine(
    repository: ForecastRepository = Depends(get_forecast_repository),
) -> CashFlowEngine:
    """Build an engine wired to the application database and settings."""
    return CashFlowEngine.from_settings(AsyncSessionLocal, settings, repository=repository)


@router.get("/forecast", response_model=ForecastResponse)
async def get_forecast(
    days: int = Query(settings.FORECAST_DEFAULT_DAYS, description="Forecast horizon in days"),
    scenarios: bool = Query(False, description="Include best/worst case bands"),
    engine: CashFlowEngine = Depends(get_cashflow_engine),
):
    """
    Generate a daily cash flow forecast.

    Args:
        days: Horizon length (1 to FORECAST_MAX_DAYS)
        scenarios: Whether to include best/worst case bands

    Returns:
        Daily forecast with summary. ``persisted`` is false when the rows
        could not be stored.
    """
    try:
        result = await engine.generate_forecast(days, include_scenarios=scenarios)
        return ForecastResponse.from_result(result)
    except InvalidForecastHorizon as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ForecastDataError as e:
        raise HTTPException(status_code=503, detail=f"Forecast data unavailable: {str(e)}")
    except Exception as e:
        logger.error(f"Error generating forecast: {e}")
        raise HTTPException(status_code=500, detail=f"Error generating forecast: {str(e)}")


@router.post("/forecast", response_model=RegenerateForecastResponse)
async def regenerate_forecast(
    request: RegenerateForecastRequest,
    engine: CashFlowEngine = Depends(get_cashflow_engine),
    locks: SyncLockManager = Depends(get_lock_manager),
):
    """
    Recompute and re-persist the forecast.

    With ``regenerate`` set, stored rows from today onwards are replaced in
    the same transaction as the new rows, so a failed run keeps them. The
    run holds the forecast lock so two regenerations cannot interleave.
    """
    holder = f"forecast-api-{uuid.uuid4().hex[:8]}"
    try:
        engine.validate_horizon(request.days)
        async with locks.with_lock(LockResource.CASHFLOW_FORECAST, holder):
            result = await engine.generate_forecast(
                request.days, include_scenarios=True, regenerate=request.regenerate
            )

        return RegenerateForecastResponse(
            success=True,
            days_generated=len(result.forecast),
            message=(
                f"Generated {len(result.forecast)} days of forecast"
                if result.persisted
                else f"Generated {len(result.forecast)} days of forecast but failed to store them"
            ),
            persisted=result.persisted,
        )
    except InvalidForecastHorizon as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LockUnavailable as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ForecastDataError as e:
        raise HTTPException(status_code=503, detail=f"Forecast data unavailable: {str(e)}")
    except Exception as e:
        logger.error(f"Error regenerating forecast: {e}")
        raise HTTPException(status_code=500, detail=f"Error regenerating forecast: {str(e)}")


@router.get("/forecast/stored", response_model=List[StoredForecastDayResponse])
async def get_stored_forecast(
    start: Optional[date] = Query(None, description="First date (default today)"),
    end: Optional[date] = Query(None, description="Last date (default start + default horizon)"),
    repository: ForecastRepository = Depends(get_forecast_repository),
):
    """Return previously persisted forecast rows."""
    start = start or date.today()
    end = end or start + timedelta(days=settings.FORECAST_DEFAULT_DAYS - 1)
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")

    try:
        return await repository.list_range(start, end)
    except Exception as e:
        logger.error(f"Error loading stored forecast: {e}")
        raise HTTPException(status_code=500, detail=f"Error loading stored forecast: {str(e)}")
