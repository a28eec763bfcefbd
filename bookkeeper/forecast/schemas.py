"""Cash flow forecast request/response schemas."""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from bookkeeper.forecast.types import ForecastDay, ForecastResult


class AlertResponse(BaseModel):
    type: str
    severity: str
    message: str
    amount: Optional[Decimal] = None


class InflowsResponse(BaseModel):
    from_invoices: Decimal
    from_repeating: Decimal
    total: Decimal


class OutflowsResponse(BaseModel):
    to_bills: Decimal
    to_repeating: Decimal
    to_taxes: Decimal
    to_patterns: Decimal
    to_budgets: Decimal
    total: Decimal


class ScenarioResponse(BaseModel):
    best_case: Decimal
    worst_case: Decimal


class ForecastDayResponse(BaseModel):
    """A single projected day."""
    date: date
    opening_balance: Decimal
    closing_balance: Decimal
    inflows: InflowsResponse
    outflows: OutflowsResponse
    confidence_level: Decimal
    alerts: List[AlertResponse]
    scenarios: Optional[ScenarioResponse] = None

    @classmethod
    def from_day(cls, day: ForecastDay) -> "ForecastDayResponse":
        return cls(
            date=day.date,
            opening_balance=day.opening_balance,
            closing_balance=day.closing_balance,
            inflows=InflowsResponse(
                from_invoices=day.inflows.from_invoices,
                from_repeating=day.inflows.from_repeating,
                total=day.inflows.total,
            ),
            outflows=OutflowsResponse(
                to_bills=day.outflows.to_bills,
                to_repeating=day.outflows.to_repeating,
                to_taxes=day.outflows.to_taxes,
                to_patterns=day.outflows.to_patterns,
                to_budgets=day.outflows.to_budgets,
                total=day.outflows.total,
            ),
            confidence_level=day.confidence_level,
            alerts=[
                AlertResponse(
                    type=alert.type.value,
                    severity=alert.severity.value,
                    message=alert.message,
                    amount=alert.amount,
                )
                for alert in day.alerts
            ],
            scenarios=(
                ScenarioResponse(best_case=day.scenarios.best_case, worst_case=day.scenarios.worst_case)
                if day.scenarios else None
            ),
        )


class ForecastSummaryResponse(BaseModel):
    """Aggregates over the forecast horizon."""
    days: int
    lowest_balance: Decimal
    lowest_balance_date: date
    total_inflows: Decimal
    total_outflows: Decimal
    average_confidence: Decimal
    critical_alerts: int


class ForecastResponse(BaseModel):
    """Complete daily forecast response."""
    forecast: List[ForecastDayResponse]
    summary: ForecastSummaryResponse
    persisted: bool
    persistence_error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ForecastResult) -> "ForecastResponse":
        summary = result.summary
        return cls(
            forecast=[ForecastDayResponse.from_day(day) for day in result.forecast],
            summary=ForecastSummaryResponse(
                days=summary.days,
                lowest_balance=summary.lowest_balance,
                lowest_balance_date=summary.lowest_balance_date,
                total_inflows=summary.total_inflows,
                total_outflows=summary.total_outflows,
                average_confidence=summary.average_confidence,
                critical_alerts=summary.critical_alerts,
            ),
            persisted=result.persisted,
            persistence_error=result.persistence_error,
        )


class RegenerateForecastRequest(BaseModel):
    """Request to recompute and re-persist the forecast."""
    days: int = Field(90, description="Forecast horizon in days")
    regenerate: bool = Field(False, description="Delete stored rows from today before generating")


class RegenerateForecastResponse(BaseModel):
    success: bool
    days_generated: int
    message: str
    persisted: bool


class StoredForecastDayResponse(BaseModel):
    """A persisted forecast row."""
    date: date
    opening_balance: Decimal
    from_invoices: Decimal
    from_repeating: Decimal
    total_inflows: Decimal
    to_bills: Decimal
    to_repeating: Decimal
    to_taxes: Decimal
    to_patterns: Decimal
    to_budgets: Decimal
    total_outflows: Decimal
    closing_balance: Decimal
    best_case: Optional[Decimal] = None
    worst_case: Optional[Decimal] = None
    confidence_level: Decimal
    alerts: List[dict] = Field(default_factory=list)

    model_config = {"from_attributes": True}
