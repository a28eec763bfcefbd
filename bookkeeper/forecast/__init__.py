"""Daily cash flow forecasting."""
from bookkeeper.forecast.engine import CashFlowEngine, InvalidForecastHorizon
from bookkeeper.forecast.sources import ForecastDataError

__all__ = ["CashFlowEngine", "ForecastDataError", "InvalidForecastHorizon"]
