"""Cash flow budget schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class BudgetUpsert(BaseModel):
    """Create or replace the budget for a month, account and category."""
    month_year: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="Month as YYYY-MM")
    category: Literal["EXPENSE", "INCOME"] = "EXPENSE"
    account_code: str = ""
    name: Optional[str] = None
    budgeted_amount: Decimal = Field(..., ge=0)
    notes: Optional[str] = None


class BudgetResponse(BaseModel):
    id: str
    month_year: str
    category: str
    account_code: str
    name: Optional[str] = None
    budgeted_amount: Decimal
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
