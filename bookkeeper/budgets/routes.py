"""Cash flow budget routes."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeper.budgets.schemas import BudgetResponse, BudgetUpsert
from bookkeeper.database import get_db
from bookkeeper.models import CashFlowBudget

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/budgets", response_model=List[BudgetResponse])
async def list_budgets(
    month_year: Optional[str] = Query(None, description="Filter by month (YYYY-MM)"),
    db: AsyncSession = Depends(get_db),
):
    """List budgets, optionally for one month."""
    query = select(CashFlowBudget).order_by(
        CashFlowBudget.month_year, CashFlowBudget.category, CashFlowBudget.account_code
    )
    if month_year:
        query = query.where(CashFlowBudget.month_year == month_year)

    result = await db.execute(query)
    return result.scalars().all()


@router.put("/budgets", response_model=BudgetResponse)
async def upsert_budget(
    data: BudgetUpsert,
    db: AsyncSession = Depends(get_db),
):
    """Create a budget, or update the one for the same month, account and category."""
    result = await db.execute(
        select(CashFlowBudget).where(
            CashFlowBudget.month_year == data.month_year,
            CashFlowBudget.account_code == data.account_code,
            CashFlowBudget.category == data.category,
        )
    )
    budget = result.scalar_one_or_none()

    if budget is None:
        budget = CashFlowBudget(**data.model_dump())
        db.add(budget)
        logger.info(f"Created {data.category} budget for {data.month_year} ({data.account_code or 'no account'})")
    else:
        for field, value in data.model_dump().items():
            setattr(budget, field, value)

    await db.commit()
    await db.refresh(budget)
    return budget


@router.delete("/budgets/{budget_id}")
async def delete_budget(
    budget_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Delete a budget."""
    budget = await db.get(CashFlowBudget, budget_id)
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")

    await db.delete(budget)
    await db.commit()
    return {"success": True, "message": "Budget deleted"}
