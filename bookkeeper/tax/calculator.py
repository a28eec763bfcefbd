"""
UK tax obligation calculator.

Estimates upcoming VAT, PAYE/NI and corporation tax payments so the cash
flow forecast can include them as pending ``TaxObligation`` rows.

Due date rules:
- VAT: one calendar month and seven days after the period end (period end
  + 37 days), quarterly or monthly depending on the organisation
- PAYE/NI: the 22nd of the month after the payroll month
- Corporation tax: nine months and one day after the financial year end
"""
import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeper.config import Settings
from bookkeeper.models import BankTransaction, GLAccount, TaxObligation

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
VAT_PAYMENT_LAG_DAYS = 37
PAYE_DUE_DAY = 22

# Common Xero default codes for VAT and payroll liability accounts
VAT_ACCOUNT_CODES = ("820",)
PAYE_ACCOUNT_CODES = ("814", "825", "826")

# Fallback estimates when no liability account exists
STANDARD_VAT_RATE = Decimal("0.20")
PAYE_SHARE_OF_PAYROLL = Decimal("0.30")
PAYROLL_KEYWORDS = ("salary", "payroll", "wages")


@dataclass(frozen=True)
class OrganisationTaxProfile:
    """Tax calendar settings of the organisation."""
    financial_year_end_month: int = 3
    financial_year_end_day: int = 31
    vat_returns: str = "QUARTERLY"  # "QUARTERLY" | "MONTHLY"

    @classmethod
    def from_organisation(cls, organisation: Dict[str, Any]) -> "OrganisationTaxProfile":
        """Build from the dict returned by ``XeroClient.get_organisation``."""
        sales_tax_period = str(organisation.get("sales_tax_period") or "").upper()
        return cls(
            financial_year_end_month=organisation.get("financial_year_end_month") or 3,
            financial_year_end_day=organisation.get("financial_year_end_day") or 31,
            vat_returns="MONTHLY" if sales_tax_period == "MONTHLY" else "QUARTERLY",
        )


@dataclass
class TaxObligationEstimate:
    type: str  # "VAT" | "PAYE_NI" | "CORPORATION_TAX"
    due_date: date
    amount: Decimal
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class TaxLiabilities:
    """Inputs to the calculator, estimated from synced ledger data."""
    vat_liability: Decimal
    paye_liability: Decimal
    annual_profit: Decimal


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def _quarter_start(day: date) -> date:
    return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def _year_end(year: int, month: int, day: int) -> date:
    # Clamp e.g. 29 February in non-leap years
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


class UKTaxCalculator:
    """Projects tax payments due in a window from estimated liabilities."""

    def __init__(
        self,
        vat_liability: Decimal,
        paye_liability: Decimal,
        annual_profit: Decimal,
        organisation: Optional[OrganisationTaxProfile] = None,
        small_profits_rate: Decimal = Decimal("0.19"),
        main_rate: Decimal = Decimal("0.25"),
        main_rate_threshold: Decimal = Decimal("250000"),
    ):
        self.vat_liability = abs(Decimal(vat_liability))
        self.paye_liability = abs(Decimal(paye_liability))
        self.annual_profit = max(Decimal(annual_profit), Decimal("0"))
        self.organisation = organisation or OrganisationTaxProfile()
        self.small_profits_rate = small_profits_rate
        self.main_rate = main_rate
        self.main_rate_threshold = main_rate_threshold

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        liabilities: TaxLiabilities,
        organisation: Optional[OrganisationTaxProfile] = None,
    ) -> "UKTaxCalculator":
        return cls(
            vat_liability=liabilities.vat_liability,
            paye_liability=liabilities.paye_liability,
            annual_profit=liabilities.annual_profit,
            organisation=organisation,
            small_profits_rate=settings.CORPORATION_TAX_SMALL_RATE,
            main_rate=settings.CORPORATION_TAX_MAIN_RATE,
            main_rate_threshold=settings.CORPORATION_TAX_MAIN_RATE_THRESHOLD,
        )

    def calculate_upcoming(self, days: int, today: Optional[date] = None) -> List[TaxObligationEstimate]:
        """All obligations due in ``[today, today + days]``, ordered by due date."""
        start_date = today or date.today()
        end_date = start_date + timedelta(days=days)

        obligations = []
        obligations.extend(self.vat_obligations(start_date, end_date))
        obligations.extend(self.paye_obligations(start_date, end_date))
        obligations.extend(self.corporation_tax_obligations(start_date, end_date))
        return sorted(obligations, key=lambda obligation: obligation.due_date)

    # =========================================================================
    # VAT
    # =========================================================================

    def vat_obligations(self, start_date: date, end_date: date) -> List[TaxObligationEstimate]:
        """
        VAT returns whose payment falls in the window.

        Starts one period back: the previous period's payment is often due
        after today.
        """
        quarterly = self.organisation.vat_returns != "MONTHLY"
        step = relativedelta(months=3 if quarterly else 1)
        amount = _cents(self.vat_liability / (4 if quarterly else 12))

        period_start = _quarter_start(start_date) if quarterly else start_date.replace(day=1)
        period_start -= step

        obligations = []
        while period_start <= end_date:
            period_end = _month_end(period_start + step - relativedelta(days=1))
            due_date = period_end + timedelta(days=VAT_PAYMENT_LAG_DAYS)

            if start_date <= due_date <= end_date and amount > 0:
                if quarterly:
                    reference = f"VAT Q{(period_start.month - 1) // 3 + 1} {period_start.year}"
                    notes = "Quarterly VAT return"
                else:
                    reference = f"VAT {period_start.strftime('%b %Y')}"
                    notes = "Monthly VAT return"
                obligations.append(TaxObligationEstimate(
                    type="VAT",
                    due_date=due_date,
                    amount=amount,
                    period_start=period_start,
                    period_end=period_end,
                    reference=reference,
                    notes=notes,
                ))
            period_start += step

        return obligations

    # =========================================================================
    # PAYE / NATIONAL INSURANCE
    # =========================================================================

    def paye_obligations(self, start_date: date, end_date: date) -> List[TaxObligationEstimate]:
        """Monthly PAYE/NI payments, due the 22nd of the following month."""
        amount = _cents(self.paye_liability)
        if amount <= 0:
            return []

        obligations = []
        month = start_date.replace(day=1) - relativedelta(months=1)
        while month <= end_date:
            due_date = (month + relativedelta(months=1)).replace(day=PAYE_DUE_DAY)
            if start_date <= due_date <= end_date:
                obligations.append(TaxObligationEstimate(
                    type="PAYE_NI",
                    due_date=due_date,
                    amount=amount,
                    period_start=month,
                    period_end=_month_end(month),
                    reference=f"PAYE/NI {month.strftime('%b %Y')}",
                    notes="Monthly PAYE and NI payment",
                ))
            month += relativedelta(months=1)

        return obligations

    # =========================================================================
    # CORPORATION TAX
    # =========================================================================

    def corporation_tax_rate(self) -> Decimal:
        if self.annual_profit > self.main_rate_threshold:
            return self.main_rate
        return self.small_profits_rate

    def corporation_tax_obligations(self, start_date: date, end_date: date) -> List[TaxObligationEstimate]:
        """Corporation tax for the current and next financial year ends."""
        amount = _cents(self.annual_profit * self.corporation_tax_rate())
        if amount <= 0:
            return []

        obligations = []
        for year in (start_date.year - 1, start_date.year, start_date.year + 1):
            year_end = _year_end(
                year,
                self.organisation.financial_year_end_month,
                self.organisation.financial_year_end_day,
            )
            due_date = year_end + relativedelta(months=9) + timedelta(days=1)
            if start_date <= due_date <= end_date:
                obligations.append(TaxObligationEstimate(
                    type="CORPORATION_TAX",
                    due_date=due_date,
                    amount=amount,
                    period_start=year_end - relativedelta(years=1) + timedelta(days=1),
                    period_end=year_end,
                    reference=f"CT FY{year_end.year}",
                    notes=f"Corporation tax for year ending {year_end.strftime('%d/%m/%Y')}",
                ))

        return obligations


# ============================================================================
# PERSISTENCE
# ============================================================================

async def store_tax_obligations(db: AsyncSession, obligations: Sequence[TaxObligationEstimate]) -> int:
    """
    Insert obligations not already pending for the same type and due date.

    Returns the number of rows created.
    """
    created = 0
    for obligation in obligations:
        result = await db.execute(
            select(TaxObligation.id).where(
                TaxObligation.type == obligation.type,
                TaxObligation.due_date == obligation.due_date,
                TaxObligation.status == "PENDING",
            )
        )
        if result.scalar_one_or_none() is not None:
            continue

        db.add(TaxObligation(
            type=obligation.type,
            due_date=obligation.due_date,
            amount=obligation.amount,
            status="PENDING",
            period_start=obligation.period_start,
            period_end=obligation.period_end,
            reference=obligation.reference,
            notes=obligation.notes,
        ))
        created += 1

    await db.commit()
    if created:
        logger.info(f"Stored {created} new tax obligations")
    return created


def _net_amount():
    # RECEIVE adds, SPEND subtracts
    return func.coalesce(
        func.sum(
            case(
                (BankTransaction.type == "SPEND", -BankTransaction.amount),
                else_=BankTransaction.amount,
            )
        ),
        0,
    )


async def _vat_liability(db: AsyncSession, today: date) -> Decimal:
    result = await db.execute(
        select(GLAccount.code).where(
            GLAccount.account_class == "LIABILITY",
            or_(
                GLAccount.code.in_(VAT_ACCOUNT_CODES),
                GLAccount.name.ilike("%VAT%"),
                GLAccount.name.ilike("%GST%"),
            ),
        )
    )
    vat_code = result.scalars().first()

    if vat_code is not None:
        result = await db.execute(
            select(_net_amount()).where(
                BankTransaction.account_code == vat_code,
                BankTransaction.status == "AUTHORISED",
            )
        )
        return abs(Decimal(result.scalar() or 0))

    # No VAT account: 20% of the last three months' receipts, as a monthly figure
    result = await db.execute(
        select(func.coalesce(func.sum(BankTransaction.amount), 0)).where(
            BankTransaction.type == "RECEIVE",
            BankTransaction.status == "AUTHORISED",
            BankTransaction.date >= today - relativedelta(months=3),
        )
    )
    return _cents(Decimal(result.scalar() or 0) * STANDARD_VAT_RATE / 3)


async def _paye_liability(db: AsyncSession, today: date) -> Decimal:
    since = today - relativedelta(months=1)
    result = await db.execute(
        select(GLAccount.code).where(
            GLAccount.account_class == "LIABILITY",
            or_(
                GLAccount.code.in_(PAYE_ACCOUNT_CODES),
                GLAccount.name.ilike("%PAYE%"),
                GLAccount.name.ilike("%National Insurance%"),
            ),
        )
    )
    codes = list(result.scalars().all())

    if codes:
        result = await db.execute(
            select(_net_amount()).where(
                BankTransaction.account_code.in_(codes),
                BankTransaction.status == "AUTHORISED",
                BankTransaction.date >= since,
            )
        )
        return abs(Decimal(result.scalar() or 0))

    # No payroll liability accounts: 30% of last month's payroll spend
    result = await db.execute(
        select(func.coalesce(func.sum(BankTransaction.amount), 0)).where(
            BankTransaction.type == "SPEND",
            BankTransaction.status == "AUTHORISED",
            BankTransaction.date >= since,
            or_(*[BankTransaction.description.ilike(f"%{keyword}%") for keyword in PAYROLL_KEYWORDS]),
        )
    )
    return _cents(Decimal(result.scalar() or 0) * PAYE_SHARE_OF_PAYROLL)


async def _annual_profit(db: AsyncSession, today: date) -> Decimal:
    result = await db.execute(
        select(_net_amount()).where(
            and_(
                BankTransaction.status == "AUTHORISED",
                BankTransaction.date >= today - relativedelta(months=12),
            )
        )
    )
    return max(Decimal(result.scalar() or 0), Decimal("0"))


async def estimate_liabilities(db: AsyncSession, today: Optional[date] = None) -> TaxLiabilities:
    """Estimate VAT, PAYE/NI and annual profit from synced bank and GL data."""
    today = today or date.today()
    liabilities = TaxLiabilities(
        vat_liability=await _vat_liability(db, today),
        paye_liability=await _paye_liability(db, today),
        annual_profit=await _annual_profit(db, today),
    )
    logger.info(
        f"Estimated tax liabilities: VAT {liabilities.vat_liability}, "
        f"PAYE/NI {liabilities.paye_liability}, annual profit {liabilities.annual_profit}"
    )
    return liabilities
