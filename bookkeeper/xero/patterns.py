"""
Payment pattern learning.

For each contact, look at their paid invoices (or our paid bills) and record
how many days after the due date payment actually happened. The forecast
shifts that contact's open invoices by the average.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeper.forecast.events import pattern_type_for
from bookkeeper.models import PaymentPattern, SyncedInvoice, generate_id

logger = logging.getLogger(__name__)

MIN_SAMPLE_SIZE = 3
ON_TIME_GRACE_DAYS = 3


@dataclass
class PaymentStats:
    average_days_to_pay: Decimal
    on_time_rate: Decimal
    early_rate: Decimal
    late_rate: Decimal
    sample_size: int


def _paid_on(invoice) -> Optional[date]:
    if invoice.fully_paid_on_date is not None:
        return invoice.fully_paid_on_date
    # Older rows may lack the paid date; the last update is the payment
    updated = getattr(invoice, "updated_at", None) or getattr(invoice, "last_modified_utc", None)
    return updated.date() if updated is not None else None


def _percent(count: int, total: int) -> Decimal:
    return (Decimal(count) * 100 / total).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def calculate_payment_pattern(invoices: Iterable) -> Optional[PaymentStats]:
    """
    Payment timing statistics for one contact's paid invoices.

    Paid on or before the due date is early, up to three days after is on
    time, anything later is late. The average uses absolute day counts.
    Returns None below the minimum sample size.
    """
    days_to_pay: List[int] = []
    for invoice in invoices:
        paid_on = _paid_on(invoice)
        if paid_on is None or invoice.due_date is None:
            continue
        days_to_pay.append((paid_on - invoice.due_date).days)

    total = len(days_to_pay)
    if total < MIN_SAMPLE_SIZE:
        return None

    early = sum(1 for days in days_to_pay if days <= 0)
    on_time = sum(1 for days in days_to_pay if 0 < days <= ON_TIME_GRACE_DAYS)
    late = total - early - on_time
    average = Decimal(sum(abs(days) for days in days_to_pay)) / total

    return PaymentStats(
        average_days_to_pay=average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        on_time_rate=_percent(on_time, total),
        early_rate=_percent(early, total),
        late_rate=_percent(late, total),
        sample_size=total,
    )


async def refresh_payment_patterns(db: AsyncSession) -> int:
    """Recalculate and upsert patterns for every contact with paid invoices."""
    result = await db.execute(
        select(SyncedInvoice).where(
            SyncedInvoice.status == "PAID",
            SyncedInvoice.contact_id.is_not(None),
        )
    )

    grouped: Dict[Tuple[str, str], list] = defaultdict(list)
    for invoice in result.scalars().all():
        grouped[(invoice.contact_id, invoice.type)].append(invoice)

    updated = 0
    for (contact_id, invoice_type), invoices in grouped.items():
        stats = calculate_payment_pattern(invoices)
        if stats is None:
            continue

        values = {
            "average_days_to_pay": stats.average_days_to_pay,
            "on_time_rate": stats.on_time_rate,
            "early_rate": stats.early_rate,
            "late_rate": stats.late_rate,
            "sample_size": stats.sample_size,
            "last_calculated": func.now(),
        }
        stmt = pg_insert(PaymentPattern).values(
            id=generate_id("ppat"),
            contact_id=contact_id,
            contact_name=invoices[0].contact_name,
            type=pattern_type_for(invoice_type),
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[PaymentPattern.contact_id, PaymentPattern.type],
            set_=values,
        )
        await db.execute(stmt)
        updated += 1

    await db.commit()
    logger.info(f"Refreshed payment patterns for {updated} contacts")
    return updated
