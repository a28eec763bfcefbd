"""Tests for UK tax obligation estimates."""
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from bookkeeper.tax.calculator import (
    OrganisationTaxProfile,
    TaxLiabilities,
    TaxObligationEstimate,
    UKTaxCalculator,
    store_tax_obligations,
)

TODAY = date(2024, 6, 1)


def calculator(vat="8000", paye="3000", profit="100000", **kwargs):
    return UKTaxCalculator(Decimal(vat), Decimal(paye), Decimal(profit), **kwargs)


class TestVat:
    """VAT return payments."""

    def test_quarterly_due_37_days_after_quarter_end(self):
        obligations = calculator(paye="0", profit="0").vat_obligations(TODAY, date(2024, 8, 30))

        assert len(obligations) == 1
        vat = obligations[0]
        assert vat.due_date == date(2024, 8, 6)
        assert vat.period_start == date(2024, 4, 1)
        assert vat.period_end == date(2024, 6, 30)
        assert vat.amount == Decimal("2000.00")
        assert vat.reference == "VAT Q2 2024"

    def test_previous_quarter_payment_still_ahead(self):
        obligations = calculator().vat_obligations(date(2024, 4, 20), date(2024, 5, 31))

        assert [o.due_date for o in obligations] == [date(2024, 5, 7)]
        assert obligations[0].period_end == date(2024, 3, 31)

    def test_monthly_returns(self):
        profile = OrganisationTaxProfile(vat_returns="MONTHLY")
        obligations = calculator(vat="12000", organisation=profile).vat_obligations(TODAY, date(2024, 8, 30))

        assert [o.due_date for o in obligations] == [date(2024, 7, 7), date(2024, 8, 6)]
        assert all(o.amount == Decimal("1000.00") for o in obligations)

    def test_no_liability_no_obligation(self):
        assert calculator(vat="0").vat_obligations(TODAY, date(2024, 12, 31)) == []


class TestPaye:
    """PAYE/NI payments on the 22nd."""

    def test_due_22nd_of_following_month(self):
        obligations = calculator().paye_obligations(TODAY, date(2024, 8, 30))

        assert [o.due_date for o in obligations] == [date(2024, 6, 22), date(2024, 7, 22), date(2024, 8, 22)]
        assert obligations[0].period_start == date(2024, 5, 1)
        assert obligations[0].period_end == date(2024, 5, 31)
        assert all(o.amount == Decimal("3000.00") for o in obligations)

    def test_zero_payroll(self):
        assert calculator(paye="0").paye_obligations(TODAY, date(2024, 12, 31)) == []


class TestCorporationTax:
    """Corporation tax nine months and a day after year end."""

    def test_due_after_march_year_end(self):
        obligations = calculator().corporation_tax_obligations(TODAY, date(2025, 6, 1))

        assert len(obligations) == 1
        assert obligations[0].due_date == date(2025, 1, 1)
        assert obligations[0].period_end == date(2024, 3, 31)
        assert obligations[0].amount == Decimal("19000.00")

    def test_main_rate_above_threshold(self):
        calc = calculator(profit="300000")

        assert calc.corporation_tax_rate() == Decimal("0.25")
        assert calc.corporation_tax_obligations(TODAY, date(2025, 6, 1))[0].amount == Decimal("75000.00")

    def test_december_year_end(self):
        profile = OrganisationTaxProfile(financial_year_end_month=12, financial_year_end_day=31)
        obligations = calculator(organisation=profile).corporation_tax_obligations(TODAY, date(2024, 12, 31))

        assert [o.due_date for o in obligations] == [date(2024, 10, 1)]

    def test_losses_owe_nothing(self):
        assert calculator(profit="-5000").corporation_tax_obligations(TODAY, date(2026, 1, 1)) == []


class TestCalculateUpcoming:
    """The combined, ordered window."""

    def test_sorted_by_due_date(self):
        obligations = calculator().calculate_upcoming(365, today=TODAY)

        due_dates = [o.due_date for o in obligations]
        assert due_dates == sorted(due_dates)
        assert {o.type for o in obligations} == {"VAT", "PAYE_NI", "CORPORATION_TAX"}

    def test_from_settings_uses_rates(self):
        settings = MagicMock()
        settings.CORPORATION_TAX_SMALL_RATE = Decimal("0.10")
        settings.CORPORATION_TAX_MAIN_RATE = Decimal("0.30")
        settings.CORPORATION_TAX_MAIN_RATE_THRESHOLD = Decimal("50000")
        liabilities = TaxLiabilities(Decimal("0"), Decimal("0"), Decimal("60000"))

        calc = UKTaxCalculator.from_settings(settings, liabilities)

        assert calc.corporation_tax_rate() == Decimal("0.30")


class TestOrganisationProfile:
    """Profile built from the organisation payload."""

    def test_from_organisation(self):
        profile = OrganisationTaxProfile.from_organisation({
            "financial_year_end_month": 12,
            "financial_year_end_day": 31,
            "sales_tax_period": "MONTHLY",
        })

        assert profile == OrganisationTaxProfile(12, 31, "MONTHLY")

    def test_defaults_when_missing(self):
        assert OrganisationTaxProfile.from_organisation({}) == OrganisationTaxProfile()


class TestStoreTaxObligations:
    """Deduplicated insert of pending obligations."""

    @pytest.mark.asyncio
    async def test_skips_existing_pending(self):
        existing = MagicMock()
        existing.scalar_one_or_none.return_value = "tax_existing"
        missing = MagicMock()
        missing.scalar_one_or_none.return_value = None

        db = AsyncMock()
        db.add = MagicMock()
        db.execute = AsyncMock(side_effect=[existing, missing])

        obligations = [
            TaxObligationEstimate(type="VAT", due_date=date(2024, 8, 6), amount=Decimal("2000")),
            TaxObligationEstimate(type="PAYE_NI", due_date=date(2024, 6, 22), amount=Decimal("3000")),
        ]

        created = await store_tax_obligations(db, obligations)

        assert created == 1
        added = db.add.call_args[0][0]
        assert added.type == "PAYE_NI"
        assert added.status == "PENDING"
        db.commit.assert_awaited_once()
