"""UK tax obligation estimates."""
from bookkeeper.tax.calculator import (
    OrganisationTaxProfile,
    TaxLiabilities,
    TaxObligationEstimate,
    UKTaxCalculator,
    estimate_liabilities,
    store_tax_obligations,
)

__all__ = [
    "OrganisationTaxProfile",
    "TaxLiabilities",
    "TaxObligationEstimate",
    "UKTaxCalculator",
    "estimate_liabilities",
    "store_tax_obligations",
]
