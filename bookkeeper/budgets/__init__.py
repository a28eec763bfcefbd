"""Monthly cash flow budgets."""
