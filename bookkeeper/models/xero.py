"""The linked Xero organisation."""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from bookkeeper.database import Base
from bookkeeper.models.base import generate_id


class XeroConnection(Base):
    """
    One linked Xero organisation (tenant) and the OAuth tokens for it.

    Tokens are issued and refreshed by another service and read as stored.
    The organisation's tax calendar is copied here on every sync, so the
    forecast can be explained without another API call.
    """

    __tablename__ = "xero_connections"

    id = Column(String, primary_key=True, default=lambda: generate_id("xc"))
    tenant_id = Column(String, unique=True)
    tenant_name = Column(String)

    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))

    # Cached from GET /Organisation
    base_currency = Column(String(3), default="GBP")
    sales_tax_period = Column(String)
    financial_year_end_month = Column(Integer)
    financial_year_end_day = Column(Integer)

    # Only one connection is active; the scheduler and sync routes pick it
    is_active = Column(Boolean, nullable=False, default=False)
    last_sync_at = Column(DateTime(timezone=True))
    sync_error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def remember_organisation(self, organisation: dict) -> None:
        """Copy the calendar fields of a ``XeroClient.get_organisation`` dict."""
        self.tenant_name = organisation.get("name") or self.tenant_name
        self.base_currency = organisation.get("base_currency") or self.base_currency
        self.sales_tax_period = organisation.get("sales_tax_period")
        self.financial_year_end_month = organisation.get("financial_year_end_month")
        self.financial_year_end_day = organisation.get("financial_year_end_day")
