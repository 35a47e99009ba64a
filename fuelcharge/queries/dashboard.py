"""
Dashboard Queries

DESIGN DECISION: Dashboard numbers are DETERMINISTIC read-side
aggregations over a snapshot of accounts and invoices. They are
recomputed on every request; nothing here is cached or stored, so a
dashboard can never disagree with the ledger it was computed from.

GUARANTEES:
- Only ledger data is used, never estimates
- Overdue is always the derived status (UNPAID + past due date)
"""

import datetime as dt
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from fuelcharge.config import AppSettings
from fuelcharge.ledger.lifecycle import AgingBuckets, summarize_risk
from fuelcharge.ledger.service import LedgerService
from fuelcharge.models.ledger import Account, Invoice, quantize_money


REVENUE_MONTHS = 6
RECENT_INVOICES = 5


class MonthlyRevenue(BaseModel):
    year: int
    month: int
    label: str
    revenue: Decimal = Decimal("0.00")


class DashboardStats(BaseModel):
    """Everything the dashboard shows, computed in one pass."""
    total_receivables: Decimal
    overdue_amount: Decimal
    overdue_count: int
    active_accounts: int
    aging: AgingBuckets
    monthly_revenue: list[MonthlyRevenue] = Field(default_factory=list)
    recent_invoices: list[Invoice] = Field(default_factory=list)
    risk_alert: bool = False


def _trailing_months(today: dt.date, count: int) -> list[tuple[int, int]]:
    """(year, month) pairs for the last ``count`` months, oldest first, ending with today's."""
    months = []
    year, month = today.year, today.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


class DashboardQueries:
    """
    Computes dashboard statistics.

    Thresholds for the risk alert come from AppSettings.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or AppSettings()

    def monthly_revenue(self, invoices: Iterable[Invoice], today: dt.date) -> list[MonthlyRevenue]:
        """Invoiced amount per calendar month, trailing six months."""
        buckets = {
            (year, month): MonthlyRevenue(
                year=year,
                month=month,
                label=dt.date(year, month, 1).strftime("%b"),
            )
            for year, month in _trailing_months(today, REVENUE_MONTHS)
        }
        for invoice in invoices:
            bucket = buckets.get((invoice.date.year, invoice.date.month))
            if bucket is not None:
                bucket.revenue += invoice.amount
        return list(buckets.values())

    def is_risky(self, overdue_amount: Decimal, overdue_count: int) -> bool:
        return (
            overdue_amount > self._settings.risk_overdue_amount_threshold
            or overdue_count > self._settings.risk_overdue_count_threshold
        )

    def stats(
        self,
        accounts: Iterable[Account],
        invoices: Iterable[Invoice],
        today: Optional[dt.date] = None,
    ) -> DashboardStats:
        today = today or dt.date.today()
        accounts = list(accounts)
        invoices = list(invoices)

        risk = summarize_risk(invoices, today)
        recent = sorted(invoices, key=lambda inv: inv.date, reverse=True)[:RECENT_INVOICES]

        return DashboardStats(
            total_receivables=quantize_money(
                sum((account.current_balance for account in accounts), Decimal("0"))
            ),
            overdue_amount=risk.overdue_total,
            overdue_count=risk.overdue_count,
            active_accounts=len(accounts),
            aging=risk.aging,
            monthly_revenue=self.monthly_revenue(invoices, today),
            recent_invoices=recent,
            risk_alert=self.is_risky(risk.overdue_total, risk.overdue_count),
        )

    async def load(self, service: LedgerService, today: Optional[dt.date] = None) -> DashboardStats:
        """Read a fresh snapshot from the ledger and compute stats."""
        accounts = await service.list_accounts()
        invoices = await service.list_invoices()
        return self.stats(accounts, invoices, today)
