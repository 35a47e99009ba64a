"""Read-side queries over the ledger."""

from fuelcharge.queries.dashboard import DashboardQueries, DashboardStats, MonthlyRevenue

__all__ = ["DashboardQueries", "DashboardStats", "MonthlyRevenue"]
