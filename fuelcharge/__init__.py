"""
FuelCharge - House Account Billing Core

Tracks customer credit accounts at a fuel/convenience station,
records charges and payments, generates and emails invoices,
and turns scanned receipts into charge drafts.

DESIGN PRINCIPLES:
1. Every balance change is one atomic store operation
2. Balances are maintained incrementally, never recomputed
3. Fail fast, leave no partial state
4. Derived labels (OVERDUE) are computed on read, never stored
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "FuelCharge Team"
