"""Validation package."""

from fuelcharge.validation.validator import LedgerValidator, describe_issues

__all__ = ["LedgerValidator", "describe_issues"]
