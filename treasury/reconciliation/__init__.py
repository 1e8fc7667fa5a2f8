"""Reconciliation package."""

from treasury.reconciliation.advisor import (
    AmountGroup,
    ReconciliationAdvisor,
    ReconciliationEntry,
    ReconciliationMatch,
)

__all__ = [
    "AmountGroup",
    "ReconciliationAdvisor",
    "ReconciliationEntry",
    "ReconciliationMatch",
]
