"""
Billing gates.

Account lookup and atomic, idempotency-guarded charges.
"""

from .gate import Authorization, BillingGate, Caller, ChargeOutcome, InMemoryBillingGate
from .sqlite_gate import SQLiteBillingGate

__all__ = [
    "Authorization",
    "BillingGate",
    "Caller",
    "ChargeOutcome",
    "InMemoryBillingGate",
    "SQLiteBillingGate",
]
