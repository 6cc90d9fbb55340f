"""
Billing gate contract.

The gate answers "who is this caller and what is their balance" and
performs atomic, idempotency-guarded deductions. The pipeline treats it as
authoritative and never locks or retries around it.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Set


@dataclass(frozen=True)
class Caller:
    """Identity presented by an inbound request."""
    access_token: Optional[str] = None


@dataclass(frozen=True)
class Authorization:
    """Read-only snapshot of a caller's account."""
    registered: bool
    balance_cents: int = 0


@dataclass(frozen=True)
class ChargeOutcome:
    """Terminal result of one charge attempt."""
    charged: bool
    message: Optional[str] = None


INSUFFICIENT_BALANCE = "Insufficient balance"
UNKNOWN_ACCOUNT = "Unknown account"
ALREADY_CHARGED = "Already charged"


class BillingGate(ABC):
    """Abstract base class for billing backends."""

    @abstractmethod
    def authorize(self, caller: Caller) -> Authorization:
        """Look up the caller without side effects."""
        pass

    @abstractmethod
    def charge(
        self,
        caller: Caller,
        amount_cents: int,
        allow_negative: bool = False,
        idempotency_key: Optional[str] = None
    ) -> ChargeOutcome:
        """Deduct ``amount_cents`` from the caller's balance.

        With ``allow_negative=False`` the charge fails cleanly rather than
        drive the balance below zero. A repeated ``idempotency_key`` reports
        success without deducting again.
        """
        pass


def _validate_amount(amount_cents: int) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < 0:
        raise ValueError("amount_cents must be a non-negative integer")


class InMemoryBillingGate(BillingGate):
    """
    In-memory billing gate for testing.
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances: Dict[str, int] = dict(balances or {})
        self.charges = []
        self._seen_keys: Set[str] = set()
        self._lock = threading.Lock()

    def authorize(self, caller: Caller) -> Authorization:
        with self._lock:
            if caller.access_token not in self.balances:
                return Authorization(registered=False)
            return Authorization(registered=True, balance_cents=self.balances[caller.access_token])

    def charge(
        self,
        caller: Caller,
        amount_cents: int,
        allow_negative: bool = False,
        idempotency_key: Optional[str] = None
    ) -> ChargeOutcome:
        _validate_amount(amount_cents)
        with self._lock:
            if idempotency_key is not None and idempotency_key in self._seen_keys:
                return ChargeOutcome(charged=True, message=ALREADY_CHARGED)

            token = caller.access_token
            if token not in self.balances:
                return ChargeOutcome(charged=False, message=UNKNOWN_ACCOUNT)
            if not allow_negative and self.balances[token] < amount_cents:
                return ChargeOutcome(charged=False, message=INSUFFICIENT_BALANCE)

            self.balances[token] -= amount_cents
            self.charges.append((token, amount_cents, idempotency_key))
            if idempotency_key is not None:
                self._seen_keys.add(idempotency_key)
        return ChargeOutcome(charged=True)

    def top_up(self, access_token: str, amount_cents: int) -> None:
        _validate_amount(amount_cents)
        with self._lock:
            self.balances[access_token] = self.balances.get(access_token, 0) + amount_cents
