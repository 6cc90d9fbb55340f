"""
Unit tests for billing gates.

Tests authorization, atomic charges, idempotency and the charge ledger.
"""

import os
import tempfile

import pytest

from image_meter.billing.gate import Caller, InMemoryBillingGate
from image_meter.billing.sqlite_gate import SQLiteBillingGate
from image_meter.storage.db import initialize_schema


class TestInMemoryBillingGate:
    """Test the in-memory gate."""

    def test_unknown_caller_unregistered(self):
        """Verify unknown tokens are not registered."""
        gate = InMemoryBillingGate()
        auth = gate.authorize(Caller("nobody"))
        assert auth.registered is False
        assert auth.balance_cents == 0

    def test_authorize_reports_balance(self):
        """Verify balance is reported for known callers."""
        gate = InMemoryBillingGate({"tok": 150})
        auth = gate.authorize(Caller("tok"))
        assert auth.registered is True
        assert auth.balance_cents == 150

    def test_charge_deducts(self):
        """Verify a successful charge reduces the balance."""
        gate = InMemoryBillingGate({"tok": 10})
        outcome = gate.charge(Caller("tok"), 4)
        assert outcome.charged is True
        assert gate.balances["tok"] == 6

    def test_insufficient_balance_declined(self):
        """Verify charges cannot overdraw by default."""
        gate = InMemoryBillingGate({"tok": 1})
        outcome = gate.charge(Caller("tok"), 2)
        assert outcome.charged is False
        assert outcome.message == "Insufficient balance"
        assert gate.balances["tok"] == 1

    def test_allow_negative(self):
        """Verify allow_negative permits overdraw."""
        gate = InMemoryBillingGate({"tok": 1})
        assert gate.charge(Caller("tok"), 3, allow_negative=True).charged
        assert gate.balances["tok"] == -2

    def test_idempotency_key_charges_once(self):
        """Verify a repeated key is not deducted again."""
        gate = InMemoryBillingGate({"tok": 10})
        gate.charge(Caller("tok"), 4, idempotency_key="attempt-1")
        outcome = gate.charge(Caller("tok"), 4, idempotency_key="attempt-1")
        assert outcome.charged is True
        assert outcome.message == "Already charged"
        assert gate.balances["tok"] == 6

    def test_invalid_amount(self):
        """Verify negative amounts are rejected."""
        gate = InMemoryBillingGate({"tok": 10})
        with pytest.raises(ValueError, match="amount_cents"):
            gate.charge(Caller("tok"), -1)


class TestSQLiteBillingGate:
    """Test the SQLite gate."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.gate = SQLiteBillingGate(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_create_account(self):
        """Verify new accounts get a unique token and opening balance."""
        token = self.gate.create_account("alice", 500)
        other = self.gate.create_account("bob")

        assert token != other
        assert self.gate.authorize(Caller(token)).balance_cents == 500
        assert self.gate.authorize(Caller(other)).balance_cents == 0
        assert self.gate.get_account_name(token) == "alice"

    def test_create_account_requires_name(self):
        """Verify empty names are rejected."""
        with pytest.raises(ValueError, match="name is required"):
            self.gate.create_account("  ")

    def test_anonymous_caller_unregistered(self):
        """Verify a caller without a token is unregistered."""
        assert self.gate.authorize(Caller()).registered is False
        assert self.gate.authorize(Caller("missing")).registered is False

    def test_charge_deducts_and_records(self):
        """Verify a charge updates the balance and appends to the ledger."""
        token = self.gate.create_account("alice", 100)

        outcome = self.gate.charge(Caller(token), 2, idempotency_key="req-1")

        assert outcome.charged is True
        assert self.gate.authorize(Caller(token)).balance_cents == 98
        charges = self.gate.fetch_charges(token)
        assert len(charges) == 1
        assert charges[0].amount_cents == 2
        assert charges[0].idempotency_key == "req-1"

    def test_insufficient_balance_declined(self):
        """Verify a declined charge leaves balance and ledger untouched."""
        token = self.gate.create_account("alice", 1)

        outcome = self.gate.charge(Caller(token), 2)

        assert outcome.charged is False
        assert outcome.message == "Insufficient balance"
        assert self.gate.authorize(Caller(token)).balance_cents == 1
        assert self.gate.fetch_charges(token) == []

    def test_unknown_account_declined(self):
        """Verify charging an unknown account fails cleanly."""
        outcome = self.gate.charge(Caller("missing"), 2)
        assert outcome.charged is False
        assert outcome.message == "Unknown account"

    def test_allow_negative(self):
        """Verify allow_negative permits overdraw."""
        token = self.gate.create_account("alice", 1)
        assert self.gate.charge(Caller(token), 5, allow_negative=True).charged
        assert self.gate.authorize(Caller(token)).balance_cents == -4

    def test_idempotency_key_charges_once(self):
        """Verify a replayed key is not deducted twice."""
        token = self.gate.create_account("alice", 100)

        self.gate.charge(Caller(token), 10, idempotency_key="req-1")
        outcome = self.gate.charge(Caller(token), 10, idempotency_key="req-1")

        assert outcome.charged is True
        assert outcome.message == "Already charged"
        assert self.gate.authorize(Caller(token)).balance_cents == 90
        assert len(self.gate.fetch_charges(token)) == 1

    def test_top_up(self):
        """Verify credits increase the balance."""
        token = self.gate.create_account("alice", 0)
        assert self.gate.top_up(token, 250) == 250
        assert self.gate.authorize(Caller(token)).balance_cents == 250

    def test_top_up_unknown_account(self):
        """Verify crediting an unknown account raises."""
        with pytest.raises(ValueError, match="Unknown account"):
            self.gate.top_up("missing", 10)

    def test_charges_newest_first(self):
        """Verify ledger ordering."""
        token = self.gate.create_account("alice", 100)
        for amount in (1, 2, 3):
            self.gate.charge(Caller(token), amount)

        amounts = [c.amount_cents for c in self.gate.fetch_charges(token)]
        assert amounts == [3, 2, 1]
