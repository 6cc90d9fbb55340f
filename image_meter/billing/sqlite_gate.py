"""
SQLite-backed billing gate.

Balances live in the ``account`` table; every committed deduction is
appended to the ``charge`` ledger inside the same transaction.
"""

import secrets
from datetime import datetime
from typing import List, Optional

from ..storage.db import DEFAULT_DB_PATH, get_connection
from ..storage.models import ChargeRecord
from .gate import (
    ALREADY_CHARGED,
    INSUFFICIENT_BALANCE,
    UNKNOWN_ACCOUNT,
    Authorization,
    BillingGate,
    Caller,
    ChargeOutcome,
    _validate_amount,
)


class SQLiteBillingGate(BillingGate):
    """Billing gate storing accounts and an append-only charge ledger.

    Deductions use a single conditional UPDATE so concurrent charges
    against the same account can never overdraw it unless
    ``allow_negative`` is set.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def authorize(self, caller: Caller) -> Authorization:
        if not caller.access_token:
            return Authorization(registered=False)

        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT balance_cents FROM account WHERE access_token = ?",
                (caller.access_token,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return Authorization(registered=False)
        return Authorization(registered=True, balance_cents=row[0])

    def charge(
        self,
        caller: Caller,
        amount_cents: int,
        allow_negative: bool = False,
        idempotency_key: Optional[str] = None
    ) -> ChargeOutcome:
        _validate_amount(amount_cents)
        if not caller.access_token:
            return ChargeOutcome(charged=False, message=UNKNOWN_ACCOUNT)

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")

            if idempotency_key is not None:
                seen = conn.execute(
                    "SELECT 1 FROM charge WHERE idempotency_key = ?",
                    (idempotency_key,)
                ).fetchone()
                if seen:
                    conn.rollback()
                    return ChargeOutcome(charged=True, message=ALREADY_CHARGED)

            cursor = conn.execute("""
                UPDATE account SET balance_cents = balance_cents - ?
                WHERE access_token = ? AND (? OR balance_cents >= ?)
            """, (amount_cents, caller.access_token, int(allow_negative), amount_cents))

            if cursor.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM account WHERE access_token = ?",
                    (caller.access_token,)
                ).fetchone()
                conn.rollback()
                return ChargeOutcome(
                    charged=False,
                    message=INSUFFICIENT_BALANCE if exists else UNKNOWN_ACCOUNT
                )

            conn.execute("""
                INSERT INTO charge (timestamp, access_token, amount_cents, idempotency_key)
                VALUES (?, ?, ?, ?)
            """, (datetime.now().isoformat(), caller.access_token, amount_cents, idempotency_key))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        return ChargeOutcome(charged=True)

    def create_account(self, name: str, balance_cents: int = 0) -> str:
        """Create an account and return its new access token.

        Raises:
            ValueError: If name is empty or balance is negative
        """
        if not name or not name.strip():
            raise ValueError("name is required and cannot be empty")
        _validate_amount(balance_cents)

        access_token = secrets.token_urlsafe(24)
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO account (access_token, name, balance_cents, created_at)
                VALUES (?, ?, ?, ?)
            """, (access_token, name.strip(), balance_cents, datetime.now().isoformat()))
            conn.commit()
        finally:
            conn.close()
        return access_token

    def top_up(self, access_token: str, amount_cents: int) -> int:
        """Credit an account and return the new balance.

        Raises:
            ValueError: If the amount is invalid or the account does not exist
        """
        _validate_amount(amount_cents)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE account SET balance_cents = balance_cents + ? WHERE access_token = ?",
                (amount_cents, access_token)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise ValueError(f"{UNKNOWN_ACCOUNT}: {access_token}")
            balance = conn.execute(
                "SELECT balance_cents FROM account WHERE access_token = ?",
                (access_token,)
            ).fetchone()[0]
            conn.commit()
        finally:
            conn.close()
        return balance

    def get_account_name(self, access_token: str) -> Optional[str]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT name FROM account WHERE access_token = ?",
                (access_token,)
            ).fetchone()
        finally:
            conn.close()
        return row[0] if row else None

    def fetch_charges(self, access_token: str, limit: int = 20) -> List[ChargeRecord]:
        """Fetch recent charges for an account, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT timestamp, access_token, amount_cents, idempotency_key
                FROM charge WHERE access_token = ?
                ORDER BY id DESC LIMIT ?
            """, (access_token, limit))
            return [
                ChargeRecord(
                    timestamp=datetime.fromisoformat(row[0]),
                    access_token=row[1],
                    amount_cents=row[2],
                    idempotency_key=row[3]
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
