"""Storage behind the account ledger.

A store persists account snapshots, orders and the transaction log. It does
not validate business rules; ``AccountLedger`` hands it an already-checked
resulting ``Account`` together with the ``Mutation`` that produced it, and
the store must make both visible at once or not at all. The commit only
lands if the stored account is still at the version the result was derived
from (``account.version - 1``); otherwise it raises ``ConcurrentUpdateError``.
"""
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol

from accounts.account import Account
from common.exceptions import ConcurrentUpdateError, InvalidStateError
from ledger.mutation import Mutation
from ledger.transaction import Transaction
from orders.order import Order, OrderStatus


class LedgerStore(Protocol):
    def get_account(self, account_id: str) -> Optional[Account]:
        ...

    def add_account(self, account: Account) -> None:
        ...

    def commit(self, account: Account, mutation: Mutation) -> None:
        ...

    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    def pending_orders(self) -> List[Order]:
        ...

    def transactions(self, account_id: str) -> List[Transaction]:
        """Transactions in the order they were appended."""
        ...


class InMemoryLedgerStore:
    """Process-local store.

    Accounts are immutable values replaced wholesale under ``_guard``, so a
    reader sees either the state before a commit or after it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._accounts: Dict[str, Account] = {}
        self._orders: Dict[str, Order] = {}
        self._transactions: Dict[str, List[Transaction]] = {}

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._guard:
            return self._accounts.get(account_id)

    def add_account(self, account: Account) -> None:
        account.check_invariants()
        with self._guard:
            if account.id in self._accounts:
                raise InvalidStateError(f"Account already exists: {account.id}")
            self._accounts[account.id] = account
            self._transactions[account.id] = []

    def commit(self, account: Account, mutation: Mutation) -> None:
        with self._guard:
            current = self._accounts.get(account.id)
            if current is None:
                raise KeyError(account.id)
            if current.version != account.version - 1:
                raise ConcurrentUpdateError(
                    f"Account {account.id} is at version {current.version}, commit expected {account.version - 1}"
                )
            self._accounts[account.id] = account
            if mutation.transaction is not None:
                self._transactions[account.id].append(mutation.transaction)
            if mutation.order is not None:
                self._orders[mutation.order.order_id] = mutation.order

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._guard:
            return self._orders.get(order_id)

    def pending_orders(self) -> List[Order]:
        with self._guard:
            pending = [o for o in self._orders.values() if o.status is OrderStatus.PENDING]
        return sorted(pending, key=lambda o: o.requested_at)

    def transactions(self, account_id: str) -> List[Transaction]:
        with self._guard:
            return list(self._transactions.get(account_id, ()))
