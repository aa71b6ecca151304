"""Account ledger.

``AccountLedger`` is the only path through which an account's cash,
holdings and history change. A mutation is applied to a snapshot first; the
store sees it only when the resulting account satisfies every invariant.
Writes on one account are serialized by a re-entrant lock that callers can
also hold across a read-validate-apply sequence with ``exclusive()``.
The lock is process-local; across processes the store's versioned commit
rejects writes built from a stale snapshot and ``update`` rebuilds them.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from loguru import logger

from accounts.account import Account
from common.exceptions import ConcurrentUpdateError, InfrastructureError, LedgerError, NotFoundError
from ledger.mutation import Mutation
from ledger.store import LedgerStore
from ledger.transaction import Transaction
from orders.order import Order
from portfolio.holding import Holding

COMMIT_ATTEMPTS = 3


class AccountLedger:
    def __init__(self, account_id: str, store: LedgerStore, lock: threading.RLock):
        self.account_id = account_id
        self._store = store
        self._lock = lock

    @contextmanager
    def exclusive(self) -> Iterator["AccountLedger"]:
        """Hold the account's lock; blocks until the previous holder finishes."""
        with self._lock:
            yield self

    def snapshot(self) -> Account:
        account = self._store.get_account(self.account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {self.account_id}")
        return account

    def transactions(self) -> List[Transaction]:
        return self._store.transactions(self.account_id)

    def apply(self, mutation: Mutation) -> Account:
        """Apply ``mutation`` all-or-nothing and return the new snapshot.

        A stale snapshot gets the same ``mutation`` again, so changes that
        depend on the current balances go through ``update`` instead.
        """
        account, _ = self.update(lambda current: mutation)
        return account

    def update(self, build: Callable[[Account], Mutation]) -> Tuple[Account, Mutation]:
        """Build a mutation from the current snapshot and commit it.

        Another process sharing the store can commit between the snapshot and
        our commit. The store then refuses the stale write and ``build`` runs
        again against a fresh snapshot, so its checks always see the state the
        mutation lands on. ``build`` must not have side effects.
        """
        with self._lock:
            attempt = 1
            while True:
                current = self.snapshot()
                mutation = build(current)
                updated = current.apply(mutation)
                try:
                    self._store.commit(updated, mutation)
                except ConcurrentUpdateError as e:
                    if attempt >= COMMIT_ATTEMPTS:
                        logger.error(f"Ledger commit for {self.account_id} kept conflicting: {e}")
                        raise
                    logger.warning(f"Stale snapshot of {self.account_id}, rebuilding: {e}")
                    attempt += 1
                    continue
                except LedgerError:
                    raise
                except Exception as e:
                    logger.error(f"Ledger commit failed for {self.account_id}: {e}")
                    raise InfrastructureError(f"Ledger commit failed for {self.account_id}: {e}") from e
                return updated, mutation


class LedgerRepository:
    """Hands out one ``AccountLedger`` per account, all sharing one store."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.RLock()
            return lock

    def ledger(self, account_id: str) -> AccountLedger:
        if not account_id or self.store.get_account(account_id) is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return AccountLedger(account_id, self.store, self._lock_for(account_id))

    def open_account(
        self,
        account_id: str,
        cash: Decimal = Decimal("0"),
        holdings: Optional[Mapping[str, Holding]] = None,
    ) -> AccountLedger:
        account = Account(id=account_id, cash=cash, holdings=dict(holdings or {}))
        with self._lock_for(account_id):
            self.store.add_account(account)
        logger.info(f"Opened account {account_id} with cash {cash}")
        return AccountLedger(account_id, self.store, self._lock_for(account_id))

    def find_order(self, order_id: str) -> Order:
        order = self.store.get_order(order_id) if order_id else None
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}")
        return order

    def pending_orders(self) -> List[Order]:
        return self.store.pending_orders()
