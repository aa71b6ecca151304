"""Tests for deferred settlement and order cancellation.

Covers:
- PENDING orders have no ledger effect until executed
- Cancel moves PENDING to CANCELED with a zero-effect CANCEL record
- Cancel of a terminal order echoes its status, or raises in strict mode
- Execution pass settles or rejects pending orders
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from common.exceptions import InsufficientFundsError, InvalidStateError, MarketClosedError, NotFoundError
from engine.order_executor import OrderExecutor
from engine.settings import EngineSettings, SettlementMode
from ledger.account_ledger import LedgerRepository
from ledger.store import InMemoryLedgerStore
from ledger.transaction import TransactionType
from market.clock import MarketClock, MarketConfig
from market.price_source import StaticPriceSource
from orders.order import OrderStatus
from portfolio.holding import Holding

NY = ZoneInfo("America/New_York")
OPEN_AT = datetime(2026, 10, 19, 10, 0, tzinfo=NY)


def make_executor(settlement="deferred", strict_cancel=False, cash="10000.00", holdings=None):
    """Helper to create an executor for account u1001."""
    ledgers = LedgerRepository(InMemoryLedgerStore())
    ledgers.open_account(
        "u1001",
        Decimal(cash),
        {t: Holding(t, Decimal(s), Decimal(c)) for t, (s, c) in (holdings or {}).items()},
    )
    return OrderExecutor(
        ledgers=ledgers,
        prices=StaticPriceSource.from_prices({"AAPL": "182.34", "TSLA": "192.75"}),
        market=MarketClock(MarketConfig({})),
        settings=EngineSettings({"settlement": settlement, "strict_cancel": strict_cancel}),
        now=lambda: OPEN_AT,
    )


def balances(ex: OrderExecutor):
    acct = ex.ledgers.ledger("u1001").snapshot()
    return acct.cash, dict(acct.holdings)


class TestPendingOrders:
    """Tests for deferred order placement."""

    def test_pending_order_has_no_ledger_effect(self):
        """A deferred buy is recorded PENDING and moves no money."""
        ex = make_executor()
        before = balances(ex)

        receipt = ex.place_order("u1001", "BUY", "AAPL", 5)

        assert receipt.order.status is OrderStatus.PENDING
        assert receipt.order.price == Decimal("182.34")
        assert "PENDING" in receipt.message
        assert balances(ex) == before
        assert ex.get_transactions("u1001") == []

    def test_pending_order_still_validated(self):
        """Affordability is checked at request time in deferred mode too."""
        ex = make_executor(cash="10.00")

        with pytest.raises(InsufficientFundsError):
            ex.place_order("u1001", "BUY", "AAPL", 1)

        assert ex.ledgers.pending_orders() == []


class TestCancel:
    """Tests for canceling orders."""

    def test_cancel_pending(self):
        """Canceling a PENDING order marks it CANCELED with zero ledger effect."""
        ex = make_executor()
        order = ex.place_order("u1001", "BUY", "AAPL", 5).order
        before = balances(ex)

        receipt = ex.cancel_order(order.order_id)

        assert receipt.order.status is OrderStatus.CANCELED
        assert receipt.message == "Order canceled"
        assert balances(ex) == before
        [tx] = ex.get_transactions("u1001")
        assert tx.type is TransactionType.CANCEL
        assert tx.status is OrderStatus.CANCELED
        assert tx.total == Decimal("911.70")

    def test_canceled_order_not_executed_later(self):
        """The execution pass skips canceled orders."""
        ex = make_executor()
        order = ex.place_order("u1001", "BUY", "AAPL", 5).order
        ex.cancel_order(order.order_id)

        assert ex.execute_pending() == []
        assert balances(ex)[0] == Decimal("10000.00")

    def test_cancel_executed_echoes_status(self):
        """Canceling an EXECUTED order reports EXECUTED and changes nothing."""
        ex = make_executor(settlement="immediate")
        order = ex.place_order("u1001", "BUY", "AAPL", 1).order
        before = balances(ex)

        receipt = ex.cancel_order(order.order_id)

        assert receipt.order.status is OrderStatus.EXECUTED
        assert receipt.message == "Order already EXECUTED"
        assert balances(ex) == before
        assert len(ex.get_transactions("u1001")) == 1

    def test_cancel_twice_is_idempotent(self):
        """A second cancel echoes CANCELED without a second record."""
        ex = make_executor()
        order = ex.place_order("u1001", "BUY", "TSLA", 1).order
        ex.cancel_order(order.order_id)

        receipt = ex.cancel_order(order.order_id)

        assert receipt.order.status is OrderStatus.CANCELED
        assert len(ex.get_transactions("u1001")) == 1

    def test_strict_cancel_raises_on_terminal(self):
        """With strict_cancel a non-pending cancel is InvalidState."""
        ex = make_executor(settlement="immediate", strict_cancel=True)
        order = ex.place_order("u1001", "BUY", "AAPL", 1).order

        with pytest.raises(InvalidStateError):
            ex.cancel_order(order.order_id)

    def test_cancel_unknown_order(self):
        """Unknown order ids are not found."""
        ex = make_executor()

        with pytest.raises(NotFoundError):
            ex.cancel_order("o-missing")


class TestExecutePending:
    """Tests for the settlement pass."""

    def test_pending_buy_settles_at_current_price(self):
        """The pass fills at the quote read during execution."""
        ex = make_executor()
        ex.place_order("u1001", "BUY", "AAPL", 10)
        ex.prices.set_price("AAPL", "180.00")

        [receipt] = ex.execute_pending()

        assert receipt.order.status is OrderStatus.EXECUTED
        assert receipt.transaction.price == Decimal("180.00")
        cash, holdings = balances(ex)
        assert cash == Decimal("8200.00")
        assert holdings["AAPL"].shares == 10

    def test_unaffordable_pending_order_rejected(self):
        """If cash no longer covers the fill the order is REJECTED with no effect."""
        ex = make_executor(cash="1000.00")
        ex.place_order("u1001", "BUY", "AAPL", 5)
        ex.prices.set_price("AAPL", "250.00")

        [receipt] = ex.execute_pending()

        assert receipt.order.status is OrderStatus.REJECTED
        assert receipt.transaction.status is OrderStatus.REJECTED
        assert balances(ex) == (Decimal("1000.00"), {})

    def test_pending_sells_compete_for_shares(self):
        """Two sells queued against the same shares: the second is rejected."""
        ex = make_executor(holdings={"AAPL": ("10", "175.00")})
        ex.place_order("u1001", "SELL", "AAPL", 10)
        ex.place_order("u1001", "SELL", "AAPL", 10)

        statuses = [r.order.status for r in ex.execute_pending()]

        assert statuses == [OrderStatus.EXECUTED, OrderStatus.REJECTED]
        assert balances(ex)[1] == {}

    def test_naive_pass_time_taken_as_utc(self):
        """A naive pass time is UTC and sorts with the aware history."""
        ex = make_executor()
        ex.deposit("u1001", 5)
        ex.place_order("u1001", "BUY", "AAPL", 1)

        [receipt] = ex.execute_pending(now=datetime(2026, 10, 19, 15, 0))

        assert receipt.transaction.timestamp == datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)
        history = ex.get_transactions("u1001")
        assert [t.type for t in history] == [TransactionType.BUY, TransactionType.DEPOSIT]

    def test_delisted_ticker_rejected_pass_continues(self):
        """An order whose ticker left the catalog is REJECTED; later orders still settle."""
        ex = make_executor()
        aapl = ex.place_order("u1001", "BUY", "AAPL", 2).order
        ex.place_order("u1001", "BUY", "TSLA", 1)
        ex.prices = StaticPriceSource.from_prices({"TSLA": "192.75"})

        receipts = {r.order.ticker: r for r in ex.execute_pending()}

        assert receipts["AAPL"].order.status is OrderStatus.REJECTED
        assert receipts["AAPL"].transaction.status is OrderStatus.REJECTED
        assert receipts["AAPL"].transaction.price == aapl.price
        assert "AAPL" in receipts["AAPL"].message
        assert receipts["TSLA"].order.status is OrderStatus.EXECUTED
        cash, holdings = balances(ex)
        assert cash == Decimal("10000.00") - Decimal("192.75")
        assert list(holdings) == ["TSLA"]
        assert ex.ledgers.pending_orders() == []

    def test_pass_requires_open_market(self):
        """The pass is gated by the session like order placement."""
        ex = make_executor()
        ex.place_order("u1001", "BUY", "AAPL", 1)

        with pytest.raises(MarketClosedError):
            ex.execute_pending(now=datetime(2026, 10, 19, 18, 0, tzinfo=NY))

        assert len(ex.ledgers.pending_orders()) == 1


class TestSettings:
    """Tests for engine settings parsing."""

    def test_default_is_immediate(self):
        """Buy/sell settle inside the request unless configured otherwise."""
        assert EngineSettings().settlement is SettlementMode.IMMEDIATE

    def test_unknown_mode_rejected(self):
        """Unknown settlement modes are config errors."""
        with pytest.raises(ValueError):
            EngineSettings({"settlement": "eventually"}).settlement
