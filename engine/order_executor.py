"""Order & ledger execution engine.

Runs one request at a time per account: gate on the market clock, take the
account's lock, read the quote once, validate against the locked snapshot
and commit a single ``Mutation``. Every business-rule failure is raised
before anything is written.

Two settlement models are supported (see ``EngineSettings.settlement``):
immediate settlement inside the request, or deferred settlement where orders
wait PENDING until ``execute_pending`` runs.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional

from loguru import logger

from accounts.account import Account
from common.exceptions import (
    BusinessRuleError,
    InfrastructureError,
    InsufficientFundsError,
    InsufficientSharesError,
    InvalidArgumentError,
    InvalidStateError,
    MarketClosedError,
    NotFoundError,
)
from common.money import MIN_ORDER_VALUE, ZERO, positive_decimal, quantize_money
from engine.settings import EngineSettings, SettlementMode
from ledger.account_ledger import LedgerRepository
from ledger.mutation import Mutation
from ledger.transaction import CASH_TICKER, Transaction, TransactionType, new_tx_id
from market.clock import MarketClock, MarketStatus
from market.price_source import PriceSource, normalize_ticker
from orders.order import Order, OrderReceipt, OrderStatus, Side, new_order_id
from portfolio.holding import Holding
from portfolio.portfolio import PortfolioView, build_portfolio


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Aware timestamps pass through; naive ones are taken as UTC."""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


# failures that turn a queued order into REJECTED instead of stopping the pass
PENDING_REJECTIONS = (InsufficientFundsError, InsufficientSharesError, InvalidArgumentError)


class OrderExecutor:
    def __init__(
        self,
        ledgers: LedgerRepository,
        prices: PriceSource,
        market: MarketClock,
        settings: Optional[EngineSettings] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.ledgers = ledgers
        self.prices = prices
        self.market = market
        self.settings = settings or EngineSettings()
        self._now = now

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def place_order(self, account_id: str, side: Any, ticker: str, quantity: Any) -> OrderReceipt:
        side = Side.parse(side)
        ticker = normalize_ticker(ticker)
        if not ticker:
            raise InvalidArgumentError("ticker is required")
        qty = positive_decimal(quantity, "quantity")
        if not self.prices.has_ticker(ticker):
            raise NotFoundError(f"Stock not found: {ticker}")
        ledger = self.ledgers.ledger(account_id)

        now = self._clock()
        self._require_open(now)

        try:
            with ledger.exclusive():
                price = self._read_price(ticker)
                order = Order(new_order_id(), account_id, side, ticker, qty, OrderStatus.PENDING, price, now)

                if self.settings.settlement is SettlementMode.DEFERRED:
                    # validated against the current state, settled later
                    self._settlement(ledger.snapshot(), order, price, now)
                    ledger.apply(Mutation(order=order))
                    logger.info(f"{side.value} {qty} {ticker} queued for {account_id} as {order.order_id}")
                    return OrderReceipt(
                        f"{side.value.title()} order created (PENDING): {qty} shares of {ticker}", order
                    )

                _, mutation = ledger.update(lambda account: self._settlement(account, order, price, now))
        except BusinessRuleError as e:
            logger.warning(f"{side.value} {qty} {ticker} for {account_id} rejected: {e}")
            raise

        logger.info(
            f"{side.value} {qty} {ticker} @ {price} for {account_id} executed, total {mutation.transaction.total}"
        )
        return OrderReceipt(
            f"{side.value.title()} order executed: {qty} shares of {ticker} at {price}",
            mutation.order,
            mutation.transaction,
        )

    def execute_pending(self, now: Optional[datetime] = None) -> List[OrderReceipt]:
        """Settle every PENDING order at the current quote.

        Orders that no longer pass validation, or whose ticker left the
        catalog, become REJECTED with a REJECTED transaction and no ledger
        effect.
        """
        now = as_utc(now) if now is not None else self._clock()
        self._require_open(now)

        receipts: List[OrderReceipt] = []
        for pending in self.ledgers.pending_orders():
            ledger = self.ledgers.ledger(pending.account_id)
            with ledger.exclusive():
                order = self.ledgers.find_order(pending.order_id)
                if order.status is not OrderStatus.PENDING:
                    continue  # canceled while we were working through the queue
                reasons: List[BusinessRuleError] = []
                try:
                    price = self._read_price(order.ticker)
                except NotFoundError as e:
                    price = order.price
                    reasons.append(e)
                delisted = bool(reasons)

                def build(account: Account) -> Mutation:
                    # re-read: another process may have settled or canceled it
                    current = self.ledgers.find_order(order.order_id)
                    if not delisted:
                        try:
                            return self._settlement(account, current, price, now)
                        except PENDING_REJECTIONS as e:
                            reasons.append(e)
                    return self._rejection(current, price, now)

                try:
                    _, mutation = ledger.update(build)
                except InvalidStateError:
                    continue  # no longer PENDING

            if mutation.order.status is OrderStatus.REJECTED:
                logger.warning(f"Pending order {order.order_id} rejected: {reasons[-1]}")
                message = f"Order rejected: {reasons[-1]}"
            else:
                message = f"Order executed: {order.side.value} {order.quantity} {order.ticker} at {price}"
            receipts.append(OrderReceipt(message, mutation.order, mutation.transaction))

        logger.info(f"Pending execution pass settled {len(receipts)} orders")
        return receipts

    def cancel_order(self, order_id: str) -> OrderReceipt:
        order = self.ledgers.find_order(order_id)
        ledger = self.ledgers.ledger(order.account_id)

        with ledger.exclusive():
            order = self.ledgers.find_order(order_id)
            if order.status is not OrderStatus.PENDING:
                if self.settings.strict_cancel:
                    raise InvalidStateError(
                        f"Only PENDING orders can be canceled; {order_id} is {order.status.value}"
                    )
                return OrderReceipt(f"Order already {order.status.value}", order)

            now = self._clock()

            def build(_account: Account) -> Mutation:
                current = self.ledgers.find_order(order_id)
                # nothing was settled, so nothing is reversed
                tx = self._order_transaction(current, current.price, OrderStatus.CANCELED, now)
                return Mutation(transaction=tx, order=current.transition(OrderStatus.CANCELED))

            try:
                _, mutation = ledger.update(build)
            except InvalidStateError:
                # settled by another process since the check above
                if self.settings.strict_cancel:
                    raise
                order = self.ledgers.find_order(order_id)
                return OrderReceipt(f"Order already {order.status.value}", order)

        logger.info(f"Order {order_id} canceled")
        return OrderReceipt("Order canceled", mutation.order, mutation.transaction)

    # ------------------------------------------------------------------
    # Cash
    # ------------------------------------------------------------------

    def deposit(self, account_id: str, amount: Any) -> Decimal:
        value = self._cash_amount(amount, "Deposit amount")
        ledger = self.ledgers.ledger(account_id)
        tx = self._cash_transaction(account_id, TransactionType.DEPOSIT, value)
        account = ledger.apply(Mutation(cash_delta=value, transaction=tx))
        logger.info(f"Deposited {value} to {account_id}; cash now {account.cash}")
        return account.cash

    def withdraw(self, account_id: str, amount: Any) -> Decimal:
        value = self._cash_amount(amount, "Withdraw amount")
        ledger = self.ledgers.ledger(account_id)
        tx = self._cash_transaction(account_id, TransactionType.WITHDRAW, value)

        def build(current: Account) -> Mutation:
            if current.cash < value:
                raise InsufficientFundsError(
                    f"Insufficient cash balance: requested {value}, available {current.cash}"
                )
            return Mutation(cash_delta=-value, transaction=tx)

        try:
            account, _ = ledger.update(build)
        except InsufficientFundsError as e:
            logger.warning(f"Withdraw {value} from {account_id} rejected: {e}")
            raise
        logger.info(f"Withdrew {value} from {account_id}; cash now {account.cash}")
        return account.cash

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_portfolio(self, account_id: str) -> PortfolioView:
        return build_portfolio(self.ledgers.ledger(account_id).snapshot(), self.prices)

    def get_transactions(self, account_id: str) -> List[Transaction]:
        """Most recent first; ties keep newest-appended first."""
        history = list(reversed(self.ledgers.ledger(account_id).transactions()))
        return sorted(history, key=lambda t: t.timestamp, reverse=True)

    def market_status(self, now: Optional[datetime] = None) -> MarketStatus:
        return self.market.is_open(as_utc(now) if now is not None else self._clock())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _clock(self) -> datetime:
        return as_utc(self._now())

    def _require_open(self, now: datetime) -> None:
        status = self.market.is_open(now)
        if not status.open:
            raise MarketClosedError(status.reason)

    def _read_price(self, ticker: str) -> Decimal:
        try:
            price = self.prices.get_price(ticker)
        except BusinessRuleError:
            raise
        except Exception as e:
            logger.error(f"Price feed failed for {ticker}: {e}")
            raise InfrastructureError(f"Price feed failed for {ticker}: {e}") from e
        if not isinstance(price, Decimal):
            price = Decimal(str(price))
        if not price.is_finite() or price <= 0:
            raise InfrastructureError(f"Price feed returned an unusable quote for {ticker}: {price}")
        return price

    def _settlement(self, account: Account, order: Order, price: Decimal, now: datetime) -> Mutation:
        """Validate ``order`` against ``account`` and build its executed mutation."""
        qty = order.quantity
        value = qty * price
        if value < MIN_ORDER_VALUE:
            raise InvalidArgumentError(
                f"Order value {value} for {qty} {order.ticker} is below the minimum of {MIN_ORDER_VALUE}"
            )
        total = quantize_money(value)
        held = account.holding(order.ticker)

        if order.side is Side.BUY:
            if account.cash < total:
                raise InsufficientFundsError(f"Insufficient cash balance: need {total}, have {account.cash}")
            old_shares = held.shares if held else ZERO
            old_avg = held.avg_cost if held else ZERO
            new_shares = old_shares + qty
            new_avg = (old_avg * old_shares + price * qty) / new_shares
            cash_delta = -total
            change: Optional[Holding] = Holding(order.ticker, new_shares, new_avg)
        else:
            if held is None:
                raise InsufficientSharesError(f"No shares of {order.ticker} to sell")
            if held.shares < qty:
                raise InsufficientSharesError(
                    f"Insufficient shares of {order.ticker}: requested {qty}, held {held.shares}"
                )
            remaining = held.shares - qty
            cash_delta = total
            change = Holding(order.ticker, remaining, held.avg_cost) if remaining > 0 else None

        return Mutation(
            cash_delta=cash_delta,
            holding_changes={order.ticker: change},
            transaction=self._order_transaction(order, price, OrderStatus.EXECUTED, now),
            order=order.transition(OrderStatus.EXECUTED),
        )

    def _order_transaction(self, order: Order, price: Decimal, status: OrderStatus, now: datetime) -> Transaction:
        tx_type = TransactionType.CANCEL if status is OrderStatus.CANCELED else TransactionType(order.side.value)
        return Transaction(
            tx_id=new_tx_id(),
            account_id=order.account_id,
            type=tx_type,
            ticker=order.ticker,
            quantity=order.quantity,
            price=price,
            total=quantize_money(order.quantity * price),
            status=status,
            timestamp=now,
            order_id=order.order_id,
        )

    def _rejection(self, order: Order, price: Decimal, now: datetime) -> Mutation:
        return Mutation(
            transaction=self._order_transaction(order, price, OrderStatus.REJECTED, now),
            order=order.transition(OrderStatus.REJECTED),
        )

    def _cash_transaction(self, account_id: str, tx_type: TransactionType, amount: Decimal) -> Transaction:
        return Transaction(
            tx_id=new_tx_id(),
            account_id=account_id,
            type=tx_type,
            ticker=CASH_TICKER,
            quantity=ZERO,
            price=ZERO,
            total=amount,
            status=OrderStatus.EXECUTED,
            timestamp=self._clock(),
        )

    @staticmethod
    def _cash_amount(amount: Any, field: str) -> Decimal:
        value = quantize_money(positive_decimal(amount, field))
        if value <= 0:
            raise InvalidArgumentError(f"{field} must be at least 0.01")
        return value
