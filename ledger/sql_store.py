"""
SQL-backed ledger store
SQLAlchemy ORM models plus a store whose every commit is one DB transaction
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import (
    Column, DateTime, ForeignKey, Integer, String, create_engine, select, update
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from accounts.account import Account
from common.exceptions import ConcurrentUpdateError, InfrastructureError, InvalidStateError
from ledger.mutation import Mutation
from ledger.transaction import Transaction, TransactionType
from orders.order import Order, OrderStatus, Side
from portfolio.holding import Holding


class Base(DeclarativeBase):
    """Base class for ledger tables"""
    pass


class DecimalText(TypeDecorator):
    """Exact Decimal storage; SQLite would otherwise round-trip through float."""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


class UtcDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        return None if value is None else value.replace(tzinfo=timezone.utc)


# Tables

class AccountModel(Base):
    """Cash balance per account"""
    __tablename__ = "accounts"

    account_id = Column(String(64), primary_key=True)
    cash = Column(DecimalText, nullable=False)
    version = Column(Integer, nullable=False, default=0)


class HoldingModel(Base):
    """One row per (account, ticker); a row exists only while shares > 0"""
    __tablename__ = "holdings"

    account_id = Column(String(64), ForeignKey("accounts.account_id"), primary_key=True)
    ticker = Column(String(16), primary_key=True)
    shares = Column(DecimalText, nullable=False)
    avg_cost = Column(DecimalText, nullable=False)


class OrderModel(Base):
    """Buy/sell orders; status is the only column ever updated"""
    __tablename__ = "orders"

    order_id = Column(String(64), primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.account_id"), nullable=False, index=True)
    side = Column(String(8), nullable=False)
    ticker = Column(String(16), nullable=False)
    quantity = Column(DecimalText, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    price = Column(DecimalText, nullable=False)
    requested_at = Column(UtcDateTime, nullable=False)


class TransactionModel(Base):
    """Insert-only transaction log - NO UPDATES, NO DELETES"""
    __tablename__ = "transactions"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    tx_id = Column(String(64), nullable=False, unique=True)
    account_id = Column(String(64), ForeignKey("accounts.account_id"), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    ticker = Column(String(16), nullable=False)
    quantity = Column(DecimalText, nullable=False)
    price = Column(DecimalText, nullable=False)
    total = Column(DecimalText, nullable=False)
    status = Column(String(16), nullable=False)
    timestamp = Column(UtcDateTime, nullable=False)
    order_id = Column(String(64), nullable=True)


def _engine_kwargs(url: str) -> Dict:
    if not url.startswith("sqlite"):
        return {}
    kwargs: Dict = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url.rstrip("/") == "sqlite:":
        # one shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    return kwargs


def _to_order(row: OrderModel) -> Order:
    return Order(
        order_id=row.order_id,
        account_id=row.account_id,
        side=Side(row.side),
        ticker=row.ticker,
        quantity=row.quantity,
        status=OrderStatus(row.status),
        price=row.price,
        requested_at=row.requested_at,
    )


def _to_transaction(row: TransactionModel) -> Transaction:
    return Transaction(
        tx_id=row.tx_id,
        account_id=row.account_id,
        type=TransactionType(row.type),
        ticker=row.ticker,
        quantity=row.quantity,
        price=row.price,
        total=row.total,
        status=OrderStatus(row.status),
        timestamp=row.timestamp,
        order_id=row.order_id,
    )


class SqlLedgerStore:
    """Ledger store on any SQLAlchemy-supported database."""

    def __init__(self, url: str = "sqlite:///:memory:", echo: bool = False):
        self.url = url
        self.engine = create_engine(url, echo=echo, **_engine_kwargs(url))
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def close(self) -> None:
        self.engine.dispose()

    def get_account(self, account_id: str) -> Optional[Account]:
        try:
            with self._session_factory() as session:
                row = session.get(AccountModel, account_id)
                if row is None:
                    return None
                holdings = session.execute(
                    select(HoldingModel).where(HoldingModel.account_id == account_id)
                ).scalars()
                return Account(
                    id=row.account_id,
                    cash=row.cash,
                    holdings={h.ticker: Holding(h.ticker, h.shares, h.avg_cost) for h in holdings},
                    version=row.version,
                )
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Failed to load account {account_id}: {e}") from e

    def add_account(self, account: Account) -> None:
        account.check_invariants()
        try:
            with self._session_factory.begin() as session:
                if session.get(AccountModel, account.id) is not None:
                    raise InvalidStateError(f"Account already exists: {account.id}")
                session.add(AccountModel(account_id=account.id, cash=account.cash, version=account.version))
                for h in account.holdings.values():
                    session.add(
                        HoldingModel(account_id=account.id, ticker=h.ticker, shares=h.shares, avg_cost=h.avg_cost)
                    )
        except IntegrityError as e:
            raise InvalidStateError(f"Account already exists: {account.id}") from e
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Failed to create account {account.id}: {e}") from e

    def commit(self, account: Account, mutation: Mutation) -> None:
        try:
            with self._session_factory.begin() as session:
                # compare-and-swap on the version; the UPDATE also takes the row
                # (or, on SQLite, the database) write lock for the rest of the commit
                swapped = session.execute(
                    update(AccountModel)
                    .where(
                        AccountModel.account_id == account.id,
                        AccountModel.version == account.version - 1,
                    )
                    .values(cash=account.cash, version=account.version)
                    .execution_options(synchronize_session=False)
                )
                if swapped.rowcount != 1:
                    raise ConcurrentUpdateError(
                        f"Account {account.id} changed since version {account.version - 1} was read"
                    )

                for ticker in mutation.holding_changes:
                    new = account.holdings.get(ticker)
                    existing = session.get(HoldingModel, (account.id, ticker))
                    if new is None:
                        if existing is not None:
                            session.delete(existing)
                    elif existing is None:
                        session.add(
                            HoldingModel(account_id=account.id, ticker=ticker, shares=new.shares, avg_cost=new.avg_cost)
                        )
                    else:
                        existing.shares = new.shares
                        existing.avg_cost = new.avg_cost

                tx = mutation.transaction
                if tx is not None:
                    session.add(
                        TransactionModel(
                            tx_id=tx.tx_id,
                            account_id=tx.account_id,
                            type=tx.type.value,
                            ticker=tx.ticker,
                            quantity=tx.quantity,
                            price=tx.price,
                            total=tx.total,
                            status=tx.status.value,
                            timestamp=tx.timestamp,
                            order_id=tx.order_id,
                        )
                    )

                order = mutation.order
                if order is not None:
                    session.merge(
                        OrderModel(
                            order_id=order.order_id,
                            account_id=order.account_id,
                            side=order.side.value,
                            ticker=order.ticker,
                            quantity=order.quantity,
                            status=order.status.value,
                            price=order.price,
                            requested_at=order.requested_at,
                        )
                    )
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Commit failed for account {account.id}: {e}") from e

    def get_order(self, order_id: str) -> Optional[Order]:
        try:
            with self._session_factory() as session:
                row = session.get(OrderModel, order_id)
                return _to_order(row) if row is not None else None
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Failed to load order {order_id}: {e}") from e

    def pending_orders(self) -> List[Order]:
        try:
            with self._session_factory() as session:
                rows = session.execute(
                    select(OrderModel)
                    .where(OrderModel.status == OrderStatus.PENDING.value)
                    .order_by(OrderModel.requested_at)
                ).scalars()
                return [_to_order(r) for r in rows]
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Failed to list pending orders: {e}") from e

    def transactions(self, account_id: str) -> List[Transaction]:
        try:
            with self._session_factory() as session:
                rows = session.execute(
                    select(TransactionModel)
                    .where(TransactionModel.account_id == account_id)
                    .order_by(TransactionModel.seq)
                ).scalars()
                return [_to_transaction(r) for r in rows]
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Failed to load transactions for {account_id}: {e}") from e
