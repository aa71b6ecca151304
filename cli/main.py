"""Trading ledger CLI.

Provides commands for:
- status: Market session check
- buy / sell / cancel: Order placement and cancellation
- deposit / withdraw: Cash movements
- portfolio / history: Account views
- execute-pending: Settlement pass for deferred orders
- seed: Create the accounts listed in the accounts config
"""
from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from accounts.account import Account
from common.config_loader import LoadedConfig, load_all
from common.exceptions import BusinessRuleError, InfrastructureError, InvalidStateError
from common.logging_setup import configure_logging
from common.money import format_money, to_decimal
from engine.order_executor import OrderExecutor, as_utc, utc_now
from engine.settings import EngineSettings
from ledger.account_ledger import LedgerRepository
from ledger.sql_store import SqlLedgerStore
from market.clock import MarketClock, MarketConfig
from market.price_source import load_quotes_csv, normalize_ticker
from portfolio.holding import Holding
from reporting.history import explain_transactions, transactions_frame
from reporting.summary import (
    cash_response,
    order_response,
    portfolio_summary,
    transactions_response,
)

DEFAULT_DB_URL = "sqlite:///data/ledger.db"


def build_accounts(cfg: LoadedConfig) -> List[Account]:
    """Build seed accounts from the accounts configuration."""
    accounts = []
    for a in cfg.seed_accounts():
        holdings: Dict[str, Holding] = {}
        for t, h in (a.get("holdings") or {}).items():
            ticker = normalize_ticker(t)
            holdings[ticker] = Holding(
                ticker=ticker,
                shares=to_decimal(h["shares"], f"{ticker} shares"),
                avg_cost=to_decimal(h["avg_cost"], f"{ticker} avg_cost"),
            )
        accounts.append(
            Account(
                id=str(a["id"]),
                cash=to_decimal(a.get("cash", 0), "cash"),
                holdings=holdings,
            )
        )
    return accounts


def _ensure_sqlite_dir(url: str) -> None:
    prefix = "sqlite:///"
    if url.startswith(prefix) and ":memory:" not in url:
        Path(url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


def _parse_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def build_executor(args) -> OrderExecutor:
    """Wire the engine from configuration over a SQL-backed store."""
    cfg = load_all(args.config, args.accounts)
    log_cfg = cfg.section("logging")
    configure_logging(str(log_cfg.get("level", "INFO")), log_cfg.get("file"))

    url = args.db or cfg.section("storage").get("url") or DEFAULT_DB_URL
    _ensure_sqlite_dir(url)
    ledgers = LedgerRepository(SqlLedgerStore(url))

    at = _parse_at(args.at)
    return OrderExecutor(
        ledgers=ledgers,
        prices=load_quotes_csv(args.quotes),
        market=MarketClock(MarketConfig(cfg.section("market"))),
        settings=EngineSettings(cfg.section("engine")),
        now=(lambda: at) if at else utc_now,
    )


def _emit(args, payload: Dict[str, Any], lines: List[str]) -> None:
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        for line in lines:
            print(line)


def cmd_status(args) -> int:
    """Handle status command: market session check."""
    ex = build_executor(args)
    st = ex.market_status()
    payload = {
        "message": st.reason,
        "open": st.open,
        "timezone": st.timezone,
        "openTime": st.open_time,
        "closeTime": st.close_time,
    }
    _emit(args, payload, [f"Market {'OPEN' if st.open else 'CLOSED'} ({st.reason})", f"  Hours: {st.open_time}-{st.close_time} {st.timezone}"])
    return 0


def cmd_seed(args) -> int:
    """Handle seed command: create configured accounts that do not exist yet."""
    ex = build_executor(args)
    cfg = load_all(args.config, args.accounts)
    created = 0
    for account in build_accounts(cfg):
        try:
            ex.ledgers.open_account(account.id, account.cash, account.holdings)
            created += 1
            print(f"Created account {account.id} with cash ${format_money(account.cash)}")
        except InvalidStateError:
            print(f"Account {account.id} already exists, skipped")
    print(f"{created} accounts created")
    return 0


def _cmd_order(args, side: str) -> int:
    ex = build_executor(args)
    receipt = ex.place_order(args.user, side, args.ticker, args.shares)
    o = receipt.order
    _emit(args, order_response(receipt), [receipt.message, f"  Order {o.order_id}: {o.status.value}"])
    return 0


def cmd_buy(args) -> int:
    """Handle buy command."""
    return _cmd_order(args, "BUY")


def cmd_sell(args) -> int:
    """Handle sell command."""
    return _cmd_order(args, "SELL")


def cmd_cancel(args) -> int:
    """Handle cancel command."""
    ex = build_executor(args)
    receipt = ex.cancel_order(args.order_id)
    _emit(args, order_response(receipt), [receipt.message, f"  Order {receipt.order.order_id}: {receipt.order.status.value}"])
    return 0


def cmd_deposit(args) -> int:
    """Handle deposit command."""
    ex = build_executor(args)
    cash = ex.deposit(args.user, args.amount)
    message = f"Deposited {format_money(to_decimal(args.amount))} to cash account"
    _emit(args, cash_response(message, cash), [message, f"  Cash: ${format_money(cash)}"])
    return 0


def cmd_withdraw(args) -> int:
    """Handle withdraw command."""
    ex = build_executor(args)
    cash = ex.withdraw(args.user, args.amount)
    message = f"Withdrew {format_money(to_decimal(args.amount))} from cash account"
    _emit(args, cash_response(message, cash), [message, f"  Cash: ${format_money(cash)}"])
    return 0


def cmd_portfolio(args) -> int:
    """Handle portfolio command."""
    ex = build_executor(args)
    p = ex.get_portfolio(args.user)
    lines = [f"Portfolio: {p.account_id}", "=" * 50, f"  Cash: ${format_money(p.cash)}"]
    for h in p.holdings:
        lines.append(
            f"  {h.ticker:6} {h.shares.normalize():>8} @ avg {format_money(h.avg_cost):>10}"
            f"  now {format_money(h.current_price):>10}  value ${format_money(h.market_value)}"
            f"  pnl ${format_money(h.unrealized_pnl)}"
        )
    lines.append("-" * 50)
    lines.append(f"  Stock value:   ${format_money(p.total_stock_value)}")
    lines.append(f"  Account value: ${format_money(p.total_account_value)}")
    _emit(args, portfolio_summary(p), lines)
    return 0


def cmd_history(args) -> int:
    """Handle history command: transactions, most recent first."""
    ex = build_executor(args)
    txs = ex.get_transactions(args.user)
    if args.csv:
        transactions_frame(txs).to_csv(args.csv, index=False)
        print(f"Wrote {len(txs)} transactions to {args.csv}")
        return 0
    _emit(args, transactions_response(txs), explain_transactions(txs) or ["No transactions."])
    return 0


def cmd_execute_pending(args) -> int:
    """Handle execute-pending command: settle deferred orders."""
    ex = build_executor(args)
    receipts = ex.execute_pending()
    payload = {"message": f"{len(receipts)} orders processed", "orders": [order_response(r)["order"] for r in receipts]}
    _emit(args, payload, [payload["message"]] + [f"  {r.order.order_id}: {r.message}" for r in receipts])
    return 0


def main():
    """Main entry point."""
    p = argparse.ArgumentParser(
        prog="cli.main",
        description="Trading ledger CLI: orders, cash and portfolio against live quotes",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # Common arguments for all commands
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default="config/exchange.yaml", help="Exchange config file")
    common.add_argument("--accounts", default="config/accounts.yaml", help="Seed accounts file")
    common.add_argument("--quotes", default="config/quotes.csv", help="Quote catalog CSV")
    common.add_argument("--db", default=None, help="Database URL (overrides storage.url)")
    common.add_argument("--at", default=None, help="Evaluate at this ISO timestamp instead of now")
    common.add_argument("--json", action="store_true", help="Print the response envelope as JSON")

    sub.add_parser("status", parents=[common], help="Market session status").set_defaults(func=cmd_status)
    sub.add_parser("seed", parents=[common], help="Create configured accounts").set_defaults(func=cmd_seed)

    for name, func in (("buy", cmd_buy), ("sell", cmd_sell)):
        op = sub.add_parser(name, parents=[common], help=f"{name.title()} shares")
        op.add_argument("--user", required=True, help="Account id")
        op.add_argument("--ticker", required=True, help="Ticker symbol")
        op.add_argument("--shares", required=True, help="Quantity")
        op.set_defaults(func=func)

    cancel = sub.add_parser("cancel", parents=[common], help="Cancel a pending order")
    cancel.add_argument("order_id", help="Order id")
    cancel.set_defaults(func=cmd_cancel)

    for name, func in (("deposit", cmd_deposit), ("withdraw", cmd_withdraw)):
        cash = sub.add_parser(name, parents=[common], help=f"{name.title()} cash")
        cash.add_argument("--user", required=True, help="Account id")
        cash.add_argument("--amount", required=True, help="Amount")
        cash.set_defaults(func=func)

    pf = sub.add_parser("portfolio", parents=[common], help="Show holdings and totals")
    pf.add_argument("--user", required=True, help="Account id")
    pf.set_defaults(func=cmd_portfolio)

    hist = sub.add_parser("history", parents=[common], help="Show transactions")
    hist.add_argument("--user", required=True, help="Account id")
    hist.add_argument("--csv", default=None, help="Write history to this CSV file instead")
    hist.set_defaults(func=cmd_history)

    sub.add_parser(
        "execute-pending",
        parents=[common],
        help="Settle PENDING orders (deferred settlement)",
    ).set_defaults(func=cmd_execute_pending)

    args = p.parse_args()
    try:
        code = args.func(args)
    except BusinessRuleError as e:
        print(f"Error: {e}")
        code = 1
    except InfrastructureError as e:
        logger.error(f"System failure: {e}")
        print(f"System error: {e}")
        code = 2
    raise SystemExit(code)


if __name__ == "__main__":
    main()
