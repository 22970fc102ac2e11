"""Trade Sync Job

This job pulls the account's realized trade history (or a balance snapshot)
from the configured venue and optionally exports the ledger to CSV.

The job:
1. Reads configuration from config/trade_sync_config.json (or the path given
   as the first command-line argument)
2. Reads API credentials from TRADE_LEDGER_API_KEY / TRADE_LEDGER_API_SECRET
3. Runs one request kind, selected by ``mode``:
   - spot:      full spot history across discovered symbols
   - futures:   closed derivatives positions in [from_date, to_date]
   - dashboard: balance snapshot and running positions
   - check:     credential check only
4. Logs a summary (skipped symbols/windows are reported, not fatal)
5. Writes the trades to ``output_csv`` when set

Exit status: 0 success, 1 failure, 2 cancelled.

Usage:
    python -m trade_ledger.jobs.trade_sync_job [config.json]
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Mapping, Optional

from trade_ledger.core.cancel import CancelToken
from trade_ledger.core.errors import AuthenticationError, Cancelled, TradeLedgerError
from trade_ledger.core.models import Credential, DashboardData, ImportResult, Venue
from trade_ledger.exchanges.client import SignedClient
from trade_ledger.helpers.analytics import by_category, daily_pnl
from trade_ledger.helpers.data_helper import export_trades_csv
from trade_ledger.helpers.symbols import SYMBOL_CAP
from trade_ledger.helpers.windows import parse_date_range
from trade_ledger.pipelines.connection import verify_connection
from trade_ledger.pipelines.dashboard import fetch_dashboard_data
from trade_ledger.pipelines.trade_import import fetch_all_trade_history, fetch_futures_position_history
from trade_ledger.utils.logger import setup_logger

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = ROOT / "config" / "trade_sync_config.json"

API_KEY_ENV = "TRADE_LEDGER_API_KEY"
API_SECRET_ENV = "TRADE_LEDGER_API_SECRET"

MODES = ("spot", "futures", "dashboard", "check")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 2


def load_config(config_path: str | Path) -> dict:
    """Load configuration from JSON file and check the fields the job relies on."""
    with open(config_path, 'r') as f:
        config = json.load(f)

    Venue(config.get("exchange", "binance"))
    if config.get("mode", "spot") not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got {config.get('mode')!r}")
    return config


def load_credential(config: dict, environ: Optional[Mapping[str, str]] = None) -> Credential:
    environ = os.environ if environ is None else environ
    credential = Credential(
        venue=Venue(config.get("exchange", "binance")),
        api_key=environ.get(API_KEY_ENV, ""),
        api_secret=environ.get(API_SECRET_ENV, ""),
    )
    if not credential.is_complete:
        raise AuthenticationError(f"Set {API_KEY_ENV} and {API_SECRET_ENV} first.")
    return credential


async def run_sync(
    config: dict,
    credential: Credential,
    cancel: CancelToken,
    logger: logging.Logger,
    session=None,
):
    """Run the configured request kind; *session* replaces the client's own aiohttp session."""
    mode = config.get("mode", "spot")
    start, end = parse_date_range(config.get("from_date"), config.get("to_date"))

    async with SignedClient(credential, session, logger=logger) as client:
        if mode == "check":
            await verify_connection(client, cancel)
            return None
        if mode == "dashboard":
            return await fetch_dashboard_data(client, cancel)
        if mode == "futures":
            return await fetch_futures_position_history(client, start, end, cancel=cancel)
        return await fetch_all_trade_history(
            client, start, end,
            cancel=cancel,
            symbol_cap=int(config.get("symbol_cap", SYMBOL_CAP)),
        )


def summarize(result, logger: logging.Logger) -> None:
    if isinstance(result, DashboardData):
        b = result.balance
        logger.info(
            f"Balance: spot={b.spot_value:.2f} derivatives={b.derivatives_value:.2f} "
            f"total={b.total:.2f} (derivatives available: {b.derivatives_available})"
        )
        for p in result.running:
            logger.info(
                f"  {p.symbol:12s} size={p.size:g} entry={p.entry_price:g} "
                f"mark={p.mark_price:g} uPnL={p.unrealized_pnl:.2f}"
            )
        return
    if not isinstance(result, ImportResult):
        return

    logger.info(f"Imported {len(result.trades)} trade(s), realized PnL {result.total_pnl:.2f}")
    if result.trades:
        logger.info(f"By category:\n{by_category(result.trades).to_string(index=False)}")
        logger.info(f"Last days:\n{daily_pnl(result.trades).tail(7).to_string()}")
    if result.coverage.truncated_symbols:
        logger.warning(f"{result.coverage.truncated_symbols} candidate symbol(s) over the cap were not queried")
    for failure in result.coverage.failures:
        logger.warning(f"Skipped: {failure.error}")


def main(config_path: Optional[str | Path] = None) -> int:
    config_path = config_path or DEFAULT_CONFIG_PATH
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as exc:
        setup_logger("trade_ledger").error(f"Cannot load config {config_path}: {exc}")
        return EXIT_FAILED

    log_path = config.get("log_path")
    log_level = getattr(logging, config.get("log_level", "INFO").upper(), logging.INFO)
    environ_secrets = [os.environ.get(API_KEY_ENV, ""), os.environ.get(API_SECRET_ENV, "")]
    logger = setup_logger(
        "trade_ledger",
        ROOT / log_path if log_path else None,
        level=log_level,
        secrets=environ_secrets,
    )
    logger.info("========== Trade sync starting ==========")
    logger.info(f"Exchange: {config.get('exchange', 'binance')} | Mode: {config.get('mode', 'spot')}")

    cancel = CancelToken()
    try:
        credential = load_credential(config)
        result = asyncio.run(run_sync(config, credential, cancel, logger))
    except (KeyboardInterrupt, Cancelled):
        cancel.cancel()
        logger.warning("Sync cancelled.")
        return EXIT_CANCELLED
    except (TradeLedgerError, ValueError) as exc:
        logger.error(f"Trade sync failed: {exc}")
        return EXIT_FAILED

    summarize(result, logger)

    output_csv = config.get("output_csv")
    if output_csv and isinstance(result, ImportResult):
        try:
            rows = export_trades_csv(result.trades, str(ROOT / output_csv))
        except (OSError, ValueError) as exc:
            logger.error(f"Cannot write {output_csv}: {exc}")
            return EXIT_FAILED
        logger.info(f"Wrote {rows} trade(s) to {output_csv}")

    logger.info("========== Trade sync finished ==========")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else None))
