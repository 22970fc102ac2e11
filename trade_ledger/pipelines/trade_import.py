"""
Trade-history imports.

Three request kinds, all returning trades newest first:

1. ``fetch_trade_history``: spot fills for one symbol, netted.
2. ``fetch_all_trade_history``: spot fills for every discovered
   symbol (plus Binance futures realized-PnL income), netted.
3. ``fetch_futures_position_history``: closed derivatives positions over a
   bounded date range.

Request pattern: windows of one symbol are fetched concurrently and merged
before netting; symbols are fetched one at a time to keep the burst rate
under venue limits. A failing symbol (or window) is recorded in the
result's ``coverage`` and skipped; failures of the initial discovery calls
propagate. The cancel token is checked before every symbol and window, and
a cancelled import raises :class:`Cancelled` instead of returning a partial
result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from trade_ledger.core.cancel import CancelToken, check_cancelled
from trade_ledger.core.errors import Cancelled, DateRangeError, TradeLedgerError, UnsupportedVenueError
from trade_ledger.core.models import ImportResult, RawFill, RawIncomeEntry, TimeWindow, Trade, Venue
from trade_ledger.exchanges import binance, bybit
from trade_ledger.exchanges.client import SignedClient
from trade_ledger.helpers.symbols import QUOTE_PRIORITY, SYMBOL_CAP, discover_symbols, quote_asset_for
from trade_ledger.helpers.tasks import gather_or_cancel
from trade_ledger.helpers.windows import build_time_windows, paginate_cursor, resolve_range
from trade_ledger.netting.derivatives import income_only_trades, net_derivative_fills, realized_income_trades
from trade_ledger.netting.spot import net_spot_fills

logger = logging.getLogger(__name__)

# A symbol's fetch may fail on the venue, on the wire, or on a malformed row.
SKIPPABLE_ERRORS = (TradeLedgerError, KeyError, ValueError, TypeError)

_VENUE_LABELS = {
    Venue.BINANCE: "Binance",
    Venue.BINANCE_US: "Binance.US",
    Venue.BYBIT: "Bybit",
}


def newest_first(trades: List[Trade]) -> List[Trade]:
    return sorted(trades, key=lambda t: t.timestamp, reverse=True)


def _require_spot_venue(client: SignedClient) -> None:
    if client.venue is Venue.BYBIT:
        raise UnsupportedVenueError("Spot trade history import is available for Binance and Binance.US only.")


def _validate_bounds(start: Optional[int], end: Optional[int]) -> None:
    if start is not None and end is not None and start > end:
        raise DateRangeError(start, end)


# ---------------------------------------------------------------------------
# Shared fetch helpers
# ---------------------------------------------------------------------------

async def fetch_windows(
    client: SignedClient,
    path: str,
    params: Dict[str, Any],
    windows: List[TimeWindow],
    *,
    base_url: Optional[str] = None,
    symbol: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
) -> List[dict]:
    """Issue one signed request per window concurrently and concatenate the rows."""

    async def fetch_one(window: TimeWindow) -> List[dict]:
        check_cancelled(cancel, symbol=symbol, window=window)
        try:
            rows = await client.signed_request(
                path,
                {**params, "startTime": window.start, "endTime": window.end},
                base_url=base_url,
                cancel=cancel,
            )
        except TradeLedgerError as exc:
            raise exc.attach(symbol=symbol, window=window)
        return rows or []

    chunks = await gather_or_cancel(*(fetch_one(w) for w in windows))
    return [row for chunk in chunks for row in chunk]


async def _fetch_realized_income(
    client: SignedClient,
    start: Optional[int],
    end: Optional[int],
    cancel: Optional[CancelToken],
) -> List[RawIncomeEntry]:
    """Binance futures REALIZED_PNL income, in 7-day windows when a range is given."""
    path = binance.ENDPOINTS["futures_income"]
    params = {"incomeType": "REALIZED_PNL", "limit": binance.INCOME_PAGE_LIMIT}
    if start is None and end is None:
        rows = await client.signed_request(path, params, base_url=binance.FUTURES_BASE_URL, cancel=cancel)
    else:
        span = resolve_range(start, end, now_ms=client.now_ms(), default_span=binance.FUTURES_MAX_WINDOW_MS)
        windows = build_time_windows(span.start, span.end, binance.FUTURES_MAX_WINDOW_MS)
        rows = await fetch_windows(
            client, path, params, windows, base_url=binance.FUTURES_BASE_URL, cancel=cancel
        )
    return [binance.parse_income(row) for row in rows or []]


async def _fetch_spot_fills(
    client: SignedClient,
    symbol: str,
    start: Optional[int],
    end: Optional[int],
    cancel: Optional[CancelToken],
) -> List[RawFill]:
    params = {"symbol": symbol, "limit": binance.TRADES_PAGE_LIMIT}
    if start is None and end is None:
        # No range: the venue returns the most recent page.
        check_cancelled(cancel, symbol=symbol)
        try:
            rows = await client.signed_request(binance.ENDPOINTS["my_trades"], params, cancel=cancel)
        except TradeLedgerError as exc:
            raise exc.attach(symbol=symbol)
    else:
        span = resolve_range(start, end, now_ms=client.now_ms(), default_span=binance.SPOT_MAX_WINDOW_MS)
        windows = build_time_windows(span.start, span.end, binance.SPOT_MAX_WINDOW_MS)
        rows = await fetch_windows(
            client, binance.ENDPOINTS["my_trades"], params, windows, symbol=symbol, cancel=cancel
        )
    return [binance.parse_spot_fill(row) for row in rows or []]


# ---------------------------------------------------------------------------
# Spot history
# ---------------------------------------------------------------------------

async def fetch_trade_history(
    client: SignedClient,
    symbol: str,
    start: Optional[int] = None,
    end: Optional[int] = None,
    *,
    quote_asset: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
) -> List[Trade]:
    """Realized spot trades for a single symbol."""
    clean_symbol = (symbol or "").strip().upper()
    if not clean_symbol:
        raise ValueError("Symbol is required for spot trade history")
    _require_spot_venue(client)
    _validate_bounds(start, end)

    fills = await _fetch_spot_fills(client, clean_symbol, start, end, cancel)
    quote = quote_asset or quote_asset_for(clean_symbol, quote_priority=QUOTE_PRIORITY[client.venue])
    trades = net_spot_fills(
        fills,
        {clean_symbol: quote} if quote else None,
        venue_label=_VENUE_LABELS[client.venue],
    )
    return newest_first(trades)


async def fetch_all_trade_history(
    client: SignedClient,
    start: Optional[int] = None,
    end: Optional[int] = None,
    *,
    cancel: Optional[CancelToken] = None,
    symbol_cap: int = SYMBOL_CAP,
) -> ImportResult:
    """Full spot history across every symbol the account plausibly traded."""
    _require_spot_venue(client)
    _validate_bounds(start, end)
    result = ImportResult()
    venue = client.venue

    # Stage 1: discovery inputs. Not skippable.
    exchange_info, account, open_orders = await gather_or_cancel(
        client.public_get(binance.ENDPOINTS["exchange_info"], cancel=cancel),
        client.signed_request(binance.ENDPOINTS["account"], cancel=cancel),
        client.signed_request(binance.ENDPOINTS["open_orders"], cancel=cancel),
    )
    catalog = binance.parse_exchange_info(exchange_info)
    held_assets = binance.parse_balances(account)
    orders = binance.parse_open_orders(open_orders)

    # Stage 2: candidate symbols.
    candidates = discover_symbols(
        [o.symbol for o in orders], held_assets, catalog, QUOTE_PRIORITY[venue], cap=None
    )
    symbols = candidates[:symbol_cap]
    result.coverage.truncated_symbols = len(candidates) - len(symbols)
    logger.info(
        f"{len(symbols)} candidate symbol(s) from {len(orders)} open order(s) "
        f"and {len(held_assets)} held asset(s)"
    )

    # Stage 3: fills, one symbol at a time.
    fills: List[RawFill] = []
    for symbol in symbols:
        check_cancelled(cancel, symbol=symbol)
        try:
            fills.extend(await _fetch_spot_fills(client, symbol, start, end, cancel))
        except Cancelled:
            raise
        except SKIPPABLE_ERRORS as exc:
            logger.warning(f"[{symbol}] skipped: {exc}")
            result.coverage.record(exc, symbol=symbol)

    quotes = {}
    for symbol in symbols:
        quote = quote_asset_for(symbol, catalog, QUOTE_PRIORITY[venue])
        if quote:
            quotes[symbol] = quote
    trades = net_spot_fills(fills, quotes, venue_label=_VENUE_LABELS[venue])

    # Stage 4: derivatives realized PnL, Binance only.
    if venue is Venue.BINANCE:
        check_cancelled(cancel)
        try:
            income = await _fetch_realized_income(client, start, end, cancel)
            trades.extend(realized_income_trades(income))
        except Cancelled:
            raise
        except SKIPPABLE_ERRORS as exc:
            logger.warning(f"Futures income skipped: {exc}")
            result.coverage.record(exc)

    result.trades = newest_first(trades)
    logger.info(
        f"Spot import: {len(result.trades)} trade(s), {len(result.coverage.failures)} skipped fetch(es)"
    )
    return result


# ---------------------------------------------------------------------------
# Derivatives history
# ---------------------------------------------------------------------------

async def fetch_futures_position_history(
    client: SignedClient,
    start: Optional[int] = None,
    end: Optional[int] = None,
    *,
    cancel: Optional[CancelToken] = None,
) -> ImportResult:
    """Closed derivatives positions within [start, end] (default: the last 7 days)."""
    if client.venue is Venue.BINANCE_US:
        raise UnsupportedVenueError("Futures position history is available for Binance and Bybit only.")
    span = resolve_range(start, end, now_ms=client.now_ms(), default_span=binance.FUTURES_MAX_WINDOW_MS)

    if client.venue is Venue.BYBIT:
        result = await _bybit_closed_positions(client, span, cancel)
    else:
        result = await _binance_closed_positions(client, span, cancel)

    result.trades = newest_first(result.trades)
    logger.info(
        f"Futures import: {len(result.trades)} trade(s), {len(result.coverage.failures)} skipped fetch(es)"
    )
    return result


async def _binance_closed_positions(
    client: SignedClient,
    span: TimeWindow,
    cancel: Optional[CancelToken],
) -> ImportResult:
    result = ImportResult()
    windows = build_time_windows(span.start, span.end, binance.FUTURES_MAX_WINDOW_MS)
    logger.info(f"Futures import over {len(windows)} window(s)")

    # Realized-PnL income tells us which symbols closed anything. Not skippable.
    income_rows = await fetch_windows(
        client,
        binance.ENDPOINTS["futures_income"],
        {"incomeType": "REALIZED_PNL", "limit": binance.INCOME_PAGE_LIMIT},
        windows,
        base_url=binance.FUTURES_BASE_URL,
        cancel=cancel,
    )
    income = [binance.parse_income(row) for row in income_rows]
    symbols = list(dict.fromkeys(row.symbol for row in income if row.amount and row.symbol))
    if not symbols:
        return result

    fills: List[RawFill] = []
    traded = set()
    for symbol in symbols:
        check_cancelled(cancel, symbol=symbol)
        try:
            rows = await fetch_windows(
                client,
                binance.ENDPOINTS["futures_user_trades"],
                {"symbol": symbol, "limit": binance.TRADES_PAGE_LIMIT},
                windows,
                base_url=binance.FUTURES_BASE_URL,
                symbol=symbol,
                cancel=cancel,
            )
            symbol_fills = [binance.parse_futures_fill(row) for row in rows]
        except Cancelled:
            raise
        except SKIPPABLE_ERRORS as exc:
            logger.warning(f"[{symbol}] skipped: {exc}")
            result.coverage.record(exc, symbol=symbol)
            continue
        fills.extend(symbol_fills)
        if symbol_fills:
            traded.add(symbol)

    result.trades = net_derivative_fills(fills) + income_only_trades(income, traded)
    return result


async def _bybit_closed_positions(
    client: SignedClient,
    span: TimeWindow,
    cancel: Optional[CancelToken],
) -> ImportResult:
    result = ImportResult()
    windows = build_time_windows(span.start, span.end, bybit.CLOSED_PNL_MAX_WINDOW_MS)

    async def window_rows(window: TimeWindow) -> List[dict]:
        async def fetch_page(cursor: str):
            check_cancelled(cancel, window=window)
            try:
                payload = await client.signed_request(
                    bybit.ENDPOINTS["closed_pnl"],
                    {
                        "category": "linear",
                        "startTime": window.start,
                        "endTime": window.end,
                        "limit": bybit.CLOSED_PNL_PAGE_LIMIT,
                        "cursor": cursor or None,
                    },
                    cancel=cancel,
                )
            except TradeLedgerError as exc:
                raise exc.attach(window=window)
            return bybit.result_list(payload), bybit.next_cursor(payload)

        return await paginate_cursor(fetch_page, cancel=cancel)

    outcomes = await asyncio.gather(*(window_rows(w) for w in windows), return_exceptions=True)

    rows: List[dict] = []
    for window, outcome in zip(windows, outcomes):
        if isinstance(outcome, list):
            rows.extend(outcome)
        elif isinstance(outcome, SKIPPABLE_ERRORS) and not isinstance(outcome, Cancelled):
            logger.warning(f"Window {window.start}-{window.end} skipped: {outcome}")
            result.coverage.record(outcome, window=window)
        else:
            raise outcome

    result.trades = bybit.closed_pnl_to_trades(rows, client.now_ms())
    return result
