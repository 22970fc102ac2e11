"""
Derivatives position netting.

Fills are keyed by ``(symbol, position side)``; one-way mode (``BOTH``) is
booked as LONG. For each key a fill either *opens* (BUY on LONG, SELL on
SHORT) or *closes* (the other side).

Opening fills move the volume-weighted average entry. Closing fills add to
the closed quantity, the closed notional (for the average exit) and the
venue-reported realized PnL attached to the fill. That venue figure is
used as-is, never replaced by a price-based estimate.

When the open quantity returns to zero one Trade is emitted for the whole
round trip and the key's state is reset.

Realized-PnL income rows for symbols with no fills at all (funding-only
slices, fills outside the fetched range) become standalone size-0 trades so
that ledger totals still reconcile with venue statements.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from trade_ledger.core.models import PositionSide, RawFill, RawIncomeEntry, Side, Trade, ms_to_iso

QTY_EPSILON = 1e-12

PositionKey = Tuple[str, PositionSide]


@dataclass
class DerivativesPosition:
    qty: float = 0.0
    avg_entry: float = 0.0
    closed_qty: float = 0.0
    closed_notional: float = 0.0
    realized_pnl: float = 0.0
    last_time: int = 0


def position_key(fill: RawFill) -> PositionKey:
    side = fill.position_side
    if side is None or side is PositionSide.BOTH:
        side = PositionSide.LONG
    return fill.symbol, side


def is_opening(fill: RawFill, side: PositionSide) -> bool:
    return (side is PositionSide.LONG) == (fill.side is Side.BUY)


def apply_derivative_fill(state: DerivativesPosition, fill: RawFill, side: PositionSide) -> bool:
    """Apply one fill to *state* in place; True when it brought the position flat."""
    if is_opening(fill, side):
        notional = state.avg_entry * state.qty + fill.price * fill.qty
        state.qty += fill.qty
        state.avg_entry = notional / state.qty if state.qty > 0 else 0.0
        return False

    # A close larger than the open quantity only closes what is open; hedge legs never flip.
    close_qty = min(fill.qty, state.qty)
    if close_qty <= 0:
        return False
    state.qty -= close_qty
    if state.qty < QTY_EPSILON:
        state.qty = 0.0
    state.closed_qty += close_qty
    state.closed_notional += close_qty * fill.price
    state.realized_pnl += fill.realized_pnl or 0.0
    state.last_time = fill.time
    return state.qty == 0


def net_derivative_fills(
    fills: Iterable[RawFill],
    *,
    book: Optional[Dict[PositionKey, DerivativesPosition]] = None,
) -> List[Trade]:
    """Net derivative fills into one Trade per flat event, oldest first."""
    book = {} if book is None else book
    trades: List[Trade] = []
    ordinals: Dict[Tuple[str, int], int] = {}

    for fill in sorted(fills, key=lambda f: f.time):
        seq = ordinals.get((fill.symbol, fill.time), 0)
        ordinals[(fill.symbol, fill.time)] = seq + 1
        if not (fill.qty > 0 and fill.price > 0):
            continue

        key = position_key(fill)
        symbol, side = key
        state = book.setdefault(key, DerivativesPosition(last_time=fill.time))
        if not apply_derivative_fill(state, fill, side):
            continue

        trades.append(Trade(
            id=f"FUTPOS-{symbol}-{side.value}-{state.last_time}-{seq}",
            symbol=symbol,
            entry_price=state.avg_entry,
            exit_price=state.closed_notional / state.closed_qty,
            size=state.closed_qty,
            timestamp=ms_to_iso(state.last_time),
            pnl=state.realized_pnl,
            notes=f"Futures Position History ({side.value})",
        ))
        book[key] = DerivativesPosition(last_time=fill.time)

    return trades


def income_only_trades(income: Iterable[RawIncomeEntry], traded_symbols: Set[str]) -> List[Trade]:
    """Size-0 trades for nonzero income rows whose symbol has no fills."""
    trades = []
    for row in income:
        if not row.amount or not row.symbol or row.symbol in traded_symbols:
            continue
        trades.append(Trade(
            id=f"FUTINC-{row.symbol}-{row.tran_id or row.time}",
            symbol=row.symbol,
            entry_price=0.0,
            exit_price=0.0,
            size=0.0,
            timestamp=ms_to_iso(row.time),
            pnl=row.amount,
            notes=f"Futures {row.income_type}{f' ({row.info})' if row.info else ''}",
        ))
    return trades


def realized_income_trades(income: Iterable[RawIncomeEntry]) -> List[Trade]:
    """Every nonzero realized-PnL income row as a standalone size-0 trade.

    Used by the spot import, which has no derivative fills to net against.
    """
    trades = []
    for row in income:
        if not row.amount:
            continue
        trades.append(Trade(
            id=f"FUT-{row.tran_id}-{row.time}",
            symbol=row.symbol or "FUTURES",
            entry_price=0.0,
            exit_price=0.0,
            size=0.0,
            timestamp=ms_to_iso(row.time),
            pnl=row.amount,
            notes=f"Futures {row.income_type}{f' ({row.info})' if row.info else ''}",
        ))
    return trades
