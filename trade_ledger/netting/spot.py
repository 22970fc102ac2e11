"""
Spot position netting.

Consumes spot fills per symbol in chronological order and emits a realized
:class:`Trade` each time a fill reduces the open position.

Per-symbol state is a plain table ``{symbol: SpotPosition}``:

* ``qty > 0`` long, ``qty < 0`` short, ``qty == 0`` flat.
* A fill on the side of the position (or from flat) grows it and moves the
  volume-weighted average entry.
* An opposite fill first closes ``min(fill qty, |qty|)`` at the average
  entry; any remainder opens a new position the other way at the fill
  price. Only the closed portion produces a Trade.

Fees are deducted from a closing fill's PnL when they are paid in the
symbol's quote asset (or the asset is unknown). A fee paid in any other
asset is noted on the trade instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import groupby
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from trade_ledger.core.models import RawFill, Side, Trade, ms_to_iso

# Quantities smaller than this are treated as flat (float residue of add/subtract).
QTY_EPSILON = 1e-12


@dataclass
class SpotPosition:
    qty: float = 0.0
    avg_price: float = 0.0


def apply_spot_fill(state: SpotPosition, fill: RawFill) -> Tuple[float, float, float]:
    """Apply one fill to *state* in place.

    Returns (closed_qty, entry_price, gross_pnl); closed_qty is 0 when the
    fill only opened or grew the position.
    """
    direction = 1 if fill.side is Side.BUY else -1
    closed_qty = 0.0
    entry_price = fill.price
    gross_pnl = 0.0

    if state.qty * direction < 0:
        held = 1 if state.qty > 0 else -1
        closed_qty = min(fill.qty, abs(state.qty))
        entry_price = state.avg_price
        gross_pnl = (fill.price - entry_price) * closed_qty * held
        state.qty += closed_qty * direction
        if abs(state.qty) < QTY_EPSILON:
            state.qty = 0.0

    opening_qty = fill.qty - closed_qty
    if opening_qty > QTY_EPSILON:
        if state.qty == 0:
            state.qty = opening_qty * direction
            state.avg_price = fill.price
        else:
            held_qty = abs(state.qty)
            state.avg_price = (state.avg_price * held_qty + fill.price * opening_qty) / (held_qty + opening_qty)
            state.qty += opening_qty * direction
    elif state.qty == 0:
        state.avg_price = 0.0

    return closed_qty, entry_price, gross_pnl


def _deductible_fee(fill: RawFill, quote_asset: Optional[str]) -> Tuple[float, str]:
    if not fill.fee:
        return 0.0, ""
    if fill.fee_asset is None or quote_asset is None or fill.fee_asset == quote_asset:
        return fill.fee, ""
    return 0.0, f"; fee {fill.fee:g} {fill.fee_asset} not deducted"


def net_spot_fills(
    fills: Iterable[RawFill],
    quote_assets: Optional[Mapping[str, str]] = None,
    *,
    venue_label: str = "Binance",
    book: Optional[Dict[str, SpotPosition]] = None,
) -> List[Trade]:
    """Net *fills* (any symbols, any order) into realized trades, oldest first.

    Fills are grouped by symbol and sorted by time before netting, so the
    result does not depend on how the fills were fetched or merged. Pass
    *book* to inspect the open positions left after netting.
    """
    book = {} if book is None else book
    quote_assets = quote_assets or {}
    trades: List[Trade] = []

    by_symbol = sorted(fills, key=lambda f: f.symbol)
    for symbol, group in groupby(by_symbol, key=lambda f: f.symbol):
        state = book.setdefault(symbol, SpotPosition())
        ordered = sorted(group, key=lambda f: f.time)
        # Ordinal among fills sharing a timestamp, stable across re-imports of other ranges.
        ordinals: Dict[int, int] = {}
        for fill in ordered:
            seq = ordinals.get(fill.time, 0)
            ordinals[fill.time] = seq + 1
            if not fill.qty > 0:
                continue
            closed_qty, entry_price, gross_pnl = apply_spot_fill(state, fill)
            if closed_qty <= 0:
                continue
            fee, fee_note = _deductible_fee(fill, quote_assets.get(symbol))
            trades.append(Trade(
                id=f"{symbol}-{fill.time}-{seq}",
                symbol=symbol,
                entry_price=entry_price,
                exit_price=fill.price,
                size=closed_qty,
                timestamp=ms_to_iso(fill.time),
                pnl=gross_pnl - fee,
                notes=f"Imported from {venue_label} ({fill.side.value}){fee_note}",
            ))

    trades.sort(key=lambda t: t.timestamp)
    return trades
