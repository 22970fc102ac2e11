from __future__ import annotations

from typing import Iterable, List, Mapping

from trade_ledger.core.models import OpenOrder, OpenPosition, RunningPosition, Side


def project_running_positions(positions: Iterable[OpenPosition]) -> List[RunningPosition]:
    """Live unrealized-PnL view of open positions; venue-reported PnL wins over the estimate."""
    running = []
    for p in positions:
        if not p.size > 0:
            continue
        pnl = p.unrealized_pnl
        if pnl is None:
            pnl = (p.mark_price - p.entry_price) * p.size * p.direction
        running.append(RunningPosition(
            symbol=p.symbol,
            entry_price=p.entry_price,
            mark_price=p.mark_price,
            unrealized_pnl=pnl,
            size=p.size,
        ))
    return running


def open_orders_as_positions(orders: Iterable[OpenOrder], prices: Mapping[str, float]) -> List[OpenPosition]:
    """Stand-in positions for spot accounts: each resting order marked at the last price."""
    return [
        OpenPosition(
            symbol=o.symbol,
            entry_price=o.price,
            mark_price=prices.get(o.symbol) or o.price,
            size=o.qty,
            direction=1 if o.side is Side.BUY else -1,
        )
        for o in orders
    ]
