"""Ledger helpers: merging re-imports and summarising realized PnL.

This module provides:
- merge_trades: Dedupe an imported batch into an existing ledger by trade id.
- trades_to_frame: Trade records as a DataFrame with a UTC ``timestamp`` column.
- by_category: Per-category trade count, win rate, average/total/best/worst PnL.
- daily_pnl: Realized PnL summed per UTC calendar day.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List

import numpy as np
import pandas as pd

from trade_ledger.core.models import DEFAULT_CATEGORY, Trade

TRADE_COLUMNS = [
    "id", "symbol", "entryPrice", "exitPrice", "size",
    "timestamp", "pnl", "source", "category", "notes",
]


def merge_trades(existing: Iterable[Trade], imported: Iterable[Trade]) -> List[Trade]:
    """Merge *imported* into *existing*, newest first.

    A trade already in the ledger is refreshed from the import but keeps
    the category the user gave it.
    """
    merged = {t.id: t for t in existing}
    for trade in imported:
        current = merged.get(trade.id)
        merged[trade.id] = replace(trade, category=current.category) if current else trade
    return sorted(merged.values(), key=lambda t: t.timestamp, reverse=True)


def trades_to_frame(trades: Iterable[Trade]) -> pd.DataFrame:
    df = pd.DataFrame([t.to_dict() for t in trades], columns=TRADE_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    df["category"] = df["category"].fillna(DEFAULT_CATEGORY).replace("", DEFAULT_CATEGORY)
    return df


def by_category(trades: Iterable[Trade]) -> pd.DataFrame:
    """One row per category: totalTrades, winRate (%), averagePnl, totalPnl, bestTrade, worstTrade."""
    df = trades_to_frame(trades)
    columns = ["category", "totalTrades", "winRate", "averagePnl", "totalPnl", "bestTrade", "worstTrade"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    grouped = df.groupby("category", sort=True)["pnl"]
    summary = pd.DataFrame({
        "totalTrades": grouped.size(),
        "winRate": grouped.apply(lambda s: float(np.mean(s > 0)) * 100),
        "averagePnl": grouped.mean(),
        "totalPnl": grouped.sum(),
        "bestTrade": grouped.max(),
        "worstTrade": grouped.min(),
    })
    return summary.reset_index()[columns]


def daily_pnl(trades: Iterable[Trade]) -> pd.Series:
    """Realized PnL per UTC day, indexed by date, oldest first."""
    df = trades_to_frame(trades)
    if df.empty:
        return pd.Series(dtype=float, name="pnl")
    days = df["timestamp"].dt.tz_convert("UTC").dt.date
    return df.groupby(days)["pnl"].sum().sort_index().rename("pnl")
