from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from trade_ledger.core.errors import DateRangeError


class Venue(Enum):
    BINANCE = "binance"
    BINANCE_US = "binance_us"
    BYBIT = "bybit"


class Side(Enum):
    BUY = "BUY"
    SELL = "SELL"


class PositionSide(Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    BOTH = "BOTH"


TRADE_SOURCE_API = "API"
DEFAULT_CATEGORY = "Uncategorized"


def ms_to_iso(ts_ms: int) -> str:
    """Render a millisecond UTC timestamp as ISO-8601 (``2024-01-01T00:00:00.000Z``)."""
    ct = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return ct.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Credential:
    venue: Venue
    api_key: str
    api_secret: str = field(repr=False)

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key and self.api_key.strip() and self.api_secret and self.api_secret.strip())

    def __repr__(self) -> str:
        return f"Credential(venue={self.venue.value!r}, api_key='***', api_secret='***')"


@dataclass(frozen=True)
class TimeWindow:
    start: int       # ms, inclusive
    end: int         # ms, inclusive

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise DateRangeError(self.start, self.end)

    @property
    def span(self) -> int:
        return self.end - self.start + 1


@dataclass
class RawFill:
    """A single venue-native execution, normalised across venues."""
    symbol: str
    side: Side
    price: float
    qty: float
    time: int                                   # ms
    fee: float = 0.0
    fee_asset: Optional[str] = None
    realized_pnl: Optional[float] = None        # derivatives only
    position_side: Optional[PositionSide] = None


@dataclass
class RawIncomeEntry:
    symbol: str
    income_type: str
    amount: float
    asset: str
    time: int
    tran_id: str
    info: str = ""


@dataclass
class OpenOrder:
    symbol: str
    side: Side
    price: float
    qty: float


@dataclass
class OpenPosition:
    """Venue-reported open derivatives position, or a spot order standing in for one."""
    symbol: str
    entry_price: float
    mark_price: float
    size: float
    direction: int                              # +1 long, -1 short
    unrealized_pnl: Optional[float] = None


@dataclass
class Trade:
    id: str
    symbol: str
    entry_price: float
    exit_price: float
    size: float
    timestamp: str                              # ISO-8601 of the closing fill
    pnl: float
    source: str = TRADE_SOURCE_API
    category: str = DEFAULT_CATEGORY
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "size": self.size,
            "timestamp": self.timestamp,
            "pnl": self.pnl,
            "source": self.source,
            "category": self.category,
            "notes": self.notes,
        }


@dataclass
class BalanceSnapshot:
    spot_value: float
    derivatives_value: float
    total: float
    derivatives_available: bool


@dataclass
class RunningPosition:
    symbol: str
    entry_price: float
    mark_price: float
    unrealized_pnl: float
    size: float


@dataclass
class DashboardData:
    balance: BalanceSnapshot
    running: list[RunningPosition] = field(default_factory=list)


@dataclass
class SymbolFailure:
    symbol: Optional[str]
    window: Optional[TimeWindow]
    error: Exception


@dataclass
class PartialCoverage:
    """Symbols / windows that failed and were skipped during an import."""
    failures: list[SymbolFailure] = field(default_factory=list)
    truncated_symbols: int = 0                  # candidates dropped by the symbol cap

    @property
    def complete(self) -> bool:
        return not self.failures

    def record(self, error: Exception, symbol: Optional[str] = None, window: Optional[TimeWindow] = None) -> None:
        self.failures.append(SymbolFailure(
            symbol=symbol if symbol is not None else getattr(error, "symbol", None),
            window=window if window is not None else getattr(error, "window", None),
            error=error,
        ))


@dataclass
class ImportResult:
    trades: list[Trade] = field(default_factory=list)
    coverage: PartialCoverage = field(default_factory=PartialCoverage)

    @property
    def total_pnl(self) -> float:
        return sum(t.pnl for t in self.trades)
