"""
Error taxonomy for venue I/O and trade imports.

Every error can be attributed to the symbol and/or time window that produced
it, so batch callers can report partial failures::

    raise TransportError("connection reset").attach(symbol="BTCUSDT")
"""

from __future__ import annotations

from typing import Optional


class TradeLedgerError(Exception):
    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.symbol: Optional[str] = None
        self.window = None

    def attach(self, symbol: Optional[str] = None, window=None) -> "TradeLedgerError":
        if symbol is not None:
            self.symbol = symbol
        if window is not None:
            self.window = window
        return self

    def __str__(self) -> str:
        where = []
        if self.symbol:
            where.append(self.symbol)
        if self.window is not None:
            where.append(f"{self.window.start}-{self.window.end}")
        prefix = f"[{' '.join(where)}] " if where else ""
        return f"{prefix}{self.message}"


class AuthenticationError(TradeLedgerError):
    """Missing or rejected API credential. Never retried."""


class TransportError(TradeLedgerError):
    """Network-level failure: DNS, connection reset, timeout."""


class VenueError(TradeLedgerError):
    def __init__(self, status: int, message: str = "", code=None) -> None:
        super().__init__(message or f"HTTP {status}")
        self.status = status
        self.code = code

    def __str__(self) -> str:
        base = super().__str__()
        if self.code is not None:
            return f"{base} (status={self.status}, code={self.code})"
        return f"{base} (status={self.status})"


class Cancelled(TradeLedgerError):
    def __init__(self, message: str = "Sync cancelled") -> None:
        super().__init__(message)


class DateRangeError(ValueError):
    def __init__(self, start, end, message: Optional[str] = None) -> None:
        super().__init__(message or f"From date must be earlier than or equal to to date ({start} > {end})")
        self.start = start
        self.end = end


class UnsupportedVenueError(ValueError):
    pass
