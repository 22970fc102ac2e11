from __future__ import annotations

import threading
from typing import Optional

from trade_ledger.core.errors import Cancelled


class CancelToken:
    """
    Cooperative cancellation flag shared by every call of one import.

    Safe to trip from another thread (signal handler, UI thread); the engine
    polls it at the top of each per-symbol and per-window iteration.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, symbol: Optional[str] = None, window=None) -> None:
        if self._event.is_set():
            raise Cancelled().attach(symbol=symbol, window=window)


def check_cancelled(cancel: Optional[CancelToken], symbol: Optional[str] = None, window=None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled(symbol=symbol, window=window)
