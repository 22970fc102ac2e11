"""Time-window and cursor pagination helpers.

This module provides:
- build_time_windows: Split [start, end] into contiguous venue-legal windows (pure).
- resolve_range: Apply default bounds to an optional range and validate it.
- parse_date_range: Convert YYYY-MM-DD strings into inclusive UTC ms bounds.
- paginate_cursor: Drive a continuation-token endpoint until it is exhausted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from trade_ledger.core.cancel import CancelToken, check_cancelled
from trade_ledger.core.errors import DateRangeError
from trade_ledger.core.models import TimeWindow

logger = logging.getLogger(__name__)

_DATE_FORMAT = "%Y-%m-%d"

# A fetch_page callable takes the current cursor ("" for the first page)
# and returns (rows, next_cursor).
PageFetcher = Callable[[str], Awaitable[Tuple[List[Any], Optional[str]]]]


def build_time_windows(start: int, end: int, max_span: int) -> List[TimeWindow]:
    """Split the inclusive ms range [start, end] into windows of at most *max_span* ms.

    Windows are contiguous (each starts 1 ms after the previous one ends),
    the first starts at *start* and the last ends at *end*.

    Raises
    - DateRangeError: If start > end
    - ValueError: If max_span is not positive
    """
    if start > end:
        raise DateRangeError(start, end)
    if max_span <= 0:
        raise ValueError("max_span must be positive")

    windows = []
    cursor = start
    while cursor <= end:
        window_end = min(cursor + max_span - 1, end)
        windows.append(TimeWindow(cursor, window_end))
        cursor = window_end + 1
    return windows


def resolve_range(
    start: Optional[int],
    end: Optional[int],
    *,
    now_ms: int,
    default_span: int,
) -> TimeWindow:
    """Fill in missing bounds (end → now, start → end - default_span + 1) and validate."""
    resolved_end = end if end is not None else now_ms
    resolved_start = start if start is not None else resolved_end - default_span + 1
    if resolved_start > resolved_end:
        raise DateRangeError(resolved_start, resolved_end)
    return TimeWindow(resolved_start, resolved_end)


def _parse_day(value: str) -> datetime:
    try:
        return datetime.strptime(value.strip(), _DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise DateRangeError(value, value, f"Invalid date {value!r}, expected YYYY-MM-DD") from None


def parse_date_range(from_date: Optional[str], to_date: Optional[str] = None) -> Tuple[Optional[int], Optional[int]]:
    """Convert day strings to (start_ms, end_ms): start of *from_date*, end of *to_date* (UTC).

    Blank or missing values come back as None so callers can apply defaults.
    """
    start = end = None
    if from_date and from_date.strip():
        start = int(_parse_day(from_date).timestamp() * 1000)
    if to_date and to_date.strip():
        next_day = _parse_day(to_date) + timedelta(days=1)
        end = int(next_day.timestamp() * 1000) - 1
    if start is not None and end is not None and start > end:
        raise DateRangeError(from_date, to_date)
    return start, end


async def paginate_cursor(
    fetch_page: PageFetcher,
    *,
    cancel: Optional[CancelToken] = None,
    max_pages: int = 1000,
) -> List[Any]:
    """Accumulate pages until an empty page, a missing token, or a repeated token.

    *max_pages* is a hard stop against a venue that keeps inventing new tokens.
    """
    rows: List[Any] = []
    cursor = ""
    for _ in range(max_pages):
        check_cancelled(cancel)
        page_rows, next_token = await fetch_page(cursor)
        rows.extend(page_rows)
        if not page_rows or not next_token or next_token == cursor:
            break
        cursor = next_token
    else:
        logger.warning(f"Cursor pagination stopped after {max_pages} pages")
    return rows
