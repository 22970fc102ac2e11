"""Helper utilities for exporting ledger DataFrames.

This module provides:
- save_df_to_csv: Robust CSV writer with optional directory creation.
- export_trades_csv: Write a trade list to CSV in the ledger record layout.
"""

from __future__ import annotations

import os
from typing import Iterable, Optional

import pandas as pd

from trade_ledger.core.models import Trade
from trade_ledger.helpers.analytics import trades_to_frame


# Method for saving data to CSV from a DataFrame
def save_df_to_csv(
    df: pd.DataFrame,
    file_path: str,
    *,
    index: bool = False,
    create_dirs: bool = True,
    date_format: Optional[str] = None,
    float_format: Optional[str] = None,
    **kwargs,
) -> None:
    """Save a DataFrame to CSV, creating parent directories when asked.

    Parameters
    - df: DataFrame to write
    - file_path: Destination CSV path
    - index: Whether to write the index
    - create_dirs: Create parent directories if missing
    - date_format: strftime format for datetimes
    - float_format: Format string for floats (e.g., '%.8f')
    - kwargs: Passed through to pandas.DataFrame.to_csv

    Raises
    - ValueError: If df is not a pandas DataFrame
    - OSError: On I/O errors when writing the file
    """
    if not isinstance(df, pd.DataFrame):
        raise ValueError("df must be a pandas DataFrame")

    parent = os.path.dirname(os.path.abspath(file_path))
    if create_dirs and parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    df.to_csv(
        file_path,
        index=index,
        date_format=date_format,
        float_format=float_format,
        **kwargs,
    )


def export_trades_csv(trades: Iterable[Trade], file_path: str) -> int:
    """Write *trades* to *file_path*; returns the number of rows written."""
    df = trades_to_frame(trades)
    save_df_to_csv(df, file_path, index=False, date_format="%Y-%m-%dT%H:%M:%S.%fZ")
    return len(df)
