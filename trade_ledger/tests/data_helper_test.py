import numpy as np
import pandas as pd
import pytest

from trade_ledger.core.models import Trade
from trade_ledger.helpers.analytics import TRADE_COLUMNS
from trade_ledger.helpers.data_helper import export_trades_csv, save_df_to_csv


def test_save_csv_creates_directories(tmp_path):
    df = pd.DataFrame({
        "a": [1, 2, 3],
        "b": [0.1, 0.2, np.nan],
    })

    out = tmp_path / "subdir" / "test.csv"
    save_df_to_csv(df, str(out), index=False, create_dirs=True)
    assert out.exists()

    df2 = pd.read_csv(out)
    assert list(df2.columns) == ["a", "b"]
    assert len(df2) == 3


def test_save_csv_rejects_non_dataframe(tmp_path):
    with pytest.raises(ValueError):
        save_df_to_csv([1, 2, 3], str(tmp_path / "x.csv"))


def test_export_trades_csv(tmp_path):
    trades = [
        Trade(id="BTCUSDT-1-0", symbol="BTCUSDT", entry_price=100.0, exit_price=110.0, size=1.0,
              timestamp="2024-01-01T00:00:00.001Z", pnl=10.0, notes="Imported from Binance (SELL)"),
        Trade(id="FUT-7-2", symbol="ETHUSDT", entry_price=0.0, exit_price=0.0, size=0.0,
              timestamp="2024-01-02T00:00:00.000Z", pnl=-2.5),
    ]

    out = tmp_path / "ledger" / "trades.csv"
    rows = export_trades_csv(trades, str(out))

    assert rows == 2
    df = pd.read_csv(out)
    assert list(df.columns) == TRADE_COLUMNS
    assert df["pnl"].sum() == pytest.approx(7.5)
    assert df.loc[0, "timestamp"].startswith("2024-01-01T00:00:00.001")
