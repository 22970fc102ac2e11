"""
Binance / Binance.US REST dialect.

Signed endpoints take ``timestamp`` and ``recvWindow`` in the query string,
followed by an HMAC-SHA256 ``signature`` of everything before it::

    GET /api/v3/myTrades?symbol=BTCUSDT&timestamp=...&recvWindow=10000&signature=<hex>
    X-MBX-APIKEY: <api key>

Binance.US exposes the same spot API but no USD-M futures API.

The parsers below turn raw payloads into the venue-neutral models in
``core.models`` and never touch the network.
"""

from typing import Any, Dict, List, Optional

from trade_ledger.core.errors import VenueError
from trade_ledger.core.models import (
    Credential,
    OpenOrder,
    OpenPosition,
    PositionSide,
    RawFill,
    RawIncomeEntry,
    Side,
    Venue,
)
from trade_ledger.exchanges.base import RequestSigner, SignedRequest, build_query, hmac_sha256_hex, to_float

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
SPOT_BASE_URLS = {
    Venue.BINANCE: "https://api.binance.com",
    Venue.BINANCE_US: "https://api.binance.us",
}
FUTURES_BASE_URL = "https://fapi.binance.com"

ENDPOINTS = {
    "account": "/api/v3/account",
    "open_orders": "/api/v3/openOrders",
    "ticker_price": "/api/v3/ticker/price",
    "exchange_info": "/api/v3/exchangeInfo",
    "my_trades": "/api/v3/myTrades",
    "futures_account": "/fapi/v2/account",
    "futures_position_risk": "/fapi/v2/positionRisk",
    "futures_income": "/fapi/v1/income",
    "futures_user_trades": "/fapi/v1/userTrades",
}

# myTrades rejects startTime/endTime ranges wider than 24h.
SPOT_MAX_WINDOW_MS = 24 * 60 * 60 * 1000
# futures income and userTrades reject ranges wider than 7 days.
FUTURES_MAX_WINDOW_MS = 7 * 24 * 60 * 60 * 1000

TRADES_PAGE_LIMIT = 1000
INCOME_PAGE_LIMIT = 1000


class BinanceSigner(RequestSigner):
    """Query-string signing: the signature covers the full query, key goes in a header."""

    def __init__(self, venue: Venue = Venue.BINANCE, **kwargs) -> None:
        super().__init__(**kwargs)
        self.venue = venue

    def sign(self, params: Optional[Dict[str, Any]], credential: Credential, timestamp_ms: int) -> SignedRequest:
        signed = dict(params or {})
        signed["timestamp"] = timestamp_ms
        signed["recvWindow"] = self.recv_window
        query = build_query(signed)
        signature = hmac_sha256_hex(credential.api_secret, query)
        return SignedRequest(
            query=f"{query}&signature={signature}",
            headers={"X-MBX-APIKEY": credential.api_key},
        )

    def error_from_payload(self, status: int, payload: Any) -> Optional[VenueError]:
        # Errors normally arrive as non-2xx, but a few gateways answer 200 with {code, msg}.
        if isinstance(payload, dict) and "code" in payload and "msg" in payload and payload["code"] not in (0, 200):
            return VenueError(status, str(payload["msg"]), code=payload["code"])
        return None


# ---------------------------------------------------------------------------
# Payload parsers
# ---------------------------------------------------------------------------

def parse_balances(account: dict) -> Dict[str, float]:
    """``/api/v3/account`` → {asset: free + locked} for nonzero assets."""
    balances: Dict[str, float] = {}
    for row in account.get("balances", []):
        total = to_float(row.get("free")) + to_float(row.get("locked"))
        if total > 0:
            balances[row["asset"]] = balances.get(row["asset"], 0.0) + total
    return balances


def parse_ticker_prices(tickers: List[dict]) -> Dict[str, float]:
    prices: Dict[str, float] = {}
    for row in tickers:
        price = to_float(row.get("price"), default=None)
        if price:
            prices[row["symbol"]] = price
    return prices


def parse_exchange_info(info: dict) -> Dict[str, str]:
    """``/api/v3/exchangeInfo`` → {symbol: quote asset} for symbols currently trading."""
    return {
        s["symbol"]: s.get("quoteAsset", "")
        for s in info.get("symbols", [])
        if s.get("status") == "TRADING"
    }


def parse_open_orders(orders: List[dict]) -> List[OpenOrder]:
    return [
        OpenOrder(
            symbol=o["symbol"],
            side=Side.BUY if o.get("side") == "BUY" else Side.SELL,
            price=to_float(o.get("price")),
            qty=to_float(o.get("origQty")),
        )
        for o in orders
    ]


def parse_spot_fill(row: dict) -> RawFill:
    return RawFill(
        symbol=row["symbol"],
        side=Side.BUY if row["isBuyer"] else Side.SELL,
        price=float(row["price"]),
        qty=float(row["qty"]),
        time=int(row["time"]),
        fee=to_float(row.get("commission")),
        fee_asset=row.get("commissionAsset") or None,
    )


def parse_futures_fill(row: dict) -> RawFill:
    return RawFill(
        symbol=row["symbol"],
        side=Side(row["side"]),
        price=float(row["price"]),
        qty=float(row["qty"]),
        time=int(row["time"]),
        fee=to_float(row.get("commission")),
        fee_asset=row.get("commissionAsset") or None,
        realized_pnl=to_float(row.get("realizedPnl")),
        position_side=PositionSide(row.get("positionSide") or "BOTH"),
    )


def parse_income(row: dict) -> RawIncomeEntry:
    return RawIncomeEntry(
        symbol=(row.get("symbol") or "").upper(),
        income_type=row.get("incomeType", ""),
        amount=to_float(row.get("income")),
        asset=row.get("asset", ""),
        time=int(row["time"]),
        tran_id=str(row.get("tranId", "")),
        info=row.get("info") or "",
    )


def parse_futures_wallet(account: dict) -> float:
    return to_float(account.get("totalWalletBalance"))


def parse_position_risk(rows: List[dict]) -> List[OpenPosition]:
    positions = []
    for p in rows:
        amount = to_float(p.get("positionAmt"))
        entry = to_float(p.get("entryPrice"))
        positions.append(OpenPosition(
            symbol=p["symbol"],
            entry_price=entry,
            mark_price=to_float(p.get("markPrice"), default=None) or entry,
            size=abs(amount),
            direction=1 if amount >= 0 else -1,
            unrealized_pnl=to_float(p.get("unRealizedProfit"), default=None),
        ))
    return positions
