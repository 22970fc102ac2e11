"""
Bybit v5 REST dialect.

Bybit signs ``timestamp + apiKey + recvWindow + queryString`` and carries
the key, timestamp, window and signature as headers; the query string is
sent untouched. Results are nested under ``result.list`` with an optional
``result.nextPageCursor`` continuation token, and failures come back as
HTTP 200 with a nonzero ``retCode``.
"""

from typing import Any, Dict, List, Optional

from trade_ledger.core.errors import VenueError
from trade_ledger.core.models import Credential, OpenPosition, Trade, Venue, ms_to_iso
from trade_ledger.exchanges.base import RequestSigner, SignedRequest, build_query, hmac_sha256_hex, to_float

BASE_URL = "https://api.bybit.com"

ENDPOINTS = {
    "wallet_balance": "/v5/account/wallet-balance",
    "position_list": "/v5/position/list",
    "closed_pnl": "/v5/position/closed-pnl",
}

# closed-pnl rejects ranges wider than 7 days.
CLOSED_PNL_MAX_WINDOW_MS = 7 * 24 * 60 * 60 * 1000
CLOSED_PNL_PAGE_LIMIT = 100


class BybitSigner(RequestSigner):
    venue = Venue.BYBIT

    def sign(self, params: Optional[Dict[str, Any]], credential: Credential, timestamp_ms: int) -> SignedRequest:
        query = build_query(params)
        timestamp = str(timestamp_ms)
        recv_window = str(self.recv_window)
        signature = hmac_sha256_hex(
            credential.api_secret,
            f"{timestamp}{credential.api_key}{recv_window}{query}",
        )
        return SignedRequest(
            query=query,
            headers={
                "X-BAPI-API-KEY": credential.api_key,
                "X-BAPI-TIMESTAMP": timestamp,
                "X-BAPI-RECV-WINDOW": recv_window,
                "X-BAPI-SIGN": signature,
            },
        )

    def error_from_payload(self, status: int, payload: Any) -> Optional[VenueError]:
        if isinstance(payload, dict) and payload.get("retCode") not in (None, 0):
            return VenueError(status, str(payload.get("retMsg") or "Bybit error"), code=payload["retCode"])
        return None


# ---------------------------------------------------------------------------
# Payload parsers
# ---------------------------------------------------------------------------

def result_list(payload: dict) -> List[dict]:
    return (payload.get("result") or {}).get("list") or []


def next_cursor(payload: dict) -> str:
    return (payload.get("result") or {}).get("nextPageCursor") or ""


def parse_wallet(payload: dict) -> tuple[float, float]:
    """Unified wallet → (sum of coin USD values, total wallet balance)."""
    accounts = result_list(payload)
    if not accounts:
        return 0.0, 0.0
    account = accounts[0]
    coin_value = sum(to_float(c.get("usdValue")) for c in account.get("coin") or [])
    total = to_float(account.get("totalWalletBalance"), default=None)
    return coin_value, coin_value if total is None else total


def parse_positions(payload: dict) -> List[OpenPosition]:
    positions = []
    for p in result_list(payload):
        entry = to_float(p.get("avgPrice"))
        positions.append(OpenPosition(
            symbol=p["symbol"],
            entry_price=entry,
            mark_price=to_float(p.get("markPrice"), default=None) or entry,
            size=to_float(p.get("size")),
            direction=-1 if p.get("side") == "Sell" else 1,
            unrealized_pnl=to_float(p.get("unrealisedPnl"), default=None),
        ))
    return positions


def closed_pnl_to_trades(rows: List[dict], now_ms: int) -> List[Trade]:
    """Closed-PnL rows are already netted by the venue; map them one to one."""
    trades = []
    for idx, row in enumerate(rows):
        updated = to_float(row.get("updatedTime"), default=None)
        updated_ms = int(updated) if updated is not None else now_ms
        trades.append(Trade(
            id=f"BYBIT-POS-{row['symbol']}-{updated_ms}-{row.get('orderId') or idx}",
            symbol=row["symbol"],
            entry_price=to_float(row.get("avgEntryPrice")),
            exit_price=to_float(row.get("avgExitPrice")),
            size=to_float(row.get("qty")),
            timestamp=ms_to_iso(updated_ms),
            pnl=to_float(row.get("closedPnl")),
            notes=f"Futures Position History ({row.get('side') or 'N/A'})",
        ))
    return trades
