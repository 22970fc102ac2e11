from __future__ import annotations

from typing import Optional

from trade_ledger.core.cancel import CancelToken
from trade_ledger.core.models import Venue
from trade_ledger.exchanges import binance, bybit
from trade_ledger.exchanges.client import SignedClient


async def verify_connection(client: SignedClient, cancel: Optional[CancelToken] = None) -> None:
    """One signed account call; raises the client's error on failure."""
    if client.venue is Venue.BYBIT:
        await client.signed_request(bybit.ENDPOINTS["wallet_balance"], {"accountType": "UNIFIED"}, cancel=cancel)
    else:
        await client.signed_request(binance.ENDPOINTS["account"], cancel=cancel)
    client.logger.info(f"Credential accepted by {client.venue.value}")
