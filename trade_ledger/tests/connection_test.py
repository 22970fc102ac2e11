"""Tests for the credential check."""

import asyncio

import pytest

from trade_ledger.core.errors import AuthenticationError, VenueError
from trade_ledger.core.models import Venue
from trade_ledger.pipelines.connection import verify_connection
from trade_ledger.tests.fake_venue import FakeResponse, bybit_ok, make_client


class TestVerifyConnection:
    """Test the one-call account check per venue."""

    @pytest.mark.parametrize("venue, host", [
        (Venue.BINANCE, "https://api.binance.com/"),
        (Venue.BINANCE_US, "https://api.binance.us/"),
    ])
    def test_binance_signed_account_call(self, venue, host):
        client, session = make_client(venue, {"/api/v3/account": {"balances": []}})

        assert asyncio.run(verify_connection(client)) is None

        (call,) = session.calls
        assert call.path == "/api/v3/account"
        assert call.url.startswith(host)
        assert call.headers["X-MBX-APIKEY"] == "test-key"
        assert "signature" in call.params

    def test_bybit_unified_wallet_call(self):
        client, session = make_client(Venue.BYBIT, {"/v5/account/wallet-balance": bybit_ok([])})

        asyncio.run(verify_connection(client))

        (call,) = session.calls
        assert call.path == "/v5/account/wallet-balance"
        assert call.params == {"accountType": "UNIFIED"}
        assert call.headers["X-BAPI-API-KEY"] == "test-key"

    def test_rejected_key(self):
        client, _ = make_client(Venue.BINANCE, {
            "/api/v3/account": FakeResponse(401, {"code": -2015, "msg": "Invalid API-key, IP, or permissions"}),
        })
        with pytest.raises(AuthenticationError, match="Invalid API-key"):
            asyncio.run(verify_connection(client))

    def test_bybit_error_code(self):
        client, _ = make_client(Venue.BYBIT, {
            "/v5/account/wallet-balance": {"retCode": 10003, "retMsg": "API key is invalid.", "result": {}},
        })
        with pytest.raises(VenueError) as excinfo:
            asyncio.run(verify_connection(client))
        assert excinfo.value.code == 10003
