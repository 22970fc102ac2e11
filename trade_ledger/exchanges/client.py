"""
Async signed REST client shared by every venue.

All venue I/O flows through :class:`SignedClient`. The venue's signing
dialect is picked once from the credential (see ``signer_for``); call
sites never branch on it.

Usage::

    async with SignedClient(Credential(Venue.BINANCE, key, secret)) as client:
        account = await client.signed_request("/api/v3/account")
        tickers = await client.public_get("/api/v3/ticker/price")
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import aiohttp

from trade_ledger.core.cancel import CancelToken, check_cancelled
from trade_ledger.core.errors import AuthenticationError, TransportError, VenueError
from trade_ledger.core.models import Credential, Venue
from trade_ledger.exchanges import binance, bybit
from trade_ledger.exchanges.base import RequestSigner, build_query

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
_REQUEST_TIMEOUT = 10
_DEFAULT_MAX_CONCURRENCY = 8

_SIGNERS: Dict[Venue, Callable[[], RequestSigner]] = {
    Venue.BINANCE: lambda: binance.BinanceSigner(Venue.BINANCE),
    Venue.BINANCE_US: lambda: binance.BinanceSigner(Venue.BINANCE_US),
    Venue.BYBIT: bybit.BybitSigner,
}


def signer_for(venue: Venue) -> RequestSigner:
    try:
        return _SIGNERS[venue]()
    except KeyError:
        raise ValueError(f"Unsupported venue: {venue!r}") from None


def default_base_url(venue: Venue) -> str:
    if venue is Venue.BYBIT:
        return bybit.BASE_URL
    return binance.SPOT_BASE_URLS[venue]


class SignedClient:
    """
    Builds, signs and sends venue requests; converts failures into the
    ``core.errors`` taxonomy.

    Parameters
    ----------
    credential : Credential
        Venue, API key and secret. Checked before every signed call.
    session : aiohttp.ClientSession, optional
        Reused if given (and then not closed by this client); otherwise one
        is opened lazily and closed by :meth:`close`.
    timeout : float
        Per-request total timeout in seconds.
    max_concurrency : int
        Upper bound on requests in flight at once through this client.
    clock : callable, optional
        Returns the current time in ms; used for request timestamps.
    logger : logging.Logger, optional
        Falls back to a module-level logger.
    """

    def __init__(
        self,
        credential: Credential,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        timeout: float = _REQUEST_TIMEOUT,
        max_concurrency: int = _DEFAULT_MAX_CONCURRENCY,
        clock: Optional[Callable[[], int]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.credential = credential
        self.signer = signer_for(credential.venue)
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._session = session
        self._owns_session = session is None
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._clock = clock or (lambda: int(time.time() * 1000))

    @property
    def venue(self) -> Venue:
        return self.credential.venue

    @property
    def base_url(self) -> str:
        return default_base_url(self.venue)

    def now_ms(self) -> int:
        return self._clock()

    async def __aenter__(self) -> "SignedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def signed_request(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        base_url: Optional[str] = None,
        method: str = "GET",
        cancel: Optional[CancelToken] = None,
    ) -> Any:
        """Send an authenticated request and return the decoded JSON body."""
        if not self.credential.is_complete:
            raise AuthenticationError("API key and secret are required for signed requests")
        check_cancelled(cancel)

        signed = self.signer.sign(params, self.credential, self.now_ms())
        url = f"{(base_url or self.base_url).rstrip('/')}{path}"
        if signed.query:
            url = f"{url}?{signed.query}"
        self.logger.debug(
            f"Signed {method} {self.venue.value} {path} params={sorted((params or {}).keys())}"
        )
        return await self._send(method, url, signed.headers)

    async def public_get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        base_url: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Any:
        check_cancelled(cancel)
        url = f"{(base_url or self.base_url).rstrip('/')}{path}"
        query = build_query(params)
        if query:
            url = f"{url}?{query}"
        self.logger.debug(f"Public GET {self.venue.value} {path}")
        return await self._send("GET", url, {})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _send(self, method: str, url: str, headers: Dict[str, str]) -> Any:
        session = self._get_session()
        try:
            async with self._semaphore:
                async with session.request(
                    method,
                    url,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    status = response.status
                    text = await response.text()
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Request timed out after {self.timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"Network request failed: {exc}") from exc

        payload = self._decode(text)

        if not 200 <= status < 300:
            message = self.signer.error_message(payload) or f"HTTP {status}"
            if status == 401:
                raise AuthenticationError(message)
            raise VenueError(status, message, code=self.signer.error_code(payload))

        if payload is None:
            raise VenueError(status, "Response body is not valid JSON")

        error = self.signer.error_from_payload(status, payload)
        if error is not None:
            raise error
        return payload

    @staticmethod
    def _decode(text: str) -> Any:
        try:
            return json.loads(text) if text else None
        except ValueError:
            return None
