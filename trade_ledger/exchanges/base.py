import hashlib
import hmac
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from trade_ledger.core.errors import VenueError
from trade_ledger.core.models import Credential, Venue

# Tolerance the venue applies to the signed timestamp, in ms.
DEFAULT_RECV_WINDOW = 10000


@dataclass
class SignedRequest:
    query: str
    headers: Dict[str, str]


def build_query(params: Optional[Dict[str, Any]]) -> str:
    """URL-encode params in insertion order, dropping ``None`` values."""
    if not params:
        return ""
    items = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = str(value).lower()
        items.append((key, str(value)))
    return urlencode(items, quote_via=quote)


def to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    """Parse a venue numeric string; blanks and non-finite values map to *default*."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def hmac_sha256_hex(secret: str, payload: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


class RequestSigner(ABC):
    """One signing dialect per venue: where the signature goes and what it covers."""

    venue: Venue

    def __init__(self, recv_window: int = DEFAULT_RECV_WINDOW) -> None:
        self.recv_window = recv_window

    @abstractmethod
    def sign(self, params: Optional[Dict[str, Any]], credential: Credential, timestamp_ms: int) -> SignedRequest:
        pass

    def error_from_payload(self, status: int, payload: Any) -> Optional[VenueError]:
        """Venue-level error carried in an otherwise successful response."""
        return None

    @staticmethod
    def error_message(payload: Any) -> Optional[str]:
        if isinstance(payload, dict):
            for key in ("msg", "message", "retMsg"):
                if payload.get(key):
                    return str(payload[key])
        return None

    @staticmethod
    def error_code(payload: Any):
        if isinstance(payload, dict):
            for key in ("code", "retCode"):
                if key in payload:
                    return payload[key]
        return None
