"""
Price Oracle Module

Wraps a single external price source (native asset / USD, 8 decimals) and
validates every answer for positivity and freshness. Quotes are never
cached: every conversion re-queries the feed, and an invalid or stale
answer aborts the calling operation without retry.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import httpx

from .errors import OracleInvalidPrice, OracleInvalidTimestamp, OracleStalePrice, OracleUnavailable

logger = logging.getLogger("core_vault.oracle")

DEFAULT_HEARTBEAT = 3600  # seconds


@dataclass(frozen=True)
class PriceQuote:
    """Validated oracle answer"""
    price: int   # 8-decimal fixed point
    as_of: int   # unix seconds of the last feed update


class PriceFeed(ABC):
    """Abstract external price source"""

    address: str = ""
    decimals: int = 8

    @abstractmethod
    def latest_round_data(self) -> Tuple[int, int]:
        """Return (price, updated_at) exactly as reported by the source"""
        pass


class ManualPriceFeed(PriceFeed):
    """In-process feed whose answer is pushed by the operator (or a test)"""

    def __init__(
        self,
        price: int,
        updated_at: Optional[int] = None,
        address: str = "manual-feed",
        decimals: int = 8,
        clock: Callable[[], float] = time.time
    ):
        self.address = address
        self.decimals = decimals
        self._clock = clock
        self._lock = threading.Lock()
        self._price = price
        self._updated_at = int(clock()) if updated_at is None else updated_at

    def set_price(self, price: int, updated_at: Optional[int] = None) -> None:
        """Publish a new answer; timestamp defaults to now"""
        with self._lock:
            self._price = price
            self._updated_at = int(self._clock()) if updated_at is None else updated_at

    def latest_round_data(self) -> Tuple[int, int]:
        with self._lock:
            return self._price, self._updated_at


class HttpPriceFeed(PriceFeed):
    """
    Price feed read from a JSON endpoint.

    The endpoint must answer ``{"price": <int>, "updated_at": <unix seconds>}``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 2.0,
        address: Optional[str] = None,
        decimals: int = 8,
        client: Optional[httpx.Client] = None
    ):
        self.url = url
        self.address = address or url
        self.decimals = decimals
        self._client = client or httpx.Client(timeout=timeout)

    def latest_round_data(self) -> Tuple[int, int]:
        try:
            response = self._client.get(self.url)
        except httpx.HTTPError as e:
            logger.error(f"Price feed request to {self.url} failed: {e}")
            raise OracleUnavailable(str(e)) from e

        if response.status_code != 200:
            logger.warning(f"Price feed returned {response.status_code}: {response.text}")
            raise OracleUnavailable(f"HTTP {response.status_code}")

        try:
            data = response.json()
            price = data["price"]
            updated_at = data["updated_at"]
        except (ValueError, KeyError, TypeError) as e:
            raise OracleUnavailable(f"malformed response: {e}") from e

        # bool is an int subclass; reject it along with floats and strings
        if type(price) is not int or type(updated_at) is not int:
            raise OracleUnavailable("price and updated_at must be integers")

        return price, updated_at

    def close(self) -> None:
        """Close the HTTP client"""
        self._client.close()


class PriceOracleAdapter:
    """Validating front for a single price feed"""

    def __init__(
        self,
        feed: PriceFeed,
        heartbeat: int = DEFAULT_HEARTBEAT,
        clock: Callable[[], float] = time.time
    ):
        if heartbeat <= 0:
            raise ValueError("Heartbeat must be positive")
        self.feed = feed
        self.heartbeat = heartbeat
        self._clock = clock

    @property
    def address(self) -> str:
        return self.feed.address

    def get_asset_price(self) -> PriceQuote:
        """
        Query the feed and validate the answer

        Returns:
            PriceQuote with a positive price no older than the heartbeat

        Raises:
            OracleInvalidPrice: price <= 0
            OracleInvalidTimestamp: answer is timestamped in the future
            OracleStalePrice: answer is older than the heartbeat
            OracleUnavailable: feed could not be read
        """
        price, as_of = self.feed.latest_round_data()

        if price <= 0:
            raise OracleInvalidPrice(price)

        now = int(self._clock())
        if as_of > now:
            raise OracleInvalidTimestamp(as_of, now)

        age = now - as_of
        if age > self.heartbeat:
            raise OracleStalePrice(age, self.heartbeat)

        logger.debug(f"Oracle {self.address} price={price} age={age}s")
        return PriceQuote(price=price, as_of=as_of)
