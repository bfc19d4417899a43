"""
Price references for the presale engine.

The engine only ever asks for one thing: the latest conversion rate between
the native payment currency and the quote currency, as
`(rate, decimals, updated_at)`. Readers are injected, so tests use
`StaticPriceFeed` and a deployment can point `HttpPriceFeed` at whatever
service publishes the rate.

Staleness policy (`validate_reading`): a reading is rejected when
  - rate <= 0,
  - updated_at <= 0 (never published),
  - updated_at is later than the engine's clock,
  - it is older than `max_age` seconds.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import structlog

from presale_app.services.errors import InvalidPriceData
from presale_app.services.runtime import Clock, SystemClock

logger = structlog.get_logger()

DEFAULT_ORACLE_DECIMALS = 8
DEFAULT_MAX_PRICE_AGE = 3600


@dataclass(frozen=True)
class PriceReading:
    rate: int
    decimals: int
    updated_at: int


class PriceReader(Protocol):
    def latest_reading(self) -> PriceReading: ...


class StaticPriceFeed:
    """In-process feed with an operator-set rate."""

    def __init__(self, rate: int, decimals: int = DEFAULT_ORACLE_DECIMALS, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self.decimals = int(decimals)
        self._rate = int(rate)
        self._updated_at = self._clock.now()

    def update_rate(self, rate: int, updated_at: Optional[int] = None) -> None:
        self._rate = int(rate)
        self._updated_at = self._clock.now() if updated_at is None else int(updated_at)
        logger.info("price_feed_updated", rate=self._rate, decimals=self.decimals, updated_at=self._updated_at)

    def latest_reading(self) -> PriceReading:
        return PriceReading(rate=self._rate, decimals=self.decimals, updated_at=self._updated_at)


class HttpPriceFeed:
    """Reads `{"rate": ..., "decimals": ..., "updated_at": ...}` over HTTP."""

    def __init__(self, url: str, decimals: int = DEFAULT_ORACLE_DECIMALS, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.decimals = int(decimals)
        self._client = client or httpx.Client(timeout=timeout)

    def latest_reading(self) -> PriceReading:
        try:
            resp = self._client.get(self.url)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("price_feed_unreachable", url=self.url, error=str(exc))
            raise InvalidPriceData(f"price feed unavailable: {exc}") from exc

        try:
            reading = PriceReading(
                rate=int(payload["rate"]),
                decimals=int(payload.get("decimals", self.decimals)),
                updated_at=int(payload["updated_at"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("price_feed_malformed", url=self.url, payload=payload)
            raise InvalidPriceData(f"malformed price payload: {payload!r}") from exc
        return reading

    def close(self) -> None:
        self._client.close()


def validate_reading(reading: PriceReading, now: int, max_age: int = DEFAULT_MAX_PRICE_AGE) -> PriceReading:
    if reading.rate <= 0:
        raise InvalidPriceData(f"non-positive rate: {reading.rate}")
    if reading.decimals < 0:
        raise InvalidPriceData(f"negative decimals: {reading.decimals}")
    if reading.updated_at <= 0:
        raise InvalidPriceData("price was never published")
    if reading.updated_at > now:
        raise InvalidPriceData(f"price timestamp {reading.updated_at} is ahead of clock {now}")
    if now - reading.updated_at > max_age:
        raise InvalidPriceData(f"price is stale: {now - reading.updated_at}s old (max {max_age}s)")
    return reading
