"""Treasury yield fetching from FRED with a fallback cache."""
import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import httpx

from app.config import Settings, settings as default_settings
from app.errors import YieldFetchError
from app.idempotency import utcnow
from app.protocol import YieldErrorInfo, YieldPoint
from app.treasury import TREASURY_SERIES


logger = logging.getLogger(__name__)


@dataclass
class YieldsResult:
    """Outcome of fetching every term."""

    yields: list[YieldPoint]
    errors: list[YieldErrorInfo] = field(default_factory=list)
    from_cache: bool = False


@dataclass
class YieldsCache:
    data: list[YieldPoint]
    cached_at: datetime


class YieldsService:
    """FRED client for Treasury yields, one series per term."""

    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._config = config or default_settings
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._cache: YieldsCache | None = None

    async def connect(self) -> None:
        """Open the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.fred_timeout_seconds,
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get HTTP client, raise if not connected."""
        if self._client is None:
            raise RuntimeError("Yields client not connected")
        return self._client

    @property
    def api_key(self) -> str | None:
        return self._config.fred_api_key

    @property
    def cache(self) -> YieldsCache | None:
        return self._cache

    async def fetch_series(self, series_id: str) -> dict[str, Any]:
        """
        Fetch the latest observations for one series.

        Asks for several observations, newest first, so a term whose latest
        value is missing still has a recent one to fall back on.
        Raises YieldFetchError on transport failure, a non-2xx response or a
        body that is not a JSON object.
        """
        params = {
            "series_id": series_id,
            "api_key": self.api_key,
            "file_type": "json",
            "sort_order": "desc",
            "limit": self._config.fred_observation_limit,
        }
        try:
            response = await self.client.get(self._config.fred_api_base_url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "FRED API error for series %s: status=%s", series_id, e.response.status_code
            )
            raise YieldFetchError(
                f"FRED API returned status {e.response.status_code}",
                series_id=series_id,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("FRED API request failed for series %s: %s", series_id, e)
            raise YieldFetchError(str(e) or type(e).__name__, series_id=series_id) from e
        except ValueError as e:
            logger.error("FRED API returned invalid JSON for series %s", series_id)
            raise YieldFetchError("Invalid JSON from FRED API", series_id=series_id) from e

        if not isinstance(payload, dict):
            logger.error("Unexpected FRED response shape for series %s", series_id)
            raise YieldFetchError("Unexpected FRED response", series_id=series_id)
        return payload

    @staticmethod
    def parse_observations(
        payload: dict[str, Any], series_id: str, term: str
    ) -> list[YieldPoint]:
        """Convert FRED observations to yield points, skipping missing values."""
        observations = payload.get("observations")
        if not isinstance(observations, list):
            return []

        points = []
        for obs in observations:
            if not isinstance(obs, dict):
                continue
            raw_value = obs.get("value")
            # FRED marks missing observations with "."
            if raw_value in (None, "."):
                continue
            try:
                value = float(raw_value)
                observed = date.fromisoformat(obs.get("date", ""))
            except (TypeError, ValueError):
                continue
            if not math.isfinite(value):
                continue
            points.append(
                YieldPoint(date=observed, value=value, term=term, series_id=series_id)
            )
        return points

    async def _fetch_term(
        self, term: str, series_id: str
    ) -> tuple[list[YieldPoint], YieldErrorInfo | None]:
        try:
            payload = await self.fetch_series(series_id)
        except YieldFetchError as e:
            logger.error(
                "Error fetching %s yield data: %s (status=%s)", term, e.message, e.status_code
            )
            return [], YieldErrorInfo(
                term=term, seriesId=e.series_id, error=e.message, statusCode=e.status_code
            )
        return self.parse_observations(payload, series_id, term), None

    async def get_all_yields(self) -> YieldsResult:
        """
        Fetch the most recent yield for every term.

        A full success refreshes the cache. If any term fails and a cache
        exists, the cached data is returned instead, without errors.
        """
        results = await asyncio.gather(
            *(self._fetch_term(term, series_id) for term, series_id in TREASURY_SERIES.items())
        )

        errors = [error for _, error in results if error is not None]
        latest = [max(points, key=lambda p: p.date) for points, _ in results if points]
        latest.sort(key=lambda p: p.date, reverse=True)

        if not errors:
            self._cache = YieldsCache(data=latest, cached_at=self._clock())
            logger.info("Updated yields cache with %d data points", len(latest))
            return YieldsResult(yields=latest)

        if self._cache is not None:
            age_minutes = round(
                (self._clock() - self._cache.cached_at).total_seconds() / 60
            )
            logger.warning(
                "API fetch failed, returning cached yields data (cache age: %d minutes)",
                age_minutes,
            )
            return YieldsResult(yields=self._cache.data, from_cache=True)

        return YieldsResult(yields=latest, errors=errors)
