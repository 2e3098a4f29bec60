"""Day-ahead price feed client – fetch hourly spot prices for one bidding zone.

Uses the public ``elprisetjustnu.se`` REST API, one JSON document per
calendar day and region::

    GET {base_url}{YYYY}/{MM}-{DD}_{REGION}.json
    [{"SEK_per_kWh": 0.41, "time_start": "2025-06-01T00:00:00+02:00",
      "time_end": "2025-06-01T01:00:00+02:00", ...}, ...]

Key behaviour
-------------
- Caches the raw JSON of each day on disk (``~/.battery_dispatch_cache/``)
  keyed by a SHA-256 hash of the request URL.  Published day-ahead prices do
  not change, so repeated cycles on the same day never hit the network twice.
- Retries up to :data:`~battery_dispatch.config.defaults.PRICE_RETRY_MAX`
  times with exponential backoff on HTTP 429, 5xx, timeouts and connection
  errors.
- Tomorrow's prices are published around 13:00 local time;
  :meth:`PriceFeedClient.fetch_today_and_tomorrow` only asks for them after
  that hour and treats a failure as "not yet available".

Typical usage::

    from battery_dispatch.market.price_feed import PriceFeedClient
    client = PriceFeedClient(region="SE3", import_markup=0.86, export_markup=0.60)
    today, tomorrow = client.fetch_today_and_tomorrow(now)
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import date, datetime, timedelta
from pathlib import Path

import requests

from battery_dispatch.config.defaults import (
    DEFAULT_EXPORT_MARKUP,
    DEFAULT_IMPORT_MARKUP,
    DEFAULT_REGION,
    PRICE_API_BASE_URL,
    PRICE_CACHE_DIR,
    PRICE_REQUEST_TIMEOUT_S,
    PRICE_RETRY_BACKOFF_FACTOR,
    PRICE_RETRY_MAX,
    TOMORROW_PRICES_PUBLISH_HOUR,
)
from battery_dispatch.market.prices import HourlyPriceRecord, hour_key, records_from_spot

logger = logging.getLogger(__name__)

# HTTP status codes that warrant a retry (rate-limit and server errors)
_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

_ONE_HOUR = timedelta(hours=1)


class FeedUnavailable(RuntimeError):
    """Raised when a day's prices cannot be retrieved or parsed."""


class PriceFeedClient:
    """Thin client for the day-ahead price API.

    Parameters
    ----------
    region:
        Bidding zone, e.g. ``"SE3"``.
    import_markup, export_markup:
        Fixed per-kWh additions turning the spot price into buy/sell prices.
    cache_dir:
        Directory for the persistent JSON response cache.  Pass ``None`` to
        disable caching entirely (useful in tests).
    base_url:
        API base URL.  Override for testing or mirrors.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Maximum number of attempts on transient errors.
    backoff_factor:
        Initial wait time (seconds) for exponential backoff.
        Actual wait on attempt *k* = ``backoff_factor × 2^(k-1)``.
    tomorrow_publish_hour:
        Local hour from which tomorrow's prices are requested.
    """

    def __init__(
        self,
        region: str = DEFAULT_REGION,
        import_markup: float = DEFAULT_IMPORT_MARKUP,
        export_markup: float = DEFAULT_EXPORT_MARKUP,
        cache_dir: str | Path | None = PRICE_CACHE_DIR,
        base_url: str = PRICE_API_BASE_URL,
        timeout: float = PRICE_REQUEST_TIMEOUT_S,
        max_retries: int = PRICE_RETRY_MAX,
        backoff_factor: float = PRICE_RETRY_BACKOFF_FACTOR,
        tomorrow_publish_hour: int = TOMORROW_PRICES_PUBLISH_HOUR,
    ) -> None:
        self.region = region
        self.import_markup = import_markup
        self.export_markup = export_markup
        self._base_url = base_url.rstrip("/") + "/"
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_factor = backoff_factor
        self._tomorrow_publish_hour = tomorrow_publish_hour

        self._cache_dir: Path | None = None
        if cache_dir is not None:
            cache_path = Path(cache_dir).expanduser()
            try:
                cache_path.mkdir(parents=True, exist_ok=True)
                self._cache_dir = cache_path
            except OSError as exc:
                logger.warning("Price cache disabled, cannot create %s: %s", cache_path, exc)

    @classmethod
    def from_config(cls, config) -> PriceFeedClient:
        """Build a client from a :class:`~battery_dispatch.config.loader.ControllerConfig`."""
        feed = config.price_feed
        return cls(
            region=config.site.region,
            import_markup=config.site.import_markup,
            export_markup=config.site.export_markup,
            cache_dir=feed.cache_dir,
            base_url=feed.base_url,
            timeout=feed.timeout_s,
            max_retries=feed.max_retries,
            backoff_factor=feed.backoff_factor,
            tomorrow_publish_hour=feed.tomorrow_publish_hour,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def day_url(self, day: date) -> str:
        return f"{self._base_url}{day.year:04d}/{day.month:02d}-{day.day:02d}_{self.region}.json"

    def fetch_day(self, day: date) -> list[HourlyPriceRecord]:
        """Fetch the hourly horizon of *day*.

        Returns
        -------
        list[HourlyPriceRecord]
            Ordered by start instant.

        Raises
        ------
        FeedUnavailable
            When the API returns a non-retryable error, all retries are
            exhausted, or the payload is malformed.
        """
        url = self.day_url(day)
        raw = self._get_with_cache(url)
        records = self._parse_response(raw, self.import_markup, self.export_markup)
        logger.info("Loaded %d price hours for %s (%s)", len(records), day, self.region)
        return records

    def fetch_today_and_tomorrow(
        self, now: datetime
    ) -> tuple[list[HourlyPriceRecord], list[HourlyPriceRecord]]:
        """Fetch today's horizon and, when published, tomorrow's.

        Today's :class:`FeedUnavailable` propagates; tomorrow's degrades to an
        empty horizon.
        """
        today = self.fetch_day(now.date())
        tomorrow: list[HourlyPriceRecord] = []
        if now.hour >= self._tomorrow_publish_hour:
            try:
                tomorrow = self.fetch_day(now.date() + timedelta(days=1))
            except FeedUnavailable as exc:
                logger.warning("Tomorrow's prices not available yet: %s", exc)
        else:
            logger.info(
                "Tomorrow's prices are published after %02d:00; skipping.",
                self._tomorrow_publish_hour,
            )
        return today, tomorrow

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(url: str) -> str:
        """Return a 32-char SHA-256 hex digest for *url*."""
        return hashlib.sha256(url.encode()).hexdigest()[:32]

    def _cache_path(self, url: str) -> Path | None:
        if self._cache_dir is None:
            return None
        return self._cache_dir / f"prices_{self._cache_key(url)}.json"

    @staticmethod
    def _discard(cache_file: Path) -> None:
        try:
            cache_file.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove price cache %s: %s", cache_file, exc)

    def _get_with_cache(self, url: str) -> list:
        """Return parsed JSON, served from disk cache when available."""
        cache_file = self._cache_path(url)

        if cache_file is not None and cache_file.exists():
            logger.debug("Price cache hit: %s", cache_file)
            try:
                with cache_file.open("r", encoding="utf-8") as fh:
                    return json.load(fh)
            except (OSError, ValueError) as exc:
                logger.warning("Discarding unreadable price cache %s: %s", cache_file, exc)
                self._discard(cache_file)

        raw = self._fetch(url)

        if cache_file is not None:
            logger.debug("Writing price cache: %s", cache_file)
            try:
                with cache_file.open("w", encoding="utf-8") as fh:
                    json.dump(raw, fh)
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("Could not write price cache %s: %s", cache_file, exc)
                self._discard(cache_file)

        return raw

    # ------------------------------------------------------------------
    # HTTP with retry/backoff
    # ------------------------------------------------------------------

    def _wait(self, attempt: int) -> float:
        return self._backoff_factor * (2 ** (attempt - 1))

    def _fetch(self, url: str) -> list:
        """Execute the HTTP GET with exponential backoff retry."""
        last_exc: Exception | None = None

        for attempt in range(1, self._max_retries + 1):
            try:
                logger.debug(
                    "Price request attempt %d/%d: %s", attempt, self._max_retries, url
                )
                resp = requests.get(url, timeout=self._timeout)

                if resp.status_code == 200:
                    try:
                        return resp.json()
                    except ValueError as exc:
                        raise FeedUnavailable(f"Invalid JSON from {url}") from exc

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    wait = self._wait(attempt)
                    logger.warning(
                        "Price feed HTTP %d on attempt %d/%d – retrying in %.1fs",
                        resp.status_code,
                        attempt,
                        self._max_retries,
                        wait,
                    )
                    time.sleep(wait)
                    last_exc = FeedUnavailable(
                        f"HTTP {resp.status_code} from {url} after {attempt} attempt(s)"
                    )
                    continue

                # Non-retryable client error, e.g. 404 before publication
                raise FeedUnavailable(
                    f"Price feed error (HTTP {resp.status_code}) for {url}: "
                    f"{resp.text[:200]}"
                )

            except requests.Timeout as exc:
                wait = self._wait(attempt)
                logger.warning(
                    "Price feed timeout on attempt %d/%d – retrying in %.1fs",
                    attempt,
                    self._max_retries,
                    wait,
                )
                time.sleep(wait)
                last_exc = exc

            except requests.ConnectionError as exc:
                wait = self._wait(attempt)
                logger.warning(
                    "Price feed connection error on attempt %d/%d – retrying in %.1fs: %s",
                    attempt,
                    self._max_retries,
                    wait,
                    exc,
                )
                time.sleep(wait)
                last_exc = exc

        raise FeedUnavailable(
            f"Price request failed after {self._max_retries} attempt(s): {url}"
        ) from last_exc

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_response(
        raw: list, import_markup: float, export_markup: float
    ) -> list[HourlyPriceRecord]:
        """Parse the API payload into an ordered horizon.

        Each element carries ``time_start``, ``time_end`` (ISO 8601 with UTC
        offset) and ``SEK_per_kWh`` (spot price).  Sub-hourly slots (e.g. the
        15-minute day-ahead market) are averaged, weighted by duration, into
        one record per hour.

        Raises
        ------
        FeedUnavailable
            When the payload is not a list, a record is missing a field, or an
            interval is empty, longer than one hour or crosses an hour boundary.
        """
        if not isinstance(raw, list):
            raise FeedUnavailable("Unexpected price payload: expected a JSON list.")
        rows = []
        try:
            for item in raw:
                rows.append(
                    (
                        datetime.fromisoformat(item["time_start"]),
                        datetime.fromisoformat(item["time_end"]),
                        float(item["SEK_per_kWh"]),
                    )
                )
        except (KeyError, TypeError, ValueError) as exc:
            raise FeedUnavailable(f"Malformed price record: {exc}") from exc
        return records_from_spot(_hourly_rows(rows), import_markup, export_markup)


def _hourly_rows(
    rows: list[tuple[datetime, datetime, float]],
) -> list[tuple[datetime, datetime, float]]:
    """Collapse price slots into one duration-weighted row per hour."""
    groups: dict[datetime, list[tuple[datetime, datetime, float]]] = {}
    for start, end, spot in rows:
        key = hour_key(start)
        if not start < end <= key + _ONE_HOUR:
            raise FeedUnavailable(
                f"Unsupported price interval {start.isoformat()} – {end.isoformat()}"
            )
        groups.setdefault(key, []).append((start, end, spot))

    hourly = []
    for slots in groups.values():
        if len(slots) == 1:
            hourly.append(slots[0])
            continue
        seconds = [(end - start).total_seconds() for start, end, _ in slots]
        spot = sum(s * w for (_, _, s), w in zip(slots, seconds)) / sum(seconds)
        hourly.append((min(s[0] for s in slots), max(s[1] for s in slots), spot))
    return hourly
