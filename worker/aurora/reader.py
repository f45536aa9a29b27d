"""
Grid Reader: HTTP I/O abstraction for the aurora probability feed.

Fetches the NOAA SWPC OVATION nowcast document and parses it into a
``GridSnapshot``. The document is a single JSON object::

    {
      "Observation Time": "2026-10-18T11:05:00Z",
      "Forecast Time": "2026-10-18T11:40:00Z",
      "Data Format": "[Longitude, Latitude, Aurora]",
      "coordinates": [[0, -90, 0], [0, -89, 0], ...]
    }

Every cycle performs exactly one request. There is no retry inside
``fetch()``; a failed fetch aborts the cycle and the next scheduled tick
tries again.

Error Handling:
    - Transport errors and timeouts -> FetchError
    - Non-2xx responses -> FetchError
    - Invalid JSON, missing/empty sample field, malformed entries -> FetchError
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx
import numpy as np

from worker.aurora.models import GridSnapshot

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_FEED_URL = "https://services.swpc.noaa.gov/json/ovation_aurora_latest.json"
DEFAULT_SAMPLES_FIELD = "coordinates"
DEFAULT_TIMEOUT_SECONDS = 30.0

OBSERVATION_TIME_FIELD = "Observation Time"
FORECAST_TIME_FIELD = "Forecast Time"

# Values are stored as int64
MAX_SAMPLE_VALUE = int(np.iinfo(np.int64).max)


# ---------------------------------------------------------------------------
# Custom Exceptions
# ---------------------------------------------------------------------------


class FetchError(Exception):
    """Raised when the feed is unreachable or its payload is unusable.

    The evaluation cycle catches this, logs it and skips the tick. ``cause``
    holds the underlying exception when there is one.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


# ---------------------------------------------------------------------------
# Payload Parsing
# ---------------------------------------------------------------------------


def _parse_feed_time(raw: Any, field: str) -> datetime | None:
    """Parse an ISO-8601 feed timestamp. Invalid values are logged and dropped."""
    if raw is None:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable feed timestamp %s=%r", field, raw)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_number(value: Any) -> bool:
    # bool is an int subclass; reject it explicitly
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_grid_payload(
    payload: Any, samples_field: str = DEFAULT_SAMPLES_FIELD
) -> GridSnapshot:
    """Convert a decoded feed document into a ``GridSnapshot``.

    Parameters
    ----------
    payload : Any
        The decoded JSON document.
    samples_field : str
        Name of the field holding the ``[lon, lat, value]`` triples.

    Returns
    -------
    GridSnapshot
        Samples in feed order.

    Raises
    ------
    FetchError
        If the document is not an object, the sample collection is missing or
        empty, or any entry is malformed.
    """
    if not isinstance(payload, dict):
        raise FetchError(
            f"Feed payload must be a JSON object, got {type(payload).__name__}"
        )

    raw_samples = payload.get(samples_field)
    if not isinstance(raw_samples, list):
        raise FetchError(f"Feed payload has no '{samples_field}' collection")
    if not raw_samples:
        raise FetchError(f"Feed payload '{samples_field}' collection is empty")

    count = len(raw_samples)
    lons = np.empty(count, dtype=np.float64)
    lats = np.empty(count, dtype=np.float64)
    values = np.empty(count, dtype=np.int64)

    for i, entry in enumerate(raw_samples):
        if not isinstance(entry, (list, tuple)) or len(entry) != 3:
            raise FetchError(
                f"Malformed sample at index {i}: expected "
                f"[longitude, latitude, value], got {entry!r}"
            )
        lon, lat, value = entry
        if not all(_is_number(v) for v in entry):
            raise FetchError(f"Non-numeric sample at index {i}: {entry!r}")
        try:
            lon, lat = float(lon), float(lat)
        except OverflowError as exc:
            raise FetchError(
                f"Coordinate out of range at index {i}: {entry!r}", cause=exc
            ) from exc
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise FetchError(f"Non-finite coordinate at index {i}: {entry!r}")
        if not -90.0 <= lat <= 90.0:
            raise FetchError(f"Latitude out of range at index {i}: {entry!r}")
        if isinstance(value, float) and not (
            math.isfinite(value) and value.is_integer()
        ):
            raise FetchError(f"Value at index {i} is not an integer: {entry!r}")
        if not 0 <= value <= MAX_SAMPLE_VALUE:
            raise FetchError(f"Value out of range at index {i}: {entry!r}")
        lons[i] = lon
        lats[i] = lat
        values[i] = int(value)

    return GridSnapshot(
        longitudes=lons,
        latitudes=lats,
        values=values,
        observation_time=_parse_feed_time(
            payload.get(OBSERVATION_TIME_FIELD), OBSERVATION_TIME_FIELD
        ),
        forecast_time=_parse_feed_time(
            payload.get(FORECAST_TIME_FIELD), FORECAST_TIME_FIELD
        ),
    )


# ---------------------------------------------------------------------------
# GridSource Interface
# ---------------------------------------------------------------------------


class GridSource(ABC):
    """Abstract base class for fetching the aurora probability grid."""

    @abstractmethod
    def fetch(self) -> GridSnapshot:
        """Fetch and parse the latest grid.

        Error Handling:
            - Any transport, status or payload failure -> FetchError
        """
        ...


# ---------------------------------------------------------------------------
# Concrete Implementation: HttpGridSource
# ---------------------------------------------------------------------------


class HttpGridSource(GridSource):
    """Reads the OVATION grid over HTTP using a shared ``httpx.Client``.

    Parameters
    ----------
    client : httpx.Client
        Client used for the request. Its timeout bounds the whole fetch.
    url : str
        Feed document URL.
    samples_field : str
        Name of the field holding the sample triples.
    """

    def __init__(
        self,
        client: httpx.Client,
        url: str = DEFAULT_FEED_URL,
        samples_field: str = DEFAULT_SAMPLES_FIELD,
    ) -> None:
        self._client = client
        self._url = url
        self._samples_field = samples_field

    def fetch(self) -> GridSnapshot:
        logger.info("Fetching aurora grid from %s", self._url)

        try:
            response = self._client.get(self._url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Aurora feed returned HTTP %d for %s",
                exc.response.status_code,
                self._url,
            )
            raise FetchError(
                f"Aurora feed returned HTTP {exc.response.status_code}",
                cause=exc,
            ) from exc
        except httpx.HTTPError as exc:
            # Includes timeouts (httpx.TimeoutException)
            error_type = type(exc).__name__
            logger.warning(
                "Aurora feed request failed: url=%s, error_type=%s, details=%s",
                self._url,
                error_type,
                str(exc),
            )
            raise FetchError(
                f"Aurora feed request failed: {error_type}: {exc}", cause=exc
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError("Aurora feed returned invalid JSON", cause=exc) from exc

        grid = parse_grid_payload(payload, self._samples_field)

        logger.info(
            "Loaded aurora grid: samples=%d, observation_time=%s, "
            "forecast_time=%s",
            len(grid),
            grid.observation_time.isoformat() if grid.observation_time else None,
            grid.forecast_time.isoformat() if grid.forecast_time else None,
        )
        return grid


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def create_grid_source(
    url: str = DEFAULT_FEED_URL,
    samples_field: str = DEFAULT_SAMPLES_FIELD,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> GridSource:
    """Create an ``HttpGridSource`` with its own bounded-timeout client."""
    client = httpx.Client(
        timeout=httpx.Timeout(timeout_seconds),
        headers={"Accept": "application/json"},
        follow_redirects=True,
    )
    return HttpGridSource(client=client, url=url, samples_field=samples_field)
