"""
Reverse geocoding for notification location labels.

Resolves an alert coordinate to a human-readable place name using the
OpenStreetMap Nominatim reverse API. Lookups are cached per process in a
``TTLCache`` so a given coordinate is resolved at most once per TTL.

A failed lookup never blocks a notification: the resolver returns
``UNKNOWN_LOCATION`` instead.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Generic, TypeVar

import httpx

logger = logging.getLogger(__name__)

DEFAULT_GEOCODER_URL = "https://nominatim.openstreetmap.org/reverse"
DEFAULT_USER_AGENT = "AuroraAlerter/1.0"
DEFAULT_CACHE_TTL = timedelta(hours=24)
UNKNOWN_LOCATION = "Unknown Location"

# Address components tried in order of preference.
_ADDRESS_KEYS: tuple[str, ...] = (
    "city",
    "town",
    "village",
    "municipality",
    "county",
    "state",
    "country",
)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Thread-safe in-memory cache with a fixed time-to-live.

    Entries are ``key -> (value, fetched_at)``. An entry older than ``ttl`` is
    treated as missing. ``set`` also evicts every expired entry, so the cache
    only holds keys seen within the last ``ttl``.

    Parameters
    ----------
    ttl : timedelta
        Maximum entry age.
    clock : callable
        Returns the current time in seconds. Defaults to ``time.monotonic``.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl.total_seconds()
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, fetched_at = entry
            if self._clock() - fetched_at >= self._ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            now = self._clock()
            expired = [
                k
                for k, (_, fetched_at) in self._entries.items()
                if now - fetched_at >= self._ttl_seconds
            ]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (value, now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PlaceNameResolver(ABC):
    """Resolves a coordinate to a display label."""

    @abstractmethod
    def resolve(self, latitude: float, longitude: float) -> str:
        """Return a place name, or ``UNKNOWN_LOCATION``. Never raises."""
        ...


class NominatimResolver(PlaceNameResolver):
    """Looks up place names with the Nominatim reverse endpoint.

    Parameters
    ----------
    client : httpx.Client
        HTTP client. Nominatim requires an identifying ``User-Agent`` header,
        which ``create_place_name_resolver`` sets.
    url : str
        Reverse geocoding endpoint.
    """

    def __init__(self, client: httpx.Client, url: str = DEFAULT_GEOCODER_URL) -> None:
        self._client = client
        self._url = url

    def resolve(self, latitude: float, longitude: float) -> str:
        params = {
            "format": "json",
            "lat": latitude,
            "lon": longitude,
            "zoom": 10,
            "addressdetails": 1,
        }
        try:
            response = self._client.get(self._url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Reverse geocoding failed for (%f, %f): %s",
                latitude,
                longitude,
                str(exc),
            )
            return UNKNOWN_LOCATION

        address = data.get("address") if isinstance(data, dict) else None
        if not isinstance(address, dict):
            return UNKNOWN_LOCATION

        for key in _ADDRESS_KEYS:
            name = address.get(key)
            if name:
                return str(name)
        return UNKNOWN_LOCATION


class CachedPlaceNameResolver(PlaceNameResolver):
    """Wraps a resolver with a ``TTLCache`` keyed on 4-decimal coordinates.

    Failed lookups (``UNKNOWN_LOCATION``) are cached too, so an unreachable
    geocoder is not hit again for every notification.
    """

    def __init__(
        self, resolver: PlaceNameResolver, cache: TTLCache[str] | None = None
    ) -> None:
        self._resolver = resolver
        self._cache: TTLCache[str] = cache if cache is not None else TTLCache()

    @staticmethod
    def cache_key(latitude: float, longitude: float) -> str:
        return f"{latitude:.4f},{longitude:.4f}"

    def resolve(self, latitude: float, longitude: float) -> str:
        key = self.cache_key(latitude, longitude)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        name = self._resolver.resolve(latitude, longitude)
        self._cache.set(key, name)
        return name


def create_place_name_resolver(
    url: str = DEFAULT_GEOCODER_URL,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout_seconds: float = 10.0,
    ttl: timedelta = DEFAULT_CACHE_TTL,
) -> PlaceNameResolver:
    """Create a cached Nominatim resolver with its own HTTP client."""
    client = httpx.Client(
        timeout=httpx.Timeout(timeout_seconds),
        headers={"User-Agent": user_agent},
    )
    return CachedPlaceNameResolver(
        NominatimResolver(client=client, url=url),
        cache=TTLCache(ttl=ttl),
    )
