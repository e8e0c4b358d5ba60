"""Fail-safe GeoIP lookup utilities (read-only)."""

from __future__ import annotations

import logging
import os

import geoip2.database
from geoip2.errors import AddressNotFoundError
from maxminddb.errors import InvalidDatabaseError

from crawlscope.domain.records import GeoLocation
from crawlscope.utils.addresses import normalize_address, is_public_address
from crawlscope.utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

NULL_LOCATION = GeoLocation()


def open_mmdb_reader(db_path: str | None, log=None, label: str = 'GeoIP'):
    """Open a MaxMind database once. Missing or unreadable files return None with a warning."""
    log = log or logger
    if not db_path:
        log.warning('%s database path not configured; lookups disabled', label)
        return None
    if not os.path.exists(db_path):
        log.warning('%s database not found at %s; lookups disabled', label, db_path)
        return None
    try:
        return geoip2.database.Reader(db_path)
    except (OSError, ValueError, InvalidDatabaseError):
        log.warning('%s reader init failed for %s; lookups disabled', label, db_path, exc_info=True)
        return None


class GeoResolver:
    """Address -> coarse location using a GeoLite2-City reader.

    Every failure mode (no reader, private or malformed address, address not
    in the dataset) yields an all-null ``GeoLocation``.
    """

    def __init__(self, reader=None, cache: TTLCache | None = None):
        self._reader = reader
        self._cache = cache if cache is not None else TTLCache[str, GeoLocation](ttl_seconds=3600, max_items=8192)

    @property
    def enabled(self) -> bool:
        return self._reader is not None

    def lookup(self, address: str | None) -> GeoLocation:
        normalized = normalize_address(address)
        if not normalized or self._reader is None or not is_public_address(normalized):
            return NULL_LOCATION
        return self._cache.get_or_set(normalized, lambda: self._lookup_uncached(normalized))

    def _lookup_uncached(self, address: str) -> GeoLocation:
        try:
            response = self._reader.city(address)
        except (AddressNotFoundError, ValueError):
            return NULL_LOCATION
        return GeoLocation(
            country=response.country.iso_code,
            city=response.city.names.get('en') if response.city.names else None,
            latitude=response.location.latitude,
            longitude=response.location.longitude,
        )

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()


def open_geo_resolver(db_path: str | None, log=None, cache_ttl_seconds: int = 3600) -> GeoResolver:
    reader = open_mmdb_reader(db_path, log, label='GeoIP City')
    cache = TTLCache[str, GeoLocation](ttl_seconds=cache_ttl_seconds, max_items=8192)
    return GeoResolver(reader, cache)
