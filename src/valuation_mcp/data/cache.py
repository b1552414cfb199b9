"""Process-lifetime caches.

`TtlCache` holds the ticker directory and per-symbol price history in memory.
Writes are idempotent overwrites, so concurrent requests that miss on the same
key simply repopulate it twice; no locking is needed.

`PriceCache` persists gzipped CSV on disk (diskcache) so the `price://`
resource can serve exactly what a tool call fetched.
"""

import gzip
import hashlib
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

import diskcache
import pandas as pd

from valuation_mcp.utils.ohlcv import df_to_csv
from valuation_mcp.utils.validators import FetchParams

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A cached value and its absolute expiry (monotonic seconds)."""

    value: V
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class TtlCache(Generic[V]):
    """Minimal in-memory TTL map."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class PriceCache:
    """
    On-disk CSV store keyed by canonical price:// URI.

    Resources only serve cached data; they never fetch live.
    """

    def __init__(self, cache_dir: str | None = None):
        if cache_dir is None:
            cache_dir = os.environ.get("CACHE_DIR", ".cache/prices")
        self.cache: diskcache.Cache = diskcache.Cache(cache_dir)
        self._default_ttl = int(os.environ.get("CACHE_TTL", "300"))

    def store(self, params: FetchParams, df: pd.DataFrame, ttl: int | None = None) -> str:
        """
        Store a standardized frame as gzipped CSV plus metadata.

        Returns:
            Canonical URI for the cached data
        """
        uri = params.to_uri()
        csv_bytes = df_to_csv(df).encode("utf-8")
        csv_gz = gzip.compress(csv_bytes)

        entry: dict[str, Any] = {
            "csv_gz": csv_gz,
            "rows": len(df),
            "columns": list(df.columns),
            "size_bytes": len(csv_bytes),
            "hash": hashlib.sha256(csv_bytes).hexdigest()[:16],
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }
        self.cache.set(uri, entry, expire=ttl if ttl is not None else self._default_ttl)
        return uri

    def get_csv(self, uri: str) -> str | None:
        entry = self.cache.get(uri)
        if not entry:
            return None
        return gzip.decompress(entry["csv_gz"]).decode("utf-8")

    def get_metadata(self, uri: str) -> dict[str, Any] | None:
        entry = self.cache.get(uri)
        if not entry:
            return None
        return {k: entry[k] for k in ("rows", "columns", "size_bytes", "hash", "stored_at")}

    def clear(self) -> None:
        self.cache.clear()


# Global instance
price_cache = PriceCache()
