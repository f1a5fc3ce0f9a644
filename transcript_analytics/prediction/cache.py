"""TTL cache for prediction results"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional

from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


def data_fingerprint(records: Iterable[TranscriptRecord]) -> list:
    """Sorted (client, month, count) triples; ignores ids and timestamps"""
    return sorted((r.client_name, r.month, int(r.transcript_count)) for r in records)


def make_cache_key(client_name: Optional[str], request: Dict[str, Any],
                   records: Iterable[TranscriptRecord]) -> str:
    """
    SHA-256 over a canonical JSON of client, request fields and data

    Any change in the input counts produces a different key, so stale
    entries are never served for new data.
    """
    payload = {
        'client': client_name,
        'request': request,
        'data': data_fingerprint(records),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


class PredictionCache:
    """
    In-process memoisation of prediction results

    Entries expire ``ttl_seconds`` after being stored. When the cache is
    full the oldest entry is evicted.
    """

    def __init__(self, ttl_seconds: float = 3600, max_entries: int = 256, clock=time.monotonic):
        """
        Initialize cache

        Args:
            ttl_seconds: Lifetime of an entry
            max_entries: Capacity before oldest-first eviction; 0 or less stores nothing
            clock: Time source (seconds), injectable for tests
        """
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            expires_at, client_name, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None

            self.hits += 1
            return value

    def set(self, key: str, value: Any, client_name: Optional[str] = None):
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            # No capacity means nothing is kept
            if self.max_entries <= 0:
                return
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted prediction cache entry {evicted[:12]}")
            self._entries[key] = (self._clock() + self.ttl_seconds, client_name, value)

    def invalidate(self, client_name: Optional[str] = None) -> int:
        """
        Drop entries for one client, or every entry when client_name is None

        Returns:
            Number of entries removed
        """
        with self._lock:
            if client_name is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                keys = [k for k, (_, c, _) in self._entries.items() if c == client_name]
                for k in keys:
                    del self._entries[k]
                removed = len(keys)

        if removed:
            logger.debug(f"Invalidated {removed} cached predictions")
        return removed

    def clear(self):
        self.invalidate()
        with self._lock:
            self.hits = 0
            self.misses = 0

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _, _) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                'size': len(self._entries),
                'max_entries': self.max_entries,
                'ttl_seconds': self.ttl_seconds,
                'hits': self.hits,
                'misses': self.misses,
                'hit_rate': self.hits / total if total else 0.0,
            }

    def __len__(self) -> int:
        return len(self._entries)
