"""In-process TTL cache for upstream responses and request results."""
from __future__ import annotations

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from . import config
from .models import Coordinate

T = TypeVar("T")


def make_request_cache_key(url: str, field_mask: str, body: Dict[str, Any]) -> str:
    payload = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    raw = f"{url}|{field_mask}|{payload}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def round_coord(value: float, decimals: Optional[int] = None) -> float:
    places = config.CACHE_KEY_COORD_DECIMALS if decimals is None else decimals
    return round(float(value), places)


def make_origin_cache_key(prefix: str, origin: Optional[Coordinate], *parts: Any) -> str:
    if origin is None:
        coords = ["", ""]
    else:
        coords = [f"{round_coord(origin.lat):g}", f"{round_coord(origin.lon):g}"]
    tail = ["" if p is None else f"{p:g}" if isinstance(p, float) else str(p) for p in parts]
    return "|".join([prefix, *coords, *tail])


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class _Shard:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.store: Dict[str, CacheEntry] = {}


class TTLCache(Generic[T]):
    """Key/value store with lazy wall-clock expiry.

    Entries are spread over independently locked shards so concurrent
    requests touching different keys never contend on one lock.
    """

    def __init__(
        self,
        default_ttl_sec: float,
        shards: int = config.CACHE_SHARDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl_sec = float(default_ttl_sec)
        self._clock = clock
        self._shards: List[_Shard] = [_Shard() for _ in range(max(1, int(shards)))]

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def get(self, key: str) -> Optional[T]:
        shard = self._shard(key)
        with shard.lock:
            entry = shard.store.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del shard.store[key]
                return None
            return entry.value

    def set(self, key: str, value: T, ttl_sec: Optional[float] = None) -> None:
        ttl = self.default_ttl_sec if ttl_sec is None else float(ttl_sec)
        shard = self._shard(key)
        with shard.lock:
            shard.store[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.store)
        return total
