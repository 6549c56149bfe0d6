"""带 TTL 的内存缓存。

过期在读取时惰性判断，不启动清理线程；写入总是整体替换条目。
"""

from __future__ import annotations

import threading
import time
import weakref
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return (now - self.inserted_at) > self.ttl


class TTLCache(Generic[V]):
    """线程安全的 TTL 缓存，附带按 key 的刷新锁。"""

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}
        # 刷新锁只在有请求持有时存在，不随 key 数量增长
        self._key_locks: "weakref.WeakValueDictionary[Hashable, threading.Lock]" = weakref.WeakValueDictionary()
        self._lock = threading.RLock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def get_entry(self, key: Hashable) -> Optional[CacheEntry[V]]:
        """返回未过期的条目，过期条目在此处移除。"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                self._entries.pop(key, None)
                return None
            return entry

    def set(self, key: Hashable, value: V, ttl: Optional[float] = None) -> CacheEntry[V]:
        entry = CacheEntry(value=value, inserted_at=self._clock(), ttl=self._ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = entry
        return entry

    def key_lock(self, key: Hashable) -> threading.Lock:
        """同一 key 的刷新串行化，不同 key 互不阻塞。

        调用方持有返回的锁对象期间，同一 key 总是得到同一把锁。
        """
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for entry in self._entries.values() if not entry.is_expired(now))


__all__ = ["CacheEntry", "TTLCache"]
