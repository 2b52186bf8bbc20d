import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Any


class TTLCache:
    """Small expiring map. Entries live for `ttl` seconds; when full the
    oldest entry goes first.

    Only used for data that other accounts own (destination flags and the
    like). Never put the acting account's sequence in here.
    """

    def __init__(self, ttl: float, maxsize: int = 512, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.ttl = ttl
        self.maxsize = maxsize
        self._clock = clock
        self._items: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        self._purge()
        return len(self._items)

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def _lookup(self, key: Hashable) -> Any:
        item = self._items.get(key)
        if item is None:
            return _MISSING
        expires, value = item
        if expires <= self._clock():
            del self._items[key]
            return _MISSING
        return value

    def _purge(self) -> None:
        now = self._clock()
        for key in [k for k, (expires, _) in self._items.items() if expires <= now]:
            del self._items[key]

    def get(self, key: Hashable, default: Any = None) -> Any:
        value = self._lookup(key)
        if value is _MISSING:
            self.misses += 1
            return default
        self.hits += 1
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._items.pop(key, None)
        if len(self._items) >= self.maxsize:
            self._purge()
        while len(self._items) >= self.maxsize:
            self._items.popitem(last=False)
        self._items[key] = (self._clock() + self.ttl, value)

    def invalidate(self, key: Hashable) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


_MISSING = object()
