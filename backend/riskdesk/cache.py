from __future__ import annotations

import time
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar


V = TypeVar("V")


class TTLCache(Generic[V]):
    """In-process cache with a default TTL and optional per-entry overrides.

    Entries are stored as ``(expires_at, value)``; every write is a single
    dict assignment, so concurrent coroutines never see a torn entry.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl_seconds
        self._clock = clock
        self._data: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    def set(self, key: str, value: V, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl if ttl_seconds is None else ttl_seconds
        self._data[key] = (self._clock() + ttl, value)

    def pop(self, key: str) -> Optional[V]:
        entry = self._data.pop(key, None)
        return entry[1] if entry else None

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: Any) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._data)
