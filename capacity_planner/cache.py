from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


def calculation_key(scenario_id: str, org_scope: Optional[str] = None) -> str:
    key = f"scenario:{scenario_id}:calculations"
    if org_scope:
        key += f":org:{org_scope}"
    return key


def scenario_prefix(scenario_id: str) -> str:
    return f"scenario:{scenario_id}:"


class MemoryCache:
    """Dict-backed TTL cache. Values are deep-copied in and out."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[object, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[object]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires = entry
            if self._clock() >= expires:
                self._entries.pop(key, None)
                return None
            return copy.deepcopy(value)

    def setex(self, key: str, ttl_seconds: float, value: object) -> None:
        with self._lock:
            self._entries[key] = (copy.deepcopy(value), self._clock() + ttl_seconds)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("cache: dropped %d key(s) under %s", len(doomed), prefix)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
