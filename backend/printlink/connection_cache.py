"""
Connection Cache — reuse of HTTP sessions per (address, port, protocol).

The only shared mutable state in the layer. All access goes through one
lock; resources are closed outside it. Entries are dropped immediately
when the client sees a transport error for their key, and lazily when
they have been idle longer than idle_timeout.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional

log = logging.getLogger("printlink.cache")


@dataclass
class _Entry:
    resource: Any
    last_used: float


class ConnectionCache:

    def __init__(self, idle_timeout: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()

    def acquire(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        """Return the cached resource for key, creating it with factory if needed."""
        stale: Optional[Any] = None
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and now - entry.last_used > self.idle_timeout:
                stale = entry.resource
                entry = None
                del self._entries[key]
            if entry is None:
                entry = _Entry(resource=factory(), last_used=now)
                self._entries[key] = entry
                log.debug(f"[cache] opened session for {key}")
            else:
                entry.last_used = now
            resource = entry.resource
        if stale is not None:
            log.info(f"[cache] evicted idle session for {key}")
            _close(stale)
        return resource

    def invalidate(self, key: Hashable, resource: Any = None) -> bool:
        """
        Drop the entry for key. If resource is given, only drop it when it
        is still the cached one (a concurrent command may have replaced it).
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or (resource is not None and entry.resource is not resource):
                return False
            del self._entries[key]
        log.info(f"[cache] invalidated session for {key}")
        _close(entry.resource)
        return True

    def evict_idle(self) -> int:
        """Close every entry idle longer than idle_timeout. Returns how many."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now - e.last_used > self.idle_timeout]
            resources = [self._entries.pop(k).resource for k in expired]
        for resource in resources:
            _close(resource)
        if expired:
            log.info(f"[cache] evicted {len(expired)} idle session(s)")
        return len(expired)

    def clear(self):
        with self._lock:
            resources: List[Any] = [e.resource for e in self._entries.values()]
            self._entries.clear()
        for resource in resources:
            _close(resource)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _close(resource: Any):
    close = getattr(resource, "close", None)
    if close is None:
        return
    try:
        close()
    except OSError as e:
        log.debug(f"[cache] error closing {type(resource).__name__}: {e}")
