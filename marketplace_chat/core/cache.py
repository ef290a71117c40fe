"""
Read-through query cache

Holds disposable copies of backend reads keyed by query parameters, e.g.
("conversations", "admin", "adm_1") or ("messages", "c_42"). After a
successful mutation callers invalidate a key prefix; entries are never
edited in place. Concurrent reads of the same key share one request.

Each key carries a version that ``invalidate`` bumps. A fetch remembers the
version it started under: if the key was invalidated meanwhile its result is
stored stale, and later readers start a new request instead of joining it.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[Any, ...]


@dataclass
class CacheEntry:
    value: Any
    version: int = 0
    fetched_at: float = field(default_factory=time.monotonic)
    stale: bool = False


@dataclass
class _Inflight:
    future: asyncio.Future
    version: int


class QueryCache:
    """Keyed cache of backend reads with prefix invalidation."""

    def __init__(self):
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, _Inflight] = {}
        self._versions: Dict[CacheKey, int] = {}
        self._listeners: List[Callable[[CacheKey], None]] = []

    def peek(self, key: CacheKey) -> Optional[Any]:
        """Last good value for ``key`` (stale or not), without fetching."""
        entry = self._entries.get(key)
        return entry.value if entry else None

    def is_fresh(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.stale

    def version(self, key: CacheKey) -> int:
        return self._versions.get(key, 0)

    async def get(self, key: CacheKey, fetcher: Callable[[], Awaitable[Any]], force: bool = False) -> Any:
        """
        Return the cached value for ``key``, fetching when missing, stale or forced.

        A forced read still shares a request started under the current
        version, never one that predates the last invalidation.
        A failed fetch raises and leaves the previous entry untouched.
        """
        if not force and self.is_fresh(key):
            return self._entries[key].value

        pending = self._inflight.get(key)
        if pending is not None and pending.version == self.version(key):
            try:
                return await asyncio.shield(pending.future)
            except asyncio.CancelledError:
                if not pending.future.cancelled():
                    raise
                # The request we joined was torn down with its owner; fetch ourselves

        version = self.version(key)
        inflight = _Inflight(asyncio.get_running_loop().create_future(), version)
        self._inflight[key] = inflight
        future = inflight.future
        try:
            value = await fetcher()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Only joined readers see this; mark it retrieved for the others
            future.exception()
            raise
        else:
            self._store(key, value, version)
            future.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is inflight:
                del self._inflight[key]

    def _store(self, key: CacheKey, value: Any, version: int):
        current = self._entries.get(key)
        if current is not None and current.version > version:
            logger.debug(f"Discarding fetch of {key} older than the cached entry")
            return
        stale = version < self.version(key)
        if stale:
            logger.debug(f"Fetch of {key} predates an invalidation, storing it stale")
        self._entries[key] = CacheEntry(value=value, version=version, stale=stale)

    def invalidate(self, *prefix: Any) -> List[CacheKey]:
        """Mark every key starting with ``prefix`` stale and notify listeners."""
        n = len(prefix)
        keys = [k for k in self._entries if k[:n] == prefix]
        keys += [k for k in self._inflight if k[:n] == prefix and k not in self._entries]
        for key in keys:
            self._versions[key] = self.version(key) + 1
            if key in self._entries:
                self._entries[key].stale = True
        for key in keys:
            for listener in list(self._listeners):
                try:
                    listener(key)
                except Exception as e:
                    logger.error(f"Cache listener failed for {key}: {e}")
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache key(s) under {prefix}")
        return keys

    def subscribe(self, listener: Callable[[CacheKey], None]):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[CacheKey], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self):
        self._entries.clear()
