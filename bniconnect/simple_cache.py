import time
import threading


class SimpleCache:
    """
    In-memory keyed cache with:
    - per-entry TTL (default ttl_seconds)
    - invalidation tags: every mutation path invalidates the tags it affects,
      synchronously, before returning to its caller
    - thread-safe operations
    """

    def __init__(self, ttl_seconds: float = 10.0):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # key -> {"value": object, "expires_at": float}
        self._items: dict[str, dict[str, object]] = {}
        # tag -> keys
        self._tags: dict[str, set[str]] = {}

    def get(self, key: str):
        now = time.time()
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            if float(item["expires_at"]) <= now:
                self._drop_unlocked(key)
                return None
            return item["value"]

    def set(self, key: str, value, ttl: float | None = None, tags: tuple[str, ...] = ()) -> None:
        ttl = self.ttl_seconds if ttl is None else ttl
        with self._lock:
            self._items[key] = {"value": value, "expires_at": time.time() + ttl}
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def invalidate(self, tag: str) -> int:
        with self._lock:
            keys = self._tags.pop(tag, set())
            removed = 0
            for k in keys:
                if k in self._items:
                    self._drop_unlocked(k)
                    removed += 1
            return removed

    def _drop_unlocked(self, key: str) -> None:
        self._items.pop(key, None)
        for keys in self._tags.values():
            keys.discard(key)
