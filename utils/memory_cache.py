import copy
import threading
import time
from typing import Any, Dict, Optional, Protocol, Tuple


class CacheProtocol(Protocol):
    def get_key(self, key: str) -> Optional[dict]: ...
    def put_key(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool: ...
    def ping(self) -> bool: ...


class MemoryCache:
    """Process local stand-in for RedisCache when no redis url is configured"""

    def __init__(self):
        self._entries: Dict[str, Tuple[Dict[str, Any], Optional[float]]] = {}
        self._lock = threading.Lock()

    def get_key(self, key: str) -> Optional[dict]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return copy.deepcopy(value)

    def put_key(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        expires_at = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._entries[key] = (copy.deepcopy(value), expires_at)
        return True

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
