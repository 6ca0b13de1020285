from typing import Optional

from config.logger import get_logger
from services.fetcher import OriginFetcher
from services.origin import OriginLookup
from services.paths import PathResolver
from services.storage import StorageBackend
from utils.exceptions import StorageError
from utils.memory_cache import CacheProtocol

logger = get_logger(__name__)


class SizeCache:
    """Byte length per audio id, remembered forever once known"""

    def __init__(
        self,
        cache_client: CacheProtocol,
        storage: StorageBackend,
        resolver: PathResolver,
        origin: OriginLookup,
        fetcher: OriginFetcher,
    ):
        self.cache = cache_client
        self.storage = storage
        self.resolver = resolver
        self.origin = origin
        self.fetcher = fetcher

    @staticmethod
    def _cache_key(audio_id: str) -> str:
        return f"bytes_{audio_id}"

    def bytes(self, key: str, audio_id: str) -> Optional[int]:
        cache_key = self._cache_key(audio_id)
        cached = self.cache.get_key(cache_key)
        if cached and isinstance(cached.get("bytes"), int):
            return cached["bytes"]

        size = self._lookup(key, audio_id)
        if size is not None:
            self.cache.put_key(cache_key, {"bytes": size})
        return size

    def _lookup(self, key: str, audio_id: str) -> Optional[int]:
        path = self.resolver.canonical_path(audio_id)
        if self.storage.exists(path):
            try:
                return self.storage.size(path)
            except StorageError as e:
                logger.warning("Cached artifact size unavailable", path=path, error=str(e))

        item = self.origin.resolve(key, audio_id)
        if item is None:
            return None

        # optimized urls are probed directly, everything else goes through the proxy
        return self.fetcher.probe_size(item.source_url, use_proxy=not item.is_optimized)
