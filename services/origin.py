from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from config.logger import get_logger
from models.audio import AudioItem
from utils.memory_cache import CacheProtocol

logger = get_logger(__name__)


class OriginLookup(Protocol):
    def resolve(self, key: str, audio_id: str) -> Optional[AudioItem]: ...


class AudioMetadataCache:
    """Per-id audio metadata, filled by origin lookups and read on cache hits"""

    def __init__(self, cache_client: CacheProtocol, ttl: Optional[int] = None):
        self.cache = cache_client
        self.ttl = ttl

    @staticmethod
    def _cache_key(audio_id: str) -> str:
        return f"audio:{audio_id}"

    def get(self, audio_id: str) -> Optional[AudioItem]:
        data = self.cache.get_key(self._cache_key(audio_id))
        if not data:
            return None

        item = AudioItem.from_dict(data)
        if item is None:
            logger.warning("Invalid audio metadata in cache", audio_id=audio_id)
        return item

    def put(self, audio_id: str, item: AudioItem) -> None:
        self.cache.put_key(self._cache_key(audio_id), item.to_dict(), ttl=self.ttl)


class HttpOriginLookup:
    """Resolve (key, id) pairs through the origin service's json endpoint.

    ``GET <base_url>/audio/<key>/<id>`` answers with
    ``{"artist", "title", "mp3", "optimized"}`` or 404.
    """

    def __init__(
        self,
        base_url: str,
        metadata_cache: Optional[AudioMetadataCache] = None,
        timeout: float = 10,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.metadata_cache = metadata_cache
        self.client = httpx.Client(timeout=timeout, follow_redirects=True, transport=transport)

    def resolve(self, key: str, audio_id: str) -> Optional[AudioItem]:
        url = f"{self.base_url}/audio/{quote(key, safe='')}/{quote(audio_id, safe='')}"
        try:
            response = self.client.get(url)
        except httpx.HTTPError as e:
            logger.error("Origin lookup failed", key=key, audio_id=audio_id, error=str(e))
            return None

        if response.status_code == 404:
            logger.info("Origin has no such audio", key=key, audio_id=audio_id)
            return None

        try:
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPStatusError, ValueError) as e:
            logger.error("Invalid origin response", key=key, audio_id=audio_id, error=str(e))
            return None

        item = AudioItem.from_dict(data) if isinstance(data, dict) else None
        if item is None:
            logger.error("Origin response missing fields", key=key, audio_id=audio_id)
            return None

        if self.metadata_cache is not None:
            self.metadata_cache.put(audio_id, item)
        return item

    def close(self) -> None:
        self.client.close()
