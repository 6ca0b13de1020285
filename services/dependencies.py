from typing import Any, Optional, Union

import httpx
from fastapi import Depends, Request

from config.config import Config
from config.logger import get_logger
from services.coordinator import CacheCoordinator
from services.fetcher import OriginFetcher
from services.links import LinkPublisher
from services.origin import AudioMetadataCache, HttpOriginLookup, OriginLookup
from services.paths import PathResolver
from services.size_cache import SizeCache
from services.storage import StorageBackend, get_storage_backend
from services.tags import Id3TagWriter, TagWriter
from services.transcoder import Encoder, FfmpegEncoder, Transcoder
from utils.locks import KeyedLock, NoLock
from utils.memory_cache import MemoryCache
from utils.redis_cache import RedisCache

logger = get_logger(__name__)


class Services:
    def __init__(
        self,
        config: Config,
        cache_client: Union[RedisCache, MemoryCache],
        storage: StorageBackend,
        fetcher: OriginFetcher,
        origin: OriginLookup,
        coordinator: CacheCoordinator,
    ):
        self.config = config
        self.cache_client = cache_client
        self.storage = storage
        self.fetcher = fetcher
        self.origin = origin
        self.coordinator = coordinator

    def close(self):
        """Close all services"""
        self.fetcher.close()
        if isinstance(self.origin, HttpOriginLookup):
            self.origin.close()
        self.cache_client.close()
        self.storage.close()


def create_cache_client(config: Config) -> Union[RedisCache, MemoryCache]:
    if config.redis_enabled:
        logger.info("Using redis for metadata and size caches")
        return RedisCache(config.redis_url)
    logger.warning("Redis not configured - caches are process local")
    return MemoryCache()


def build_services(
    config: Config,
    storage: Optional[StorageBackend] = None,
    origin: Optional[OriginLookup] = None,
    encoder: Optional[Encoder] = None,
    tag_writer: Optional[TagWriter] = None,
    cache_client: Optional[Union[RedisCache, MemoryCache]] = None,
    transport: Optional[httpx.BaseTransport] = None,
    s3_client: Any = None,
) -> Services:
    """Construct every component once; arguments replace the configured collaborators"""
    if cache_client is None:
        cache_client = create_cache_client(config)

    if storage is None:
        storage = get_storage_backend(config, client=s3_client)

    object_storage = config.object_storage
    resolver = PathResolver(
        config.mp3_hash_algorithm,
        config.paths.mp3,
        object_key_template=object_storage.path_template if object_storage else None,
    )

    metadata_cache = AudioMetadataCache(cache_client)
    if origin is None:
        origin = HttpOriginLookup(
            config.origin_url,
            metadata_cache=metadata_cache,
            timeout=config.origin_timeout,
            transport=transport,
        )

    fetcher = OriginFetcher(storage, config.download, proxy=config.proxy, transport=transport)
    transcoder = Transcoder(
        storage,
        encoder or FfmpegEncoder(config.ffmpeg_path),
        config.encoder_profiles(),
    )
    size_cache = SizeCache(cache_client, storage, resolver, origin, fetcher)

    coordinator = CacheCoordinator(
        storage=storage,
        resolver=resolver,
        fetcher=fetcher,
        transcoder=transcoder,
        links=LinkPublisher(config.paths.links),
        origin=origin,
        tag_writer=tag_writer or Id3TagWriter(),
        size_cache=size_cache,
        metadata_cache=metadata_cache,
        tag_comment=config.id3_comment,
        locks=KeyedLock() if config.lock_per_id else NoLock(),
    )

    logger.info(
        "Services initialized",
        storage=storage.location.value,
        proxy=config.proxy.enabled,
        per_id_locking=config.lock_per_id,
    )
    return Services(config, cache_client, storage, fetcher, origin, coordinator)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_coordinator(request: Request) -> CacheCoordinator:
    return get_services(request).coordinator


ServicesDep = Depends(get_services)
CoordinatorDep = Depends(get_coordinator)
