from typing import Optional, Tuple, Union

from config.logger import get_logger
from models.audio import AudioItem, AudioRef, format_bitrate_name
from models.delivery import Delivery
from services.fetcher import OriginFetcher
from services.links import LinkPublisher
from services.origin import AudioMetadataCache, OriginLookup
from services.paths import ArtifactPaths, PathResolver
from services.size_cache import SizeCache
from services.storage import DeliveryMetadata, StorageBackend
from services.tags import TagWriter
from services.transcoder import Transcoder
from utils.exceptions import DeliveryConstructionError
from utils.locks import KeyedLock, NoLock

logger = get_logger(__name__)


class CacheCoordinator:
    """Answer download, stream and size requests for (key, id) pairs.

    For every request the coordinator decides between a remote cache hit, a
    cached base artifact (converted on demand) and a miss that fetches from
    the origin, then builds the delivery target. Failures come back as
    ``Delivery`` error kinds, never as exceptions.
    """

    def __init__(
        self,
        storage: StorageBackend,
        resolver: PathResolver,
        fetcher: OriginFetcher,
        transcoder: Transcoder,
        links: LinkPublisher,
        origin: OriginLookup,
        tag_writer: TagWriter,
        size_cache: SizeCache,
        metadata_cache: Optional[AudioMetadataCache] = None,
        tag_comment: str = "",
        locks: Optional[Union[KeyedLock, NoLock]] = None,
        stream_prefix: str = "mp3",
    ):
        self.storage = storage
        self.resolver = resolver
        self.fetcher = fetcher
        self.transcoder = transcoder
        self.links = links
        self.origin = origin
        self.tag_writer = tag_writer
        self.size_cache = size_cache
        self.metadata_cache = metadata_cache
        self.tag_comment = tag_comment
        self.locks = locks or NoLock()
        self.stream_prefix = stream_prefix

    def bytes(self, key: str, audio_id: str) -> Optional[int]:
        logger.info("Bytes", key=key, audio_id=audio_id)
        return self.size_cache.bytes(key, audio_id)

    def stream(self, key: str, audio_id: str) -> Delivery:
        return self.download(key, audio_id, stream=True)

    def bitrate_download(self, key: str, audio_id: str, bitrate: int) -> Delivery:
        return self.download(key, audio_id, bitrate=bitrate)

    def download(
        self, key: str, audio_id: str, stream: bool = False, bitrate: int = -1
    ) -> Delivery:
        if not self.transcoder.allows(bitrate):
            bitrate = -1

        ref = AudioRef(key=key, id=audio_id)
        paths = self.resolver.resolve(audio_id)

        with self.locks.hold(audio_id):
            return self._serve(ref, paths, stream, bitrate)

    def _serve(self, ref: AudioRef, paths: ArtifactPaths, stream: bool, bitrate: int) -> Delivery:
        requested = paths.with_bitrate(bitrate)
        if self.storage.remote and self.storage.exists(requested.path):
            logger.info("S3.Cache", path=requested.path, bitrate=bitrate)
            return Delivery.remote(self.storage.public_url(requested.file_name), cached=True)

        if self.storage.exists(paths.path):
            return self._serve_cached(ref, paths, stream, bitrate)

        return self._serve_miss(ref, paths, stream, bitrate)

    def _serve_cached(
        self, ref: AudioRef, paths: ArtifactPaths, stream: bool, bitrate: int
    ) -> Delivery:
        item = self.metadata_cache.get(ref.id) if self.metadata_cache else None
        if item is None:
            item = self.origin.resolve(ref.key, ref.id)
        name = item.display_name() if item is not None else f"{ref.id}.mp3"

        paths, name = self._try_convert(bitrate, paths, name)
        return self._deliver(ref, paths, name, stream, cached=True)

    def _serve_miss(
        self, ref: AudioRef, paths: ArtifactPaths, stream: bool, bitrate: int
    ) -> Delivery:
        item = self.origin.resolve(ref.key, ref.id)
        if item is None:
            logger.info("Audio not found at origin", key=ref.key, audio_id=ref.id)
            return Delivery.not_found()

        name = item.display_name()
        fetched = self.fetcher.fetch(
            item.source_url,
            paths.path,
            use_proxy=not item.is_optimized,
            metadata=DeliveryMetadata(download_name=name),
            on_downloaded=lambda local_path: self._write_tags(item, local_path),
        )
        if not fetched:
            return Delivery.not_found("Couldn't download audio")

        paths, name = self._try_convert(bitrate, paths, name)
        return self._deliver(ref, paths, name, stream, cached=False)

    def _try_convert(
        self, bitrate: int, paths: ArtifactPaths, name: str
    ) -> Tuple[ArtifactPaths, str]:
        if bitrate <= 0:
            return paths, name

        result = self.transcoder.convert(bitrate, paths, DeliveryMetadata(download_name=name))
        if not result.converted:
            logger.warning("Conversion skipped", name=name, bitrate=bitrate, reason=result.reason)
            return paths, name

        logger.info("Convert", name=name, bitrate=bitrate, reused=result.reused)
        return result.paths, format_bitrate_name(name, bitrate)

    def _deliver(
        self, ref: AudioRef, paths: ArtifactPaths, name: str, stream: bool, cached: bool
    ) -> Delivery:
        """Object storage answers streams with the public url too, /mp3 is only mounted locally"""
        if self.storage.remote:
            return Delivery.remote(self.storage.public_url(paths.file_name), cached=cached)

        if stream:
            logger.info("Stream", cached=cached, key=ref.key, audio_id=ref.id)
            return Delivery.stream(f"{self.stream_prefix}/{paths.file_name}", cached=cached)

        logger.info("Download", cached=cached, key=ref.key, audio_id=ref.id)
        try:
            location = self.links.publish(paths.local_path, name)
        except DeliveryConstructionError as e:
            return Delivery.internal_error(str(e))
        return Delivery.link(location, cached=cached)

    def _write_tags(self, item: AudioItem, local_path: str) -> None:
        try:
            self.tag_writer.write(local_path, item.title, item.artist, self.tag_comment)
        except Exception as e:
            logger.error(
                "Exception while writing id3 tags",
                artist=item.artist,
                title=item.title,
                path=local_path,
                error=str(e),
                exc_info=True,
            )
