import time
from typing import Callable, Optional

import httpx

from config.config import DownloadSettings, ProxySettings
from config.logger import get_logger
from services.storage import DeliveryMetadata, StorageBackend
from utils.exceptions import StorageError, TransportError

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


def _failure_code(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return str(error.response.status_code)
    return type(error).__name__


class OriginFetcher:
    """Download origin urls into storage write handles.

    Connect timeout bounds connection setup, execution timeout bounds the
    whole transfer. The proxy client is only used when the caller asks for it
    and a proxy is configured.
    """

    def __init__(
        self,
        storage: StorageBackend,
        download: DownloadSettings,
        proxy: Optional[ProxySettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.storage = storage
        self.connect_timeout = download.connect_timeout
        self.execution_timeout = download.execution_timeout
        self.proxy = proxy if proxy and proxy.enabled else None
        self._transport = transport
        self._direct_client: Optional[httpx.Client] = None
        self._proxy_client: Optional[httpx.Client] = None

    def _build_client(self, proxy_url: Optional[str]) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.execution_timeout, connect=self.connect_timeout),
            follow_redirects=True,
            proxy=proxy_url,
            transport=self._transport,
        )

    def client_for(self, use_proxy: bool) -> httpx.Client:
        if use_proxy and self.proxy is not None:
            if self._proxy_client is None:
                self._proxy_client = self._build_client(self.proxy.url)
            return self._proxy_client

        if self._direct_client is None:
            self._direct_client = self._build_client(None)
        return self._direct_client

    def uses_proxy(self, use_proxy: bool) -> bool:
        return use_proxy and self.proxy is not None

    def fetch(
        self,
        url: str,
        path: str,
        use_proxy: bool = True,
        metadata: Optional[DeliveryMetadata] = None,
        on_downloaded: Optional[Callable[[str], None]] = None,
    ) -> bool:
        """Download ``url`` to storage ``path``; True only when the artifact was committed.

        ``on_downloaded`` receives the local staging file after the body has
        been fully received and before it becomes visible at ``path``.
        """
        try:
            handle = self.storage.open_write(path, metadata)
        except (StorageError, OSError) as e:
            logger.error("Download.Fail", url=url, path=path, code="storage", error=str(e))
            return False

        client = self.client_for(use_proxy)
        started = time.monotonic()
        received = 0

        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    received += handle.write(chunk)
                    if time.monotonic() - started > self.execution_timeout:
                        raise TransportError(
                            f"Download exceeded {self.execution_timeout}s", url=url
                        )

            if on_downloaded is not None:
                on_downloaded(handle.local_path)
            handle.commit()
        except (httpx.HTTPError, TransportError, StorageError, OSError) as e:
            handle.abort()
            logger.error(
                "Download.Fail",
                url=url,
                path=path,
                code=_failure_code(e),
                error=str(e),
                proxy=self.uses_proxy(use_proxy),
            )
            return False
        except BaseException:
            handle.abort()
            raise

        logger.info(
            "Download.Success",
            path=path,
            bytes=received,
            seconds=round(time.monotonic() - started, 3),
            proxy=self.uses_proxy(use_proxy),
        )
        return True

    def probe_size(self, url: str, use_proxy: bool = True) -> Optional[int]:
        """Read Content-Length with a HEAD request, no body is transferred"""
        client = self.client_for(use_proxy)
        try:
            response = client.head(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Probe.Fail", url=url, code=_failure_code(e), error=str(e))
            return None

        length = response.headers.get("content-length")
        if length is None or not length.isdigit():
            logger.warning("Probe returned no content length", url=url)
            return None
        return int(length)

    def close(self) -> None:
        for client in (self._direct_client, self._proxy_client):
            if client is not None:
                client.close()
        self._direct_client = None
        self._proxy_client = None
