import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from config.config import Config, ObjectStorageConfig, StorageLocation
from config.logger import get_logger
from utils.exceptions import StorageError, StorageNotFoundError

logger = get_logger(__name__)

MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class DeliveryMetadata:
    """Attributes attached to uploaded objects so the bucket can serve them directly"""

    download_name: str
    content_type: str = "audio/mpeg"
    acl: str = "public-read"
    storage_class: str = "STANDARD_IA"

    def to_extra_args(self) -> Dict[str, str]:
        return {
            "ACL": self.acl,
            "ContentType": self.content_type,
            "ContentDisposition": f'attachment; filename="{self.download_name}"',
            "StorageClass": self.storage_class,
        }


class WriteHandle(ABC):
    """Staged write: bytes become visible at ``path`` only after ``commit``"""

    def __init__(self, path: str, staging_dir: Optional[str] = None):
        self.path = path
        if staging_dir:
            os.makedirs(staging_dir, exist_ok=True)
        fd, self.local_path = tempfile.mkstemp(suffix=".part", dir=staging_dir)
        self._file = os.fdopen(fd, "wb")
        self.closed = False

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def commit(self) -> None:
        if self.closed:
            raise StorageError(f"Write handle for {self.path} is already closed")
        self._file.close()
        self.closed = True
        try:
            self._publish()
        finally:
            self._discard_staging()

    def abort(self) -> None:
        if self.closed:
            return
        self._file.close()
        self.closed = True
        self._discard_staging()

    def _discard_staging(self) -> None:
        try:
            os.unlink(self.local_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove staging file", path=self.local_path, error=str(e))

    @abstractmethod
    def _publish(self) -> None: ...

    def __enter__(self) -> "WriteHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        elif not self.closed:
            self.commit()


class LocalWriteHandle(WriteHandle):
    def __init__(self, path: str):
        # staging next to the target keeps os.replace atomic
        super().__init__(path, staging_dir=os.path.dirname(path) or ".")

    def _publish(self) -> None:
        try:
            os.replace(self.local_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to move {self.local_path} to {self.path}: {e}") from e


class ObjectWriteHandle(WriteHandle):
    def __init__(self, storage: "ObjectStorage", key: str, metadata: Optional[DeliveryMetadata]):
        super().__init__(key, staging_dir=storage.staging_dir)
        self.storage = storage
        self.metadata = metadata

    def _publish(self) -> None:
        self.storage.upload_file(self.local_path, self.path, self.metadata)


class StorageBackend(ABC):
    location: StorageLocation
    remote: bool = False

    @abstractmethod
    def exists(self, path: str) -> bool: ...

    @abstractmethod
    def size(self, path: str) -> int: ...

    @abstractmethod
    def open_read(self, path: str) -> BinaryIO: ...

    @abstractmethod
    def open_write(self, path: str, metadata: Optional[DeliveryMetadata] = None) -> WriteHandle: ...

    @abstractmethod
    def public_url(self, name: str) -> str: ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        logger.debug("Storage closed", location=self.location.value)


class LocalStorage(StorageBackend):
    location = StorageLocation.LOCAL
    remote = False

    def __init__(self, root: str):
        self.root = root
        os.makedirs(self.root, exist_ok=True)
        logger.info("Local storage initialized", root=self.root)

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def size(self, path: str) -> int:
        try:
            return os.path.getsize(path)
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"No such file: {path}") from e

    def open_read(self, path: str) -> BinaryIO:
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"No such file: {path}") from e

    def open_write(self, path: str, metadata: Optional[DeliveryMetadata] = None) -> WriteHandle:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        return LocalWriteHandle(path)

    def public_url(self, name: str) -> str:
        raise StorageError("Local storage has no public url, publish a link instead")

    def ping(self) -> bool:
        return os.path.isdir(self.root) and os.access(self.root, os.W_OK)


class ObjectStorage(StorageBackend):
    location = StorageLocation.OBJECT
    remote = True

    def __init__(
        self,
        config: ObjectStorageConfig,
        client: Any = None,
        staging_dir: Optional[str] = None,
    ):
        self.bucket_name = config.bucket_name
        self.region = config.region
        self.path_template = config.path_template
        self.cdn_root_url = config.cdn_root_url
        self.staging_dir = staging_dir

        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=config.endpoint_url or None,
                aws_access_key_id=config.access_key_id or None,
                aws_secret_access_key=config.secret_access_key or None,
                region_name=config.region,
            )
        self.client = client
        logger.info("Object storage initialized", bucket=self.bucket_name, region=self.region)

    def exists(self, path: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=path)
            return True
        except ClientError:
            return False
        except (BotoCoreError, NoCredentialsError) as e:
            logger.error("Object storage head error", key=path, error=str(e))
            return False

    def size(self, path: str) -> int:
        try:
            response = self.client.head_object(Bucket=self.bucket_name, Key=path)
        except ClientError as e:
            raise StorageNotFoundError(f"No such object: {path}") from e
        except (BotoCoreError, NoCredentialsError) as e:
            raise StorageError(f"Failed to read size of {path}: {e}") from e
        return int(response["ContentLength"])

    def open_read(self, path: str) -> BinaryIO:
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=path)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in MISSING_OBJECT_CODES:
                raise StorageNotFoundError(f"No such object: {path}") from e
            raise StorageError(f"Failed to read {path}: {e}") from e
        except (BotoCoreError, NoCredentialsError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e
        return response["Body"]

    def open_write(self, path: str, metadata: Optional[DeliveryMetadata] = None) -> WriteHandle:
        return ObjectWriteHandle(self, path, metadata)

    def upload_file(
        self, file_path: str, key: str, metadata: Optional[DeliveryMetadata] = None
    ) -> None:
        extra_args = metadata.to_extra_args() if metadata else {"ContentType": "audio/mpeg"}
        try:
            self.client.upload_file(file_path, self.bucket_name, key, ExtraArgs=extra_args)
            logger.info("Uploaded to object storage", file_path=file_path, key=key)
        except (NoCredentialsError, ClientError, BotoCoreError, OSError) as e:
            logger.error("Object storage upload error", key=key, error=str(e))
            raise StorageError(f"Failed to upload {key}: {e}") from e

    def public_url(self, name: str) -> str:
        if self.cdn_root_url:
            return f"{self.cdn_root_url}{name}"

        key = self.path_template.format(name)
        return f"https://s3-{self.region}.amazonaws.com/{self.bucket_name}/{key}"

    def ping(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
            return True
        except (ClientError, BotoCoreError, NoCredentialsError) as e:
            logger.error("Object storage ping failed", bucket=self.bucket_name, error=str(e))
            return False


def get_storage_backend(config: Config, client: Any = None) -> StorageBackend:
    """create the storage backend selected by configuration"""
    object_storage = config.object_storage
    if object_storage is not None:
        return ObjectStorage(object_storage, client=client, staging_dir=config.paths.mp3)
    return LocalStorage(config.paths.mp3)
