import hashlib
import shlex
from enum import Enum
from typing import Optional

from pydantic import BaseModel, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.exceptions import ConfigurationError


PROXY_METHODS = ("http", "https", "socks5", "socks5h")


class StorageLocation(Enum):
    LOCAL = "local"
    OBJECT = "object"


class PathsSettings(BaseModel):
    mp3: str
    links: str


class DownloadSettings(BaseModel):
    connect_timeout: float
    execution_timeout: float


class ProxySettings(BaseModel):
    enabled: bool
    host: str
    port: int
    method: str
    username: str = ""
    password: str = ""

    @property
    def url(self) -> str:
        credentials = ""
        if self.username and self.password:
            credentials = f"{self.username}:{self.password}@"
        return f"{self.method}://{credentials}{self.host}:{self.port}"


class ObjectStorageConfig(BaseModel):
    bucket_name: str
    region: str
    access_key_id: str = ""
    secret_access_key: str = ""
    endpoint_url: str = ""
    path_template: str = "mp3/{}"
    cdn_root_url: str = ""


class ServerSettings(BaseModel):
    host: str
    port: int
    debug: bool


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        validate_default=True,
        extra="ignore",
    )

    mp3_hash_algorithm: str = "md5"
    mp3_dir: str = "storage/mp3"
    links_dir: str = "storage/links"

    conversion_allowed: list[int] = [64, 128, 192]
    conversion_profiles: list[str] = ["-b:a 64k", "-b:a 128k", "-b:a 192k"]
    ffmpeg_path: str = "ffmpeg"

    download_connect_timeout: float = 5
    download_execution_timeout: float = 40

    proxy_enable: bool = False
    proxy_ip: str = ""
    proxy_port: int = 8080
    proxy_method: str = "http"
    proxy_username: str = ""
    proxy_password: str = ""

    # S3 compatible object storage for mp3 files
    aws_enabled: bool = False
    aws_bucket: str = ""
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_endpoint_url: str = ""
    aws_path_template: str = "mp3/{}"
    cdn_root_url: str = ""

    id3_comment: str = "Downloaded via mp3cache"

    origin_url: str = ""
    origin_timeout: float = 10

    # Redis for metadata and size caches, memory when empty
    redis_url: str = ""

    lock_per_id: bool = False

    port: int = 8000
    debug: bool = False
    host: str = "0.0.0.0"
    logs_dir: str = "logs"

    @computed_field
    @property
    def storage_location(self) -> StorageLocation:
        return StorageLocation.OBJECT if self.aws_enabled else StorageLocation.LOCAL

    @computed_field
    @property
    def paths(self) -> PathsSettings:
        return PathsSettings(mp3=self.mp3_dir, links=self.links_dir)

    @computed_field
    @property
    def download(self) -> DownloadSettings:
        return DownloadSettings(
            connect_timeout=self.download_connect_timeout,
            execution_timeout=self.download_execution_timeout,
        )

    @computed_field
    @property
    def proxy(self) -> ProxySettings:
        return ProxySettings(
            enabled=self.proxy_enable and bool(self.proxy_ip),
            host=self.proxy_ip,
            port=self.proxy_port,
            method=self.proxy_method,
            username=self.proxy_username,
            password=self.proxy_password,
        )

    @computed_field
    @property
    def object_storage(self) -> Optional[ObjectStorageConfig]:
        if not self.aws_enabled:
            return None
        return ObjectStorageConfig(
            bucket_name=self.aws_bucket,
            region=self.aws_region,
            access_key_id=self.aws_access_key_id,
            secret_access_key=self.aws_secret_access_key,
            endpoint_url=self.aws_endpoint_url,
            path_template=self.aws_path_template,
            cdn_root_url=self.cdn_root_url,
        )

    @computed_field
    @property
    def server(self) -> ServerSettings:
        return ServerSettings(host=self.host, port=self.port, debug=self.debug)

    @computed_field
    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)

    def encoder_profiles(self) -> dict[int, list[str]]:
        """Map each allowed bitrate to its encoder arguments"""
        return {
            bitrate: shlex.split(profile)
            for bitrate, profile in zip(self.conversion_allowed, self.conversion_profiles)
        }

    def validate_for_startup(self) -> None:
        errors = []

        if self.mp3_hash_algorithm not in hashlib.algorithms_available:
            errors.append(f"Unknown hash algorithm: {self.mp3_hash_algorithm}")

        if len(self.conversion_allowed) != len(self.conversion_profiles):
            errors.append("CONVERSION_ALLOWED and CONVERSION_PROFILES must have the same length")

        if any(bitrate <= 0 for bitrate in self.conversion_allowed):
            errors.append("CONVERSION_ALLOWED must only contain positive bitrates")

        if self.aws_enabled:
            if not self.aws_bucket:
                errors.append("AWS_BUCKET is required when AWS_ENABLED is set")
            if "{}" not in self.aws_path_template:
                errors.append("AWS_PATH_TEMPLATE must contain a {} placeholder")

        if self.proxy_enable and not self.proxy_ip:
            errors.append("PROXY_IP is required when PROXY_ENABLE is set")

        if self.proxy_enable and self.proxy_method not in PROXY_METHODS:
            errors.append(f"PROXY_METHOD must be one of {', '.join(PROXY_METHODS)}")

        if errors:
            raise ConfigurationError(f"Configuration errors: {'; '.join(errors)}")
