"""Shared fixtures and fake collaborators for the mp3 cache test suite."""

import io
import os
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
from botocore.exceptions import ClientError

from config.config import Config
from models.audio import AudioItem
from services.dependencies import Services, build_services
from utils.exceptions import TagWriteError
from utils.memory_cache import MemoryCache

AUDIO_BYTES = b"\xff\xfb\x90\x64" + bytes(range(256)) * 16
SOURCE_URL = "https://cdn.origin.test/audio/abc123.mp3"


class FakeOrigin:
    def __init__(self, items: Optional[Dict[str, AudioItem]] = None):
        self.items = items or {}
        self.calls: List[Tuple[str, str]] = []

    def resolve(self, key: str, audio_id: str) -> Optional[AudioItem]:
        self.calls.append((key, audio_id))
        return self.items.get(audio_id)


class FakeEncoder:
    def __init__(self, status: int = 0):
        self.status = status
        self.calls: List[Tuple[List[str], str, str]] = []

    def encode(self, profile: List[str], input_path: str, output_path: str) -> int:
        self.calls.append((profile, input_path, output_path))
        if self.status == 0:
            with open(input_path, "rb") as source, open(output_path, "wb") as target:
                target.write(b"CONVERTED" + source.read()[:64])
        else:
            # a failing encoder may still leave a partial file behind
            with open(output_path, "wb") as target:
                target.write(b"partial")
        return self.status


class RecordingTagWriter:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Tuple[str, str, str, str]] = []

    def write(self, path: str, title: str, artist: str, comment: str) -> None:
        self.calls.append((path, title, artist, comment))
        if self.fail:
            raise TagWriteError("tag writer is broken")


class OriginServer:
    """httpx MockTransport handler serving fixed bodies per url"""

    def __init__(self, bodies: Optional[Dict[str, bytes]] = None):
        self.bodies = bodies or {}
        self.requests: List[httpx.Request] = []
        self.fail_with: Optional[Exception] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with

        body = self.bodies.get(str(request.url))
        if body is None:
            return httpx.Response(404, request=request)

        headers = {"content-length": str(len(body)), "content-type": "audio/mpeg"}
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers, request=request)
        return httpx.Response(200, content=body, headers=headers, request=request)

    def count(self, method: str = "GET") -> int:
        return sum(1 for request in self.requests if request.method == method)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class FakeS3Client:
    """The subset of the boto3 s3 client the object storage uses"""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.extra_args: Dict[str, Dict[str, str]] = {}
        self.fail_uploads = False

    @staticmethod
    def _missing(operation: str) -> ClientError:
        return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, operation)

    def head_object(self, Bucket: str, Key: str) -> dict:
        if Key not in self.objects:
            raise self._missing("HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def get_object(self, Bucket: str, Key: str) -> dict:
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def upload_file(self, Filename: str, Bucket: str, Key: str, ExtraArgs=None) -> None:
        if self.fail_uploads:
            raise ClientError({"Error": {"Code": "500", "Message": "Boom"}}, "PutObject")
        with open(Filename, "rb") as f:
            self.objects[Key] = f.read()
        self.extra_args[Key] = dict(ExtraArgs or {})

    def head_bucket(self, Bucket: str) -> dict:
        return {}


@pytest.fixture
def audio_item() -> AudioItem:
    return AudioItem(artist="Daft Punk", title="Around the World", source_url=SOURCE_URL)


@pytest.fixture
def origin(audio_item) -> FakeOrigin:
    return FakeOrigin({"abc123": audio_item})


@pytest.fixture
def origin_server() -> OriginServer:
    return OriginServer({SOURCE_URL: AUDIO_BYTES})


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def tag_writer() -> RecordingTagWriter:
    return RecordingTagWriter()


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        _env_file=None,
        mp3_dir=str(tmp_path / "mp3"),
        links_dir=str(tmp_path / "links"),
        origin_url="https://origin.test",
        id3_comment="cached",
    )


@pytest.fixture
def object_config(tmp_path) -> Config:
    return Config(
        _env_file=None,
        mp3_dir=str(tmp_path / "mp3"),
        links_dir=str(tmp_path / "links"),
        origin_url="https://origin.test",
        aws_enabled=True,
        aws_bucket="music",
        aws_region="eu-west-1",
    )


@pytest.fixture
def make_services(origin, origin_server, encoder, tag_writer, s3_client):
    def _make(config: Config, **overrides) -> Services:
        options = {
            "origin": origin,
            "encoder": encoder,
            "tag_writer": tag_writer,
            "cache_client": MemoryCache(),
            "transport": origin_server.transport,
            "s3_client": s3_client,
        }
        options.update(overrides)
        return build_services(config, **options)

    return _make


@pytest.fixture
def services(config, make_services) -> Services:
    return make_services(config)


@pytest.fixture
def object_services(object_config, make_services) -> Services:
    return make_services(object_config)


def read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def list_files(root: str) -> List[str]:
    found = []
    for directory, _, files in os.walk(root):
        found.extend(os.path.join(directory, name) for name in files)
    return sorted(found)
