import os
import threading

import httpx

from models.audio import AudioItem
from models.delivery import DeliveryKind
from services.tags import Id3TagWriter, strip_tags
from tests.conftest import (
    AUDIO_BYTES,
    FakeEncoder,
    FakeOrigin,
    RecordingTagWriter,
    list_files,
    read_file,
)
from utils.locks import KeyedLock, NoLock

DISPLAY_NAME = "Daft Punk - Around the World.mp3"


def base_paths(services, audio_id="abc123"):
    return services.coordinator.resolver.resolve(audio_id)


def test_cold_download_fetches_once_and_publishes_link(services, config, origin_server):
    delivery = services.coordinator.download("k", "abc123")

    paths = base_paths(services)
    stem = paths.file_name[: -len(".mp3")]
    assert delivery.kind is DeliveryKind.LINK
    assert not delivery.cached
    assert delivery.location == f"links/{stem}/{DISPLAY_NAME}"
    assert read_file(paths.local_path) == AUDIO_BYTES
    assert origin_server.count("GET") == 1

    link_path = os.path.join(config.links_dir, stem, DISPLAY_NAME)
    assert os.path.islink(link_path)
    assert os.path.realpath(link_path) == os.path.realpath(paths.local_path)


def test_tags_are_written_once_before_the_artifact_is_published(services, tag_writer):
    services.coordinator.download("k", "abc123")
    services.coordinator.download("k", "abc123")

    assert len(tag_writer.calls) == 1
    staged_path, title, artist, comment = tag_writer.calls[0]
    assert staged_path.endswith(".part")
    assert (title, artist, comment) == ("Around the World", "Daft Punk", "cached")


def test_second_request_is_served_from_cache(services, origin_server):
    first = services.coordinator.download("k", "abc123")
    second = services.coordinator.download("k", "abc123")

    assert second.kind is DeliveryKind.LINK
    assert second.cached
    assert second.location == first.location
    assert origin_server.count("GET") == 1


def test_cached_hit_without_metadata_falls_back_to_id_name(config, make_services):
    services = make_services(config)
    services.coordinator.download("k", "abc123")

    forgetful = make_services(config, origin=FakeOrigin())
    delivery = forgetful.coordinator.download("k", "abc123")

    assert delivery.kind is DeliveryKind.LINK
    assert delivery.cached
    assert delivery.location.endswith("/abc123.mp3")


def test_cached_hit_prefers_metadata_cache_over_origin(services, origin, audio_item):
    services.coordinator.metadata_cache.put("abc123", audio_item)
    services.coordinator.download("k", "abc123")
    origin.calls.clear()

    services.coordinator.download("k", "abc123")

    assert origin.calls == []


def test_unknown_id_is_not_found_without_fetching(services, origin_server):
    delivery = services.coordinator.download("k", "missing")

    assert delivery.kind is DeliveryKind.NOT_FOUND
    assert delivery.message == "Audio not found"
    assert origin_server.requests == []


def test_transport_error_leaves_no_artifact(services, config, origin_server, tag_writer):
    origin_server.fail_with = httpx.ConnectError("connection refused")

    delivery = services.coordinator.download("k", "abc123")

    assert delivery.kind is DeliveryKind.NOT_FOUND
    assert delivery.message == "Couldn't download audio"
    assert list_files(config.mp3_dir) == []
    assert tag_writer.calls == []


def test_origin_url_returning_404_is_not_found(config, make_services):
    broken = FakeOrigin(
        {"abc123": AudioItem(artist="A", title="B", source_url="https://cdn.origin.test/gone.mp3")}
    )
    services = make_services(config, origin=broken)

    delivery = services.coordinator.download("k", "abc123")

    assert delivery.kind is DeliveryKind.NOT_FOUND
    assert not os.path.exists(base_paths(services).local_path)


def test_stream_returns_relative_storage_path(services):
    delivery = services.coordinator.stream("k", "abc123")

    assert delivery.kind is DeliveryKind.STREAM
    assert delivery.location == f"mp3/{base_paths(services).file_name}"


def test_bitrate_download_converts_once_and_reuses_variant(services, encoder):
    first = services.coordinator.bitrate_download("k", "abc123", 128)
    second = services.coordinator.bitrate_download("k", "abc123", 128)

    variant = base_paths(services).with_bitrate(128)
    stem = variant.file_name[: -len(".mp3")]
    assert first.kind is DeliveryKind.LINK
    assert first.location == f"links/{stem}/Daft Punk - Around the World (128).mp3"
    assert second.location == first.location
    assert len(encoder.calls) == 1
    assert read_file(variant.local_path).startswith(b"CONVERTED")


def test_disallowed_bitrate_is_treated_as_base_download(services, encoder):
    plain = services.coordinator.download("k", "abc123")
    odd = services.coordinator.bitrate_download("k", "abc123", 100)

    assert odd.location == plain.location
    assert encoder.calls == []


def test_failed_conversion_falls_back_to_base_artifact(config, make_services):
    services = make_services(config, encoder=FakeEncoder(status=1))

    delivery = services.coordinator.bitrate_download("k", "abc123", 128)

    paths = base_paths(services)
    assert delivery.kind is DeliveryKind.LINK
    assert delivery.location.endswith(f"/{DISPLAY_NAME}")
    assert list_files(config.mp3_dir) == [paths.local_path]


def test_failed_tag_write_is_not_fatal(config, make_services):
    services = make_services(config, tag_writer=RecordingTagWriter(fail=True))

    delivery = services.coordinator.download("k", "abc123")

    assert delivery.kind is DeliveryKind.LINK
    assert read_file(base_paths(services).local_path) == AUDIO_BYTES


def test_unexpected_tag_writer_error_is_not_fatal(config, make_services):
    class BrokenTagWriter:
        def write(self, path, title, artist, comment):
            raise RuntimeError("tag library bug")

    services = make_services(config, tag_writer=BrokenTagWriter())

    delivery = services.coordinator.download("k", "abc123")

    paths = base_paths(services)
    assert delivery.kind is DeliveryKind.LINK
    assert list_files(config.mp3_dir) == [paths.local_path]
    assert read_file(paths.local_path) == AUDIO_BYTES


def test_downloaded_artifact_carries_id3_tags(config, make_services):
    services = make_services(config, tag_writer=Id3TagWriter())

    services.coordinator.download("k", "abc123")

    data = read_file(base_paths(services).local_path)
    assert data.startswith(b"ID3")
    assert strip_tags(data) == AUDIO_BYTES


def test_alias_failure_is_internal_error(services, config):
    stem = base_paths(services).file_name[: -len(".mp3")]
    os.makedirs(config.links_dir, exist_ok=True)
    with open(os.path.join(config.links_dir, stem), "wb") as f:
        f.write(b"not a folder")

    delivery = services.coordinator.download("k", "abc123")

    assert delivery.kind is DeliveryKind.INTERNAL_ERROR


def test_object_backend_cold_download_uploads_and_redirects(
    object_services, s3_client, tag_writer
):
    delivery = object_services.coordinator.download("k", "abc123")

    paths = base_paths(object_services)
    assert delivery.kind is DeliveryKind.REMOTE
    assert not delivery.cached
    assert delivery.location == (
        f"https://s3-eu-west-1.amazonaws.com/music/mp3/{paths.file_name}"
    )
    assert s3_client.objects[paths.path] == AUDIO_BYTES
    assert (
        s3_client.extra_args[paths.path]["ContentDisposition"]
        == f'attachment; filename="{DISPLAY_NAME}"'
    )
    assert len(tag_writer.calls) == 1


def test_object_backend_hit_does_not_fetch(object_services, origin_server):
    object_services.coordinator.download("k", "abc123")
    delivery = object_services.coordinator.stream("k", "abc123")

    assert delivery.kind is DeliveryKind.REMOTE
    assert delivery.cached
    assert origin_server.count("GET") == 1


def test_object_backend_variant_is_uploaded_then_served_remotely(
    object_services, s3_client, encoder
):
    first = object_services.coordinator.bitrate_download("k", "abc123", 64)
    second = object_services.coordinator.bitrate_download("k", "abc123", 64)

    variant = base_paths(object_services).with_bitrate(64)
    assert first.kind is DeliveryKind.REMOTE
    assert first.location.endswith(f"/mp3/{variant.file_name}")
    assert s3_client.objects[variant.path].startswith(b"CONVERTED")
    assert second.cached
    assert second.location == first.location
    assert len(encoder.calls) == 1


def test_locking_is_off_by_default(services):
    assert isinstance(services.coordinator.locks, NoLock)


def test_per_id_locking_serializes_concurrent_misses(config, make_services, origin_server):
    locked = make_services(config.model_copy(update={"lock_per_id": True}))
    assert isinstance(locked.coordinator.locks, KeyedLock)

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(locked.coordinator.download("k", "abc123")))
        for _ in range(4)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 4
    assert all(result.kind is DeliveryKind.LINK for result in results)
    assert origin_server.count("GET") == 1
    assert len(locked.coordinator.locks) == 0


def test_bytes_probes_origin_once(services, origin_server):
    assert services.coordinator.bytes("k", "abc123") == len(AUDIO_BYTES)
    assert services.coordinator.bytes("k", "abc123") == len(AUDIO_BYTES)

    assert origin_server.count("HEAD") == 1
    assert origin_server.count("GET") == 0
