import hashlib
import os
from dataclasses import dataclass
from typing import Optional


def with_bitrate_suffix(path: str, bitrate: int) -> str:
    """Insert ``_<bitrate>`` before the extension, or return path unchanged for bitrate <= 0"""
    if bitrate <= 0:
        return path
    root, extension = os.path.splitext(path)
    return f"{root}_{bitrate}{extension}"


@dataclass(frozen=True)
class ArtifactPaths:
    """Where one artifact lives.

    ``local_path`` is always a filesystem path (the encoder works on it),
    ``path`` is the storage path: the same file for local storage, an object
    key for object storage.
    """

    file_name: str
    local_path: str
    path: str
    bitrate: int = -1

    def with_bitrate(self, bitrate: int) -> "ArtifactPaths":
        if bitrate <= 0:
            return self
        return ArtifactPaths(
            file_name=with_bitrate_suffix(self.file_name, bitrate),
            local_path=with_bitrate_suffix(self.local_path, bitrate),
            path=with_bitrate_suffix(self.path, bitrate),
            bitrate=bitrate,
        )

    @property
    def is_variant(self) -> bool:
        return self.bitrate > 0


class PathResolver:
    def __init__(
        self,
        hash_algorithm: str,
        local_root: str,
        object_key_template: Optional[str] = None,
        extension: str = ".mp3",
    ):
        # fail at boot, not on the first request
        hashlib.new(hash_algorithm)
        self.hash_algorithm = hash_algorithm
        self.local_root = local_root
        self.object_key_template = object_key_template
        self.extension = extension

    def canonical_name(self, audio_id: str) -> str:
        digest = hashlib.new(self.hash_algorithm, audio_id.encode("utf-8")).hexdigest()
        return f"{digest}{self.extension}"

    def canonical_path(self, audio_id: str) -> str:
        return self.resolve(audio_id).path

    def variant_name(self, name: str, bitrate: int) -> str:
        return with_bitrate_suffix(name, bitrate)

    def resolve(self, audio_id: str, bitrate: int = -1) -> ArtifactPaths:
        file_name = self.canonical_name(audio_id)
        local_path = os.path.join(self.local_root, file_name)
        path = local_path
        if self.object_key_template is not None:
            path = self.object_key_template.format(file_name)

        return ArtifactPaths(file_name=file_name, local_path=local_path, path=path).with_bitrate(
            bitrate
        )
