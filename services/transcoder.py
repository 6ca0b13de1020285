import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from config.logger import get_logger
from services.paths import ArtifactPaths
from services.storage import DeliveryMetadata, StorageBackend
from utils.exceptions import ConversionError, StorageError

logger = get_logger(__name__)

ENCODER_NOT_FOUND = 127


class Encoder(Protocol):
    def encode(self, profile: List[str], input_path: str, output_path: str) -> int: ...


class FfmpegEncoder:
    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def build_command(self, profile: List[str], input_path: str, output_path: str) -> List[str]:
        return [
            self.ffmpeg_path,
            "-y",
            "-i",
            input_path,
            "-codec:a",
            "libmp3lame",
            *profile,
            "-f",
            "mp3",
            output_path,
        ]

    def encode(self, profile: List[str], input_path: str, output_path: str) -> int:
        command = self.build_command(profile, input_path, output_path)
        try:
            # no timeout, the request thread waits for the encoder
            result = subprocess.run(command, capture_output=True, check=False)
        except (FileNotFoundError, PermissionError) as e:
            logger.error("Encoder not available", ffmpeg_path=self.ffmpeg_path, error=str(e))
            return ENCODER_NOT_FOUND

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace")[-2000:]
            logger.error("Encoder failed", returncode=result.returncode, stderr=stderr)
        return result.returncode


@dataclass(frozen=True)
class ConversionResult:
    paths: Optional[ArtifactPaths] = None
    reused: bool = False
    reason: str = ""

    @property
    def converted(self) -> bool:
        return self.paths is not None

    @classmethod
    def skipped(cls, reason: str) -> "ConversionResult":
        return cls(reason=reason)


class Transcoder:
    """Produce bitrate variants of cached base artifacts.

    The encoder only works on local files, so with a remote backend the base
    artifact is first copied to its local path and the finished variant is
    uploaded next to the base object. A variant already present locally is
    reused without encoding again.
    """

    def __init__(
        self,
        storage: StorageBackend,
        encoder: Encoder,
        profiles: Dict[int, List[str]],
    ):
        self.storage = storage
        self.encoder = encoder
        self.profiles = profiles

    def allows(self, bitrate: int) -> bool:
        return bitrate in self.profiles

    def convert(
        self,
        bitrate: int,
        paths: ArtifactPaths,
        metadata: Optional[DeliveryMetadata] = None,
    ) -> ConversionResult:
        if not self.allows(bitrate):
            return ConversionResult.skipped("bitrate not allowed")

        variant = paths.with_bitrate(bitrate)

        if self.storage.remote and not self._copy_to_local(paths):
            return ConversionResult.skipped("base copy failed")

        reused = os.path.isfile(variant.local_path)
        if reused:
            logger.debug("Reusing converted file", path=variant.local_path, bitrate=bitrate)
        else:
            try:
                self._encode(bitrate, paths.local_path, variant.local_path)
            except ConversionError as e:
                logger.error("Conversion failed", bitrate=bitrate, error=str(e))
                return ConversionResult.skipped("encoder failed")

        if self.storage.remote and not self._upload(variant, metadata):
            return ConversionResult.skipped("upload failed")

        return ConversionResult(paths=variant, reused=reused)

    def _copy_to_local(self, paths: ArtifactPaths) -> bool:
        if os.path.isfile(paths.local_path):
            return True

        staging = None
        try:
            staging = self._staging_path(paths.local_path)
            body = self.storage.open_read(paths.path)
            try:
                with open(staging, "wb") as f:
                    shutil.copyfileobj(body, f)
            finally:
                body.close()
            os.replace(staging, paths.local_path)
            return True
        except (StorageError, OSError) as e:
            logger.error("Failed to copy base artifact to local", path=paths.path, error=str(e))
            if staging is not None:
                self._remove(staging)
            return False

    def _encode(self, bitrate: int, input_path: str, output_path: str) -> None:
        try:
            staging = self._staging_path(output_path)
        except OSError as e:
            raise ConversionError(f"Cannot stage output for {output_path}: {e}") from e

        status = self.encoder.encode(self.profiles[bitrate], input_path, staging)
        if status != 0 or not os.path.isfile(staging) or os.path.getsize(staging) == 0:
            self._remove(staging)
            raise ConversionError(f"Encoder exited with status {status} for {input_path}")

        try:
            os.replace(staging, output_path)
        except OSError as e:
            self._remove(staging)
            raise ConversionError(f"Failed to place converted file {output_path}: {e}") from e

    def _upload(self, variant: ArtifactPaths, metadata: Optional[DeliveryMetadata]) -> bool:
        try:
            with open(variant.local_path, "rb") as source:
                with self.storage.open_write(variant.path, metadata) as handle:
                    shutil.copyfileobj(source, handle)
            return True
        except (StorageError, OSError) as e:
            logger.error("Failed to upload converted file", key=variant.path, error=str(e))
            return False

    @staticmethod
    def _staging_path(target: str) -> str:
        # one staging file per attempt, next to the target so os.replace stays atomic
        directory = os.path.dirname(target) or "."
        os.makedirs(directory, exist_ok=True)
        fd, path = tempfile.mkstemp(suffix=".part", dir=directory)
        os.close(fd)
        return path

    @staticmethod
    def _remove(path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove partial file", path=path, error=str(e))
