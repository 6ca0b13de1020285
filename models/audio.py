import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Dict, Optional

UNSAFE_NAME_CHARS = re.compile(r"[~`!@#$%^&*=+\[\]{}\\|;:'\",<>/?\x00-\x1f\x7f]")


def format_display_name(artist: str, title: str, fallback: str = "audio") -> str:
    """Build an ascii, filesystem safe download name ending with .mp3"""
    name = f"{artist} - {title}"
    name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    name = UNSAFE_NAME_CHARS.sub("", name)
    name = re.sub(r"\s+", " ", name).strip(" .-")
    if not name:
        name = fallback
    return f"{name}.mp3"


def format_bitrate_name(name: str, bitrate: int) -> str:
    if name.endswith(".mp3"):
        return f"{name[:-4]} ({bitrate}).mp3"
    return f"{name} ({bitrate})"


@dataclass(frozen=True)
class AudioRef:
    key: str
    id: str


@dataclass(frozen=True)
class AudioItem:
    artist: str
    title: str
    source_url: str
    is_optimized: bool = False

    def display_name(self) -> str:
        return format_display_name(self.artist, self.title)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist": self.artist,
            "title": self.title,
            "mp3": self.source_url,
            "optimized": self.is_optimized,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["AudioItem"]:
        try:
            return cls(
                artist=str(data["artist"]),
                title=str(data["title"]),
                source_url=str(data["mp3"]),
                is_optimized=bool(data.get("optimized", False)),
            )
        except (KeyError, TypeError):
            return None
