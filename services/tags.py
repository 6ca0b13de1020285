"""ID3 tagging for downloaded mp3 artifacts.

Writes an ID3v2.3 tag (title, artist, comment) at the start of the file and an
ID3v1 tag at the end. Existing tags of both kinds are replaced, other bytes
are preserved.
"""

import os
from typing import Protocol

from utils.exceptions import TagWriteError

ID3V1_SIZE = 128
ID3V2_HEADER_SIZE = 10
UTF16 = b"\x01"


class TagWriter(Protocol):
    def write(self, path: str, title: str, artist: str, comment: str) -> None: ...


def _syncsafe(value: int) -> bytes:
    return bytes(
        [(value >> 21) & 0x7F, (value >> 14) & 0x7F, (value >> 7) & 0x7F, value & 0x7F]
    )


def _unsyncsafe(data: bytes) -> int:
    return (data[0] << 21) | (data[1] << 14) | (data[2] << 7) | data[3]


def _encode_text(value: str) -> bytes:
    # ID3v2.3 has no utf-8, utf-16 with BOM covers everything
    return value.encode("utf-16")


def _frame(frame_id: str, payload: bytes) -> bytes:
    return frame_id.encode("ascii") + len(payload).to_bytes(4, "big") + b"\x00\x00" + payload


def _text_frame(frame_id: str, value: str) -> bytes:
    return _frame(frame_id, UTF16 + _encode_text(value))


def _comment_frame(value: str, language: str = "eng") -> bytes:
    # empty description, utf-16 terminated
    description = _encode_text("") + b"\x00\x00"
    return _frame("COMM", UTF16 + language.encode("ascii") + description + _encode_text(value))


def _latin1_field(value: str, size: int) -> bytes:
    encoded = value.encode("latin-1", "replace")[:size]
    return encoded.ljust(size, b"\x00")


def build_id3v2(title: str, artist: str, comment: str) -> bytes:
    frames = []
    if title:
        frames.append(_text_frame("TIT2", title))
    if artist:
        frames.append(_text_frame("TPE1", artist))
    if comment:
        frames.append(_comment_frame(comment))

    body = b"".join(frames)
    return b"ID3" + b"\x03\x00" + b"\x00" + _syncsafe(len(body)) + body


def build_id3v1(title: str, artist: str, comment: str) -> bytes:
    return (
        b"TAG"
        + _latin1_field(title, 30)
        + _latin1_field(artist, 30)
        + _latin1_field("", 30)
        + _latin1_field("", 4)
        + _latin1_field(comment, 30)
        + b"\xff"
    )


def strip_tags(data: bytes) -> bytes:
    """Remove a leading ID3v2 tag and a trailing ID3v1 tag if present"""
    start = 0
    if len(data) >= ID3V2_HEADER_SIZE and data[:3] == b"ID3":
        flags = data[5]
        start = ID3V2_HEADER_SIZE + _unsyncsafe(data[6:10])
        if data[3] == 4 and flags & 0x10:
            start += ID3V2_HEADER_SIZE

    end = len(data)
    if end - start >= ID3V1_SIZE and data[end - ID3V1_SIZE : end - ID3V1_SIZE + 3] == b"TAG":
        end -= ID3V1_SIZE

    return data[start:end]


class Id3TagWriter:
    def write(self, path: str, title: str, artist: str, comment: str) -> None:
        try:
            with open(path, "rb") as f:
                original = f.read()
        except OSError as e:
            raise TagWriteError(f"Cannot read {path}: {e}") from e

        if not original:
            raise TagWriteError(f"Refusing to tag empty file {path}")

        audio = strip_tags(original)
        tagged = build_id3v2(title, artist, comment) + audio + build_id3v1(title, artist, comment)

        staging = f"{path}.tags"
        try:
            with open(staging, "wb") as f:
                f.write(tagged)
            os.replace(staging, path)
        except OSError as e:
            try:
                os.unlink(staging)
            except OSError:
                pass
            raise TagWriteError(f"Cannot write tags to {path}: {e}") from e
