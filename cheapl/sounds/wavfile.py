"""Minimal RIFF/WAVE reader.

Only the header is interpreted: the sample format from the ``fmt `` chunk
and where the ``data`` chunk's samples live in the stream. The samples
themselves are read later by the player, straight from the file.

Chunks may come in any order; the last ``fmt `` and the last ``data`` chunk
win; any other chunk is skipped. Chunk bodies are padded to an even length.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO


class SoundFileError(ValueError):
    """A file that could not be parsed as a WAVE file."""


@dataclass
class WavInfo:
    """Sample format and location of the sample data of one WAVE file."""

    channels: int
    sample_rate: int
    bits_per_sample: int
    data_offset: int
    data_length: int

    @property
    def frame_size(self) -> int:
        """Bytes per interleaved frame (one sample for every channel)."""
        return self.channels * self.bits_per_sample // 8

    @property
    def frame_count(self) -> int:
        if not self.frame_size:
            return 0
        return self.data_length // self.frame_size


_CHUNK_HEADER = struct.Struct("<4sI")
_FMT = struct.Struct("<HHIIHH")


def parse_wav(stream: BinaryIO) -> WavInfo | None:
    """Read the WAVE header of *stream*; ``None`` if it is not a complete WAVE file.

    *stream* must be seekable and positioned at the start of the file.
    """
    riff = stream.read(12)
    if len(riff) != 12 or riff[:4] != b"RIFF" or riff[8:12] != b"WAVE":
        return None

    fmt: tuple[int, ...] | None = None
    data: tuple[int, int] | None = None
    while True:
        header = stream.read(_CHUNK_HEADER.size)
        if not header:
            break
        if len(header) != _CHUNK_HEADER.size:
            return None
        chunk_id, size = _CHUNK_HEADER.unpack(header)
        padded = size + (size % 2)
        start = stream.tell()

        if chunk_id == b"fmt ":
            if size < _FMT.size:
                return None
            raw = stream.read(_FMT.size)
            if len(raw) != _FMT.size:
                return None
            fmt = _FMT.unpack(raw)
        elif chunk_id == b"data":
            data = (start, size)
        # other chunks (LIST, fact, ...) are skipped

        if _past_eof(stream, start + size):
            return None
        stream.seek(start + padded)

    if fmt is None or data is None:
        return None
    _compression, channels, rate, _byte_rate, _block_align, bits = fmt
    return WavInfo(
        channels=channels,
        sample_rate=rate,
        bits_per_sample=bits,
        data_offset=data[0],
        data_length=data[1],
    )


def _past_eof(stream: BinaryIO, offset: int) -> bool:
    here = stream.tell()
    eof = stream.seek(0, 2)
    stream.seek(here)
    return offset > eof


def read_wav_info(path: str) -> WavInfo:
    """Parse the WAVE file at *path*, raising ``SoundFileError`` on failure."""
    with open(path, "rb") as f:
        info = parse_wav(f)
    if info is None:
        raise SoundFileError(f"parsing file {path} failed")
    return info
