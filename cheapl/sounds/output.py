"""Audio output seam and WAVE playback.

``AudioOutput`` describes what the player needs from a PCM device: accept
a sample format, negotiate a period size, take interleaved frames and
drain. ``PyAudioOutput`` plays on a named output device; ``NullOutput`` is
the stand-in used when no device is configured.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from cheapl.sounds.wavfile import SoundFileError, WavInfo, read_wav_info

DEFAULT_PERIOD_SIZE = 128

# PortAudio sample format constant for each PCM format code.
PORTAUDIO_FORMATS = {"U8": "paUInt8", "S16_LE": "paInt16", "S24_LE": "paInt24", "S32_LE": "paInt32"}


class AudioDeviceError(OSError):
    """The requested audio device does not exist or cannot be opened."""


@dataclass(frozen=True)
class SampleFormat:
    """Target format of a PCM device."""

    format_code: str
    rate: int
    channels: int
    access: str = "rw_interleaved"


def pcm_format_for(bits_per_sample: int) -> str:
    """PCM format code for a sample width in bits."""
    if bits_per_sample <= 8:
        return "U8"
    if bits_per_sample <= 16:
        return "S16_LE"
    if bits_per_sample <= 24:
        return "S24_LE"
    if bits_per_sample <= 32:
        return "S32_LE"
    raise ValueError(f"don't know how to handle samples of bitsize {bits_per_sample}")


def format_from_wav(info: WavInfo) -> SampleFormat:
    return SampleFormat(
        format_code=pcm_format_for(info.bits_per_sample),
        rate=info.sample_rate,
        channels=info.channels,
    )


class AudioOutput(Protocol):
    def configure(self, fmt: SampleFormat) -> None: ...

    def period_size(self, requested: int) -> int:
        """Request a period size in frames and return the size granted."""
        ...

    def write(self, frames: bytes, frame_count: int) -> None: ...

    def drain(self) -> None:
        """Block until everything written so far has been played."""
        ...

    def close(self) -> None: ...


class NullOutput:
    """An ``AudioOutput`` that discards samples and counts them."""

    def __init__(self, name: str = "null") -> None:
        self.name = name
        self.format: SampleFormat | None = None
        self.granted_period = DEFAULT_PERIOD_SIZE
        self.frames_written = 0
        self.bytes_written = 0
        self.drains = 0

    def configure(self, fmt: SampleFormat) -> None:
        self.format = fmt

    def period_size(self, requested: int) -> int:
        self.granted_period = requested
        return requested

    def write(self, frames: bytes, frame_count: int) -> None:
        self.frames_written += frame_count
        self.bytes_written += len(frames)

    def drain(self) -> None:
        self.drains += 1
        logger.debug(
            f"[Sounds] {self.name}: drained after {self.frames_written} frame(s)"
        )

    def close(self) -> None:
        pass


class PyAudioOutput:
    """Plays on the PortAudio output device whose name is *device_name*.

    A stream is opened by ``configure`` for each sound, since every file may
    bring its own format, and closed again by ``drain``.

    Raises ``AudioDeviceError`` when no output device carries that name.
    """

    def __init__(self, device_name: str) -> None:
        import pyaudio

        self._pyaudio = pyaudio
        self.name = device_name
        self.audio = pyaudio.PyAudio()
        self.stream: Any = None
        self.frames_per_buffer = DEFAULT_PERIOD_SIZE
        try:
            self.device_index = self._find_device(device_name)
        except AudioDeviceError:
            self.audio.terminate()
            raise
        logger.info(f"[Sounds] using output device {self.device_index}: {device_name}")

    def _find_device(self, name: str) -> int:
        for index in range(self.audio.get_device_count()):
            info = self.audio.get_device_info_by_index(index)
            if info.get("name") == name and info.get("maxOutputChannels", 0) > 0:
                return index
        raise AudioDeviceError(f"could not find sound output device with name: {name}")

    def period_size(self, requested: int) -> int:
        self.frames_per_buffer = requested
        return requested

    def configure(self, fmt: SampleFormat) -> None:
        self._close_stream()
        self.stream = self.audio.open(
            format=getattr(self._pyaudio, PORTAUDIO_FORMATS[fmt.format_code]),
            channels=fmt.channels,
            rate=fmt.rate,
            output=True,
            output_device_index=self.device_index,
            frames_per_buffer=self.frames_per_buffer,
        )

    def write(self, frames: bytes, frame_count: int) -> None:
        if self.stream is None:
            raise AudioDeviceError(f"{self.name}: write before configure")
        self.stream.write(frames, frame_count)

    def drain(self) -> None:
        # stop_stream blocks until the buffered frames have been played
        if self.stream is not None:
            self.stream.stop_stream()
        self._close_stream()

    def close(self) -> None:
        self._close_stream()
        self.audio.terminate()

    def _close_stream(self) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None


def open_output(device_name: str) -> AudioOutput:
    """``PyAudioOutput`` for *device_name*, or a ``NullOutput`` when it is empty."""
    if not device_name:
        logger.warning("[Sounds] no output device configured, samples are discarded")
        return NullOutput()
    return PyAudioOutput(device_name)


def play_wav(
    output: AudioOutput,
    path: str | Path,
    period_size: int = DEFAULT_PERIOD_SIZE,
) -> int:
    """Play the WAVE file at *path* on *output*; return the number of frames played."""
    info = read_wav_info(str(path))
    frame_size = info.frame_size
    if frame_size <= 0:
        raise SoundFileError(f"{path}: invalid frame size")

    granted = output.period_size(period_size)
    output.configure(format_from_wav(info))

    frames_to_go = info.frame_count
    played = 0
    with open(path, "rb") as wav:
        wav.seek(info.data_offset)
        while frames_to_go:
            frame_count = min(granted, frames_to_go)
            buffer = wav.read(frame_count * frame_size)
            if not buffer:
                break
            frame_count = len(buffer) // frame_size
            output.write(buffer, frame_count)
            frames_to_go -= frame_count
            played += frame_count

    output.drain()
    logger.debug(f"[Sounds] played {Path(path).name}: {played} frame(s)")
    return played
