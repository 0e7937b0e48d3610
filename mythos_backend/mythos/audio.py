"""
Narration decoding and playback.

Narration clips arrive as base64 of raw 16-bit little-endian PCM. The player
is a two-state machine: IDLE, or PLAYING one clip. Starting a clip always
stops the previous one first, so two clips never overlap.
"""
import base64
import binascii
import io
import logging
import sys
import wave
from array import array
from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Iterable, Optional, Protocol, Tuple

from .settings import NARRATION_CHANNELS, NARRATION_SAMPLE_RATE

logger = logging.getLogger(__name__)

PCM_SCALE = 32768.0


class AudioDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class AudioBuffer:
    samples: Tuple[float, ...]
    sample_rate: int = NARRATION_SAMPLE_RATE
    channels: int = NARRATION_CHANNELS
    pcm: bytes = b""

    @property
    def frames(self) -> int:
        return len(self.samples) // self.channels

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate

    def channel_data(self, channel: int) -> Tuple[float, ...]:
        if not 0 <= channel < self.channels:
            raise IndexError(f"channel {channel} out of range")
        return self.samples[channel::self.channels]

    def to_wav(self) -> bytes:
        buf = io.BytesIO()
        with wave.open(buf, "wb") as w:
            w.setnchannels(self.channels)
            w.setsampwidth(2)
            w.setframerate(self.sample_rate)
            w.writeframes(self.pcm)
        return buf.getvalue()


def _int16_le(data: bytes) -> array:
    samples = array("h")
    samples.frombytes(data)
    if sys.byteorder == "big":
        samples.byteswap()
    return samples


def decode_pcm16(payload: str, sample_rate: int = NARRATION_SAMPLE_RATE,
                 channels: int = NARRATION_CHANNELS) -> AudioBuffer:
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioDecodeError(f"narration payload is not valid base64: {e}") from e
    if len(data) % 2:
        raise AudioDecodeError("16-bit PCM payload has an odd number of bytes")
    ints = _int16_le(data)
    if len(ints) % channels:
        raise AudioDecodeError(f"{len(ints)} samples do not split into {channels} channels")
    return AudioBuffer(
        samples=tuple(s / PCM_SCALE for s in ints),
        sample_rate=sample_rate,
        channels=channels,
        pcm=data,
    )


def encode_pcm16(samples: Iterable[int]) -> str:
    ints = array("h", samples)
    if sys.byteorder == "big":
        ints.byteswap()
    return base64.b64encode(ints.tobytes()).decode("ascii")


class Playback(Protocol):
    def stop(self) -> None: ...


class AudioOutput(Protocol):
    def start(self, buffer: AudioBuffer) -> Playback: ...


class WavPlayback:
    """A clip handed to the browser as WAV; stopping twice is harmless."""

    def __init__(self, buffer: AudioBuffer):
        self.buffer = buffer
        self.wav = buffer.to_wav()
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class WavOutput:
    def start(self, buffer: AudioBuffer) -> WavPlayback:
        return WavPlayback(buffer)


class PlayerState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"


class NarrationPlayer:
    def __init__(self, output: Optional[AudioOutput] = None):
        self.output = output or WavOutput()
        self.state = PlayerState.IDLE
        self.active_clip: Optional[Hashable] = None
        self.playback: Optional[Playback] = None

    @property
    def is_playing(self) -> bool:
        return self.state is PlayerState.PLAYING

    def play(self, clip_id: Hashable, payload: str) -> Playback:
        self.stop()
        buffer = decode_pcm16(payload)
        self.playback = self.output.start(buffer)
        self.active_clip = clip_id
        self.state = PlayerState.PLAYING
        logger.info(f"Narrating {clip_id} ({buffer.duration:.1f}s)")
        return self.playback

    def stop(self) -> None:
        if self.playback is not None:
            self.playback.stop()
        self._to_idle()

    def complete(self, clip_id: Hashable) -> bool:
        """Natural end of playback. A late completion for an older clip is ignored."""
        if not self.is_playing or clip_id != self.active_clip:
            return False
        self._to_idle()
        return True

    def close(self) -> None:
        self.stop()

    def _to_idle(self) -> None:
        self.state = PlayerState.IDLE
        self.active_clip = None
        self.playback = None
