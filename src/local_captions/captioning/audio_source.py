"""Frame sources for feeding the captioning pipeline from recorded audio."""

import asyncio
import wave
from collections.abc import AsyncIterator, Iterator
from math import gcd
from pathlib import Path

import numpy as np
from scipy import signal

from .config import DEFAULT_FRAME_DURATION_MS, DEFAULT_SAMPLE_RATE
from .exceptions import AudioSourceError
from .logging_utils import get_logger
from .models import AudioFrame, AudioSource, ms_to_samples, samples_to_ms

logger = get_logger(__name__)

_SAMPLE_WIDTH_DTYPES = {1: np.uint8, 2: np.int16, 4: np.int32}


def resample_audio(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """
    Resample mono audio with a polyphase filter.

    Args:
        samples: Float samples
        source_rate: Original sample rate
        target_rate: Desired sample rate

    Returns:
        Resampled float32 samples
    """
    if source_rate == target_rate or len(samples) == 0:
        return samples.astype(np.float32, copy=False)

    divisor = gcd(source_rate, target_rate)
    resampled = signal.resample_poly(samples, target_rate // divisor, source_rate // divisor)
    return resampled.astype(np.float32)


def pcm_to_float(raw: bytes, sample_width: int, channels: int) -> np.ndarray:
    """
    Convert interleaved PCM bytes to mono float32 in [-1, 1].

    Raises:
        AudioSourceError: If the sample width is not supported
    """
    dtype = _SAMPLE_WIDTH_DTYPES.get(sample_width)
    if dtype is None:
        raise AudioSourceError(f"Unsupported sample width: {sample_width} bytes")

    data = np.frombuffer(raw, dtype=dtype).astype(np.float32)
    if sample_width == 1:
        # 8-bit WAV is unsigned
        data = (data - 128.0) / 128.0
    else:
        data = data / float(2 ** (8 * sample_width - 1))

    if channels > 1:
        usable = len(data) - len(data) % channels
        data = data[:usable].reshape(-1, channels).mean(axis=1)
    return data.astype(np.float32)


def frames_from_samples(
    samples: np.ndarray,
    sample_rate: int | None = None,
    frame_duration_ms: int | None = None,
    source: AudioSource = AudioSource.MICROPHONE,
) -> Iterator[AudioFrame]:
    """
    Split a sample array into consecutive fixed-length frames.

    Args:
        samples: Mono float samples
        sample_rate: Sample rate of the samples
        frame_duration_ms: Duration of each frame
        source: Source tag stamped on every frame

    Yields:
        AudioFrame objects; the last one may be shorter
    """
    sample_rate = sample_rate or DEFAULT_SAMPLE_RATE
    frame_samples = ms_to_samples(frame_duration_ms or DEFAULT_FRAME_DURATION_MS, sample_rate)

    for sequence, start in enumerate(range(0, len(samples), frame_samples)):
        yield AudioFrame(
            samples=np.asarray(samples[start : start + frame_samples], dtype=np.float32),
            sequence=sequence,
            timestamp=samples_to_ms(start, sample_rate),
            source=source,
            sample_rate=sample_rate,
        )


class WavFileFrameSource:
    """Reads a WAV file and yields pipeline frames, optionally paced in real time."""

    def __init__(
        self,
        path: str | Path,
        sample_rate: int | None = None,
        frame_duration_ms: int | None = None,
        source: AudioSource = AudioSource.MICROPHONE,
        realtime: bool = False,
    ) -> None:
        """
        Initialize the WAV frame source.

        Args:
            path: WAV file to read
            sample_rate: Pipeline sample rate the audio is converted to
            frame_duration_ms: Duration of each yielded frame
            source: Source tag stamped on every frame
            realtime: Sleep one frame duration between frames
        """
        self.path = Path(path)
        self.sample_rate = sample_rate or DEFAULT_SAMPLE_RATE
        self.frame_duration_ms = frame_duration_ms or DEFAULT_FRAME_DURATION_MS
        self.source = source
        self.realtime = realtime
        self._samples: np.ndarray | None = None

    def load(self) -> np.ndarray:
        """
        Read, downmix and resample the file.

        Returns:
            Mono float32 samples at the pipeline sample rate

        Raises:
            AudioSourceError: If the file is missing or not a readable WAV
        """
        if self._samples is not None:
            return self._samples

        if not self.path.exists():
            raise AudioSourceError(f"Audio file not found: {self.path}")

        try:
            with wave.open(str(self.path), "rb") as wav_file:
                channels = wav_file.getnchannels()
                sample_width = wav_file.getsampwidth()
                file_rate = wav_file.getframerate()
                raw = wav_file.readframes(wav_file.getnframes())
        except (wave.Error, EOFError) as e:
            raise AudioSourceError(f"Cannot read WAV file {self.path}: {e}") from e

        samples = pcm_to_float(raw, sample_width, channels)
        if file_rate != self.sample_rate:
            logger.debug(f"Resampling audio: {file_rate}Hz -> {self.sample_rate}Hz")
        self._samples = resample_audio(samples, file_rate, self.sample_rate)

        logger.debug(
            f"📂 Loaded {self.path.name}: {self.duration_ms / 1000:.1f}s, "
            f"{channels} channel(s), {sample_width * 8}-bit"
        )
        return self._samples

    @property
    def duration_ms(self) -> float:
        samples = self._samples if self._samples is not None else self.load()
        return samples_to_ms(len(samples), self.sample_rate)

    def frames(self) -> Iterator[AudioFrame]:
        return frames_from_samples(
            self.load(), self.sample_rate, self.frame_duration_ms, self.source
        )

    async def stream(self) -> AsyncIterator[AudioFrame]:
        """Yield frames asynchronously, sleeping between them in real-time mode."""
        delay = self.frame_duration_ms / 1000.0
        for frame in self.frames():
            yield frame
            await asyncio.sleep(delay if self.realtime else 0)

    def __aiter__(self) -> AsyncIterator[AudioFrame]:
        return self.stream()
