"""Fixed-stride overlapping audio windows."""

import numpy as np

from .config import DEFAULT_SAMPLE_RATE, WINDOW_SIZE_MS, WINDOW_STRIDE_MS
from .exceptions import ConfigurationError
from .interfaces import AudioUnitProducer
from .logging_utils import get_logger
from .models import (
    AudioFrame,
    AudioUnit,
    AudioWindow,
    BufferStats,
    ms_to_samples,
    samples_to_ms,
)

logger = get_logger(__name__)


class SlidingWindowBuffer(AudioUnitProducer):
    """Emits windows of ``window_size_ms`` every ``stride_ms``, regardless of VAD.

    Adjacent windows share ``window_size_ms - stride_ms`` of audio. The
    buffer never holds more than one window plus one stride of samples.
    """

    def __init__(
        self,
        window_size_ms: int | None = None,
        stride_ms: int | None = None,
        sample_rate: int | None = None,
    ) -> None:
        """
        Initialize the sliding window buffer.

        Args:
            window_size_ms: Duration of each window
            stride_ms: Offset between consecutive window starts
            sample_rate: Audio sample rate in Hz

        Raises:
            ConfigurationError: If the window or stride is invalid
        """
        self.window_size_ms = WINDOW_SIZE_MS if window_size_ms is None else window_size_ms
        self.stride_ms = WINDOW_STRIDE_MS if stride_ms is None else stride_ms
        self.sample_rate = DEFAULT_SAMPLE_RATE if sample_rate is None else sample_rate

        if self.sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.window_size_ms <= 0 or self.stride_ms <= 0:
            raise ConfigurationError(
                f"Window size and stride must be positive, got "
                f"window={self.window_size_ms}ms, stride={self.stride_ms}ms"
            )
        if self.stride_ms > self.window_size_ms:
            raise ConfigurationError(
                f"Stride ({self.stride_ms}ms) cannot exceed "
                f"window size ({self.window_size_ms}ms)"
            )

        self.window_size_samples = ms_to_samples(self.window_size_ms, self.sample_rate)
        self.stride_samples = ms_to_samples(self.stride_ms, self.sample_rate)
        self.max_buffer_samples = self.window_size_samples + self.stride_samples

        self._buffer = np.zeros(0, dtype=np.float32)
        self._total_samples = 0
        self._last_window_start_sample = 0
        self._trimmed_samples = 0
        self._windows_emitted = 0

        logger.debug(
            f"Sliding window buffer: window={self.window_size_ms}ms "
            f"({self.window_size_samples} samples), stride={self.stride_ms}ms, "
            f"overlap={self.window_size_ms - self.stride_ms}ms"
        )

    @property
    def name(self) -> str:
        return "window"

    @property
    def current_time_ms(self) -> float:
        return samples_to_ms(self._total_samples, self.sample_rate)

    @property
    def buffer_stats(self) -> BufferStats:
        return BufferStats(
            buffered_samples=len(self._buffer),
            buffered_ms=samples_to_ms(len(self._buffer), self.sample_rate),
            current_time_ms=self.current_time_ms,
            last_window_start_ms=samples_to_ms(
                self._last_window_start_sample, self.sample_rate
            ),
            trimmed_samples=self._trimmed_samples,
        )

    def append(self, samples: np.ndarray) -> list[AudioWindow]:
        """
        Append samples and emit every window that became due.

        Args:
            samples: Mono float samples

        Returns:
            Zero or more windows in start-time order
        """
        if len(samples) == 0:
            return []

        self._buffer = np.concatenate(
            (self._buffer, np.asarray(samples, dtype=np.float32))
        )
        self._total_samples += len(samples)

        windows = []
        # Catch up when a burst delivered more than one stride at once
        while self._window_due():
            windows.append(self._emit_window())
        return windows

    def finish(self) -> list[AudioWindow]:
        """
        Emit the final partial window at stream end.

        Returns:
            One final window if at least one stride of audio remains
        """
        if len(self._buffer) < self.stride_samples:
            if len(self._buffer):
                logger.debug(
                    f"Dropping {len(self._buffer)} trailing samples "
                    f"(less than one stride)"
                )
            self._buffer = np.zeros(0, dtype=np.float32)
            return []

        start_ms = samples_to_ms(self._last_window_start_sample, self.sample_rate)
        window = AudioWindow(
            audio=self._buffer.copy(),
            start_time_ms=start_ms,
            end_time_ms=start_ms + samples_to_ms(len(self._buffer), self.sample_rate),
            sample_rate=self.sample_rate,
            is_final=True,
        )
        self._buffer = np.zeros(0, dtype=np.float32)
        self._windows_emitted += 1

        logger.debug(
            f"🪟 Final window at {window.start_time_ms:.0f}ms "
            f"({window.duration_ms:.0f}ms)"
        )
        return [window]

    def produce(self, frame: AudioFrame) -> list[AudioUnit]:
        return [AudioUnit.from_window(window) for window in self.append(frame.samples)]

    def flush(self) -> list[AudioUnit]:
        return [AudioUnit.from_window(window) for window in self.finish()]

    def reset(self) -> None:
        self._buffer = np.zeros(0, dtype=np.float32)
        self._total_samples = 0
        self._last_window_start_sample = 0
        self._trimmed_samples = 0

    def _window_due(self) -> bool:
        if len(self._buffer) < self.window_size_samples:
            return False
        elapsed = self._total_samples - self._last_window_start_sample
        return elapsed >= self.stride_samples

    def _emit_window(self) -> AudioWindow:
        start_ms = samples_to_ms(self._last_window_start_sample, self.sample_rate)
        window = AudioWindow(
            audio=self._buffer[: self.window_size_samples].copy(),
            start_time_ms=start_ms,
            end_time_ms=start_ms + self.window_size_ms,
            sample_rate=self.sample_rate,
        )
        self._windows_emitted += 1

        self._last_window_start_sample += self.stride_samples
        self._buffer = self._buffer[self.stride_samples :]

        if len(self._buffer) > self.max_buffer_samples:
            excess = len(self._buffer) - self.max_buffer_samples
            self._buffer = self._buffer[excess:]
            # Window starts track the first buffered sample
            self._last_window_start_sample += excess
            self._trimmed_samples += excess
            logger.warning(
                f"⚠️ Sliding window buffer over capacity, dropped {excess} oldest samples"
            )

        logger.trace(
            f"🪟 Window emitted at {window.start_time_ms:.0f}ms "
            f"(buffered {len(self._buffer)} samples)"
        )
        return window
