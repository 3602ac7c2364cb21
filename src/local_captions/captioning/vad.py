"""Energy-based Voice Activity Detection for live captioning."""

import time
from typing import Any

import numpy as np

from .config import (
    VAD_ENERGY_THRESHOLD,
    VAD_SILENCE_COUNT_THRESHOLD,
    VAD_SPEECH_CONFIDENCE_SCALE,
    VAD_SPEECH_COUNT_THRESHOLD,
    VAD_STATS_LOG_INTERVAL,
)
from .exceptions import ConfigurationError
from .logging_utils import get_logger
from .models import AudioFrame, VADDecision

logger = get_logger(__name__)


def compute_rms(samples: np.ndarray) -> float:
    """
    Compute the RMS energy of a block of samples.

    Args:
        samples: Mono float samples

    Returns:
        RMS energy, 0.0 for an empty block
    """
    if samples is None or len(samples) == 0:
        return 0.0
    data = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(np.square(data))))


class VoiceActivityDetector:
    """Detects when speech is present in an audio stream.

    The raw decision is ``rms > threshold``. The exposed decision flips to
    speech after ``speech_count_threshold`` consecutive raw-speech frames and
    back to silence after ``silence_count_threshold`` consecutive raw-silence
    frames, so onsets are picked up quickly and endings are confirmed slowly.
    """

    def __init__(
        self,
        threshold: float | None = None,
        speech_count_threshold: int | None = None,
        silence_count_threshold: int | None = None,
    ) -> None:
        """
        Initialize voice activity detector.

        Args:
            threshold: RMS energy threshold for raw speech
            speech_count_threshold: Raw-speech frames needed to enter speech
            silence_count_threshold: Raw-silence frames needed to leave speech

        Raises:
            ConfigurationError: If the threshold or counts are out of range
        """
        self.threshold = VAD_ENERGY_THRESHOLD if threshold is None else threshold
        self.speech_count_threshold = (
            VAD_SPEECH_COUNT_THRESHOLD
            if speech_count_threshold is None
            else speech_count_threshold
        )
        self.silence_count_threshold = (
            VAD_SILENCE_COUNT_THRESHOLD
            if silence_count_threshold is None
            else silence_count_threshold
        )

        if self.threshold <= 0:
            raise ConfigurationError(
                f"Invalid VAD threshold: {self.threshold}. Must be positive"
            )
        if self.speech_count_threshold < 1 or self.silence_count_threshold < 1:
            raise ConfigurationError(
                "VAD hysteresis counts must be at least 1, got "
                f"speech={self.speech_count_threshold}, "
                f"silence={self.silence_count_threshold}"
            )

        self._consecutive_speech = 0
        self._consecutive_silence = 0
        self._is_speech = False

        # Debug tracking
        self._speech_detections = 0
        self._total_frames_processed = 0
        self._last_debug_log = time.time()

        logger.debug(
            f"🔊 VAD initialized: threshold={self.threshold}, "
            f"hysteresis={self.speech_count_threshold}/{self.silence_count_threshold}"
        )

    @property
    def is_speech(self) -> bool:
        """Current exposed speech state."""
        return self._is_speech

    def classify(self, audio: AudioFrame | np.ndarray) -> VADDecision:
        """
        Classify one frame as speech or silence.

        Args:
            audio: Audio frame or raw sample block

        Returns:
            VADDecision with the debounced state and its confidence
        """
        samples = audio.samples if isinstance(audio, AudioFrame) else audio
        energy = compute_rms(samples)
        above_threshold = energy > self.threshold

        self._total_frames_processed += 1

        if above_threshold:
            self._consecutive_speech += 1
            self._consecutive_silence = 0
            if (
                not self._is_speech
                and self._consecutive_speech >= self.speech_count_threshold
            ):
                self._is_speech = True
                logger.trace(f"🗣️ Speech onset (rms={energy:.4f})")
        else:
            self._consecutive_silence += 1
            self._consecutive_speech = 0
            if (
                self._is_speech
                and self._consecutive_silence >= self.silence_count_threshold
            ):
                self._is_speech = False
                logger.trace(f"🔇 Silence confirmed (rms={energy:.4f})")

        if self._is_speech:
            self._speech_detections += 1

        self._log_periodic_stats()

        return VADDecision(
            is_speech=self._is_speech,
            confidence=self._confidence(energy),
            energy_level=energy,
            above_threshold=above_threshold,
        )

    def tag(self, frame: AudioFrame) -> AudioFrame:
        """Return a copy of the frame with this detector's decision attached."""
        return frame.with_decision(self.classify(frame))

    def reset(self) -> None:
        """Clear both counters and return to silence."""
        self._consecutive_speech = 0
        self._consecutive_silence = 0
        self._is_speech = False

    def get_stats(self) -> dict[str, Any]:
        """
        Get detection statistics.

        Returns:
            Dictionary with frame counts and the current state
        """
        ratio = (
            self._speech_detections / self._total_frames_processed
            if self._total_frames_processed
            else 0.0
        )
        return {
            "frames_processed": self._total_frames_processed,
            "speech_frames": self._speech_detections,
            "speech_ratio": ratio,
            "is_speech": self._is_speech,
        }

    def _confidence(self, energy: float) -> float:
        if self._is_speech:
            return min(1.0, energy / (self.threshold * VAD_SPEECH_CONFIDENCE_SCALE))
        return max(0.0, 1.0 - energy / self.threshold)

    def _log_periodic_stats(self) -> None:
        current_time = time.time()
        if current_time - self._last_debug_log >= VAD_STATS_LOG_INTERVAL:
            stats = self.get_stats()
            logger.trace(
                f"🔊 VAD Stats: {stats['speech_frames']} speech frames in "
                f"{stats['frames_processed']} frames "
                f"({stats['speech_ratio'] * 100:.1f}% speech)"
            )
            self._last_debug_log = current_time
