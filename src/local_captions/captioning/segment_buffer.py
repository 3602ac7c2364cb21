"""Silence-triggered speech segment accumulation."""

from enum import Enum
from typing import Any

import numpy as np

from .config import (
    DEFAULT_SAMPLE_RATE,
    SEGMENT_MAX_DURATION_MS,
    SEGMENT_SILENCE_TRIGGER_FRAMES,
)
from .exceptions import ConfigurationError
from .interfaces import AudioUnitProducer
from .logging_utils import get_logger
from .models import (
    AudioFrame,
    AudioUnit,
    SegmentTrigger,
    SpeechSegment,
    ms_to_samples,
    samples_to_ms,
)
from .vad import VoiceActivityDetector

logger = get_logger(__name__)


class SegmentState(Enum):
    """Accumulation state of the segment buffer."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"


class SegmentBuffer(AudioUnitProducer):
    """Accumulates contiguous speech frames into bounded segments.

    A segment is emitted once ``silence_trigger_frame_count`` silent frames
    follow speech, or as soon as the accumulated speech reaches
    ``max_accumulation_duration_ms``. Stream time is counted from the
    samples appended, so segment start times are exact.
    """

    def __init__(
        self,
        vad: VoiceActivityDetector | None = None,
        silence_trigger_frame_count: int | None = None,
        max_accumulation_duration_ms: int | None = None,
        sample_rate: int | None = None,
    ) -> None:
        """
        Initialize the segment buffer.

        Args:
            vad: Detector used for frames that arrive without a decision
            silence_trigger_frame_count: Silent frames that close a segment
            max_accumulation_duration_ms: Cap on one segment's duration
            sample_rate: Audio sample rate in Hz

        Raises:
            ConfigurationError: If any setting is out of range
        """
        self.silence_trigger_frame_count = (
            SEGMENT_SILENCE_TRIGGER_FRAMES
            if silence_trigger_frame_count is None
            else silence_trigger_frame_count
        )
        self.max_accumulation_duration_ms = (
            SEGMENT_MAX_DURATION_MS
            if max_accumulation_duration_ms is None
            else max_accumulation_duration_ms
        )
        self.sample_rate = DEFAULT_SAMPLE_RATE if sample_rate is None else sample_rate

        if self.silence_trigger_frame_count < 1:
            raise ConfigurationError(
                "silence_trigger_frame_count must be at least 1, "
                f"got {self.silence_trigger_frame_count}"
            )
        if self.max_accumulation_duration_ms <= 0:
            raise ConfigurationError(
                "max_accumulation_duration_ms must be positive, "
                f"got {self.max_accumulation_duration_ms}"
            )
        if self.sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be positive, got {self.sample_rate}")

        self._vad = vad or VoiceActivityDetector()
        self._max_samples = ms_to_samples(
            self.max_accumulation_duration_ms, self.sample_rate
        )

        self._chunks: list[np.ndarray] = []
        self._accumulated_samples = 0
        self._state = SegmentState.IDLE
        self._segment_start_sample = 0
        self._silence_frames = 0
        self._stream_samples = 0
        self._segments_emitted = 0

    @property
    def name(self) -> str:
        return "segment"

    @property
    def state(self) -> SegmentState:
        return self._state

    @property
    def current_time_ms(self) -> float:
        """Stream time covered by all appended frames."""
        return samples_to_ms(self._stream_samples, self.sample_rate)

    @property
    def accumulated_duration_ms(self) -> float:
        return samples_to_ms(self._accumulated_samples, self.sample_rate)

    def append(self, frame: AudioFrame) -> SpeechSegment | None:
        """
        Consume one frame and emit a segment when a trigger fires.

        Args:
            frame: Audio frame, tagged by this buffer's VAD if it has no decision

        Returns:
            The emitted SpeechSegment, or None
        """
        if frame.vad is None:
            frame = self._vad.tag(frame)

        frame_samples = len(frame.samples)
        frame_start_sample = self._stream_samples
        self._stream_samples += frame_samples

        if frame.vad.is_active_speech:
            if self._state is SegmentState.IDLE:
                self._state = SegmentState.ACCUMULATING
                self._segment_start_sample = frame_start_sample
                logger.debug(
                    f"🗣️ Segment started at "
                    f"{samples_to_ms(frame_start_sample, self.sample_rate):.0f}ms"
                )
            if frame_samples:
                self._chunks.append(np.array(frame.samples, dtype=np.float32))
                self._accumulated_samples += frame_samples
            self._silence_frames = 0

            if self._accumulated_samples >= self._max_samples:
                return self._emit(SegmentTrigger.MAX_DURATION_REACHED)

        elif self._state is SegmentState.ACCUMULATING:
            self._silence_frames += 1
            if self._silence_frames >= self.silence_trigger_frame_count:
                return self._emit(SegmentTrigger.SILENCE_DETECTED)

        return None

    def get_remaining_segment(self) -> SpeechSegment | None:
        """
        Force out any non-empty accumulation (e.g. at stream end).

        Returns:
            A segment with trigger FORCED_STOP, or None if nothing is buffered
        """
        return self._emit(SegmentTrigger.FORCED_STOP)

    def produce(self, frame: AudioFrame) -> list[AudioUnit]:
        segment = self.append(frame)
        return [AudioUnit.from_segment(segment)] if segment is not None else []

    def flush(self) -> list[AudioUnit]:
        segment = self.get_remaining_segment()
        return [AudioUnit.from_segment(segment)] if segment is not None else []

    def reset(self) -> SpeechSegment | None:
        """
        Flush pending speech and clear all state, including the VAD.

        Returns:
            The force-flushed segment, if speech was pending
        """
        pending = self._emit(SegmentTrigger.FORCED_STOP)
        if pending is not None:
            logger.debug("Segment buffer reset with pending segment")

        self._clear_accumulation()
        self._stream_samples = 0
        self._vad.reset()
        return pending

    def get_stats(self) -> dict[str, Any]:
        """
        Get buffer statistics.

        Returns:
            Dictionary with the state, buffered duration and emitted count
        """
        return {
            "state": self._state.value,
            "buffered_ms": self.accumulated_duration_ms,
            "current_time_ms": self.current_time_ms,
            "silence_frames": self._silence_frames,
            "segments_emitted": self._segments_emitted,
        }

    def _emit(self, trigger: SegmentTrigger) -> SpeechSegment | None:
        if not self._chunks:
            self._clear_accumulation()
            return None

        segment = SpeechSegment(
            audio=np.concatenate(self._chunks),
            start_time_ms=samples_to_ms(self._segment_start_sample, self.sample_rate),
            trigger=trigger,
            sample_rate=self.sample_rate,
        )
        self._clear_accumulation()
        self._segments_emitted += 1

        logger.debug(
            f"📦 Segment emitted at {segment.start_time_ms:.0f}ms "
            f"({segment.duration_ms:.0f}ms, reason: {trigger.value})"
        )
        return segment

    def _clear_accumulation(self) -> None:
        self._chunks = []
        self._accumulated_samples = 0
        self._silence_frames = 0
        self._state = SegmentState.IDLE
