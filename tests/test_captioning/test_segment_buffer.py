"""Tests for SegmentBuffer class."""

import numpy as np
import pytest

from local_captions.captioning.exceptions import ConfigurationError
from local_captions.captioning.models import (
    AudioFrame,
    AudioUnitKind,
    SegmentTrigger,
    VADDecision,
)
from local_captions.captioning.segment_buffer import SegmentBuffer, SegmentState

FRAME_SAMPLES = 1600  # 100ms at 16kHz


def make_frame(amplitude: float, sequence: int = 0) -> AudioFrame:
    return AudioFrame(
        samples=np.full(FRAME_SAMPLES, amplitude, dtype=np.float32),
        sequence=sequence,
        timestamp=sequence * 100.0,
    )


def feed(buffer: SegmentBuffer, amplitudes: list[float]) -> list:
    segments = []
    for i, amplitude in enumerate(amplitudes):
        segment = buffer.append(make_frame(amplitude, i))
        if segment is not None:
            segments.append((i, segment))
    return segments


@pytest.mark.unit
class TestSegmentBuffer:
    """Test cases for SegmentBuffer class."""

    @pytest.fixture
    def buffer(self) -> SegmentBuffer:
        """Create a SegmentBuffer with default settings."""
        return SegmentBuffer()

    def test_initialization_defaults(self, buffer: SegmentBuffer) -> None:
        """Test default trigger count, cap and state."""
        assert buffer.silence_trigger_frame_count == 3
        assert buffer.max_accumulation_duration_ms == 15000
        assert buffer.state is SegmentState.IDLE
        assert buffer.name == "segment"

    def test_invalid_configuration(self) -> None:
        """Test zero and negative settings are rejected, not defaulted."""
        with pytest.raises(ConfigurationError):
            SegmentBuffer(silence_trigger_frame_count=-1)
        with pytest.raises(ConfigurationError):
            SegmentBuffer(max_accumulation_duration_ms=-100)
        with pytest.raises(ConfigurationError):
            SegmentBuffer(silence_trigger_frame_count=0)
        with pytest.raises(ConfigurationError):
            SegmentBuffer(max_accumulation_duration_ms=0)
        with pytest.raises(ConfigurationError):
            SegmentBuffer(sample_rate=0)

    def test_silence_after_speech_emits_segment(self, buffer: SegmentBuffer) -> None:
        """Test five loud frames then quiet frames give one 500ms segment."""
        segments = feed(buffer, [0.02] * 5 + [0.001] * 4)

        assert len(segments) == 1
        index, segment = segments[0]
        assert index == 7  # third quiet frame
        assert segment.duration_ms == pytest.approx(500.0)
        assert len(segment.audio) == 5 * FRAME_SAMPLES
        assert segment.start_time_ms == 0.0
        assert segment.trigger is SegmentTrigger.SILENCE_DETECTED
        assert buffer.state is SegmentState.IDLE

    def test_silence_while_idle_is_ignored(self, buffer: SegmentBuffer) -> None:
        """Test leading silence neither emits nor accumulates."""
        assert feed(buffer, [0.0] * 10) == []
        assert buffer.accumulated_duration_ms == 0.0
        assert buffer.current_time_ms == pytest.approx(1000.0)

    def test_segment_start_time_follows_stream(self, buffer: SegmentBuffer) -> None:
        """Test start time is the stream position of the first speech frame."""
        segments = feed(buffer, [0.0] * 4 + [0.02] * 3 + [0.0] * 3)

        _, segment = segments[0]
        assert segment.start_time_ms == pytest.approx(400.0)
        assert segment.end_time_ms == pytest.approx(700.0)

    def test_short_dip_does_not_split_segment(self, buffer: SegmentBuffer) -> None:
        """Test fewer quiet frames than the trigger keep one segment."""
        segments = feed(buffer, [0.02] * 3 + [0.001] * 2 + [0.02] * 3 + [0.001] * 3)

        assert len(segments) == 1
        _, segment = segments[0]
        # Quiet frames are not part of the segment audio
        assert segment.duration_ms == pytest.approx(600.0)

    def test_max_duration_forces_emission(self) -> None:
        """Test uninterrupted speech is cut at the duration cap."""
        buffer = SegmentBuffer(max_accumulation_duration_ms=1000)

        segments = feed(buffer, [0.02] * 25)

        assert [index for index, _ in segments] == [9, 19]
        assert all(s.trigger is SegmentTrigger.MAX_DURATION_REACHED for _, s in segments)
        assert all(s.duration_ms == pytest.approx(1000.0) for _, s in segments)
        assert segments[1][1].start_time_ms == pytest.approx(1000.0)
        assert buffer.accumulated_duration_ms == pytest.approx(500.0)

    def test_segments_are_bounded(self) -> None:
        """Test no segment exceeds the cap by more than one frame."""
        buffer = SegmentBuffer(max_accumulation_duration_ms=250)

        segments = feed(buffer, [0.02] * 12)

        assert segments
        assert all(s.duration_ms <= 250 + 100 for _, s in segments)

    def test_get_remaining_segment(self, buffer: SegmentBuffer) -> None:
        """Test forced flush returns pending speech once."""
        feed(buffer, [0.02] * 4)

        segment = buffer.get_remaining_segment()

        assert segment is not None
        assert segment.trigger is SegmentTrigger.FORCED_STOP
        assert segment.duration_ms == pytest.approx(400.0)
        assert buffer.get_remaining_segment() is None

    def test_get_remaining_segment_when_empty(self, buffer: SegmentBuffer) -> None:
        """Test forced flush with nothing buffered returns None."""
        assert buffer.get_remaining_segment() is None

    def test_pretagged_frames_bypass_internal_vad(self, buffer: SegmentBuffer) -> None:
        """Test frames carrying a decision are not re-classified."""
        loud_silence = AudioFrame(
            samples=np.full(FRAME_SAMPLES, 0.5, dtype=np.float32),
            sequence=0,
            timestamp=0.0,
            vad=VADDecision(is_speech=False, confidence=1.0, energy_level=0.5),
        )

        assert buffer.append(loud_silence) is None
        assert buffer.state is SegmentState.IDLE

    def test_produce_and_flush_wrap_units(self, buffer: SegmentBuffer) -> None:
        """Test the producer interface wraps segments in audio units."""
        units = []
        for i, amplitude in enumerate([0.02] * 5 + [0.0] * 3 + [0.02] * 2):
            units.extend(buffer.produce(make_frame(amplitude, i)))
        flushed = buffer.flush()

        assert len(units) == 1
        assert units[0].kind is AudioUnitKind.SEGMENT
        assert len(flushed) == 1
        assert flushed[0].start_time_ms == pytest.approx(800.0)
        assert buffer.flush() == []

    def test_reset_returns_pending_segment(self, buffer: SegmentBuffer) -> None:
        """Test reset flushes pending speech and clears stream time."""
        feed(buffer, [0.02] * 3)

        pending = buffer.reset()

        assert pending is not None
        assert pending.trigger is SegmentTrigger.FORCED_STOP
        assert buffer.current_time_ms == 0.0
        assert buffer.state is SegmentState.IDLE

    def test_get_stats(self, buffer: SegmentBuffer) -> None:
        """Test statistics report the state and emitted count."""
        feed(buffer, [0.02] * 5 + [0.0] * 3 + [0.02])

        stats = buffer.get_stats()

        assert stats["state"] == "accumulating"
        assert stats["segments_emitted"] == 1
        assert stats["buffered_ms"] == pytest.approx(100.0)
