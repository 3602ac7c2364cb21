"""Tests for CaptionService class."""

import asyncio
from unittest.mock import Mock

import numpy as np
import pytest

from local_captions.captioning.config import CaptionSettings
from local_captions.captioning.exceptions import ConfigurationError, TranscriptionError
from local_captions.captioning.interfaces import TranscriptionService
from local_captions.captioning.local_agreement import LocalAgreementStabilizer
from local_captions.captioning.models import AudioFrame, AudioUnitKind, TranscriptionOutput
from local_captions.captioning.service import CaptionService

LOUD = 0.02
QUIET = 0.0


class ScriptedTranscriber(TranscriptionService):
    """Returns queued responses in order, repeating the last one."""

    def __init__(self, *responses, gate: asyncio.Event | None = None) -> None:
        self.responses = list(responses)
        self.calls: list[int] = []
        self.gate = gate

    async def transcribe(self, samples: np.ndarray) -> TranscriptionOutput:
        self.calls.append(len(samples))
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def output(text: str, confidence: float = 0.9) -> TranscriptionOutput:
    return TranscriptionOutput(text=text, confidence=confidence)


def make_frames(pattern: list[tuple[float, int]]) -> list[AudioFrame]:
    frames = []
    for amplitude, count in pattern:
        for _ in range(count):
            sequence = len(frames)
            frames.append(
                AudioFrame(
                    samples=np.full(1600, amplitude, dtype=np.float32),
                    sequence=sequence,
                    timestamp=sequence * 100.0,
                )
            )
    return frames


async def frame_stream(frames: list[AudioFrame]):
    for frame in frames:
        yield frame


async def feed(service: CaptionService, frames: list[AudioFrame]) -> None:
    for frame in frames:
        service.process_frame(frame)
        await asyncio.sleep(0)


async def settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.mark.unit
class TestCaptionServiceConfiguration:
    """Test cases for CaptionService construction."""

    def test_unknown_strategy(self) -> None:
        """Test unknown buffering strategies are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown buffering strategy"):
            CaptionService(ScriptedTranscriber(output("x")), strategy="chunks")

    def test_unknown_stabilizer(self) -> None:
        """Test unknown stabilizers are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown stabilizer"):
            CaptionService(ScriptedTranscriber(output("x")), stabilizer="magic")

    def test_invalid_settings(self) -> None:
        """Test invalid settings fail at construction."""
        with pytest.raises(ConfigurationError):
            CaptionService(
                ScriptedTranscriber(output("x")),
                settings=CaptionSettings(window_size_ms=1000, stride_ms=2000),
            )

    def test_prefix_stabilizer_selected(self) -> None:
        """Test the prefix variant can be chosen."""
        service = CaptionService(ScriptedTranscriber(output("x")), stabilizer="prefix")
        assert isinstance(service.stabilizer, LocalAgreementStabilizer)

    def test_is_available_delegates_to_transcriber(self) -> None:
        """Test availability reflects the transcription engine."""
        transcriber = ScriptedTranscriber(output("x"))
        transcriber.is_available = Mock(return_value=False)

        assert CaptionService(transcriber).is_available() is False


@pytest.mark.unit
class TestCaptionServiceSegments:
    """Test cases for CaptionService with the segment strategy."""

    @pytest.mark.asyncio
    async def test_sentence_becomes_caption(self) -> None:
        """Test a spoken sentence is transcribed and finalized as one caption."""
        transcriber = ScriptedTranscriber(output("hello world."))
        service = CaptionService(transcriber)
        results = []
        service.set_result_callback(results.append)

        captions = await service.run(frame_stream(make_frames([(LOUD, 5), (QUIET, 15)])))

        assert transcriber.calls == [8000]
        assert [c.text for c in captions] == ["hello world."]
        assert captions[0].confidence == pytest.approx(0.9)
        assert results[0].new_words == ["hello", "world."]
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_silence_finalizes_line(self) -> None:
        """Test a second of silence closes the line without punctuation."""
        transcriber = ScriptedTranscriber(output("good morning"), output("how are you"))
        service = CaptionService(transcriber)
        finalized = []
        service.set_caption_callback(finalized.append)
        await service.start()

        await feed(service, make_frames([(LOUD, 5), (QUIET, 15)]))
        await settle()

        assert [c.text for c in finalized] == ["good morning"]
        assert service.get_current_line() == ""

        await feed(service, make_frames([(LOUD, 6), (QUIET, 4)]))
        await settle()
        assert service.get_current_line() == "how are you"

        await service.drain()
        await service.stop()
        assert [c.text for c in service.get_caption_history()] == [
            "good morning",
            "how are you",
        ]

    @pytest.mark.asyncio
    async def test_caption_history_is_bounded(self) -> None:
        """Test the oldest caption lines are evicted once the history is full."""
        transcriber = ScriptedTranscriber(
            output("good morning."), output("lovely weather."), output("see you soon.")
        )
        service = CaptionService(
            transcriber, settings=CaptionSettings(caption_history_size=2)
        )
        finalized = []
        service.set_caption_callback(finalized.append)

        captions = await service.run(
            frame_stream(make_frames([(LOUD, 5), (QUIET, 5)] * 3))
        )

        assert len(finalized) == 3
        assert [c.text for c in captions] == ["lovely weather.", "see you soon."]
        assert [c.text for c in service.get_caption_history()] == [
            "lovely weather.",
            "see you soon.",
        ]

    @pytest.mark.asyncio
    async def test_short_segments_skipped(self) -> None:
        """Test segments below the minimum duration are not transcribed."""
        transcriber = ScriptedTranscriber(output("uh"))
        service = CaptionService(transcriber)

        captions = await service.run(frame_stream(make_frames([(LOUD, 2), (QUIET, 5)])))

        assert transcriber.calls == []
        assert captions == []
        assert service.get_stats()["units_skipped"] == 1

    @pytest.mark.asyncio
    async def test_transcription_error_does_not_stop_pipeline(self) -> None:
        """Test failed units are counted and later units still caption."""
        transcriber = ScriptedTranscriber(
            TranscriptionError("engine hiccup"), output("still here.")
        )
        service = CaptionService(transcriber)

        captions = await service.run(
            frame_stream(make_frames([(LOUD, 5), (QUIET, 5), (LOUD, 5), (QUIET, 5)]))
        )

        assert len(transcriber.calls) == 2
        assert service.get_stats()["units_failed"] == 1
        assert [c.text for c in captions] == ["still here."]

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self) -> None:
        """Test a raising callback does not break captioning."""
        service = CaptionService(ScriptedTranscriber(output("fine thanks.")))
        service.set_result_callback(Mock(side_effect=RuntimeError("ui gone")))

        captions = await service.run(frame_stream(make_frames([(LOUD, 5), (QUIET, 5)])))

        assert [c.text for c in captions] == ["fine thanks."]

    @pytest.mark.asyncio
    async def test_stop_returns_pending_segment(self) -> None:
        """Test stopping mid-speech flushes the segment without transcribing it."""
        transcriber = ScriptedTranscriber(output("never"))
        service = CaptionService(transcriber)
        await service.start()
        await feed(service, make_frames([(LOUD, 4)]))

        flushed = await service.stop()

        assert len(flushed) == 1
        assert flushed[0].kind is AudioUnitKind.SEGMENT
        assert flushed[0].duration_ms == pytest.approx(400.0)
        assert transcriber.calls == []

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest_unit(self) -> None:
        """Test back-pressure drops the oldest pending segment."""
        gate = asyncio.Event()
        transcriber = ScriptedTranscriber(output("one two"), gate=gate)
        service = CaptionService(transcriber, settings=CaptionSettings(max_pending_units=1))
        await service.start()

        await feed(service, make_frames([(LOUD, 5), (QUIET, 3)] * 3))
        assert service.get_stats()["units_skipped"] == 1

        gate.set()
        await service.drain()
        await service.stop()

        assert len(transcriber.calls) == 2


@pytest.mark.unit
class TestCaptionServiceWindows:
    """Test cases for CaptionService with the window strategy."""

    @pytest.mark.asyncio
    async def test_overlapping_windows_build_one_line(self) -> None:
        """Test overlapping window transcripts merge without duplicated words."""
        transcriber = ScriptedTranscriber(
            output("the quick brown"),
            output("quick brown fox"),
            output("brown fox jumps"),
            output("fox jumps"),
        )
        service = CaptionService(transcriber, strategy="window")

        captions = await service.run(frame_stream(make_frames([(LOUD, 50)])))

        assert transcriber.calls == [48000, 48000, 48000, 32000]
        assert [c.text for c in captions] == ["the quick brown fox jumps"]

    @pytest.mark.asyncio
    async def test_busy_transcriber_skips_windows(self) -> None:
        """Test windows arriving during a transcription are skipped, the final one is not."""
        gate = asyncio.Event()
        transcriber = ScriptedTranscriber(output("slow engine"), gate=gate)
        service = CaptionService(transcriber, strategy="window")
        await service.start()

        await feed(service, make_frames([(LOUD, 50)]))
        assert service.get_stats()["units_skipped"] == 2

        gate.set()
        await service.drain()
        await service.stop()

        assert transcriber.calls == [48000, 32000]

    @pytest.mark.asyncio
    async def test_clean_windows_skip_silence(self) -> None:
        """Test silent windows are not transcribed when cleaning is enabled."""
        transcriber = ScriptedTranscriber(output("nothing"))
        service = CaptionService(
            transcriber, strategy="window", settings=CaptionSettings(clean_windows=True)
        )

        captions = await service.run(frame_stream(make_frames([(QUIET, 40)])))

        assert transcriber.calls == []
        assert captions == []

    @pytest.mark.asyncio
    async def test_reset_clears_line(self) -> None:
        """Test reset discards the current line and stabilizer state."""
        transcriber = ScriptedTranscriber(output("partial words"))
        service = CaptionService(transcriber, strategy="window")
        await service.start()
        await feed(service, make_frames([(LOUD, 30)]))
        await settle()
        assert service.get_current_line() == "partial words"

        service.reset()

        assert service.get_current_line() == ""
        assert service.stabilizer.stabilized_text == ""
        await service.stop()
        assert service.get_caption_history() == []
