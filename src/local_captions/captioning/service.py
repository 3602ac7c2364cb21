"""Live caption service orchestrator."""

import asyncio
import time
from collections import deque
from collections.abc import AsyncIterable, Callable
from typing import Any

import numpy as np

from .config import ERROR_RECOVERY_SLEEP, SENTENCE_END_PATTERNS, CaptionSettings
from .exceptions import ConfigurationError, TranscriptionError
from .interfaces import AudioUnitProducer, CaptionStabilizer, TranscriptionService
from .local_agreement import LocalAgreementStabilizer
from .logging_utils import get_logger
from .models import (
    AudioFrame,
    AudioUnit,
    AudioUnitKind,
    CaptionEntry,
    StabilizationMethod,
    StabilizedResult,
    TranscriptionCandidate,
)
from .segment_buffer import SegmentBuffer
from .sliding_window import SlidingWindowBuffer
from .speech_extractor import SpeechExtractor
from .stabilization import StabilizationEngine
from .vad import VoiceActivityDetector

logger = get_logger(__name__)

STRATEGIES = ("segment", "window")
STABILIZERS = ("overlap", "prefix")


class CaptionService:
    """Coordinates VAD, buffering, transcription and stabilization into captions.

    Frames are ingested synchronously; transcription runs in a single worker
    task so units reach the stabilizer in start-time order while ingestion
    keeps accepting frames.
    """

    def __init__(
        self,
        transcriber: TranscriptionService,
        strategy: str = "segment",
        stabilizer: str = "overlap",
        settings: CaptionSettings | None = None,
    ) -> None:
        """
        Initialize the caption service.

        Args:
            transcriber: Speech-to-text engine
            strategy: "segment" (silence-triggered) or "window" (sliding)
            stabilizer: "overlap" (word-level) or "prefix" (LocalAgreement)
            settings: Pipeline settings; defaults come from config

        Raises:
            ConfigurationError: If the strategy, stabilizer or settings are invalid
        """
        if strategy not in STRATEGIES:
            raise ConfigurationError(
                f"Unknown buffering strategy: {strategy}. Use one of {STRATEGIES}"
            )
        if stabilizer not in STABILIZERS:
            raise ConfigurationError(
                f"Unknown stabilizer: {stabilizer}. Use one of {STABILIZERS}"
            )

        self._settings = (settings or CaptionSettings()).validate()
        self._transcriber = transcriber
        self._strategy = strategy

        s = self._settings
        self._vad = VoiceActivityDetector(
            threshold=s.vad_threshold,
            speech_count_threshold=s.speech_count_threshold,
            silence_count_threshold=s.silence_count_threshold,
        )
        self._producer: AudioUnitProducer = self._create_producer()
        self._stabilizer: CaptionStabilizer = self._create_stabilizer(stabilizer)
        self._extractor = (
            SpeechExtractor(sample_rate=s.sample_rate, threshold=s.vad_threshold)
            if strategy == "window" and s.clean_windows
            else None
        )

        self._running = False
        self._units: asyncio.Queue | None = None
        self._worker_task: asyncio.Task | None = None
        self._in_flight = False

        self._result_callback: Callable[[StabilizedResult], None] | None = None
        self._caption_callback: Callable[[CaptionEntry], None] | None = None
        self._latest_result: StabilizedResult | None = None

        self._caption_history: deque[CaptionEntry] = deque(
            maxlen=s.caption_history_size
        )
        self._line_words: list[str] = []
        self._line_confidences: list[float] = []
        self._silence_frames = 0
        self._boundary_pending = False

        self._frames_processed = 0
        self._units_produced = 0
        self._units_skipped = 0
        self._units_failed = 0
        self._results_received = 0

    def _create_producer(self) -> AudioUnitProducer:
        s = self._settings
        if self._strategy == "segment":
            return SegmentBuffer(
                vad=self._vad,
                silence_trigger_frame_count=s.silence_trigger_frames,
                max_accumulation_duration_ms=s.max_segment_duration_ms,
                sample_rate=s.sample_rate,
            )
        return SlidingWindowBuffer(
            window_size_ms=s.window_size_ms,
            stride_ms=s.stride_ms,
            sample_rate=s.sample_rate,
        )

    def _create_stabilizer(self, kind: str) -> CaptionStabilizer:
        s = self._settings
        if kind == "prefix":
            return LocalAgreementStabilizer(
                min_candidate_confidence=s.min_candidate_confidence,
                silence_markers=s.silence_markers,
            )
        return StabilizationEngine(
            agreement_threshold=s.agreement_threshold,
            min_candidate_confidence=s.min_candidate_confidence,
            min_word_confidence=s.min_word_confidence,
            max_display_words=s.max_display_words,
            word_ttl_seconds=s.word_ttl_seconds,
            silence_markers=s.silence_markers,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stabilizer(self) -> CaptionStabilizer:
        return self._stabilizer

    @property
    def producer(self) -> AudioUnitProducer:
        return self._producer

    def is_available(self) -> bool:
        """Check whether the transcription engine can be used."""
        return self._transcriber.is_available()

    def set_result_callback(self, callback: Callable[[StabilizedResult], None]) -> None:
        """
        Set callback for stabilized caption updates.

        Args:
            callback: Function to call with each StabilizedResult
        """
        self._result_callback = callback

    def set_caption_callback(self, callback: Callable[[CaptionEntry], None]) -> None:
        """
        Set callback for finalized caption lines.

        Args:
            callback: Function to call with each CaptionEntry
        """
        self._caption_callback = callback

    async def start(self) -> None:
        """Start the transcription worker."""
        if self._running:
            logger.warning("Caption service is already running")
            return

        self._units = asyncio.Queue(maxsize=self._settings.max_pending_units)
        self._worker_task = asyncio.create_task(self._transcription_worker())
        self._running = True
        logger.debug(f"Caption service started ({self._strategy} strategy)")

    async def stop(self) -> list[AudioUnit]:
        """
        Stop without waiting on pending transcriptions.

        The in-progress segment is force-flushed and returned untranscribed;
        the current caption line is finalized.

        Returns:
            Units flushed from the producer
        """
        if not self._running:
            return []

        self._running = False
        flushed = self._producer.flush()

        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
        self._worker_task = None
        self._in_flight = False

        self._finalize_line()
        logger.debug(f"Caption service stopped ({len(flushed)} units flushed)")
        return flushed

    async def run(self, frames: AsyncIterable[AudioFrame]) -> list[CaptionEntry]:
        """
        Caption a whole frame stream, draining all work at end of stream.

        Args:
            frames: Async iterable of audio frames

        Returns:
            Caption history after the stream ended
        """
        await self.start()
        try:
            async for frame in frames:
                self.process_frame(frame)
                # Let the worker pick up queued units between frames
                await asyncio.sleep(0)
            await self.drain()
        finally:
            await self.stop()
        return self.get_caption_history()

    async def drain(self) -> None:
        """Flush the producer and wait until every queued unit is processed."""
        for unit in self._producer.flush():
            self._schedule(unit, force=True)
        if self._units is not None and self._running:
            await self._units.join()
        self._finalize_line()

    def process_frame(self, frame: AudioFrame) -> list[AudioUnit]:
        """
        Ingest one frame.

        Args:
            frame: Audio frame, tagged with this service's VAD if undecided

        Returns:
            Units the frame completed (scheduled or skipped)
        """
        if frame.vad is None:
            frame = self._vad.tag(frame)
        self._frames_processed += 1
        self._track_boundary(frame)

        units = self._producer.produce(frame)
        for unit in units:
            self._schedule(unit)

        self._maybe_finalize_line()
        return units

    def reset(self) -> None:
        """Clear every stage and the current caption line."""
        self._producer.reset()
        self._stabilizer.reset()
        self._vad.reset()
        if self._units is not None:
            while not self._units.empty():
                self._units.get_nowait()
                self._units.task_done()
        self._line_words = []
        self._line_confidences = []
        self._silence_frames = 0
        self._boundary_pending = False
        self._latest_result = None
        logger.debug("Caption service reset")

    def get_latest_result(self) -> StabilizedResult | None:
        return self._latest_result

    def get_caption_history(self) -> list[CaptionEntry]:
        return list(self._caption_history)

    def get_current_line(self) -> str:
        return " ".join(self._line_words)

    def clear_captions(self) -> None:
        self._caption_history.clear()
        self._line_words = []
        self._line_confidences = []

    def get_stats(self) -> dict[str, Any]:
        """
        Get pipeline statistics.

        Returns:
            Dictionary with frame, unit and caption counters
        """
        return {
            "strategy": self._strategy,
            "frames_processed": self._frames_processed,
            "units_produced": self._units_produced,
            "units_skipped": self._units_skipped,
            "units_failed": self._units_failed,
            "results_received": self._results_received,
            "captions": len(self._caption_history),
            "pending_units": self._units.qsize() if self._units else 0,
        }

    def _schedule(self, unit: AudioUnit, force: bool = False) -> None:
        self._units_produced += 1

        if (
            unit.kind is AudioUnitKind.SEGMENT
            and unit.duration_ms < self._settings.min_segment_duration_ms
        ):
            self._units_skipped += 1
            logger.debug(f"Skipping short segment ({unit.duration_ms:.0f}ms)")
            return

        if self._units is None or not self._running:
            self._units_skipped += 1
            logger.debug("Caption service not running, unit discarded")
            return

        if unit.kind is AudioUnitKind.WINDOW and not force and self._transcription_busy():
            # A newer window supersedes this one within a stride
            self._units_skipped += 1
            logger.trace(f"Skipping window at {unit.start_time_ms:.0f}ms (transcriber busy)")
            return

        if self._units.full():
            dropped = self._units.get_nowait()
            self._units.task_done()
            self._units_skipped += 1
            logger.warning(
                f"⚠️ Transcription queue full, dropped unit at {dropped.start_time_ms:.0f}ms"
            )
        self._units.put_nowait(unit)

    def _transcription_busy(self) -> bool:
        return self._in_flight or (self._units is not None and not self._units.empty())

    async def _transcription_worker(self) -> None:
        while True:
            unit = await self._units.get()
            self._in_flight = True
            try:
                await self._transcribe_unit(unit)
            except asyncio.CancelledError:
                raise
            except TranscriptionError as e:
                self._units_failed += 1
                logger.error(f"❌ Transcription failed for unit at {unit.start_time_ms:.0f}ms: {e}")
            except Exception as e:
                self._units_failed += 1
                logger.error(f"❌ Error processing unit at {unit.start_time_ms:.0f}ms: {e}")
                await asyncio.sleep(ERROR_RECOVERY_SLEEP)
            finally:
                self._in_flight = False
                self._units.task_done()
            self._maybe_finalize_line()

    async def _transcribe_unit(self, unit: AudioUnit) -> None:
        audio = self._prepare_audio(unit)
        if audio is None:
            return

        output = await self._transcriber.transcribe(audio)
        candidate = TranscriptionCandidate(
            text=output.text.strip(),
            confidence=output.confidence,
            timestamp=time.time(),
            buffer_duration_ms=unit.duration_ms,
            words=tuple(output.words),
        )
        result = self._stabilizer.process_candidate(candidate, unit.start_time_ms)
        self._handle_result(result)

    def _prepare_audio(self, unit: AudioUnit) -> np.ndarray | None:
        if self._extractor is None or unit.kind is not AudioUnitKind.WINDOW:
            return unit.audio

        extraction = self._extractor.extract(unit.audio)
        if not extraction.has_speech:
            self._units_skipped += 1
            logger.trace(f"Window at {unit.start_time_ms:.0f}ms has no speech, skipped")
            return None
        return extraction.clean_audio

    def _handle_result(self, result: StabilizedResult) -> None:
        if result.method is StabilizationMethod.REJECTED:
            return

        self._results_received += 1
        self._latest_result = result

        if self._result_callback:
            try:
                self._result_callback(result)
            except Exception as e:
                logger.error(f"Error in result callback: {e}")

        if not result.new_words:
            return

        self._line_words.extend(result.new_words)
        self._line_confidences.append(result.confidence)

        if self._line_words[-1].endswith(SENTENCE_END_PATTERNS):
            self._finalize_line()

    def _track_boundary(self, frame: AudioFrame) -> None:
        if frame.vad.is_speech:
            self._silence_frames = 0
            return

        self._silence_frames += 1
        if self._silence_frames == self._settings.caption_silence_frames:
            self._boundary_pending = True

    def _maybe_finalize_line(self) -> None:
        if not self._boundary_pending:
            return
        # Wait for in-flight audio so its words land on the line they belong to
        if self._transcription_busy():
            return
        self._boundary_pending = False
        self._finalize_line()

    def _finalize_line(self) -> None:
        if not self._line_words:
            return

        confidence = (
            sum(self._line_confidences) / len(self._line_confidences)
            if self._line_confidences
            else None
        )
        entry = CaptionEntry(text=" ".join(self._line_words), confidence=confidence)
        self._caption_history.append(entry)
        self._line_words = []
        self._line_confidences = []

        logger.info(f"💬 {entry.text}")

        if self._caption_callback:
            try:
                self._caption_callback(entry)
            except Exception as e:
                logger.error(f"Error in caption callback: {e}")
