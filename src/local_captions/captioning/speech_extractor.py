"""Pre-transcription extraction of speech-only audio from a buffer."""

from typing import Any

import numpy as np

from .config import (
    DEFAULT_SAMPLE_RATE,
    EXTRACTOR_CHUNK_MS,
    EXTRACTOR_END_SILENCE_MS,
    EXTRACTOR_GAP_MS,
    EXTRACTOR_LONG_PAUSE_MS,
    EXTRACTOR_MIN_CHUNK_CONFIDENCE,
    EXTRACTOR_QUALITY_THRESHOLD,
    EXTRACTOR_SENTENCE_BREAK_MS,
    VAD_ENERGY_THRESHOLD,
)
from .logging_utils import get_logger
from .models import (
    SentenceBoundary,
    SpeechExtractionResult,
    ms_to_samples,
    samples_to_ms,
)
from .vad import VoiceActivityDetector

logger = get_logger(__name__)


class SpeechExtractor:
    """Strips silent chunks from a buffer before it is transcribed.

    The buffer is analysed in fixed chunks with a fresh detector. Speech
    chunks are concatenated with short zero gaps; long pauses between them
    are reported as sentence boundaries.
    """

    def __init__(
        self,
        sample_rate: int | None = None,
        chunk_ms: int | None = None,
        threshold: float | None = None,
    ) -> None:
        """
        Initialize the speech extractor.

        Args:
            sample_rate: Audio sample rate in Hz
            chunk_ms: Analysis chunk duration
            threshold: RMS energy threshold for speech
        """
        self.sample_rate = sample_rate or DEFAULT_SAMPLE_RATE
        self.chunk_ms = chunk_ms or EXTRACTOR_CHUNK_MS
        self.threshold = threshold or VAD_ENERGY_THRESHOLD
        self._chunk_samples = ms_to_samples(self.chunk_ms, self.sample_rate)
        self._gap = np.zeros(ms_to_samples(EXTRACTOR_GAP_MS, self.sample_rate), dtype=np.float32)

        self._extractions = 0
        self._quality_total = 0.0

    def extract(self, audio: np.ndarray) -> SpeechExtractionResult:
        """
        Extract speech-only audio and diagnostics from a buffer.

        Args:
            audio: Mono float samples

        Returns:
            SpeechExtractionResult; empty audio yields an empty result
        """
        if len(audio) == 0:
            return SpeechExtractionResult(
                clean_audio=np.zeros(0, dtype=np.float32),
                original_duration_ms=0.0,
                speech_duration_ms=0.0,
                speech_percentage=0.0,
                segment_count=0,
                sentence_boundaries=[],
                quality_score=0.0,
            )

        # Analysis is stateless across buffers
        vad = VoiceActivityDetector(threshold=self.threshold)
        chunks = []
        for start in range(0, len(audio), self._chunk_samples):
            samples = np.asarray(audio[start : start + self._chunk_samples], dtype=np.float32)
            decision = vad.classify(samples)
            chunks.append((start, samples, decision))

        speech = [
            (start, samples, decision)
            for start, samples, decision in chunks
            if decision.is_speech and decision.confidence >= EXTRACTOR_MIN_CHUNK_CONFIDENCE
        ]

        pieces = []
        for _, samples, _ in speech:
            pieces.append(samples)
            pieces.append(self._gap)
        clean_audio = np.concatenate(pieces) if pieces else np.zeros(0, dtype=np.float32)

        original_ms = samples_to_ms(len(audio), self.sample_rate)
        speech_ms = sum(samples_to_ms(len(samples), self.sample_rate) for _, samples, _ in speech)
        quality = self._quality_score(speech)

        self._extractions += 1
        self._quality_total += quality

        result = SpeechExtractionResult(
            clean_audio=clean_audio,
            original_duration_ms=original_ms,
            speech_duration_ms=speech_ms,
            speech_percentage=speech_ms / original_ms if original_ms else 0.0,
            segment_count=len(speech),
            sentence_boundaries=self._sentence_boundaries(chunks),
            quality_score=quality,
        )
        logger.trace(
            f"✂️ Extracted {speech_ms:.0f}ms speech from {original_ms:.0f}ms "
            f"(quality {quality:.2f}, {len(result.sentence_boundaries)} boundaries)"
        )
        return result

    def has_sufficient_speech(self, audio: np.ndarray) -> bool:
        """Check for at least 1s of speech making up 20% of the buffer at good quality."""
        result = self.extract(audio)
        return (
            result.speech_duration_ms >= 1000
            and result.speech_percentage >= 0.2
            and result.quality_score >= EXTRACTOR_QUALITY_THRESHOLD
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "extractions": self._extractions,
            "average_quality": (
                self._quality_total / self._extractions if self._extractions else 0.0
            ),
        }

    def _sentence_boundaries(self, chunks: list) -> list[SentenceBoundary]:
        boundaries = []
        silence_start_ms: float | None = None
        silence_ms = 0.0

        for start, samples, decision in chunks:
            chunk_ms = samples_to_ms(len(samples), self.sample_rate)
            if decision.is_speech:
                if silence_start_ms is not None and silence_ms >= EXTRACTOR_SENTENCE_BREAK_MS:
                    boundaries.append(
                        SentenceBoundary(
                            time_offset_ms=silence_start_ms + silence_ms / 2,
                            silence_duration_ms=silence_ms,
                            confidence=0.8,
                            reason=(
                                "long_pause"
                                if silence_ms >= EXTRACTOR_LONG_PAUSE_MS
                                else "speech_break"
                            ),
                        )
                    )
                silence_start_ms = None
                silence_ms = 0.0
            elif silence_start_ms is None:
                silence_start_ms = samples_to_ms(start, self.sample_rate)
                silence_ms = chunk_ms
            else:
                silence_ms += chunk_ms

        if silence_start_ms is not None and silence_ms >= EXTRACTOR_END_SILENCE_MS:
            boundaries.append(
                SentenceBoundary(
                    time_offset_ms=silence_start_ms + silence_ms / 2,
                    silence_duration_ms=silence_ms,
                    confidence=0.6,
                    reason="end_of_speech",
                )
            )
        return boundaries

    def _quality_score(self, speech: list) -> float:
        if not speech:
            return 0.0

        average_confidence = sum(decision.confidence for _, _, decision in speech) / len(speech)
        # Fragmented speech transcribes worse
        continuity = 1.0 if len(speech) <= 5 else max(0.3, 1.0 - (len(speech) - 5) * 0.1)
        speech_ms = sum(samples_to_ms(len(samples), self.sample_rate) for _, samples, _ in speech)
        duration = min(1.0, speech_ms / 2000.0)

        return min(1.0, average_confidence * 0.4 + continuity * 0.3 + duration * 0.3)
