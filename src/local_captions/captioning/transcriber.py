"""Whisper transcription backend."""

from __future__ import annotations

import asyncio
import re
import shutil
import time
from typing import Any

import numpy as np

from .cache_utils import get_whisper_cache_dir
from .config import (
    CONFIDENCE_LOGPROB_MAX,
    CONFIDENCE_LOGPROB_MIN,
    DEFAULT_BEAM_SIZE,
    DEFAULT_COMPUTE_TYPE,
    DEFAULT_DEVICE,
    DEFAULT_MODEL_SIZE,
)
from .exceptions import TranscriptionError
from .interfaces import TranscriptionService
from .logging_utils import get_logger
from .models import TranscriptionOutput, WordTiming

# Import faster_whisper at module level for proper mocking in tests
try:
    import faster_whisper  # type: ignore[import-untyped]
except ImportError:
    faster_whisper = None

logger = get_logger(__name__)


class WhisperTranscriber(TranscriptionService):
    """Uses faster-whisper for local speech-to-text with word timings."""

    def __init__(
        self,
        model_size: str = DEFAULT_MODEL_SIZE,
        device: str = DEFAULT_DEVICE,
        compute_type: str = DEFAULT_COMPUTE_TYPE,
        language: str | None = None,
        beam_size: int = DEFAULT_BEAM_SIZE,
    ) -> None:
        """
        Initialize Whisper transcriber.

        Args:
            model_size: Size of Whisper model to use
            device: Device to use for inference ("cpu" or "cuda")
            compute_type: Compute type for inference ("int8", "float16", etc.)
            language: Optional language code; None lets Whisper detect it
            beam_size: Beam width used for decoding
        """
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.beam_size = beam_size
        self._model: Any | None = None
        self._model_loaded = False

    def _load_model(self) -> bool:
        """
        Load the Whisper model on first use.

        Returns:
            True if model loaded successfully, False otherwise
        """
        if self._model_loaded and self._model is not None:
            return True

        try:
            if faster_whisper is None:
                raise ImportError("faster-whisper library not available")

            logger.debug(
                f"Loading Whisper '{self.model_size}' on {self.device} ({self.compute_type})"
            )
            self._model = faster_whisper.WhisperModel(
                self.model_size,
                device=self.device,
                compute_type=self.compute_type,
                download_root=str(get_whisper_cache_dir()),
            )
            self._model_loaded = True
            logger.debug(f"Successfully loaded Whisper model '{self.model_size}'")
            return True

        except ImportError as e:
            logger.error(f"faster-whisper library not available: {e}")
            return False
        except FileNotFoundError as e:
            logger.error(f"Whisper model files not found: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}")
            return False

    def is_available(self) -> bool:
        """
        Check if the Whisper model is available.

        Returns:
            True if model is available, False otherwise
        """
        try:
            return self._load_model()
        except Exception as e:
            logger.debug(f"Model availability check failed: {e}")
            return False

    async def transcribe(self, samples: np.ndarray) -> TranscriptionOutput:
        """
        Transcribe mono float samples.

        Args:
            samples: Audio at 16kHz

        Returns:
            TranscriptionOutput with text, confidence and word timings

        Raises:
            TranscriptionError: If the model is unavailable or inference fails
        """
        processing_start_time = time.time()

        if samples is None or len(samples) == 0:
            return TranscriptionOutput(text="", confidence=0.0)

        if not self._load_model() or self._model is None:
            raise TranscriptionError("Whisper model not available for transcription")

        audio = np.ascontiguousarray(samples, dtype=np.float32)
        logger.debug(f"🎤 Transcribing {len(audio)} samples")

        try:
            # Run transcription in thread pool to avoid blocking
            loop = asyncio.get_running_loop()
            segments = await loop.run_in_executor(None, self._run_model, audio)
        except Exception as e:
            raise TranscriptionError(f"Whisper transcription failed: {e}") from e

        text = self._post_process_text("".join(segment.text for segment in segments))
        output = TranscriptionOutput(
            text=text,
            confidence=self._calculate_confidence(segments),
            words=self._extract_word_timings(segments),
            processing_time=time.time() - processing_start_time,
        )

        if output.text:
            logger.trace(
                f"✅ Transcription: '{output.text}' "
                f"({output.confidence:.2f}, {output.processing_time:.2f}s)"
            )
        else:
            logger.debug(
                f"🔇 Transcription returned empty result ({output.processing_time:.2f}s)"
            )
        return output

    def _run_model(self, audio: np.ndarray) -> list:
        segments, _ = self._model.transcribe(
            audio,
            beam_size=self.beam_size,
            language=self.language,
            word_timestamps=True,
            condition_on_previous_text=False,
        )
        # Segments are a lazy generator; decode inside the executor
        return list(segments)

    def _calculate_confidence(self, segments: list) -> float:
        """
        Convert faster-whisper avg_logprob to normalized confidence score (0.0-1.0).

        avg_logprob typically ranges from -2.0 (low confidence) to -0.1 (high confidence)
        and is weighted by segment duration.

        Args:
            segments: List of transcription segments from faster-whisper

        Returns:
            Confidence score between 0.0 and 1.0
        """
        if not segments:
            return 0.0

        total_duration = 0.0
        weighted_logprob = 0.0
        for segment in segments:
            if (
                hasattr(segment, "avg_logprob")
                and hasattr(segment, "start")
                and hasattr(segment, "end")
            ):
                duration = segment.end - segment.start
                total_duration += duration
                weighted_logprob += segment.avg_logprob * duration

        if total_duration == 0:
            return 0.0

        avg_logprob = weighted_logprob / total_duration
        return max(
            0.0,
            min(
                1.0,
                (avg_logprob - CONFIDENCE_LOGPROB_MIN)
                / (CONFIDENCE_LOGPROB_MAX - CONFIDENCE_LOGPROB_MIN),
            ),
        )

    def _extract_word_timings(self, segments: list) -> list[WordTiming]:
        timings = []
        for segment in segments:
            for word in getattr(segment, "words", None) or []:
                text = word.word.strip()
                if not text:
                    continue
                timings.append(
                    WordTiming(
                        text=text,
                        start_ms=word.start * 1000.0,
                        end_ms=word.end * 1000.0,
                        confidence=float(word.probability),
                    )
                )
        return timings

    def _post_process_text(self, text: str) -> str:
        """
        Collapse whitespace in transcribed text.

        Args:
            text: Raw transcribed text

        Returns:
            Cleaned text
        """
        if not text or not isinstance(text, str):
            return ""
        return re.sub(r"\s+", " ", text).strip()

    def get_model_info(self) -> dict[str, Any]:
        """
        Get information about the current model.

        Returns:
            Dictionary containing model information
        """
        return {
            "model_size": self.model_size,
            "device": self.device,
            "compute_type": self.compute_type,
            "model_loaded": self._model_loaded,
        }

    def clear_model_cache(self) -> bool:
        """
        Clear the downloaded model cache and reset the transcriber.

        Returns:
            True if cache was cleared successfully, False otherwise
        """
        self._model = None
        self._model_loaded = False

        whisper_cache_dir = get_whisper_cache_dir()
        try:
            if whisper_cache_dir.exists():
                logger.debug(f"Removing Whisper cache directory: {whisper_cache_dir}")
                shutil.rmtree(whisper_cache_dir)
            whisper_cache_dir.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Failed to clear model cache: {e}")
            return False
