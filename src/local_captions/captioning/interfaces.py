"""Abstract interfaces between the captioning pipeline stages."""

from abc import ABC, abstractmethod

import numpy as np

from .models import (
    AudioFrame,
    AudioUnit,
    StabilizedResult,
    TranscriptionCandidate,
    TranscriptionOutput,
)


class AudioUnitProducer(ABC):
    """Buffering strategy that turns tagged frames into transcribable units."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the strategy name."""
        pass

    @abstractmethod
    def produce(self, frame: AudioFrame) -> list[AudioUnit]:
        """
        Consume one frame and return any units that became ready.

        Args:
            frame: Audio frame, optionally tagged with a VAD decision

        Returns:
            Zero or more audio units in start-time order
        """
        pass

    @abstractmethod
    def flush(self) -> list[AudioUnit]:
        """Force out whatever is buffered (end of stream)."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Discard all buffered audio and state."""
        pass


class TranscriptionService(ABC):
    """Speech-to-text engine consumed by the pipeline."""

    @abstractmethod
    async def transcribe(self, samples: np.ndarray) -> TranscriptionOutput:
        """
        Transcribe mono float32 samples.

        Args:
            samples: Audio samples at the pipeline sample rate

        Returns:
            Text, overall confidence and optional word timings

        Raises:
            TranscriptionError: If the engine fails for this audio
        """
        pass

    def is_available(self) -> bool:
        """Check whether the engine can accept requests."""
        return True


class CaptionStabilizer(ABC):
    """Merges successive transcription candidates into one monotonic text."""

    @abstractmethod
    def process_candidate(
        self,
        candidate: TranscriptionCandidate,
        buffer_start_time_ms: float,
        current_time: float | None = None,
    ) -> StabilizedResult:
        """
        Fold one candidate into the stabilized text.

        Args:
            candidate: Transcription of one audio unit
            buffer_start_time_ms: Start time of that unit in the stream
            current_time: Current timestamp, uses time.time() if not provided

        Returns:
            The visible text and the words added by this candidate
        """
        pass

    @property
    @abstractmethod
    def stabilized_text(self) -> str:
        """Return the currently visible text."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Clear all stabilization state."""
        pass
