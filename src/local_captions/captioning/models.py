"""Data models for live captioning functionality."""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

from .config import AGREEMENT_THRESHOLD, DEFAULT_SAMPLE_RATE


def _new_id() -> str:
    return str(uuid.uuid4())


def samples_to_ms(sample_count: int, sample_rate: int) -> float:
    """Convert a sample count to milliseconds."""
    return sample_count * 1000.0 / sample_rate


def ms_to_samples(duration_ms: float, sample_rate: int) -> int:
    """Convert milliseconds to a whole number of samples."""
    return int(round(duration_ms * sample_rate / 1000.0))


class AudioSource(Enum):
    """Origin of a raw audio frame."""

    MICROPHONE = "microphone"
    SYSTEM = "system"
    MIXED = "mixed"


@dataclass(frozen=True)
class VADDecision:
    """Speech/silence decision attached to one frame."""

    is_speech: bool
    confidence: float
    energy_level: float
    # Instantaneous energy decision; None when the decision was not energy based
    above_threshold: bool | None = None

    @property
    def is_active_speech(self) -> bool:
        """Speech state that is also backed by this frame's own energy."""
        if self.above_threshold is None:
            return self.is_speech
        return self.is_speech and self.above_threshold


@dataclass(frozen=True, eq=False)
class AudioFrame:
    """A fixed-length block of mono float samples from a capture source."""

    samples: np.ndarray
    sequence: int
    timestamp: float  # ms since session start
    source: AudioSource = AudioSource.MICROPHONE
    sample_rate: int = DEFAULT_SAMPLE_RATE
    vad: VADDecision | None = None

    @property
    def duration_ms(self) -> float:
        return samples_to_ms(len(self.samples), self.sample_rate)

    def with_decision(self, decision: VADDecision) -> "AudioFrame":
        """Return a copy of this frame tagged with a VAD decision."""
        return replace(self, vad=decision)


class SegmentTrigger(Enum):
    """Reason a speech segment was emitted."""

    SILENCE_DETECTED = "silence_detected"
    MAX_DURATION_REACHED = "max_duration_reached"
    FORCED_STOP = "forced_stop"


@dataclass(frozen=True, eq=False)
class SpeechSegment:
    """Contiguous speech audio assembled by the segment buffer."""

    audio: np.ndarray
    start_time_ms: float
    trigger: SegmentTrigger
    sample_rate: int = DEFAULT_SAMPLE_RATE
    id: str = field(default_factory=_new_id)

    @property
    def duration_ms(self) -> float:
        return samples_to_ms(len(self.audio), self.sample_rate)

    @property
    def end_time_ms(self) -> float:
        return self.start_time_ms + self.duration_ms


@dataclass(frozen=True, eq=False)
class AudioWindow:
    """A fixed-duration slice of the sliding buffer."""

    audio: np.ndarray
    start_time_ms: float
    end_time_ms: float
    sample_rate: int = DEFAULT_SAMPLE_RATE
    is_final: bool = False
    id: str = field(default_factory=_new_id)

    @property
    def duration_ms(self) -> float:
        return self.end_time_ms - self.start_time_ms

    def overlap_duration_ms(self, other: "AudioWindow") -> float:
        """Length of the time range shared with another window."""
        overlap_start = max(self.start_time_ms, other.start_time_ms)
        overlap_end = min(self.end_time_ms, other.end_time_ms)
        return max(0.0, overlap_end - overlap_start)

    def overlaps(self, other: "AudioWindow", threshold_ms: float = 0.0) -> bool:
        return self.overlap_duration_ms(other) > threshold_ms


class AudioUnitKind(Enum):
    """Buffering strategy that produced an audio unit."""

    SEGMENT = "segment"
    WINDOW = "window"


@dataclass(frozen=True, eq=False)
class AudioUnit:
    """A segment or window handed to transcription, independent of strategy."""

    kind: AudioUnitKind
    payload: SpeechSegment | AudioWindow

    @classmethod
    def from_segment(cls, segment: SpeechSegment) -> "AudioUnit":
        return cls(kind=AudioUnitKind.SEGMENT, payload=segment)

    @classmethod
    def from_window(cls, window: AudioWindow) -> "AudioUnit":
        return cls(kind=AudioUnitKind.WINDOW, payload=window)

    @property
    def audio(self) -> np.ndarray:
        return self.payload.audio

    @property
    def start_time_ms(self) -> float:
        return self.payload.start_time_ms

    @property
    def end_time_ms(self) -> float:
        return self.payload.end_time_ms

    @property
    def duration_ms(self) -> float:
        return self.payload.duration_ms

    @property
    def sample_rate(self) -> int:
        return self.payload.sample_rate

    @property
    def id(self) -> str:
        return self.payload.id


@dataclass(frozen=True)
class WordTiming:
    """Engine-provided timing for one word, relative to the unit start."""

    text: str
    start_ms: float
    end_ms: float
    confidence: float


@dataclass
class TranscriptionOutput:
    """Result returned by a transcription service."""

    text: str
    confidence: float
    words: list[WordTiming] = field(default_factory=list)
    processing_time: float = 0.0


@dataclass(frozen=True)
class TranscriptionCandidate:
    """One transcription result tied to its source audio unit."""

    text: str
    confidence: float
    timestamp: float
    buffer_duration_ms: float
    words: tuple[WordTiming, ...] = ()
    id: str = field(default_factory=_new_id)

    @property
    def tokens(self) -> list[str]:
        return self.text.split()


@dataclass
class StabilizedWord:
    """A word in the stabilizer's working set."""

    text: str
    confidence: float
    start_time_ms: float
    end_time_ms: float
    first_seen: float
    last_confirmed: float
    stabilization_count: int = 1
    is_stabilized: bool = False
    id: str = field(default_factory=_new_id)

    @property
    def stabilization_strength(self) -> float:
        """Progress towards promotion, in [0, 1]."""
        return min(1.0, self.stabilization_count / AGREEMENT_THRESHOLD)


class StabilizationMethod(Enum):
    """How a stabilized result was derived."""

    SEED = "seed"
    OVERLAP_MERGE = "overlap_merge"
    NO_OVERLAP_APPEND = "no_overlap_append"
    SINGLE_CANDIDATE = "single_candidate"
    CONFIDENCE_BOOST = "confidence_boost"
    PREFIX_MATCH = "prefix_match"
    FALLBACK_BEST_CONFIDENCE = "fallback_best_confidence"
    REJECTED = "rejected"


@dataclass(frozen=True)
class StabilizedResult:
    """Visible caption text after processing one candidate."""

    stabilized_text: str
    new_words: list[str]
    confidence: float
    method: StabilizationMethod
    matches: int = 0
    conflicts: int = 0
    candidate_count: int = 0

    @property
    def has_new_content(self) -> bool:
        return bool(self.new_words)


@dataclass
class OverlapAnalysis:
    """Alignment between the previous candidate's tail and the current head.

    Indices refer to positions in the full previous/current token lists.
    """

    matches: list[tuple[int, int]] = field(default_factory=list)
    conflicts: list[tuple[int, int]] = field(default_factory=list)
    new_word_indices: list[int] = field(default_factory=list)

    @property
    def overlap_confidence(self) -> float:
        compared = len(self.matches) + len(self.conflicts)
        if compared == 0:
            return 0.0
        return len(self.matches) / compared


@dataclass(frozen=True)
class CaptionEntry:
    """A finalized, immutable line of caption text."""

    text: str
    confidence: float | None = None
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class BufferStats:
    """Snapshot of the sliding window buffer."""

    buffered_samples: int
    buffered_ms: float
    current_time_ms: float
    last_window_start_ms: float
    trimmed_samples: int

    @property
    def time_since_last_window_ms(self) -> float:
        return self.current_time_ms - self.last_window_start_ms


@dataclass(frozen=True)
class SentenceBoundary:
    """A pause inside an audio buffer that likely ends a sentence."""

    time_offset_ms: float
    silence_duration_ms: float
    confidence: float
    reason: str  # "speech_break", "long_pause" or "end_of_speech"


@dataclass(frozen=True, eq=False)
class SpeechExtractionResult:
    """Speech-only audio extracted from a buffer, with quality diagnostics."""

    clean_audio: np.ndarray
    original_duration_ms: float
    speech_duration_ms: float
    speech_percentage: float
    segment_count: int
    sentence_boundaries: list[SentenceBoundary]
    quality_score: float

    @property
    def has_speech(self) -> bool:
        return self.segment_count > 0
