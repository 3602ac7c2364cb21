"""Configuration constants for live captioning functionality."""

from dataclasses import dataclass, field

from .exceptions import ConfigurationError

# Audio Configuration
DEFAULT_SAMPLE_RATE = 16000  # Hz, optimal for speech recognition
DEFAULT_FRAME_DURATION_MS = 100  # milliseconds per capture frame (1600 samples)

# Voice Activity Detection
VAD_ENERGY_THRESHOLD = 0.01  # RMS energy above which a frame is raw speech
VAD_SPEECH_COUNT_THRESHOLD = 1  # consecutive raw-speech frames to enter speech
VAD_SILENCE_COUNT_THRESHOLD = 2  # consecutive raw-silence frames to leave speech
VAD_SPEECH_CONFIDENCE_SCALE = 3.0  # speech confidence saturates at 3x threshold
VAD_STATS_LOG_INTERVAL = 10.0  # seconds between VAD stats trace logs

# Segment Buffering (silence-triggered)
SEGMENT_SILENCE_TRIGGER_FRAMES = 3  # ~300ms of silence closes a segment
SEGMENT_MAX_DURATION_MS = 15000  # force emission during long uninterrupted speech
MIN_SEGMENT_DURATION_MS = 300  # shorter segments are not worth transcribing

# Sliding Window Buffering
WINDOW_SIZE_MS = 3000  # fixed window length
WINDOW_STRIDE_MS = 1000  # offset between window starts (2000ms overlap)

# Speech Extraction (window cleaning)
EXTRACTOR_CHUNK_MS = 100  # analysis chunk size
EXTRACTOR_MIN_CHUNK_CONFIDENCE = 0.3  # minimum VAD confidence for kept chunks
EXTRACTOR_GAP_MS = 50  # zero padding inserted between kept chunks
EXTRACTOR_SENTENCE_BREAK_MS = 1000  # silence marking a sentence break
EXTRACTOR_LONG_PAUSE_MS = 2000  # silence marking a long pause
EXTRACTOR_END_SILENCE_MS = 500  # trailing silence marking end of speech
EXTRACTOR_QUALITY_THRESHOLD = 0.6  # minimum quality for sufficient speech

# Transcription Quality Gate
MIN_CANDIDATE_CONFIDENCE = 0.3  # candidates below this are discarded
MIN_TEXT_LENGTH = 2  # characters, shorter texts are discarded
SILENCE_MARKERS = (
    "[ silence ]",
    "[silence]",
    "[blank_audio]",
    "(silence)",
    "[ pause ]",
    "[music]",
)

# Overlap Stabilization
AGREEMENT_THRESHOLD = 3  # confirmations before a word is stabilized
MIN_WORD_CONFIDENCE = 0.5  # new words below this are not added
DISPLAY_CONFIDENCE_THRESHOLD = 0.8  # unconfirmed words above this are displayed
OVERLAP_TAIL_WORDS = 8  # words from the previous candidate compared to the new head
FUZZY_SIMILARITY_THRESHOLD = 0.6  # edit-distance similarity for a fuzzy match
FUZZY_MIN_WORD_LENGTH = 3  # shorter words only match exactly
DEDUP_WINDOW_WORDS = 10  # recent words checked before re-adding a word
DEDUP_TIME_TOLERANCE_MS = 500  # time slack when checking duplicate words
MAX_DISPLAY_WORDS = 30  # most recent words in the visible text
WORD_TTL_SECONDS = 60.0  # unconfirmed words are evicted after this
OVERLAP_HISTORY_SIZE = 10  # overlap analyses kept for diagnostics

# Prefix Agreement (LocalAgreement variant)
PREFIX_MAX_CANDIDATES = 5  # raw candidates compared for a common prefix
PREFIX_MIN_LENGTH = 2  # words required for a prefix match
PREFIX_STABILITY_THRESHOLD = 0.7  # fraction of candidates sharing the prefix
PREFIX_CONFIDENCE_BOOST = 0.8  # a candidate this confident overrides agreement
PREFIX_MAX_CANDIDATE_AGE = 10.0  # seconds
SENTENCE_END_PATTERNS = (".", "!", "?", "。", "！", "？")

# Caption Lines
CAPTION_HISTORY_SIZE = 50  # finalized caption entries kept
CAPTION_SILENCE_FRAMES = 10  # ~1s of silence finalizes the current line

# Pipeline Back-pressure
MAX_PENDING_UNITS = 8  # audio units waiting for transcription
MERGED_QUEUE_SIZE = 100  # frames buffered by the source coordinator (~10s)
ERROR_RECOVERY_SLEEP = 0.1  # seconds to pause after an unexpected worker error

# Transcription (faster-whisper)
DEFAULT_MODEL_SIZE = "small"
DEFAULT_DEVICE = "cpu"
DEFAULT_COMPUTE_TYPE = "int8"
DEFAULT_BEAM_SIZE = 5
CONFIDENCE_LOGPROB_MIN = -2.0  # Minimum expected avg_logprob value
CONFIDENCE_LOGPROB_MAX = -0.1  # Maximum expected avg_logprob value


@dataclass
class CaptionSettings:
    """Bundle of tunable pipeline settings, defaulting to the module constants."""

    sample_rate: int = DEFAULT_SAMPLE_RATE
    frame_duration_ms: int = DEFAULT_FRAME_DURATION_MS

    vad_threshold: float = VAD_ENERGY_THRESHOLD
    speech_count_threshold: int = VAD_SPEECH_COUNT_THRESHOLD
    silence_count_threshold: int = VAD_SILENCE_COUNT_THRESHOLD

    silence_trigger_frames: int = SEGMENT_SILENCE_TRIGGER_FRAMES
    max_segment_duration_ms: int = SEGMENT_MAX_DURATION_MS
    min_segment_duration_ms: int = MIN_SEGMENT_DURATION_MS

    window_size_ms: int = WINDOW_SIZE_MS
    stride_ms: int = WINDOW_STRIDE_MS
    clean_windows: bool = False

    min_candidate_confidence: float = MIN_CANDIDATE_CONFIDENCE
    agreement_threshold: int = AGREEMENT_THRESHOLD
    min_word_confidence: float = MIN_WORD_CONFIDENCE
    max_display_words: int = MAX_DISPLAY_WORDS
    word_ttl_seconds: float = WORD_TTL_SECONDS

    caption_history_size: int = CAPTION_HISTORY_SIZE
    caption_silence_frames: int = CAPTION_SILENCE_FRAMES
    max_pending_units: int = MAX_PENDING_UNITS

    silence_markers: tuple[str, ...] = field(default=SILENCE_MARKERS)

    def validate(self) -> "CaptionSettings":
        """
        Check every setting and fail fast on invalid values.

        Returns:
            The settings instance, for chaining

        Raises:
            ConfigurationError: If any setting is out of range
        """
        positive_ints = {
            "sample_rate": self.sample_rate,
            "frame_duration_ms": self.frame_duration_ms,
            "speech_count_threshold": self.speech_count_threshold,
            "silence_count_threshold": self.silence_count_threshold,
            "silence_trigger_frames": self.silence_trigger_frames,
            "max_segment_duration_ms": self.max_segment_duration_ms,
            "window_size_ms": self.window_size_ms,
            "stride_ms": self.stride_ms,
            "agreement_threshold": self.agreement_threshold,
            "max_display_words": self.max_display_words,
            "caption_history_size": self.caption_history_size,
            "caption_silence_frames": self.caption_silence_frames,
            "max_pending_units": self.max_pending_units,
        }
        for name, value in positive_ints.items():
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}")

        if self.vad_threshold <= 0:
            raise ConfigurationError(
                f"vad_threshold must be positive, got {self.vad_threshold}"
            )
        if self.stride_ms > self.window_size_ms:
            raise ConfigurationError(
                f"stride_ms ({self.stride_ms}) cannot exceed "
                f"window_size_ms ({self.window_size_ms})"
            )
        if self.min_segment_duration_ms < 0:
            raise ConfigurationError("min_segment_duration_ms cannot be negative")
        if self.word_ttl_seconds <= 0:
            raise ConfigurationError("word_ttl_seconds must be positive")

        for name in ("min_candidate_confidence", "min_word_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")

        return self
