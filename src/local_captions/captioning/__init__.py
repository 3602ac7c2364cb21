"""Live captioning module for local captions application."""

from .config import CaptionSettings
from .exceptions import (
    AudioSourceError,
    CaptioningError,
    ConfigurationError,
    OrderingError,
    TranscriptionError,
)
from .interfaces import AudioUnitProducer, CaptionStabilizer, TranscriptionService
from .local_agreement import LocalAgreementStabilizer
from .models import (
    AudioFrame,
    AudioSource,
    AudioUnit,
    AudioWindow,
    CaptionEntry,
    SpeechSegment,
    StabilizationMethod,
    StabilizedResult,
    TranscriptionCandidate,
    VADDecision,
)
from .segment_buffer import SegmentBuffer
from .service import CaptionService
from .sliding_window import SlidingWindowBuffer
from .source_coordinator import SourceCoordinator
from .stabilization import StabilizationEngine
from .vad import VoiceActivityDetector

__all__ = [
    "AudioFrame",
    "AudioSource",
    "AudioUnit",
    "AudioWindow",
    "CaptionEntry",
    "SpeechSegment",
    "StabilizationMethod",
    "StabilizedResult",
    "TranscriptionCandidate",
    "VADDecision",
    "CaptionSettings",
    "CaptioningError",
    "ConfigurationError",
    "TranscriptionError",
    "OrderingError",
    "AudioSourceError",
    "AudioUnitProducer",
    "CaptionStabilizer",
    "TranscriptionService",
    "VoiceActivityDetector",
    "SegmentBuffer",
    "SlidingWindowBuffer",
    "StabilizationEngine",
    "LocalAgreementStabilizer",
    "SourceCoordinator",
    "CaptionService",
]
