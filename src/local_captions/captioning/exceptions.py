"""Custom exceptions for live captioning functionality."""


class CaptioningError(Exception):
    """Base exception for captioning errors."""

    pass


class ConfigurationError(CaptioningError, ValueError):
    """Exception raised when a component is constructed with invalid settings."""

    pass


class TranscriptionError(CaptioningError):
    """Exception raised for transcription related errors."""

    pass


class OrderingError(CaptioningError):
    """Exception raised when a candidate arrives out of start-time order."""

    pass


class AudioSourceError(CaptioningError):
    """Exception raised when an audio input cannot be read."""

    pass
