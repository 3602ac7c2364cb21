"""Prefix-agreement stabilization across recent raw candidates."""

import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from .config import (
    MIN_CANDIDATE_CONFIDENCE,
    MIN_TEXT_LENGTH,
    PREFIX_CONFIDENCE_BOOST,
    PREFIX_MAX_CANDIDATE_AGE,
    PREFIX_MAX_CANDIDATES,
    PREFIX_MIN_LENGTH,
    PREFIX_STABILITY_THRESHOLD,
    SENTENCE_END_PATTERNS,
    SILENCE_MARKERS,
)
from .exceptions import ConfigurationError, OrderingError
from .interfaces import CaptionStabilizer
from .logging_utils import get_logger
from .models import StabilizationMethod, StabilizedResult, TranscriptionCandidate
from .stabilization import passes_quality_gate
from .word_diff import word_difference

logger = get_logger(__name__)


@dataclass(frozen=True)
class PrefixMatch:
    """Longest word prefix shared by enough recent candidates."""

    match_length: int
    stability_score: float
    confidence: float
    matched_text: str


class LocalAgreementStabilizer(CaptionStabilizer):
    """Simplified stabilizer that adopts the prefix most recent candidates agree on.

    Keeps the last ``max_candidates`` candidates. A prefix of at least
    ``min_prefix_length`` words shared by ``stability_threshold`` of them is
    adopted; otherwise the most confident candidate wins. A sufficiently
    confident newest candidate overrides agreement outright.
    """

    def __init__(
        self,
        max_candidates: int | None = None,
        min_prefix_length: int | None = None,
        stability_threshold: float | None = None,
        confidence_boost_threshold: float | None = None,
        max_candidate_age: float | None = None,
        min_candidate_confidence: float | None = None,
        silence_markers: tuple[str, ...] | None = None,
    ) -> None:
        """
        Initialize the prefix-agreement stabilizer.

        Args:
            max_candidates: Raw candidates kept for comparison
            min_prefix_length: Words required for a prefix match
            stability_threshold: Fraction of candidates that must share the prefix
            confidence_boost_threshold: Confidence that overrides agreement
            max_candidate_age: Seconds after which candidates are dropped
            min_candidate_confidence: Candidates below this are discarded
            silence_markers: Placeholder strings treated as silence

        Raises:
            ConfigurationError: If any setting is out of range
        """
        self.max_candidates = (
            PREFIX_MAX_CANDIDATES
            if max_candidates is None
            else max_candidates
        )
        self.min_prefix_length = (
            PREFIX_MIN_LENGTH
            if min_prefix_length is None
            else min_prefix_length
        )
        self.stability_threshold = (
            PREFIX_STABILITY_THRESHOLD
            if stability_threshold is None
            else stability_threshold
        )
        self.confidence_boost_threshold = (
            PREFIX_CONFIDENCE_BOOST
            if confidence_boost_threshold is None
            else confidence_boost_threshold
        )
        self.max_candidate_age = (
            PREFIX_MAX_CANDIDATE_AGE
            if max_candidate_age is None
            else max_candidate_age
        )
        self.min_candidate_confidence = (
            MIN_CANDIDATE_CONFIDENCE
            if min_candidate_confidence is None
            else min_candidate_confidence
        )
        self.silence_markers = tuple(
            marker.lower() for marker in (silence_markers or SILENCE_MARKERS)
        )

        if self.max_candidates < 1:
            raise ConfigurationError(
                f"max_candidates must be at least 1, got {self.max_candidates}"
            )
        if self.min_prefix_length < 1:
            raise ConfigurationError(
                f"min_prefix_length must be at least 1, got {self.min_prefix_length}"
            )
        if self.max_candidate_age <= 0:
            raise ConfigurationError(
                f"max_candidate_age must be positive, got {self.max_candidate_age}"
            )
        if not 0.0 < self.stability_threshold <= 1.0:
            raise ConfigurationError(
                f"stability_threshold must be within (0, 1], "
                f"got {self.stability_threshold}"
            )

        self._candidates: deque[TranscriptionCandidate] = deque(
            maxlen=self.max_candidates
        )
        self._last_stabilized_words: list[str] = []
        self._stabilized_text = ""
        self._last_start_ms: float | None = None
        self._last_prefix: PrefixMatch | None = None

        self._total_agreements = 0
        self._method_counts: dict[str, int] = {}

    @property
    def stabilized_text(self) -> str:
        return self._stabilized_text

    def process_candidate(
        self,
        candidate: TranscriptionCandidate,
        buffer_start_time_ms: float,
        current_time: float | None = None,
    ) -> StabilizedResult:
        """
        Add a candidate and re-run agreement over the recent ones.

        Args:
            candidate: Transcription of one audio unit
            buffer_start_time_ms: Start time of that unit in the stream
            current_time: Current timestamp, uses time.time() if not provided

        Returns:
            StabilizedResult describing the adopted text
        """
        if current_time is None:
            current_time = time.time()

        if not passes_quality_gate(
            candidate,
            self.min_candidate_confidence,
            MIN_TEXT_LENGTH,
            self.silence_markers,
        ):
            logger.trace(f"🚫 Candidate rejected by quality gate: '{candidate.text}'")
            return self._result([], 0.0, StabilizationMethod.REJECTED)

        try:
            self._check_ordering(buffer_start_time_ms)
        except OrderingError as e:
            logger.warning(f"⚠️ {e}")
            return self._result([], 0.0, StabilizationMethod.REJECTED)

        self._last_start_ms = buffer_start_time_ms
        self._add_candidate(candidate, current_time)

        chosen, method = self._select()
        chosen_words = chosen.tokens
        new_words = word_difference(self._last_stabilized_words, chosen_words)

        self._last_stabilized_words = chosen_words
        self._stabilized_text = " ".join(chosen_words)
        self._total_agreements += 1
        self._method_counts[method.value] = self._method_counts.get(method.value, 0) + 1

        logger.trace(
            f"🤝 {method.value}: '{self._stabilized_text}' "
            f"(+{len(new_words)} words, {len(self._candidates)} candidates)"
        )
        return self._result(new_words, chosen.confidence, method)

    def has_complete_sentence(self) -> bool:
        """Check whether the adopted text ends a sentence."""
        return self._stabilized_text.rstrip().endswith(SENTENCE_END_PATTERNS)

    def find_longest_common_prefix(self) -> PrefixMatch:
        """
        Find the longest prefix of the newest candidate shared widely enough.

        Returns:
            PrefixMatch; length 0 if no prefix meets the stability threshold
        """
        if not self._candidates:
            return PrefixMatch(0, 0.0, 0.0, "")

        reference = self._candidates[-1].tokens
        lowered = [
            [word.lower() for word in candidate.tokens] for candidate in self._candidates
        ]
        total = len(lowered)

        best = PrefixMatch(0, 0.0, 0.0, "")
        for length in range(1, len(reference) + 1):
            prefix = [word.lower() for word in reference[:length]]
            sharing = [
                candidate
                for candidate, words in zip(self._candidates, lowered)
                if words[:length] == prefix
            ]
            score = len(sharing) / total
            if score < self.stability_threshold:
                break
            best = PrefixMatch(
                match_length=length,
                stability_score=score,
                confidence=sum(c.confidence for c in sharing) / len(sharing),
                matched_text=" ".join(reference[:length]),
            )
        return best

    def get_metrics(self) -> dict[str, Any]:
        """
        Get agreement metrics.

        Returns:
            Dictionary with candidate count and method usage
        """
        return {
            "total_agreements": self._total_agreements,
            "candidate_count": len(self._candidates),
            "method_counts": dict(self._method_counts),
            "last_prefix": self._last_prefix.matched_text if self._last_prefix else "",
        }

    def reset(self) -> None:
        self._candidates.clear()
        self._last_stabilized_words = []
        self._stabilized_text = ""
        self._last_start_ms = None
        self._last_prefix = None
        logger.debug("Local agreement stabilizer reset")

    def _check_ordering(self, buffer_start_time_ms: float) -> None:
        if self._last_start_ms is not None and buffer_start_time_ms < self._last_start_ms:
            raise OrderingError(
                f"Candidate at {buffer_start_time_ms:.0f}ms arrived after one at "
                f"{self._last_start_ms:.0f}ms"
            )

    def _add_candidate(
        self, candidate: TranscriptionCandidate, current_time: float
    ) -> None:
        self._candidates.append(candidate)
        cutoff = current_time - self.max_candidate_age
        while len(self._candidates) > 1 and self._candidates[0].timestamp < cutoff:
            self._candidates.popleft()

    def _select(self) -> tuple[TranscriptionCandidate, StabilizationMethod]:
        newest = self._candidates[-1]
        if len(self._candidates) == 1:
            self._last_prefix = PrefixMatch(
                len(newest.tokens), 1.0, newest.confidence, newest.text
            )
            return newest, StabilizationMethod.SINGLE_CANDIDATE

        prefix = self.find_longest_common_prefix()
        self._last_prefix = prefix

        for candidate in reversed(self._candidates):
            if candidate.confidence >= self.confidence_boost_threshold:
                return candidate, StabilizationMethod.CONFIDENCE_BOOST

        if (
            prefix.match_length >= self.min_prefix_length
            and prefix.stability_score >= self.stability_threshold
        ):
            return self._best_with_prefix(prefix), StabilizationMethod.PREFIX_MATCH

        best = max(reversed(self._candidates), key=lambda c: c.confidence)
        return best, StabilizationMethod.FALLBACK_BEST_CONFIDENCE

    def _best_with_prefix(self, prefix: PrefixMatch) -> TranscriptionCandidate:
        prefix_words = [word.lower() for word in prefix.matched_text.split()]
        sharing = [
            candidate
            for candidate in reversed(self._candidates)
            if [word.lower() for word in candidate.tokens[: prefix.match_length]]
            == prefix_words
        ]
        # max() keeps the first of equals, so ties favor the newest candidate
        return max(sharing, key=lambda c: c.confidence)

    def _result(
        self, new_words: list[str], confidence: float, method: StabilizationMethod
    ) -> StabilizedResult:
        return StabilizedResult(
            stabilized_text=self._stabilized_text,
            new_words=new_words,
            confidence=confidence,
            method=method,
            candidate_count=len(self._candidates),
        )
