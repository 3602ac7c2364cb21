"""Overlap-based transcript stabilization (LocalAgreement-N)."""

import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from .config import (
    AGREEMENT_THRESHOLD,
    DEDUP_TIME_TOLERANCE_MS,
    DEDUP_WINDOW_WORDS,
    DISPLAY_CONFIDENCE_THRESHOLD,
    FUZZY_MIN_WORD_LENGTH,
    FUZZY_SIMILARITY_THRESHOLD,
    MAX_DISPLAY_WORDS,
    MIN_CANDIDATE_CONFIDENCE,
    MIN_TEXT_LENGTH,
    MIN_WORD_CONFIDENCE,
    OVERLAP_HISTORY_SIZE,
    OVERLAP_TAIL_WORDS,
    SILENCE_MARKERS,
    WORD_TTL_SECONDS,
)
from .exceptions import ConfigurationError, OrderingError
from .interfaces import CaptionStabilizer
from .logging_utils import get_logger
from .models import (
    OverlapAnalysis,
    StabilizationMethod,
    StabilizedResult,
    StabilizedWord,
    TranscriptionCandidate,
)
from .word_diff import align_overlap, clean_word

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Token:
    text: str
    start_ms: float
    end_ms: float
    confidence: float


def passes_quality_gate(
    candidate: TranscriptionCandidate,
    min_confidence: float = MIN_CANDIDATE_CONFIDENCE,
    min_text_length: int = MIN_TEXT_LENGTH,
    silence_markers: tuple[str, ...] = SILENCE_MARKERS,
) -> bool:
    """
    Check whether a candidate is worth stabilizing.

    Args:
        candidate: Transcription candidate
        min_confidence: Confidence floor
        min_text_length: Minimum number of characters
        silence_markers: Placeholder strings engines emit for silence

    Returns:
        True if the candidate should be processed
    """
    text = candidate.text.strip()
    if len(text) < min_text_length:
        return False
    if candidate.confidence < min_confidence:
        return False
    lowered = text.lower()
    return not any(marker in lowered for marker in silence_markers)


class StabilizationEngine(CaptionStabilizer):
    """Merges overlapping transcription candidates into one monotonic caption.

    Each accepted candidate is aligned against the previous one. Matching
    words are strengthened and promoted to stabilized after
    ``agreement_threshold`` confirmations. Conflicts keep the more confident
    token, and tokens without a counterpart are appended as new words.
    Stabilized words are locked: later conflicts never replace their text.
    """

    def __init__(
        self,
        agreement_threshold: int | None = None,
        min_candidate_confidence: float | None = None,
        min_word_confidence: float | None = None,
        display_confidence_threshold: float | None = None,
        max_display_words: int | None = None,
        word_ttl_seconds: float | None = None,
        overlap_tail_words: int | None = None,
        dedup_window_words: int | None = None,
        similarity_threshold: float | None = None,
        min_fuzzy_length: int | None = None,
        silence_markers: tuple[str, ...] | None = None,
    ) -> None:
        """
        Initialize the stabilization engine.

        Args:
            agreement_threshold: Confirmations needed to stabilize a word
            min_candidate_confidence: Candidates below this are discarded
            min_word_confidence: New words below this are not added
            display_confidence_threshold: Unconfirmed words above this are shown
            max_display_words: Most recent words kept in the visible text
            word_ttl_seconds: Words not reconfirmed within this are evicted
            overlap_tail_words: Previous tokens compared against the new head
            dedup_window_words: Recent words checked before adding a word
            similarity_threshold: Fuzzy match threshold
            min_fuzzy_length: Minimum token length for fuzzy matching
            silence_markers: Placeholder strings treated as silence

        Raises:
            ConfigurationError: If any threshold is out of range
        """
        self.agreement_threshold = (
            AGREEMENT_THRESHOLD
            if agreement_threshold is None
            else agreement_threshold
        )
        self.min_candidate_confidence = (
            MIN_CANDIDATE_CONFIDENCE
            if min_candidate_confidence is None
            else min_candidate_confidence
        )
        self.min_word_confidence = (
            MIN_WORD_CONFIDENCE if min_word_confidence is None else min_word_confidence
        )
        self.display_confidence_threshold = (
            DISPLAY_CONFIDENCE_THRESHOLD
            if display_confidence_threshold is None
            else display_confidence_threshold
        )
        self.max_display_words = (
            MAX_DISPLAY_WORDS
            if max_display_words is None
            else max_display_words
        )
        self.word_ttl_seconds = (
            WORD_TTL_SECONDS
            if word_ttl_seconds is None
            else word_ttl_seconds
        )
        self.overlap_tail_words = (
            OVERLAP_TAIL_WORDS
            if overlap_tail_words is None
            else overlap_tail_words
        )
        self.dedup_window_words = (
            DEDUP_WINDOW_WORDS
            if dedup_window_words is None
            else dedup_window_words
        )
        self.similarity_threshold = (
            FUZZY_SIMILARITY_THRESHOLD
            if similarity_threshold is None
            else similarity_threshold
        )
        self.min_fuzzy_length = (
            FUZZY_MIN_WORD_LENGTH
            if min_fuzzy_length is None
            else min_fuzzy_length
        )
        self.silence_markers = tuple(
            marker.lower() for marker in (silence_markers or SILENCE_MARKERS)
        )

        if self.agreement_threshold < 1:
            raise ConfigurationError(
                f"agreement_threshold must be at least 1, got {self.agreement_threshold}"
            )
        for name in (
            "max_display_words",
            "overlap_tail_words",
            "dedup_window_words",
            "min_fuzzy_length",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}")
        if self.word_ttl_seconds <= 0:
            raise ConfigurationError(
                f"word_ttl_seconds must be positive, got {self.word_ttl_seconds}"
            )
        for name in (
            "min_candidate_confidence",
            "min_word_confidence",
            "display_confidence_threshold",
            "similarity_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")

        self._words: list[StabilizedWord] = []
        self._previous_tokens: list[_Token] | None = None
        self._previous_words: list[StabilizedWord | None] = []
        self._previous_range: tuple[float, float] | None = None
        self._last_start_ms: float | None = None
        self._stabilized_text = ""
        self._pending_finalized: list[StabilizedWord] = []
        self._overlap_history: deque[OverlapAnalysis] = deque(
            maxlen=OVERLAP_HISTORY_SIZE
        )

        # Metrics
        self._total_candidates = 0
        self._accepted_candidates = 0
        self._rejected_candidates = 0
        self._overlaps_analyzed = 0
        self._overlap_confidence_sum = 0.0
        self._conflicts_resolved = 0
        self._words_stabilized = 0

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
        Fold one candidate into the stabilized text.

        Args:
            candidate: Transcription of one audio unit
            buffer_start_time_ms: Start time of that unit in the stream
            current_time: Current timestamp, uses time.time() if not provided

        Returns:
            StabilizedResult with the visible text and the words this candidate added
        """
        if current_time is None:
            current_time = time.time()

        self._total_candidates += 1

        if not passes_quality_gate(
            candidate,
            self.min_candidate_confidence,
            MIN_TEXT_LENGTH,
            self.silence_markers,
        ):
            logger.trace(
                f"🚫 Candidate rejected by quality gate: '{candidate.text}' "
                f"(confidence {candidate.confidence:.2f})"
            )
            return self._rejected()

        try:
            self._check_ordering(buffer_start_time_ms)
        except OrderingError as e:
            logger.warning(f"⚠️ {e}")
            return self._rejected()

        tokens = self._tokenize(candidate, buffer_start_time_ms)
        if not tokens:
            return self._rejected()

        self._accepted_candidates += 1
        candidate_range = (
            buffer_start_time_ms,
            buffer_start_time_ms + candidate.buffer_duration_ms,
        )

        matches = conflicts = 0
        if self._previous_tokens is None:
            method = StabilizationMethod.SEED
            current_words, new_words = self._add_new_words(
                tokens, range(len(tokens)), [None] * len(tokens), current_time, []
            )
        elif self._ranges_overlap(self._previous_range, candidate_range):
            method = StabilizationMethod.OVERLAP_MERGE
            analysis = align_overlap(
                [token.text for token in self._previous_tokens],
                [token.text for token in tokens],
                self.overlap_tail_words,
                self.similarity_threshold,
                self.min_fuzzy_length,
            )
            current_words, new_words = self._apply_overlap(
                analysis, tokens, current_time
            )
            matches = len(analysis.matches)
            conflicts = len(analysis.conflicts)
            self._record_analysis(analysis)
        else:
            # Disjoint units never repeat audio, so nothing to de-duplicate against
            method = StabilizationMethod.NO_OVERLAP_APPEND
            current_words, new_words = self._add_new_words(
                tokens, range(len(tokens)), [None] * len(tokens), current_time, []
            )

        self._prune(current_time)
        alive = {word.id for word in self._words}
        self._previous_tokens = tokens
        self._previous_words = [
            word if word is not None and word.id in alive else None
            for word in current_words
        ]
        self._previous_range = candidate_range
        self._last_start_ms = buffer_start_time_ms

        self._publish()

        if new_words:
            logger.debug(
                f"📝 +{len(new_words)} words via {method.value}: {' '.join(new_words)}"
            )

        return StabilizedResult(
            stabilized_text=self._stabilized_text,
            new_words=new_words,
            confidence=self._visible_confidence(),
            method=method,
            matches=matches,
            conflicts=conflicts,
            candidate_count=self._accepted_candidates,
        )

    def drain_finalized_words(self) -> list[str]:
        """
        Return words promoted to stabilized since the last call.

        Each promoted word is returned exactly once, in promotion order.
        """
        drained = [word.text for word in self._pending_finalized]
        self._pending_finalized = []
        return drained

    def get_stabilized_words(self) -> list[StabilizedWord]:
        """Return the working set ordered by start time."""
        return sorted(self._words, key=lambda word: word.start_time_ms)

    def get_recent_overlap_analysis(self) -> OverlapAnalysis | None:
        return self._overlap_history[-1] if self._overlap_history else None

    def get_metrics(self) -> dict[str, Any]:
        """
        Get stabilization metrics.

        Returns:
            Dictionary with candidate, overlap and word statistics
        """
        stabilized_now = sum(1 for word in self._words if word.is_stabilized)
        return {
            "total_candidates": self._total_candidates,
            "accepted_candidates": self._accepted_candidates,
            "rejected_candidates": self._rejected_candidates,
            "overlaps_analyzed": self._overlaps_analyzed,
            "average_overlap_confidence": (
                self._overlap_confidence_sum / self._overlaps_analyzed
                if self._overlaps_analyzed
                else 0.0
            ),
            "conflicts_resolved": self._conflicts_resolved,
            "words_stabilized": self._words_stabilized,
            "working_set_size": len(self._words),
            "stabilization_rate": (
                stabilized_now / len(self._words) if self._words else 0.0
            ),
        }

    def reset(self) -> None:
        self._words = []
        self._previous_tokens = None
        self._previous_words = []
        self._previous_range = None
        self._last_start_ms = None
        self._stabilized_text = ""
        self._pending_finalized = []
        self._overlap_history.clear()
        logger.debug("Stabilization engine reset")

    def _rejected(self) -> StabilizedResult:
        self._rejected_candidates += 1
        return StabilizedResult(
            stabilized_text=self._stabilized_text,
            new_words=[],
            confidence=self._visible_confidence(),
            method=StabilizationMethod.REJECTED,
            candidate_count=self._accepted_candidates,
        )

    def _check_ordering(self, buffer_start_time_ms: float) -> None:
        if self._last_start_ms is not None and buffer_start_time_ms < self._last_start_ms:
            raise OrderingError(
                f"Candidate at {buffer_start_time_ms:.0f}ms arrived after one at "
                f"{self._last_start_ms:.0f}ms"
            )

    def _tokenize(
        self, candidate: TranscriptionCandidate, buffer_start_time_ms: float
    ) -> list[_Token]:
        if candidate.words:
            tokens = [
                _Token(
                    text=timing.text.strip(),
                    start_ms=buffer_start_time_ms + timing.start_ms,
                    end_ms=buffer_start_time_ms + timing.end_ms,
                    confidence=timing.confidence,
                )
                for timing in candidate.words
                if timing.text.strip()
            ]
            if tokens:
                return tokens

        texts = candidate.tokens
        if not texts:
            return []

        # Even split of the unit duration when the engine gave no timings
        word_duration = candidate.buffer_duration_ms / len(texts)
        return [
            _Token(
                text=text,
                start_ms=buffer_start_time_ms + i * word_duration,
                end_ms=buffer_start_time_ms + (i + 1) * word_duration,
                confidence=candidate.confidence,
            )
            for i, text in enumerate(texts)
        ]

    @staticmethod
    def _ranges_overlap(
        previous: tuple[float, float] | None, current: tuple[float, float]
    ) -> bool:
        if previous is None:
            return False
        return current[0] < previous[1] and previous[0] < current[1]

    def _apply_overlap(
        self, analysis: OverlapAnalysis, tokens: list[_Token], current_time: float
    ) -> tuple[list[StabilizedWord | None], list[str]]:
        current_words: list[StabilizedWord | None] = [None] * len(tokens)
        unresolved: list[int] = []
        existing = list(self._words)

        for previous_index, current_index in analysis.matches:
            word = self._previous_words[previous_index]
            if word is None:
                unresolved.append(current_index)
                continue
            self._strengthen(word, tokens[current_index].confidence, current_time)
            current_words[current_index] = word

        for previous_index, current_index in analysis.conflicts:
            word = self._previous_words[previous_index]
            if word is None:
                unresolved.append(current_index)
                continue
            self._resolve_conflict(word, tokens[current_index], current_time)
            current_words[current_index] = word

        new_indices = sorted(unresolved + analysis.new_word_indices)
        _, new_words = self._add_new_words(
            tokens, new_indices, current_words, current_time, existing
        )
        return current_words, new_words

    def _resolve_conflict(
        self, word: StabilizedWord, token: _Token, current_time: float
    ) -> None:
        self._conflicts_resolved += 1

        if word.is_stabilized:
            logger.trace(f"🔒 Kept stabilized '{word.text}' over '{token.text}'")
            self._strengthen(word, word.confidence, current_time)
            return

        # Ties go to the most recently seen token
        if token.confidence >= word.confidence:
            logger.trace(
                f"🔀 Conflict '{word.text}' -> '{token.text}' "
                f"({word.confidence:.2f} <= {token.confidence:.2f})"
            )
            word.text = token.text
            self._strengthen(word, token.confidence, current_time)
        else:
            self._strengthen(word, word.confidence, current_time)

    def _add_new_words(
        self,
        tokens: list[_Token],
        indices,
        current_words: list[StabilizedWord | None],
        current_time: float,
        existing: list[StabilizedWord],
    ) -> tuple[list[StabilizedWord | None], list[str]]:
        recent = existing[-self.dedup_window_words :] if existing else []
        new_words = []

        for index in indices:
            token = tokens[index]
            if token.confidence < self.min_word_confidence:
                logger.trace(
                    f"Skipped low-confidence word '{token.text}' "
                    f"({token.confidence:.2f})"
                )
                continue

            duplicate = self._find_duplicate(token, recent)
            if duplicate is not None:
                current_words[index] = duplicate
                continue

            word = StabilizedWord(
                text=token.text,
                confidence=token.confidence,
                start_time_ms=token.start_ms,
                end_time_ms=token.end_ms,
                first_seen=current_time,
                last_confirmed=current_time,
            )
            if self.agreement_threshold <= 1:
                self._promote(word)
            self._words.append(word)
            current_words[index] = word
            new_words.append(token.text)

        return current_words, new_words

    def _find_duplicate(
        self, token: _Token, recent: list[StabilizedWord]
    ) -> StabilizedWord | None:
        cleaned = clean_word(token.text)
        for word in reversed(recent):
            if clean_word(word.text) != cleaned:
                continue
            if (
                token.start_ms < word.end_time_ms + DEDUP_TIME_TOLERANCE_MS
                and word.start_time_ms < token.end_ms + DEDUP_TIME_TOLERANCE_MS
            ):
                logger.trace(f"Skipped duplicate word '{token.text}'")
                return word
        return None

    def _strengthen(
        self, word: StabilizedWord, confidence: float, current_time: float
    ) -> None:
        count = word.stabilization_count
        word.confidence = (word.confidence * count + confidence) / (count + 1)
        word.stabilization_count = count + 1
        word.last_confirmed = current_time
        if not word.is_stabilized and word.stabilization_count >= self.agreement_threshold:
            self._promote(word)

    def _promote(self, word: StabilizedWord) -> None:
        word.is_stabilized = True
        self._words_stabilized += 1
        self._pending_finalized.append(word)
        logger.trace(f"✅ Stabilized '{word.text}' ({word.confidence:.2f})")

    def _prune(self, current_time: float) -> None:
        cutoff = current_time - self.word_ttl_seconds
        before = len(self._words)
        self._words = [word for word in self._words if word.last_confirmed >= cutoff]
        pruned = before - len(self._words)
        if pruned:
            logger.debug(f"🧹 Pruned {pruned} stale words")

    def _publish(self) -> None:
        recent = sorted(self._words, key=lambda word: word.start_time_ms)[
            -self.max_display_words :
        ]
        visible = [
            word.text
            for word in recent
            if word.is_stabilized or word.confidence > self.display_confidence_threshold
        ]
        self._stabilized_text = " ".join(visible)

    def _visible_confidence(self) -> float:
        recent = sorted(self._words, key=lambda word: word.start_time_ms)[
            -self.max_display_words :
        ]
        if not recent:
            return 0.0
        return sum(word.confidence for word in recent) / len(recent)

    def _record_analysis(self, analysis: OverlapAnalysis) -> None:
        self._overlaps_analyzed += 1
        self._overlap_confidence_sum += analysis.overlap_confidence
        self._overlap_history.append(analysis)
