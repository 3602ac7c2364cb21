"""Word-level comparison helpers for transcript stabilization."""

import re

from .config import (
    FUZZY_MIN_WORD_LENGTH,
    FUZZY_SIMILARITY_THRESHOLD,
    OVERLAP_TAIL_WORDS,
)
from .models import OverlapAnalysis

_NON_ALPHANUMERIC = re.compile(r"[^\w]", re.UNICODE)


def clean_word(word: str) -> str:
    """Lowercase a token and strip punctuation."""
    return _NON_ALPHANUMERIC.sub("", word.lower()).replace("_", "")


def tokenize(text: str) -> list[str]:
    """Split text into whitespace-separated tokens."""
    return text.split()


def levenshtein_distance(first: str, second: str) -> int:
    """
    Compute the edit distance between two strings.

    Args:
        first: First string
        second: Second string

    Returns:
        Minimum number of single-character insertions, deletions or substitutions
    """
    if first == second:
        return 0
    if not first:
        return len(second)
    if not second:
        return len(first)

    previous_row = list(range(len(second) + 1))
    for i, first_char in enumerate(first, start=1):
        current_row = [i]
        for j, second_char in enumerate(second, start=1):
            cost = 0 if first_char == second_char else 1
            current_row.append(
                min(
                    previous_row[j] + 1,
                    current_row[j - 1] + 1,
                    previous_row[j - 1] + cost,
                )
            )
        previous_row = current_row
    return previous_row[-1]


def word_similarity(first: str, second: str) -> float:
    """Similarity in [0, 1] derived from the edit distance."""
    longest = max(len(first), len(second))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(first, second) / longest


def words_match(
    first: str,
    second: str,
    similarity_threshold: float = FUZZY_SIMILARITY_THRESHOLD,
    min_fuzzy_length: int = FUZZY_MIN_WORD_LENGTH,
) -> bool:
    """
    Decide whether two tokens name the same word.

    Exact match after lowercasing and punctuation stripping comes first;
    tokens of at least ``min_fuzzy_length`` characters also match when their
    edit-distance similarity reaches ``similarity_threshold``.
    """
    clean_first = clean_word(first)
    clean_second = clean_word(second)

    # Punctuation-only tokens compare verbatim
    if not clean_first or not clean_second:
        return first.strip().lower() == second.strip().lower()

    if clean_first == clean_second:
        return True

    if len(clean_first) < min_fuzzy_length or len(clean_second) < min_fuzzy_length:
        return False

    return word_similarity(clean_first, clean_second) >= similarity_threshold


def common_prefix_length(first: list[str], second: list[str]) -> int:
    """Number of leading tokens equal after lowercasing."""
    length = 0
    for left, right in zip(first, second):
        if left.lower() != right.lower():
            break
        length += 1
    return length


def word_difference(previous: list[str], current: list[str]) -> list[str]:
    """Tokens of ``current`` after its common prefix with ``previous``."""
    return current[common_prefix_length(previous, current) :]


def align_overlap(
    previous: list[str],
    current: list[str],
    tail_size: int = OVERLAP_TAIL_WORDS,
    similarity_threshold: float = FUZZY_SIMILARITY_THRESHOLD,
    min_fuzzy_length: int = FUZZY_MIN_WORD_LENGTH,
) -> OverlapAnalysis:
    """
    Align the tail of the previous candidate with the head of the current one.

    Anchors are the longest order-preserving sequence of matching token
    pairs. Unmatched tokens facing each other between anchors become
    conflicts: right-aligned before the first anchor, left-aligned after the
    last one. Without any anchor the tail and head are paired positionally,
    so a fully disagreeing overlap is consumed as conflicts. Every current
    token not matched or in conflict is reported as new.

    Args:
        previous: Tokens of the previous accepted candidate
        current: Tokens of the current candidate
        tail_size: Number of trailing previous tokens to compare
        similarity_threshold: Fuzzy match threshold
        min_fuzzy_length: Minimum token length for fuzzy matching

    Returns:
        OverlapAnalysis with indices into the full token lists
    """
    analysis = OverlapAnalysis()
    if not current:
        return analysis

    tail_offset = max(0, len(previous) - tail_size)
    tail = previous[tail_offset:]
    head = current[: len(tail)]

    def same(i: int, j: int) -> bool:
        return words_match(tail[i], head[j], similarity_threshold, min_fuzzy_length)

    anchors = _longest_common_subsequence(len(tail), len(head), same)

    conflicts: list[tuple[int, int]] = []
    if anchors:
        first_tail, first_head = anchors[0]
        conflicts.extend(
            zip(range(first_tail - 1, -1, -1), range(first_head - 1, -1, -1))
        )
        for (tail_a, head_a), (tail_b, head_b) in zip(anchors, anchors[1:]):
            conflicts.extend(
                zip(range(tail_a + 1, tail_b), range(head_a + 1, head_b))
            )
        last_tail, last_head = anchors[-1]
        conflicts.extend(
            zip(range(last_tail + 1, len(tail)), range(last_head + 1, len(head)))
        )
    elif tail and head:
        paired = min(len(tail), len(head))
        conflicts.extend(zip(range(len(tail) - paired, len(tail)), range(paired)))

    analysis.matches = [(i + tail_offset, j) for i, j in anchors]
    analysis.conflicts = sorted((i + tail_offset, j) for i, j in conflicts)

    consumed = {j for _, j in analysis.matches} | {j for _, j in analysis.conflicts}
    analysis.new_word_indices = [j for j in range(len(current)) if j not in consumed]
    return analysis


def _longest_common_subsequence(rows: int, cols: int, same) -> list[tuple[int, int]]:
    if rows == 0 or cols == 0:
        return []

    lengths = [[0] * (cols + 1) for _ in range(rows + 1)]
    for i in range(rows - 1, -1, -1):
        for j in range(cols - 1, -1, -1):
            if same(i, j):
                lengths[i][j] = lengths[i + 1][j + 1] + 1
            else:
                lengths[i][j] = max(lengths[i + 1][j], lengths[i][j + 1])

    pairs = []
    i = j = 0
    while i < rows and j < cols:
        if same(i, j) and lengths[i][j] == lengths[i + 1][j + 1] + 1:
            pairs.append((i, j))
            i += 1
            j += 1
        elif lengths[i + 1][j] >= lengths[i][j + 1]:
            i += 1
        else:
            j += 1
    return pairs
