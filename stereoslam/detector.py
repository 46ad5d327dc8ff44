"""Loop candidate scoring and temporal consistency of loop detections."""

from __future__ import annotations

from collections import deque
from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field


@dataclass
class LoopDetectorConfig:
    """Settings of bag-of-words loop detection."""

    min_score_ratio: float = 0.75
    """Fraction of the best covisible score a candidate must reach."""
    consistency_threshold: int = 3
    """Consecutive keyframes that must agree on a candidate region."""
    min_covisibles_for_threshold: int = 5
    """Covisible keyframes needed before a score threshold is trusted."""
    max_covisibles_to_check: int = 10
    """Covisible keyframes scored when computing the threshold."""
    min_temporal_gap: int = 30
    """Keyframe-id distance below which a keyframe is too recent to be a loop."""


@dataclass
class LoopCandidate:
    """An older keyframe that looks like the current one."""

    current_kf_id: Hashable
    loop_kf_id: Hashable
    bow_score: float
    loop_covisibles: list = field(default_factory=list)


def compute_bow_score(bow1: Mapping, bow2: Mapping) -> float:
    """Dot product of two bag-of-words vectors given as ``word -> weight``."""
    return float(sum(weight * bow2[word] for word, weight in bow1.items() if word in bow2))


def min_score_threshold(
    current_bow: Mapping,
    covisible_bows: Iterable[Mapping | None],
    config: LoopDetectorConfig | None = None,
) -> float:
    """Lowest score a loop candidate needs, from the covisible keyframes' scores.

    Entries that are ``None`` (keyframes without a bag of words) are skipped.
    At most ``max_covisibles_to_check`` vectors are scored; with fewer than
    ``min_covisibles_for_threshold`` scored the threshold is 0.0.
    """
    config = config or LoopDetectorConfig()
    best = 0.0
    checked = 0
    for bow in covisible_bows:
        if checked >= config.max_covisibles_to_check:
            break
        if bow is None:
            continue
        best = max(best, compute_bow_score(current_bow, bow))
        checked += 1

    if checked < config.min_covisibles_for_threshold:
        return 0.0
    return best * config.min_score_ratio


class ConsistencyChecker:
    """Accepts a loop only once it is detected for several keyframes in a row."""

    def __init__(self, config: LoopDetectorConfig | None = None) -> None:
        self.config = config or LoopDetectorConfig()
        self._history: deque[tuple[Hashable, set]] = deque()
        self._counts: dict[Hashable, int] = {}

    def _region_count(self, candidate_id: Hashable) -> int:
        return sum(1 for _, group in self._history if candidate_id in group)

    def add_and_check(
        self, kf_id: Hashable, candidates: Sequence[LoopCandidate]
    ) -> LoopCandidate | None:
        """Record the candidates of ``kf_id`` and return a consistent one, if any.

        Among candidates that reached the threshold the highest-scoring one is
        returned, and the history is then cleared.
        """
        group: set = set()
        for candidate in candidates:
            group.add(candidate.loop_kf_id)
            group.update(candidate.loop_covisibles)

        new_counts = {cand_id: self._region_count(cand_id) + 1 for cand_id in group}

        best: LoopCandidate | None = None
        for candidate in candidates:
            count = new_counts.get(candidate.loop_kf_id)
            if count is None or count < self.config.consistency_threshold:
                continue
            if best is None or candidate.bow_score > best.bow_score:
                best = candidate

        self._history.append((kf_id, group))
        if len(self._history) > self.config.consistency_threshold + 2:
            self._history.popleft()
        self._counts = new_counts

        if best is None:
            return None
        self.clear()
        return LoopCandidate(
            best.current_kf_id, best.loop_kf_id, best.bow_score, list(best.loop_covisibles)
        )

    def clear(self) -> None:
        """Forget all recorded detections."""
        self._history.clear()
        self._counts.clear()

    @property
    def history_length(self) -> int:
        return len(self._history)