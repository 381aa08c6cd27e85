"""ChordMatcher: scores chroma frames against the chord template library."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

import numpy as np

from chordfinder.chord_theory import PATTERN_LIBRARY, Chord, ChordPattern, Chroma
from chordfinder.vectors import CHROMA_COUNT, ChromaBuffer, ChromaVector

logger = logging.getLogger(__name__)

# Share of a frame's total energy a chroma needs to count as a sounding note
NOTE_SHARE_THRESHOLD = 0.13


@dataclass(frozen=True)
class ChordTemplate:
    """
    The ideal chroma vector of a chord: 1.0 at each of its chromas.

    Attributes:
        chord:  The chord the template stands for.
        vector: Binary chroma vector.
    """

    chord: Chord
    vector: ChromaVector = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        values = np.zeros(CHROMA_COUNT)
        values[list(self.chord.chromas)] = 1.0
        object.__setattr__(self, "vector", ChromaVector(values))


class ChordLibrary:
    """
    Immutable table of chord templates in a fixed iteration order.

    The default library holds every catalogued pattern on every root, roots
    C..B outermost, and its order decides ties between equal scores. Per-chord
    lookup arrays are precomputed for the score adjustments.
    """

    _default: ChordLibrary | None = None
    _default_lock = threading.Lock()

    def __init__(self, templates: Iterable[ChordTemplate]) -> None:
        self._templates: tuple[ChordTemplate, ...] = tuple(templates)
        self._chords = tuple(t.chord for t in self._templates)
        self._index = {chord: i for i, chord in enumerate(self._chords)}

        matrix = np.array([t.vector.values for t in self._templates], dtype=np.float64).reshape(-1, CHROMA_COUNT)
        critical = np.zeros_like(matrix, dtype=bool)
        for row, chord in enumerate(self._chords):
            critical[row, list(chord.critical_chromas)] = True

        self.matrix = matrix
        self.template_norms = np.linalg.norm(matrix, axis=1)
        self.chroma_masks = matrix > 0
        self.critical_masks = critical
        self.roots = np.array([int(c.root) for c in self._chords], dtype=np.int64)
        self.note_counts = np.array([c.pattern.note_count for c in self._chords], dtype=np.int64)
        for array in (self.matrix, self.template_norms, self.chroma_masks,
                      self.critical_masks, self.roots, self.note_counts):
            array.setflags(write=False)

    @classmethod
    def build(
        cls,
        patterns: Sequence[ChordPattern] = PATTERN_LIBRARY,
        roots: Sequence[Chroma] = tuple(Chroma),
    ) -> ChordLibrary:
        return cls(ChordTemplate(Chord(root, pattern)) for root in roots for pattern in patterns)

    @classmethod
    def default(cls) -> ChordLibrary:
        """The shared library of every pattern on every root, built on first use."""
        with cls._default_lock:
            if cls._default is None:
                cls._default = cls.build()
                logger.debug("Built default chord library with %d templates", len(cls._default))
            return cls._default

    @property
    def chords(self) -> tuple[Chord, ...]:
        return self._chords

    def index_of(self, chord: Chord) -> int:
        return self._index[chord]

    def template_for(self, chord: Chord) -> ChordTemplate:
        return self._templates[self._index[chord]]

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[ChordTemplate]:
        return iter(self._templates)

    def __contains__(self, chord: object) -> bool:
        return chord in self._index


def estimate_note_count(frame: ChromaVector, threshold: float = NOTE_SHARE_THRESHOLD) -> int:
    """Number of chromas holding at least *threshold* of the frame's total energy."""
    total = frame.sum()
    if total <= 0:
        return 0
    return int(np.count_nonzero(frame.values / total >= threshold))


# ------------------------------------------------------------------
# Score adjustments
# ------------------------------------------------------------------

class ScoreAdjustment(ABC):
    """
    Heuristic added to every template's base score.

    Implementations return one additive amount per library entry.
    """

    @abstractmethod
    def amounts(self, frame: ChromaVector, library: ChordLibrary, note_count: int) -> np.ndarray:
        """Adjustments aligned with `library.chords`."""


@dataclass(frozen=True)
class NoteCountAdjustment(ScoreAdjustment):
    """Bonus for chords whose note count equals the frame's estimated note count."""

    bonus: float = 0.1

    def amounts(self, frame: ChromaVector, library: ChordLibrary, note_count: int) -> np.ndarray:
        return np.where(library.note_counts == note_count, self.bonus, 0.0)


@dataclass(frozen=True)
class ChordRootAdjustment(ScoreAdjustment):
    """
    Reward chords rooted on the frame's strongest chroma, penalise the rest.

    A silent frame has no strongest chroma and leaves every score unchanged.

    Attributes:
        match_bonus:           Added when the root is the strongest chroma.
        mismatch_penalty:      Subtracted otherwise.
        high_energy_threshold: Energy the strongest chroma must exceed for the extra bonus.
        high_energy_bonus:     Extra amount for a matching root above the threshold.
    """

    match_bonus: float = 0.2
    mismatch_penalty: float = 0.2
    high_energy_threshold: float = 0.3
    high_energy_bonus: float = 0.2

    def amounts(self, frame: ChromaVector, library: ChordLibrary, note_count: int) -> np.ndarray:
        if frame.max() <= 0:
            return np.zeros(len(library))
        strongest = frame.indices_by_value()[0]
        reward = self.match_bonus
        if frame[strongest] > self.high_energy_threshold:
            reward += self.high_energy_bonus
        return np.where(library.roots == strongest, reward, -self.mismatch_penalty)


@dataclass(frozen=True)
class EnergyDistributionAdjustment(ScoreAdjustment):
    """
    Compare where the frame's energy sits with the chord's chromas.

    A chord loses `high_energy_penalty` once if any critical chroma is below
    `absent_threshold`, gains `high_energy_bonus` for each critical chroma at
    or above `high_energy_threshold`, and gains `matching_bonus` for each of its
    chromas present in the frame.
    """

    absent_threshold: float = 0.1
    matching_bonus: float = 0.2
    high_energy_threshold: float = 0.2
    high_energy_bonus: float = 0.1
    high_energy_penalty: float = 0.1

    def amounts(self, frame: ChromaVector, library: ChordLibrary, note_count: int) -> np.ndarray:
        present = frame.values >= self.absent_threshold
        strong = frame.values >= self.high_energy_threshold

        missing_critical = (library.critical_masks & ~present).any(axis=1)
        strong_critical = (library.critical_masks & strong).sum(axis=1)
        matched = (library.chroma_masks & present).sum(axis=1)

        return (
            np.where(missing_critical, -self.high_energy_penalty, 0.0)
            + strong_critical * self.high_energy_bonus
            + matched * self.matching_bonus
        )


def default_adjustments() -> tuple[ScoreAdjustment, ...]:
    """The three heuristics with their usual weights."""
    return (NoteCountAdjustment(), ChordRootAdjustment(), EnergyDistributionAdjustment())


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class MatchResult:
    """
    Scores of every library chord for one frame.

    Attributes:
        frame:  The chroma vector that was matched.
        chords: Library chords in library order.
        scores: Score per chord, aligned with `chords`.
    """

    frame: ChromaVector
    chords: tuple[Chord, ...]
    scores: np.ndarray = field(repr=False)

    @property
    def best(self) -> tuple[Chord, float]:
        """Highest-scoring chord; the earliest library entry wins a tie."""
        index = int(np.argmax(self.scores))
        return self.chords[index], float(self.scores[index])

    def top(self, count: int) -> list[tuple[Chord, float]]:
        order = np.argsort(-self.scores, kind="stable")[:count]
        return [(self.chords[i], float(self.scores[i])) for i in order]

    def score_for(self, chord: Chord) -> float:
        return float(self.scores[self.chords.index(chord)])

    def as_dict(self) -> dict[Chord, float]:
        return {chord: float(score) for chord, score in zip(self.chords, self.scores)}


@dataclass
class ChordEvent:
    """
    A run of consecutive frames sharing the same best chord.

    Attributes:
        chord:      The matched chord.
        start_time: Start time in seconds.
        duration:   Duration in seconds.
        score:      Mean best score over the run.
    """

    chord: Chord
    start_time: float
    duration: float
    score: float

    @property
    def name(self) -> str:
        return self.chord.name


@dataclass(frozen=True, eq=False)
class MatchedFeatures:
    """Match results for every frame of a chroma buffer."""

    features: ChromaBuffer
    results: tuple[MatchResult, ...]

    @property
    def feature_rate(self) -> float:
        return self.features.feature_rate

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[MatchResult]:
        return iter(self.results)

    def best_chords(self) -> list[tuple[Chord, float]]:
        return [result.best for result in self.results]

    def max_scores(self, count: int) -> list[list[tuple[Chord, float]]]:
        """The *count* best chords of every frame."""
        return [result.top(count) for result in self.results]

    def events(self, min_duration: float = 0.0) -> list[ChordEvent]:
        """
        Merge consecutive frames with the same best chord into events.

        Args:
            min_duration: Runs shorter than this (seconds) are discarded.

        Returns:
            ChordEvents ordered by start_time.
        """
        best = self.best_chords()
        if not best:
            return []
        hop_duration = 1.0 / self.feature_rate

        chord_events: list[ChordEvent] = []
        run_start = 0
        for i in range(1, len(best) + 1):
            if i < len(best) and best[i][0] == best[run_start][0]:
                continue  # extend the current run

            run_duration = (i - run_start) * hop_duration
            if run_duration >= min_duration:
                chord_events.append(
                    ChordEvent(
                        chord=best[run_start][0],
                        start_time=run_start * hop_duration,
                        duration=run_duration,
                        score=float(np.mean([score for _, score in best[run_start:i]])),
                    )
                )
            run_start = i

        return chord_events


# ------------------------------------------------------------------
# Matcher
# ------------------------------------------------------------------

class ChordMatcher:
    """
    Scores chroma frames against every template in a chord library.

    The base score is the template similarity floored at zero; each score
    adjustment then adds its amount. With no adjustments the best chord is
    the most similar template.
    """

    def __init__(
        self,
        library: ChordLibrary | None = None,
        adjustments: Sequence[ScoreAdjustment] = (),
    ) -> None:
        self.library = library if library is not None else ChordLibrary.default()
        self.adjustments = tuple(adjustments)

    def base_scores(self, frame: ChromaVector) -> np.ndarray:
        """max(0, frame.dot(t) / (|frame| + |t|)) for every template t."""
        denominators = frame.norm() + self.library.template_norms
        dots = self.library.matrix @ frame.values
        with np.errstate(divide="ignore", invalid="ignore"):
            similarity = np.where(denominators > 0, dots / denominators, 0.0)
        return np.maximum(similarity, 0.0)

    def match(self, frame: ChromaVector, estimated_note_count: int | None = None) -> MatchResult:
        """
        Score *frame* against the whole library.

        Args:
            frame:                Chroma vector of one frame.
            estimated_note_count: Sounding-note estimate for the note-count
                                  adjustment; estimated from the frame if None.
        """
        if not isinstance(frame, ChromaVector):
            frame = ChromaVector(frame)
        if estimated_note_count is None:
            estimated_note_count = estimate_note_count(frame)

        scores = self.base_scores(frame)
        for adjustment in self.adjustments:
            scores = scores + adjustment.amounts(frame, self.library, estimated_note_count)
        scores.setflags(write=False)
        return MatchResult(frame, self.library.chords, scores)

    def best(self, frame: ChromaVector) -> tuple[Chord, float]:
        return self.match(frame).best

    def match_buffer(self, features: ChromaBuffer) -> MatchedFeatures:
        results = tuple(self.match(frame) for frame in features)
        logger.debug("Matched %d frames against %d templates", len(results), len(self.library))
        return MatchedFeatures(features, results)


def f_score(true_positives: int, false_positives: int, false_negatives: int) -> float:
    """Harmonic mean of precision and recall; 0 when either is undefined."""
    predicted = true_positives + false_positives
    actual = true_positives + false_negatives
    if predicted == 0 or actual == 0 or true_positives == 0:
        return 0.0
    precision = true_positives / predicted
    recall = true_positives / actual
    return 2 * precision * recall / (precision + recall)
