"""Unit tests for the chord template library, matcher and score adjustments."""

import math

import numpy as np
import pytest

from chordfinder.chord_matcher import (
    ChordLibrary,
    ChordMatcher,
    ChordRootAdjustment,
    ChordTemplate,
    EnergyDistributionAdjustment,
    NoteCountAdjustment,
    default_adjustments,
    estimate_note_count,
    f_score,
)
from chordfinder.chord_theory import (
    MAJOR_TRIAD,
    MINOR_TRIAD,
    PATTERN_LIBRARY,
    Chord,
    ChordPattern,
    Chroma,
)
from chordfinder.vectors import ChromaBuffer, ChromaVector


def _frame(*chromas: Chroma, energy: float = 1.0) -> ChromaVector:
    values = np.zeros(12)
    values[list(chromas)] = energy
    return ChromaVector(values)


C_MAJOR = Chord(Chroma.C, MAJOR_TRIAD)
A_MINOR = Chord(Chroma.A, MINOR_TRIAD)
C_DOMINANT = Chord(Chroma.C, ChordPattern.parse_suffix("7"))
C_MAJOR_FRAME = _frame(Chroma.C, Chroma.E, Chroma.G)


@pytest.fixture(scope="module")
def library() -> ChordLibrary:
    return ChordLibrary.default()


# ── Library ─────────────────────────────────────────────────────────────────────

def test_default_library_has_888_templates(library: ChordLibrary) -> None:
    assert len(library) == 12 * len(PATTERN_LIBRARY) == 888
    assert len(set(library.chords)) == len(library)
    assert library.chords[0] == Chord(Chroma.C, ChordPattern.parse_suffix("°"))
    assert library.chords[-1].root is Chroma.B
    assert ChordLibrary.default() is library


def test_library_arrays_are_read_only(library: ChordLibrary) -> None:
    with pytest.raises(ValueError):
        library.matrix[0, 0] = 5.0


def test_template_marks_chord_chromas() -> None:
    template = ChordTemplate(C_DOMINANT)
    assert [i for i in range(12) if template.vector[i] == 1.0] == [0, 4, 7, 10]
    assert template.vector.sum() == 4.0


def test_library_lookup(library: ChordLibrary) -> None:
    assert C_MAJOR in library
    assert library.chords[library.index_of(A_MINOR)] == A_MINOR
    assert library.template_for(C_MAJOR).vector == C_MAJOR_FRAME


def test_small_library() -> None:
    small = ChordLibrary.build((MAJOR_TRIAD, MINOR_TRIAD), (Chroma.C, Chroma.A))
    assert [c.name for c in small.chords] == ["CM", "Cm", "AM", "Am"]


# ── Base scores ─────────────────────────────────────────────────────────────────

def test_c_major_frame_matches_c_major(library: ChordLibrary) -> None:
    result = ChordMatcher(library).match(C_MAJOR_FRAME)
    chord, score = result.best
    assert chord == C_MAJOR
    assert score == pytest.approx(math.sqrt(3) / 2)
    assert len(result.scores) == len(library)


def test_best_score_is_the_maximum_similarity(library: ChordLibrary) -> None:
    similarities = np.array([C_MAJOR_FRAME.similarity(t.vector) for t in library])
    assert similarities.max() == pytest.approx(math.sqrt(3) / 2)
    assert int(np.argmax(similarities)) == library.index_of(C_MAJOR)
    assert ChordMatcher(library).match(C_MAJOR_FRAME).best[1] == pytest.approx(similarities.max())


def test_tie_goes_to_library_order(library: ChordLibrary) -> None:
    result = ChordMatcher(library).match(C_MAJOR_FRAME)
    e_minor_sharp_five = Chord(Chroma.E, ChordPattern.parse_suffix("m(♯5)"))
    assert result.score_for(e_minor_sharp_five) == pytest.approx(result.score_for(C_MAJOR))
    assert result.best[0] == C_MAJOR
    assert [chord for chord, _ in result.top(2)] == [C_MAJOR, e_minor_sharp_five]


def test_silent_frame_scores_zero(library: ChordLibrary) -> None:
    result = ChordMatcher(library).match(ChromaVector.zeros())
    assert np.all(result.scores == 0.0)
    assert result.best[0] == library.chords[0]


def test_scores_are_floored_at_zero(library: ChordLibrary) -> None:
    result = ChordMatcher(library).match(ChromaVector(-np.ones(12)))
    assert np.all(result.scores == 0.0)


def test_as_dict_covers_every_chord(library: ChordLibrary) -> None:
    scores = ChordMatcher(library).match(C_MAJOR_FRAME).as_dict()
    assert len(scores) == len(library)
    assert scores[C_MAJOR] == pytest.approx(math.sqrt(3) / 2)


# ── Adjustments ─────────────────────────────────────────────────────────────────

def test_estimate_note_count() -> None:
    assert estimate_note_count(C_MAJOR_FRAME) == 3
    assert estimate_note_count(ChromaVector.zeros()) == 0
    quiet_seventh = ChromaVector([1.0, 0, 0, 0, 1.0, 0, 0, 1.0, 0, 0, 0.1, 0])
    assert estimate_note_count(quiet_seventh) == 3


def test_note_count_adjustment(library: ChordLibrary) -> None:
    amounts = NoteCountAdjustment().amounts(C_MAJOR_FRAME, library, 3)
    assert amounts[library.index_of(C_MAJOR)] == pytest.approx(0.1)
    assert amounts[library.index_of(C_DOMINANT)] == 0.0


def test_chord_root_adjustment(library: ChordLibrary) -> None:
    amounts = ChordRootAdjustment().amounts(C_MAJOR_FRAME, library, 3)
    assert amounts[library.index_of(C_MAJOR)] == pytest.approx(0.4)
    assert amounts[library.index_of(C_DOMINANT)] == pytest.approx(0.4)
    assert amounts[library.index_of(A_MINOR)] == pytest.approx(-0.2)


def test_chord_root_adjustment_below_high_energy() -> None:
    small = ChordLibrary.build((MAJOR_TRIAD,), (Chroma.C, Chroma.G))
    quiet = _frame(Chroma.C, Chroma.E, Chroma.G, energy=0.1)
    amounts = ChordRootAdjustment().amounts(quiet, small, 3)
    assert amounts.tolist() == pytest.approx([0.2, -0.2])


def test_chord_root_high_energy_bonus_needs_to_exceed_threshold() -> None:
    small = ChordLibrary.build((MAJOR_TRIAD,), (Chroma.C, Chroma.G))
    at_threshold = _frame(Chroma.C, Chroma.E, Chroma.G, energy=0.3)
    amounts = ChordRootAdjustment().amounts(at_threshold, small, 3)
    assert amounts.tolist() == pytest.approx([0.2, -0.2])


def test_chord_root_adjustment_ignores_silent_frame(library: ChordLibrary) -> None:
    amounts = ChordRootAdjustment().amounts(ChromaVector.zeros(), library, 0)
    assert np.all(amounts == 0.0)


def test_energy_distribution_adjustment(library: ChordLibrary) -> None:
    amounts = EnergyDistributionAdjustment().amounts(C_MAJOR_FRAME, library, 3)
    assert amounts[library.index_of(C_MAJOR)] == pytest.approx(0.8)
    # B♭ is a missing critical chroma, three chromas present
    assert amounts[library.index_of(C_DOMINANT)] == pytest.approx(0.7)


def test_energy_distribution_rewards_each_present_chroma(library: ChordLibrary) -> None:
    adjustment = EnergyDistributionAdjustment(high_energy_bonus=0.0, high_energy_penalty=0.0)
    seventh_frame = _frame(Chroma.C, Chroma.E, Chroma.G, Chroma.B_FLAT)
    amounts = adjustment.amounts(seventh_frame, library, 4)
    assert amounts[library.index_of(C_DOMINANT)] == pytest.approx(0.8)
    assert amounts[library.index_of(C_MAJOR)] == pytest.approx(0.6)


def test_default_adjustments_keep_c_major_on_top(library: ChordLibrary) -> None:
    matcher = ChordMatcher(library, default_adjustments())
    chord, score = matcher.best(C_MAJOR_FRAME)
    assert chord == C_MAJOR
    assert score == pytest.approx(math.sqrt(3) / 2 + 0.1 + 0.4 + 0.8)


def test_silent_frame_stays_unscored_with_adjustments(library: ChordLibrary) -> None:
    _chord, score = ChordMatcher(library, default_adjustments()).best(ChromaVector.zeros())
    assert score <= 0.0


def test_explicit_note_count_overrides_estimate(library: ChordLibrary) -> None:
    matcher = ChordMatcher(library, (NoteCountAdjustment(),))
    result = matcher.match(C_MAJOR_FRAME, estimated_note_count=4)
    assert result.score_for(C_MAJOR) == pytest.approx(math.sqrt(3) / 2)


# ── Buffers and events ──────────────────────────────────────────────────────────

def _progression() -> ChromaBuffer:
    a_minor = _frame(Chroma.A, Chroma.C, Chroma.E)
    rows = [C_MAJOR_FRAME.values] * 4 + [a_minor.values] * 2
    return ChromaBuffer(np.array(rows), feature_rate=2.0)


def test_match_buffer(library: ChordLibrary) -> None:
    matched = ChordMatcher(library).match_buffer(_progression())
    assert len(matched) == 6
    assert matched.feature_rate == 2.0
    assert [chord for chord, _ in matched.best_chords()] == [C_MAJOR] * 4 + [A_MINOR] * 2
    assert all(len(ranked) == 3 for ranked in matched.max_scores(3))


def test_events_merge_runs(library: ChordLibrary) -> None:
    events = ChordMatcher(library).match_buffer(_progression()).events()
    assert [(e.name, e.start_time, e.duration) for e in events] == [
        ("CM", 0.0, 2.0),
        ("Am", 2.0, 1.0),
    ]
    assert events[0].score == pytest.approx(math.sqrt(3) / 2)


def test_events_drop_short_runs(library: ChordLibrary) -> None:
    events = ChordMatcher(library).match_buffer(_progression()).events(min_duration=1.5)
    assert [e.chord for e in events] == [C_MAJOR]


def test_events_of_empty_buffer(library: ChordLibrary) -> None:
    empty = ChromaBuffer(np.zeros((0, 12)), feature_rate=2.0)
    assert ChordMatcher(library).match_buffer(empty).events() == []


# ── Evaluation ──────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "counts, expected",
    [
        ((5, 0, 0), 1.0),
        ((0, 1, 1), 0.0),
        ((2, 2, 2), 0.5),
        ((0, 0, 0), 0.0),
    ],
)
def test_f_score(counts: tuple[int, int, int], expected: float) -> None:
    assert f_score(*counts) == pytest.approx(expected)
