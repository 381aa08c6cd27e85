"""Unit tests for fixed-size vectors and feature buffers."""

import math

import numpy as np
import pytest

from chordfinder.chord_theory import Chroma
from chordfinder.vectors import ChromaBuffer, ChromaVector, PitchBuffer, PitchVector


def _pitch_vector(energies: dict[int, float]) -> PitchVector:
    values = np.zeros(128)
    for pitch, energy in energies.items():
        values[pitch] = energy
    return PitchVector(values)


def test_vector_sizes() -> None:
    assert len(PitchVector()) == 128
    assert len(ChromaVector.zeros()) == 12


def test_wrong_length_is_rejected() -> None:
    with pytest.raises(ValueError):
        ChromaVector([1.0, 2.0])


def test_values_are_read_only() -> None:
    vector = ChromaVector(np.ones(12))
    with pytest.raises(ValueError):
        vector.values[0] = 5.0


def test_construction_copies_input() -> None:
    source = np.ones(12)
    vector = ChromaVector(source)
    source[0] = 9.0
    assert vector[0] == 1.0


def test_indexing_checks_range() -> None:
    vector = ChromaVector(np.arange(12))
    assert vector[Chroma.B] == 11.0
    with pytest.raises(IndexError):
        vector[12]
    with pytest.raises(IndexError):
        vector[-1]


def test_arithmetic() -> None:
    a = ChromaVector(np.arange(12))
    b = ChromaVector(np.ones(12))
    assert (a + b)[3] == 4.0
    assert (a - b)[0] == -1.0
    assert a.dot(b) == pytest.approx(66.0)


def test_mixing_vector_kinds_fails_an_assertion() -> None:
    with pytest.raises(AssertionError):
        ChromaVector() + PitchVector()  # type: ignore[operator]


def test_similarity_with_itself_is_half_the_norm() -> None:
    vector = ChromaVector([0.3, 0.0, 1.2, 0.0, 0.5, 0.0, 0.0, 2.0, 0.0, 0.1, 0.0, 0.7])
    assert vector.similarity(vector) == pytest.approx(vector.norm() / 2)
    assert vector.similarity(vector) != pytest.approx(1.0)


def test_similarity_uses_sum_of_norms() -> None:
    a = ChromaVector([1.0] + [0.0] * 11)
    b = ChromaVector([1.0, 1.0] + [0.0] * 10)
    assert a.similarity(b) == pytest.approx(1.0 / (1.0 + math.sqrt(2.0)))


def test_similarity_of_zero_vectors_is_zero() -> None:
    assert ChromaVector().similarity(ChromaVector()) == 0.0


def test_indices_by_value_is_descending_and_stable() -> None:
    vector = ChromaVector([1.0, 3.0, 3.0, 0.0, 2.0, 0, 0, 0, 0, 0, 0, 0])
    assert vector.indices_by_value()[:4] == [1, 2, 4, 0]
    assert vector.chromas_by_value()[0] is Chroma.D_FLAT


def test_indices_by_threshold() -> None:
    vector = ChromaVector([0.5, 0.1, 0.9, 0.3, 0, 0, 0, 0, 0, 0, 0, 0])
    assert vector.indices_by_threshold(0.3) == [2, 0, 3]
    assert vector.indices_by_threshold(0.0, descending=False)[:8] == [11, 10, 9, 8, 7, 6, 5, 4]
    assert vector.indices_by_threshold(0.2, descending=False) == [11, 10, 9, 8, 7, 6, 5, 4, 1]


def test_octave_fold_sums_into_pitch_class() -> None:
    chroma = ChromaVector.from_pitch_vector(_pitch_vector({0: 1.0, 12: 2.0}))
    assert chroma[Chroma.C] == pytest.approx(3.0)
    assert chroma.sum() == pytest.approx(3.0)
    assert all(chroma[i] == 0.0 for i in range(1, 12))


def test_octave_fold_of_concert_a() -> None:
    chroma = ChromaVector.from_pitch_vector(_pitch_vector({57: 1.0, 69: 1.0, 81: 1.0}))
    assert chroma.chromas_by_value()[0] is Chroma.A
    assert chroma[Chroma.A] == pytest.approx(3.0)


def test_feature_buffer_frames_and_rate_travel_together() -> None:
    buffer = ChromaBuffer(np.ones((4, 12)), feature_rate=10.0)
    assert len(buffer) == 4
    assert buffer.duration == pytest.approx(0.4)
    resized = buffer.with_frames(np.zeros((2, 12)))
    assert isinstance(resized, ChromaBuffer)
    assert resized.feature_rate == 10.0
    assert buffer.with_frames(np.zeros((2, 12)), 2.0).feature_rate == 2.0


def test_feature_buffer_yields_typed_vectors() -> None:
    buffer = PitchBuffer(np.zeros((3, 128)), feature_rate=5.0)
    frames = list(buffer)
    assert len(frames) == 3
    assert all(isinstance(frame, PitchVector) for frame in frames)
    assert isinstance(buffer[0], PitchVector)


def test_feature_buffer_rejects_wrong_width() -> None:
    with pytest.raises(ValueError):
        ChromaBuffer(np.zeros((3, 128)), feature_rate=5.0)


def test_feature_buffer_rejects_non_positive_rate() -> None:
    with pytest.raises(ValueError):
        ChromaBuffer(np.zeros((3, 12)), feature_rate=0.0)


def test_empty_feature_buffer() -> None:
    buffer = ChromaBuffer(np.zeros((0, 12)), feature_rate=5.0)
    assert len(buffer) == 0
    assert list(buffer) == []


def test_chroma_buffer_from_pitch_buffer() -> None:
    frames = np.zeros((2, 128))
    frames[0, 60] = 1.0
    frames[1, 64] = 2.0
    frames[1, 76] = 1.0
    chroma = ChromaBuffer.from_pitch_buffer(PitchBuffer(frames, feature_rate=7.5))
    assert chroma.feature_rate == 7.5
    assert chroma[0][Chroma.C] == 1.0
    assert chroma[1][Chroma.E] == 3.0
