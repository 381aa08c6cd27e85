"""Fixed-size pitch and chroma vectors, and buffers of them over time."""

from __future__ import annotations

from typing import ClassVar, Generic, Iterator, Sequence, TypeVar

import numpy as np

from chordfinder.chord_theory import Chroma

PITCH_COUNT = 128
CHROMA_COUNT = 12


def _read_only(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class FeatureVector:
    """
    Immutable float64 vector with a length fixed by the subclass.

    Arithmetic between vectors of different kinds is a programming error and
    fails an assertion.
    """

    SIZE: ClassVar[int] = 0

    __slots__ = ("_values",)

    def __init__(self, values: Sequence[float] | np.ndarray | None = None) -> None:
        if values is None:
            array = np.zeros(self.SIZE, dtype=np.float64)
        else:
            array = np.array(values, dtype=np.float64)
        if array.shape != (self.SIZE,):
            raise ValueError(
                f"{type(self).__name__} needs {self.SIZE} values, got shape {array.shape}"
            )
        self._values = _read_only(array)

    @classmethod
    def zeros(cls):
        return cls()

    @property
    def values(self) -> np.ndarray:
        """Read-only view of the underlying array."""
        return self._values

    def __len__(self) -> int:
        return self.SIZE

    def __iter__(self) -> Iterator[float]:
        return iter(self._values.tolist())

    def __getitem__(self, index: int) -> float:
        index = int(index)
        if not 0 <= index < self.SIZE:
            raise IndexError(f"index {index} out of range for {type(self).__name__}")
        return float(self._values[index])

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return bool(np.array_equal(self._values, other._values))

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._values.tobytes()))

    def __repr__(self) -> str:
        body = ", ".join(f"{v:.3f}" for v in self._values)
        return f"{type(self).__name__}([{body}])"

    def _check_operand(self, other: FeatureVector) -> None:
        assert type(other) is type(self), f"cannot combine {type(self).__name__} with {type(other).__name__}"
        assert len(other._values) == len(self._values)

    def __add__(self, other: FeatureVector):
        self._check_operand(other)
        return type(self)(self._values + other._values)

    def __sub__(self, other: FeatureVector):
        self._check_operand(other)
        return type(self)(self._values - other._values)

    def dot(self, other: FeatureVector) -> float:
        self._check_operand(other)
        return float(np.dot(self._values, other._values))

    def norm(self) -> float:
        """Euclidean (l2) norm."""
        return float(np.linalg.norm(self._values))

    def sum(self) -> float:
        return float(self._values.sum())

    def max(self) -> float:
        return float(self._values.max())

    def similarity(self, other: FeatureVector) -> float:
        """
        Dot product divided by the sum of both Euclidean norms.

        Note that sim(v, v) is |v| / 2, not 1. Two zero vectors have
        similarity 0.
        """
        self._check_operand(other)
        denominator = self.norm() + other.norm()
        if denominator == 0.0:
            return 0.0
        return self.dot(other) / denominator

    def indices_by_value(self) -> list[int]:
        """Indices ordered by value, largest first; ties keep index order."""
        return np.argsort(-self._values, kind="stable").tolist()

    def indices_by_threshold(self, threshold: float, descending: bool = True) -> list[int]:
        """
        Ranked indices cut at the first value on the wrong side of *threshold*.

        Args:
            threshold:  Boundary value (inclusive).
            descending: When True, keep indices with value >= threshold from
                        the top of the ranking. When False, walk the ranking
                        from the bottom and keep values <= threshold.
        """
        ranking = self.indices_by_value()
        if not descending:
            ranking.reverse()
        selected: list[int] = []
        for index in ranking:
            value = self._values[index]
            if (value < threshold) if descending else (value > threshold):
                break
            selected.append(index)
        return selected


class PitchVector(FeatureVector):
    """Energy per pitch number 0..127."""

    SIZE = PITCH_COUNT
    __slots__ = ()

    def pitches_by_value(self) -> list[int]:
        return self.indices_by_value()


class ChromaVector(FeatureVector):
    """Energy per pitch class, index 0 = C."""

    SIZE = CHROMA_COUNT
    __slots__ = ()

    @classmethod
    def from_pitch_vector(cls, pitches: PitchVector) -> ChromaVector:
        """Fold a pitch vector onto its twelve pitch classes by summing octaves."""
        return cls(pitches.values @ CHROMA_FOLD)

    def chromas_by_value(self) -> list[Chroma]:
        return [Chroma(i) for i in self.indices_by_value()]


def _chroma_fold_matrix() -> np.ndarray:
    fold = np.zeros((PITCH_COUNT, CHROMA_COUNT), dtype=np.float64)
    fold[np.arange(PITCH_COUNT), np.arange(PITCH_COUNT) % CHROMA_COUNT] = 1.0
    return _read_only(fold)


# (128, 12) projection that sums every pitch into its pitch class
CHROMA_FOLD = _chroma_fold_matrix()


V = TypeVar("V", bound=FeatureVector)


class FeatureBuffer(Generic[V]):
    """
    A time series of feature vectors sampled at a fixed feature rate.

    The frames live in one read-only (frame_count, vector size) array, so the
    frame count and the feature rate always travel together.
    """

    vector_type: ClassVar[type[FeatureVector]] = FeatureVector

    def __init__(self, frames: np.ndarray | Sequence[Sequence[float]], feature_rate: float) -> None:
        size = self.vector_type.SIZE
        matrix = np.array(frames, dtype=np.float64)
        if matrix.size == 0:
            matrix = matrix.reshape(0, size)
        if matrix.ndim != 2 or matrix.shape[1] != size:
            raise ValueError(
                f"{type(self).__name__} needs frames of {size} values, got shape {matrix.shape}"
            )
        if feature_rate <= 0:
            raise ValueError(f"Feature rate must be positive, got {feature_rate}")
        self._frames = _read_only(matrix)
        self._feature_rate = float(feature_rate)

    @property
    def frames(self) -> np.ndarray:
        """Read-only (frame_count, size) matrix."""
        return self._frames

    @property
    def feature_rate(self) -> float:
        """Frames per second."""
        return self._feature_rate

    @property
    def frame_count(self) -> int:
        return self._frames.shape[0]

    @property
    def duration(self) -> float:
        return self.frame_count / self._feature_rate

    def __len__(self) -> int:
        return self.frame_count

    def __getitem__(self, index: int) -> V:
        return self.vector_type(self._frames[index])  # type: ignore[return-value]

    def __iter__(self) -> Iterator[V]:
        for row in self._frames:
            yield self.vector_type(row)  # type: ignore[misc]

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(frames={self.frame_count}, "
            f"feature_rate={self._feature_rate:.3f})"
        )

    def with_frames(self, frames: np.ndarray, feature_rate: float | None = None):
        """New buffer of the same kind, keeping the feature rate unless given."""
        rate = self._feature_rate if feature_rate is None else feature_rate
        return type(self)(frames, rate)


class PitchBuffer(FeatureBuffer[PitchVector]):
    vector_type = PitchVector


class ChromaBuffer(FeatureBuffer[ChromaVector]):
    vector_type = ChromaVector

    @classmethod
    def from_pitch_buffer(cls, pitches: PitchBuffer) -> ChromaBuffer:
        return cls(pitches.frames @ CHROMA_FOLD, pitches.feature_rate)
