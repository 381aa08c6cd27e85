"""Feature filters: pure buffer-to-buffer transforms and the CP/CENS/CRP presets."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Final, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy import signal as sps

from chordfinder.errors import ConfigurationError
from chordfinder.vectors import PITCH_COUNT, ChromaBuffer, FeatureBuffer, PitchBuffer

logger = logging.getLogger(__name__)

# Smallest value fed to a logarithm by the decibel conversion
DECIBEL_FLOOR: Final = 1e-12


def reduce_to_chroma(pitches: PitchBuffer) -> ChromaBuffer:
    """Sum every pitch into its pitch class; the feature rate is unchanged."""
    return ChromaBuffer.from_pitch_buffer(pitches)


class FeatureFilter(ABC):
    """
    A pure transform from one feature buffer to another.

    Filters validate their parameters on construction and never keep state
    between calls to `apply`.
    """

    # True for filters that may run on pitch features before chroma reduction
    PITCH_STAGE = False

    @abstractmethod
    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        """Return the transformed buffer."""


# ── Compression ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Compression(FeatureFilter):
    """
    Logarithmic compression, v' = log10(term + factor * v).

    The mapping is strictly increasing for non-negative input. Zero maps to
    zero only with the default term of 1; any other term sends zero to
    log10(term).

    Attributes:
        term:   Constant added before taking the logarithm.
        factor: Gain applied to each value.
    """

    term: float = 1.0
    factor: float = 100.0

    PITCH_STAGE = True

    def __post_init__(self) -> None:
        if self.factor <= 0:
            raise ConfigurationError(f"Compression factor must be positive, got {self.factor}")
        if self.term <= 0:
            raise ConfigurationError(f"Compression term must be positive, got {self.term}")

    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        return buffer.with_frames(np.log10(self.term + self.factor * buffer.frames))


# ── Normalization ─────────────────────────────────────────────────────────────

class NormSpace(str, Enum):
    L1 = "l1"
    L2 = "l2"


class NormalizationMode(str, Enum):
    MAX_VALUE = "max_value"
    LP_NORM = "lp_norm"


@dataclass(frozen=True)
class Normalization(FeatureFilter):
    """
    Scale frames either by the buffer's largest value or by each frame's norm.

    For lp normalization, frames whose norm is below *threshold* are left
    unscaled so near-silent frames do not blow up.
    """

    mode: NormalizationMode = NormalizationMode.LP_NORM
    space: NormSpace = NormSpace.L2
    threshold: float = 0.001

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "mode", NormalizationMode(self.mode))
            object.__setattr__(self, "space", NormSpace(self.space))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid normalization setting: {exc}") from None
        if self.threshold < 0:
            raise ConfigurationError(f"Normalization threshold must not be negative, got {self.threshold}")

    @classmethod
    def max_value(cls) -> Normalization:
        return cls(mode=NormalizationMode.MAX_VALUE)

    @classmethod
    def lp_norm(cls, space: NormSpace | str = NormSpace.L2, threshold: float = 0.001) -> Normalization:
        return cls(mode=NormalizationMode.LP_NORM, space=space, threshold=threshold)

    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        frames = buffer.frames
        if frames.size == 0:
            return buffer
        if self.mode is NormalizationMode.MAX_VALUE:
            peak = frames.max()
            if peak == 0:
                return buffer
            return buffer.with_frames(frames / peak)
        return buffer.with_frames(normalize_rows(frames, self.space, self.threshold))


def normalize_rows(frames: np.ndarray, space: NormSpace, threshold: float) -> np.ndarray:
    """Divide each row by its l1 or l2 norm unless the norm is below *threshold*."""
    if space is NormSpace.L1:
        norms = np.abs(frames).sum(axis=1)
    else:
        norms = np.sqrt((frames**2).sum(axis=1))
    scale = np.where((norms >= threshold) & (norms > 0), norms, 1.0)
    return frames / scale[:, np.newaxis]


# ── Quantization ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Quantization(FeatureFilter):
    """
    CENS staircase: each value becomes the summed weight of every step it reaches.

    Steps are sorted ascending together with their weights. A value equal to a
    step counts as reaching it; values below the first step become 0.
    """

    steps: tuple[float, ...] = (0.05, 0.1, 0.2, 0.4)
    weights: tuple[float, ...] = (0.25, 0.25, 0.25, 0.25)

    def __post_init__(self) -> None:
        if len(self.steps) != len(self.weights):
            raise ConfigurationError(
                f"Quantization needs one weight per step, got {len(self.steps)} steps "
                f"and {len(self.weights)} weights"
            )
        if not self.steps:
            raise ConfigurationError("Quantization needs at least one step")
        ordered = sorted(zip(self.steps, self.weights), key=lambda pair: pair[0])
        object.__setattr__(self, "steps", tuple(float(s) for s, _ in ordered))
        object.__setattr__(self, "weights", tuple(float(w) for _, w in ordered))

    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        cumulative = np.concatenate(([0.0], np.cumsum(self.weights)))
        reached = np.searchsorted(np.asarray(self.steps), buffer.frames, side="right")
        return buffer.with_frames(cumulative[reached])


# ── Smoothing ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Smoothing(FeatureFilter):
    """
    Hann-weighted moving average followed by downsampling.

    Output frame n averages input frames n*factor .. n*factor + window_size - 1
    (zeros past the end), so there are ceil(n / factor) output frames. Each
    output frame is l2-normalized and the feature rate is divided by the
    factor.

    Attributes:
        window_size:       Frames per average; 1 disables smoothing.
        downsample_factor: Keep every n-th frame; 1 keeps the feature rate.
    """

    window_size: int = 21
    downsample_factor: int = 5

    def __post_init__(self) -> None:
        if not isinstance(self.window_size, int) or self.window_size < 1:
            raise ConfigurationError(f"Smoothing window must be at least 1, got {self.window_size}")
        if not isinstance(self.downsample_factor, int) or self.downsample_factor < 1:
            raise ConfigurationError(
                f"Downsample factor must be at least 1, got {self.downsample_factor}"
            )

    @property
    def weights(self) -> np.ndarray:
        """Hann window of window_size + 1 points without its leading zero, summing to 1."""
        window = sps.get_window("hann", self.window_size + 1, fftbins=True)[1:]
        return window / window.sum()

    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        rate = buffer.feature_rate / self.downsample_factor
        frame_count = buffer.frame_count
        size = buffer.frames.shape[1]
        if frame_count == 0:
            return buffer.with_frames(np.zeros((0, size)), rate)

        padded = np.vstack((buffer.frames, np.zeros((self.window_size - 1, size))))
        # (frame_count, size, window_size)
        windows = sliding_window_view(padded, self.window_size, axis=0)
        new_count = math.ceil(frame_count / self.downsample_factor)
        smoothed = windows[:: self.downsample_factor][:new_count] @ self.weights
        return buffer.with_frames(normalize_rows(smoothed, NormSpace.L2, 0.001), rate)


# ── Decibel conversion ────────────────────────────────────────────────────────

class DecibelMultiplier(Enum):
    POWER = 10.0
    AMPLITUDE = 20.0


@dataclass(frozen=True)
class DecibelConversion(FeatureFilter):
    """Convert energies to decibels relative to *zero_reference*."""

    multiplier: DecibelMultiplier = DecibelMultiplier.POWER
    zero_reference: float = 1.0

    PITCH_STAGE = True

    def __post_init__(self) -> None:
        if isinstance(self.multiplier, str):
            try:
                object.__setattr__(self, "multiplier", DecibelMultiplier[self.multiplier.upper()])
            except KeyError:
                raise ConfigurationError(f"Unknown decibel multiplier {self.multiplier!r}") from None
        if self.zero_reference <= 0:
            raise ConfigurationError(f"Decibel reference must be positive, got {self.zero_reference}")

    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        ratio = np.maximum(buffer.frames, DECIBEL_FLOOR) / self.zero_reference
        return buffer.with_frames(self.multiplier.value * np.log10(ratio))


# ── Coefficient range (CRP) ───────────────────────────────────────────────────

def dct_matrix(size: int = PITCH_COUNT) -> np.ndarray:
    """Orthonormal DCT-II matrix; row m holds basis function m."""
    m = np.arange(size)[:, np.newaxis]
    n = np.arange(size)[np.newaxis, :]
    matrix = math.sqrt(2.0 / size) * np.cos(m * (n + 0.5) * math.pi / size)
    matrix[0] /= math.sqrt(2.0)
    return matrix


@dataclass(frozen=True)
class CoefficientRange(FeatureFilter):
    """
    Keep only the DCT coefficients in [lower, upper) of each pitch frame.

    Dropping the low coefficients removes timbre, leaving the pitch-class
    content that chroma reduction keeps.
    """

    lower: int = 55
    upper: int = 120

    PITCH_STAGE = True

    def __post_init__(self) -> None:
        integral = isinstance(self.lower, int) and isinstance(self.upper, int)
        if not integral or not 0 <= self.lower < self.upper <= PITCH_COUNT:
            raise ConfigurationError(
                f"Coefficient range must satisfy 0 <= lower < upper <= {PITCH_COUNT}, "
                f"got [{self.lower}, {self.upper})"
            )

    @property
    def projection(self) -> np.ndarray:
        dct = dct_matrix()
        kept = np.zeros_like(dct)
        kept[self.lower : self.upper] = dct[self.lower : self.upper]
        # Row-vector form of dct.T @ kept applied to each frame
        return (dct.T @ kept).T

    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        if not isinstance(buffer, PitchBuffer):
            raise ConfigurationError("Coefficient range selection only applies to pitch features")
        return buffer.with_frames(buffer.frames @ self.projection)


# ── Pipelines and presets ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class FeaturePipeline:
    """An ordered chain of filters, applied left to right."""

    filters: tuple[FeatureFilter, ...] = ()

    def apply(self, buffer: FeatureBuffer) -> FeatureBuffer:
        for feature_filter in self.filters:
            buffer = feature_filter.apply(buffer)
            logger.debug("%s -> %r", type(feature_filter).__name__, buffer)
        return buffer

    def __len__(self) -> int:
        return len(self.filters)


@dataclass(frozen=True)
class ChromaVariant:
    """
    A named recipe for turning pitch features into chroma features.

    Attributes:
        name:           Preset label ('cp', 'cens', 'crp' or 'custom').
        pitch_filters:  Run on the 128-bin pitch buffer before reduction.
        chroma_filters: Run on the 12-bin chroma buffer after reduction.
    """

    name: str
    pitch_filters: FeaturePipeline = field(default_factory=FeaturePipeline)
    chroma_filters: FeaturePipeline = field(default_factory=FeaturePipeline)

    @classmethod
    def cp(
        cls,
        compression: Compression | None = Compression(),
        normalization: Normalization | None = Normalization.lp_norm(),
    ) -> ChromaVariant:
        """Chroma-Pitch: optional compression, reduction, optional normalization."""
        return cls(
            "cp",
            FeaturePipeline(tuple(f for f in (compression,) if f is not None)),
            FeaturePipeline(tuple(f for f in (normalization,) if f is not None)),
        )

    @classmethod
    def cens(
        cls,
        quantization: Quantization = Quantization(),
        smoothing: Smoothing | None = Smoothing(),
    ) -> ChromaVariant:
        """Chroma Energy Normalized Statistics: l1 normalization, quantization, smoothing."""
        chroma_filters: list[FeatureFilter] = [Normalization.lp_norm(NormSpace.L1, 0.001), quantization]
        if smoothing is not None:
            chroma_filters.append(smoothing)
        return cls("cens", FeaturePipeline(), FeaturePipeline(tuple(chroma_filters)))

    @classmethod
    def crp(
        cls,
        lower: int = 55,
        upper: int = 120,
        smoothing: Smoothing | None = Smoothing(),
        compression: Compression | None = None,
    ) -> ChromaVariant:
        """Chroma DCT-Reduced log Pitch: coefficient range, reduction, l2 normalization, smoothing."""
        pitch_filters: list[FeatureFilter] = []
        if compression is not None:
            pitch_filters.append(compression)
        pitch_filters.append(CoefficientRange(lower, upper))
        chroma_filters: list[FeatureFilter] = [Normalization.lp_norm(NormSpace.L2, 0.00001)]
        if smoothing is not None:
            chroma_filters.append(smoothing)
        return cls("crp", FeaturePipeline(tuple(pitch_filters)), FeaturePipeline(tuple(chroma_filters)))

    @classmethod
    def custom(
        cls,
        pitch_filters: Sequence[FeatureFilter] = (),
        chroma_filters: Sequence[FeatureFilter] = (),
    ) -> ChromaVariant:
        return cls("custom", FeaturePipeline(tuple(pitch_filters)), FeaturePipeline(tuple(chroma_filters)))

    @classmethod
    def named(cls, name: str) -> ChromaVariant:
        """Default preset by name.

        Raises:
            ConfigurationError: For names other than cp, cens and crp.
        """
        presets = {"cp": cls.cp, "cens": cls.cens, "crp": cls.crp}
        try:
            return presets[name.lower()]()
        except KeyError:
            raise ConfigurationError(f"Unknown chroma variant {name!r}") from None

    def transform(self, pitches: PitchBuffer) -> ChromaBuffer:
        reduced = reduce_to_chroma(self.pitch_filters.apply(pitches))
        return self.chroma_filters.apply(reduced)
