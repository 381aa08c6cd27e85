"""Feature extraction: turns a mono signal into a 128-bin pitch feature buffer."""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Final

import librosa
import numpy as np
from scipy import signal as sps

from chordfinder.chord_theory import frequency_for_pitch
from chordfinder.errors import ConfigurationError
from chordfinder.vectors import PITCH_COUNT, PitchBuffer

logger = logging.getLogger(__name__)

# Reference frame for the multirate filterbank: window and hop sizes are given
# in samples at this rate and scaled for every other stream.
REFERENCE_RATE: Final = 22050

# Rate every multirate signal is built from
BASE_RATE: Final = 44100

MULTIRATE_RATES: Final[tuple[int, ...]] = (44100, 22050, 4410, 882, 441)

# Piano keys A0..C8 are the pitches the filterbank analyses
FILTERBANK_PITCHES: Final = range(21, 109)

# Bin-to-pitch anchor: 55 Hz is A1
ANCHOR_FREQUENCY: Final = 55.0
ANCHOR_PITCH: Final = 33


@dataclass(frozen=True)
class Signal:
    """
    A mono sample stream.

    Attributes:
        samples:     1-D float array.
        sample_rate: Samples per second.
    """

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.float64)
        if samples.ndim != 1:
            raise ConfigurationError(f"Expected a mono signal, got shape {samples.shape}")
        if self.sample_rate <= 0:
            raise ConfigurationError(f"Sample rate must be positive, got {self.sample_rate}")
        object.__setattr__(self, "samples", samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self.samples)


def rate_for_pitch(pitch: int) -> int:
    """Sample rate of the stream the filter for *pitch* runs on."""
    if pitch < 20:
        return 441
    if pitch < 59:
        return 882
    if pitch < 95:
        return 4410
    if pitch < 121:
        return 22050
    return 44100


@dataclass(frozen=True)
class MultirateSignal:
    """
    One signal held at each of the filterbank sample rates.

    Attributes:
        streams: Samples keyed by sample rate, one entry per MULTIRATE_RATES.
    """

    streams: dict[int, np.ndarray] = field(default_factory=dict)

    @classmethod
    def from_signal(cls, samples: np.ndarray | Signal, sample_rate: int | None = None) -> MultirateSignal:
        """
        Resample *samples* to every filterbank rate.

        Raises:
            ConfigurationError: If the input rate is below 44100 Hz.
        """
        if isinstance(samples, Signal):
            sample_rate = samples.sample_rate
            samples = samples.samples
        if sample_rate is None or sample_rate < BASE_RATE:
            raise ConfigurationError(
                f"Multirate extraction needs at least {BASE_RATE} Hz input, got {sample_rate}"
            )
        base = np.asarray(samples, dtype=np.float64)
        if sample_rate != BASE_RATE:
            base = librosa.resample(base, orig_sr=sample_rate, target_sr=BASE_RATE)

        streams: dict[int, np.ndarray] = {BASE_RATE: base}
        for rate in MULTIRATE_RATES:
            if rate != BASE_RATE:
                streams[rate] = librosa.resample(base, orig_sr=BASE_RATE, target_sr=rate)
        logger.debug("Built multirate signal from %d samples at %d Hz", len(base), sample_rate)
        return cls(streams)

    def __getitem__(self, rate: int) -> np.ndarray:
        return self.streams[rate]


# ------------------------------------------------------------------
# Bin-to-pitch map cache
# ------------------------------------------------------------------

def default_pitch_correction(window_size: int) -> int:
    """Offset added to the bin-to-pitch formula: -1 for power-of-two windows, else -2."""
    return -1 if window_size & (window_size - 1) == 0 else -2


def build_bin_pitch_map(sample_rate: int, bin_count: int, window_size: int, correction: int) -> np.ndarray:
    """
    Projection from FFT bins to pitch bins.

    Returns:
        Read-only (bin_count, 128) matrix with a single 1.0 per mapped bin.
        Bin 0 and bins below pitch 0 map nowhere; mapping stops at the first
        bin above pitch 127.
    """
    bins = np.arange(bin_count, dtype=np.float64)
    with np.errstate(divide="ignore"):
        raw = 12.0 * np.log2(bins * sample_rate / (window_size * ANCHOR_FREQUENCY))
    pitches = np.floor(raw + ANCHOR_PITCH + correction + 0.5)

    projection = np.zeros((bin_count, PITCH_COUNT), dtype=np.float64)
    for index, pitch in enumerate(pitches):
        if not np.isfinite(pitch) or pitch < 0:
            continue
        if pitch >= PITCH_COUNT:
            break
        projection[index, int(pitch)] = 1.0
    projection.setflags(write=False)
    return projection


class BinPitchMapCache:
    """
    Thread-safe memo of bin-to-pitch projections.

    Each key is computed exactly once, under the lock, and `computations`
    counts how many maps were built.
    """

    def __init__(self) -> None:
        self._maps: dict[tuple[int, int, int, int], np.ndarray] = {}
        self._lock = threading.Lock()
        self.computations = 0

    def get(self, sample_rate: int, bin_count: int, window_size: int, correction: int | None = None) -> np.ndarray:
        if correction is None:
            correction = default_pitch_correction(window_size)
        key = (sample_rate, bin_count, window_size, correction)
        with self._lock:
            projection = self._maps.get(key)
            if projection is None:
                logger.debug("Computing bin-to-pitch map for %s", key)
                projection = build_bin_pitch_map(sample_rate, bin_count, window_size, correction)
                self._maps[key] = projection
                self.computations += 1
        return projection

    def __len__(self) -> int:
        with self._lock:
            return len(self._maps)

    def clear(self) -> None:
        with self._lock:
            self._maps.clear()


_default_cache: BinPitchMapCache | None = None
_default_cache_lock = threading.Lock()


def default_bin_map_cache() -> BinPitchMapCache:
    """Process-wide cache shared by strategies that are not given one."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = BinPitchMapCache()
        return _default_cache


# ------------------------------------------------------------------
# Strategies
# ------------------------------------------------------------------

class ExtractionStrategy(ABC):
    """Interface for turning a signal into pitch features."""

    @abstractmethod
    def extract(self, signal: Signal) -> PitchBuffer:
        """Return one 128-bin pitch vector per analysis frame."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short label, e.g. 'stft'."""


class Representation(str, Enum):
    """How STFT bin magnitudes are turned into energies."""

    MAGNITUDE = "magnitude"
    POWER = "power"
    LOG_MAGNITUDE = "log_magnitude"

    def apply(self, spectrum: np.ndarray) -> np.ndarray:
        magnitude = np.abs(spectrum)
        if self is Representation.POWER:
            return magnitude**2
        if self is Representation.LOG_MAGNITUDE:
            return np.log1p(magnitude)
        return magnitude


class StftStrategy(ExtractionStrategy):
    """
    Short-time Fourier transform followed by a bin-to-pitch projection.

    Frames start every *hop_size* samples and use a Hann window of
    *window_size* samples; the last windows are zero-padded. The feature
    rate reported is sample_rate / (window_size - hop_size).
    """

    def __init__(
        self,
        window_size: int = 8192,
        hop_size: int = 4410,
        sample_rate: int = 44100,
        representation: Representation | str = Representation.MAGNITUDE,
        pitch_correction: int | None = None,
        bin_maps: BinPitchMapCache | None = None,
    ) -> None:
        """
        Args:
            window_size:      FFT size in samples (at least 2).
            hop_size:         Frame advance in samples, smaller than window_size.
            sample_rate:      Rate of the signals this strategy accepts.
            representation:   Magnitude, power or log-magnitude.
            pitch_correction: Overrides the offset in the bin-to-pitch formula.
            bin_maps:         Cache to share bin-to-pitch maps through.

        Raises:
            ConfigurationError: On any invalid size or rate.
        """
        if not isinstance(window_size, int) or window_size < 2:
            raise ConfigurationError(f"STFT window size must be at least 2, got {window_size}")
        if not isinstance(hop_size, int) or hop_size < 1:
            raise ConfigurationError(f"STFT hop size must be at least 1, got {hop_size}")
        if hop_size >= window_size:
            raise ConfigurationError(
                f"STFT hop size ({hop_size}) must be smaller than the window size ({window_size})"
            )
        if sample_rate <= 0:
            raise ConfigurationError(f"Sample rate must be positive, got {sample_rate}")
        try:
            representation = Representation(representation)
        except ValueError:
            raise ConfigurationError(f"Unknown STFT representation {representation!r}") from None

        self.window_size = window_size
        self.hop_size = hop_size
        self.sample_rate = sample_rate
        self.representation = representation
        self.pitch_correction = pitch_correction
        self.bin_maps = bin_maps if bin_maps is not None else default_bin_map_cache()

    @property
    def name(self) -> str:
        return "stft"

    @property
    def bin_count(self) -> int:
        return self.window_size // 2 + 1

    @property
    def feature_rate(self) -> float:
        return self.sample_rate / (self.window_size - self.hop_size)

    def frame_count(self, sample_count: int) -> int:
        return math.ceil(sample_count / self.hop_size)

    def extract(self, signal: Signal) -> PitchBuffer:
        if signal.sample_rate != self.sample_rate:
            raise ConfigurationError(
                f"Signal is sampled at {signal.sample_rate} Hz, strategy expects {self.sample_rate} Hz"
            )
        frame_count = self.frame_count(len(signal))
        if frame_count == 0:
            return PitchBuffer(np.zeros((0, PITCH_COUNT)), self.feature_rate)

        padded_length = (frame_count - 1) * self.hop_size + self.window_size
        padded = np.zeros(padded_length, dtype=np.float64)
        padded[: len(signal)] = signal.samples

        spectrum = librosa.stft(
            padded,
            n_fft=self.window_size,
            hop_length=self.hop_size,
            window="hann",
            center=False,
        )
        energies = self.representation.apply(spectrum)
        projection = self.bin_maps.get(
            self.sample_rate, self.bin_count, self.window_size, self.pitch_correction
        )
        frames = energies.T @ projection
        logger.debug("STFT produced %d frames at %.3f Hz", frames.shape[0], self.feature_rate)
        return PitchBuffer(frames, self.feature_rate)


@lru_cache(maxsize=None)
def design_pitch_filter(pitch: int, sample_rate: int) -> np.ndarray:
    """
    Elliptic band-pass filter centred on *pitch*, in second-order sections.

    The pass band is a semitone-wide Q=25 band; the stop band is twice as
    wide, with 1 dB ripple and 50 dB attenuation.
    """
    q_factor, stop_factor, pass_ripple, stop_attenuation = 25.0, 2.0, 1.0, 50.0
    nyquist = sample_rate / 2.0
    centre = frequency_for_pitch(pitch)
    pass_width = 1.0 / (2.0 * q_factor)
    stop_width = pass_width * stop_factor

    pass_band = [centre * (1 - pass_width) / nyquist, centre * (1 + pass_width) / nyquist]
    stop_band = [centre * (1 - stop_width) / nyquist, centre * (1 + stop_width) / nyquist]
    order, natural = sps.ellipord(pass_band, stop_band, pass_ripple, stop_attenuation)
    return sps.ellip(order, pass_ripple, stop_attenuation, natural, btype="bandpass", output="sos")


class FilterbankStrategy(ExtractionStrategy):
    """
    Multirate filterbank of one band-pass filter per piano key.

    Each pitch is filtered at the stream rate chosen by `rate_for_pitch`, and
    the energy of every window is summed and rescaled to the 22050 Hz
    reference. The feature rate is 22050 / hop_size.
    """

    def __init__(self, window_size: int = 4410, hop_size: int = 2205) -> None:
        if not isinstance(window_size, int) or window_size < 1:
            raise ConfigurationError(f"Filterbank window size must be positive, got {window_size}")
        if not isinstance(hop_size, int) or hop_size < 1:
            raise ConfigurationError(f"Filterbank hop size must be positive, got {hop_size}")
        self.window_size = window_size
        self.hop_size = hop_size

    @property
    def name(self) -> str:
        return "filterbank"

    @property
    def feature_rate(self) -> float:
        return REFERENCE_RATE / self.hop_size

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _window_at(self, rate: int) -> int:
        return int(round(self.window_size * rate / REFERENCE_RATE))

    def _starts_at(self, rate: int, sample_count: int) -> np.ndarray:
        """Start offsets of every window that fits into *sample_count* samples."""
        size = self._window_at(rate)
        step = self.hop_size * rate / REFERENCE_RATE
        starts: list[int] = []
        k = 0
        while True:
            start = int(round(k * step))
            if start + size > sample_count:
                break
            starts.append(start)
            k += 1
        return np.asarray(starts, dtype=np.int64)

    def _frame_count(self, streams: MultirateSignal) -> int:
        rates = {rate_for_pitch(p) for p in FILTERBANK_PITCHES}
        return min(len(self._starts_at(rate, len(streams[rate]))) for rate in rates)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, signal: Signal | MultirateSignal) -> PitchBuffer:
        """
        Args:
            signal: A Signal of at least 44100 Hz, or a prepared MultirateSignal.

        Raises:
            ConfigurationError: If a plain signal is sampled below 44100 Hz.
        """
        streams = signal if isinstance(signal, MultirateSignal) else MultirateSignal.from_signal(signal)
        frame_count = self._frame_count(streams)
        frames = np.zeros((frame_count, PITCH_COUNT), dtype=np.float64)
        if frame_count == 0:
            return PitchBuffer(frames, self.feature_rate)

        for pitch in FILTERBANK_PITCHES:
            rate = rate_for_pitch(pitch)
            filtered = sps.sosfiltfilt(design_pitch_filter(pitch, rate), streams[rate])
            size = self._window_at(rate)
            starts = self._starts_at(rate, len(filtered))[:frame_count]
            energy = np.concatenate(([0.0], np.cumsum(filtered**2)))
            frames[:, pitch] = (energy[starts + size] - energy[starts]) * (REFERENCE_RATE / rate)

        logger.debug("Filterbank produced %d frames at %.3f Hz", frame_count, self.feature_rate)
        return PitchBuffer(frames, self.feature_rate)


def extract_pitch_features(signal: Signal, strategy: ExtractionStrategy) -> PitchBuffer:
    """Run *strategy* over *signal*."""
    return strategy.extract(signal)
