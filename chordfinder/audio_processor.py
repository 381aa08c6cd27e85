"""AudioProcessor: loads audio files into mono signals via librosa."""

import os

import librosa
import numpy as np

from chordfinder.feature_extractor import BASE_RATE, Signal


class AudioProcessor:
    """
    Decodes any librosa-compatible audio file into a mono Signal.

    Audio is downmixed and resampled on load, so the result always suits the
    filterbank strategy's 44100 Hz minimum unless a lower rate is requested.
    """

    def __init__(self, sample_rate: int = BASE_RATE) -> None:
        self.sample_rate = sample_rate

    def load(self, audio_path: str, offset: float = 0.0, duration: float | None = None) -> Signal:
        """
        Load an audio file.

        Args:
            audio_path: Path to a WAV (or any librosa-compatible) audio file.
            offset:     Start reading this many seconds in.
            duration:   Only read this many seconds, or everything if None.

        Returns:
            The mono signal at `sample_rate`.

        Raises:
            FileNotFoundError: If *audio_path* does not exist.
        """
        if not os.path.exists(audio_path):
            raise FileNotFoundError(f"Audio file not found: '{audio_path}'")
        y, sr = librosa.load(
            audio_path, sr=self.sample_rate, mono=True, offset=offset, duration=duration
        )
        return Signal(np.asarray(y, dtype=np.float64), int(sr))
