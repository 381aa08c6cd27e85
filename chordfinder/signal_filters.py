"""Signal-level pre-filters applied before feature extraction."""

import logging

import numpy as np
from scipy import signal as sps

from chordfinder.errors import ConfigurationError
from chordfinder.feature_extractor import Signal

logger = logging.getLogger(__name__)


class EqualLoudnessFilter:
    """
    ReplayGain equal-loudness curve for 44.1 kHz audio.

    A 10th-order Yule-Walk filter shapes the mid range and a 2nd-order
    Butterworth high-pass removes the low end.
    """

    SAMPLE_RATE = 44100

    YULEWALK_A = (
        1.0, -3.47845948550071, 6.36317777566148, -8.54751527471874, 9.47693607801280,
        -8.81498681370155, 6.85401540936998, -4.39470996079559, 2.19611684890774,
        -0.75104302451432, 0.13149317958808,
    )
    YULEWALK_B = (
        0.05418656406430, -0.02911007808948, -0.00848709379851, -0.00851165645469,
        -0.00834990904936, 0.02245293253339, -0.02596338512915, 0.01624864962975,
        -0.00240879051584, 0.00674613682247, -0.00187763777362,
    )
    BUTTERWORTH_A = (1.0, -1.96977855582618, 0.97022847566350)
    BUTTERWORTH_B = (0.98500175787242, -1.97000351574484, 0.98500175787242)

    def apply(self, signal: Signal) -> Signal:
        """
        Return a filtered copy of *signal*.

        Raises:
            ConfigurationError: If the signal is not sampled at 44100 Hz.
        """
        if signal.sample_rate != self.SAMPLE_RATE:
            raise ConfigurationError(
                f"Equal-loudness filter is defined for {self.SAMPLE_RATE} Hz, "
                f"got {signal.sample_rate} Hz"
            )
        shaped = sps.lfilter(self.YULEWALK_B, self.YULEWALK_A, signal.samples)
        filtered = sps.lfilter(self.BUTTERWORTH_B, self.BUTTERWORTH_A, shaped)
        logger.debug("Applied equal-loudness filter to %d samples", len(filtered))
        return Signal(np.asarray(filtered, dtype=np.float64), signal.sample_rate)
