"""
Spectral peak extraction module.

Windows a frame, computes its magnitude spectrum in dBFS and picks a bounded
set of prominent peaks. The same extractor backs both the frame-by-frame
partial tracker and the single static snapshot of a recording.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import librosa
import numpy as np
from scipy import signal as scipy_signal

from partialscope.core.notes import hz_to_note_name
from partialscope.exceptions import InvalidParametersError

logger = logging.getLogger(__name__)


@dataclass
class PeakPickingParams:
    """Peak selection parameters for one magnitude spectrum."""

    dynamic_range_db: float = 42.0   # peaks must lie within this many dB of the maximum
    max_partials: int = 20
    min_peak_distance: int = 10      # bins
    threshold_db: float = -60.0      # absolute dBFS floor
    db_floor: float = 1e-10          # added to the magnitude before log10

    def __post_init__(self):
        if self.dynamic_range_db < 0:
            raise InvalidParametersError(
                f"dynamic_range_db must be non-negative, got {self.dynamic_range_db}"
            )
        if int(self.max_partials) != self.max_partials or self.max_partials < 1:
            raise InvalidParametersError(
                f"max_partials must be a positive integer, got {self.max_partials}"
            )
        if int(self.min_peak_distance) != self.min_peak_distance or self.min_peak_distance < 1:
            raise InvalidParametersError(
                f"min_peak_distance must be a positive integer, got {self.min_peak_distance}"
            )
        if self.db_floor <= 0:
            raise InvalidParametersError(f"db_floor must be positive, got {self.db_floor}")
        self.max_partials = int(self.max_partials)
        self.min_peak_distance = int(self.min_peak_distance)


@dataclass
class SpectralPeaks:
    """Peaks of one frame, co-sorted by ascending frequency."""

    freqs: np.ndarray  # Hz
    amps: np.ndarray   # dBFS

    def __len__(self) -> int:
        return len(self.freqs)

    @classmethod
    def empty(cls) -> "SpectralPeaks":
        return cls(freqs=np.array([], dtype=float), amps=np.array([], dtype=float))


@dataclass
class StaticSpectrum:
    """Peaks of a single snapshot taken from the middle of a recording."""

    freqs: np.ndarray
    amps: np.ndarray
    fundamental: float   # lowest peak in Hz, 0 when no peak was found
    note_name: str       # e.g. "A4", "N/A" when no peak was found
    sample_rate: float
    window_size: int

    @property
    def num_partials(self) -> int:
        return len(self.freqs)


class SpectralPeakExtractor:
    """
    Extracts the most prominent spectral peaks of a frame.

    The dB spectrum is shifted to be non-negative only for peak picking;
    reported amplitudes are always the un-shifted dBFS values.
    """

    def __init__(
        self,
        sample_rate: float,
        window_size: int = 4096,
        params: Optional[PeakPickingParams] = None,
    ):
        """
        Initialize the extractor.

        Args:
            sample_rate: Sample rate in Hz.
            window_size: FFT size; shorter frames are zero padded to it.
            params: Peak picking parameters (defaults when None).
        """
        if sample_rate is None or sample_rate <= 0:
            raise InvalidParametersError(f"sample_rate must be positive, got {sample_rate}")
        if int(window_size) != window_size or window_size < 2:
            raise InvalidParametersError(f"window_size must be an integer >= 2, got {window_size}")

        self.sample_rate = float(sample_rate)
        self.window_size = int(window_size)
        self.params = params or PeakPickingParams()

        # Bin k sits at k * fs / window_size; keep the first half only
        self.bin_freqs = librosa.fft_frequencies(
            sr=self.sample_rate, n_fft=self.window_size
        )[: self.window_size // 2]

    def magnitude_db(self, frame: np.ndarray) -> np.ndarray:
        """
        Hann-windowed magnitude spectrum of a frame in dBFS.

        Args:
            frame: Time-domain samples, at most window_size long.

        Returns:
            Array of window_size // 2 dB values.
        """
        frame = np.asarray(frame, dtype=np.float64)
        if len(frame) > self.window_size:
            raise InvalidParametersError(
                f"frame of {len(frame)} samples exceeds window_size {self.window_size}"
            )

        padded = np.zeros(self.window_size)
        if len(frame):
            padded[: len(frame)] = frame * scipy_signal.windows.hann(len(frame), sym=True)

        spectrum = np.fft.rfft(padded)
        magnitude = np.abs(spectrum[: self.window_size // 2]) / (self.window_size / 2)
        return 20.0 * np.log10(magnitude + self.params.db_floor)

    def extract(self, frame: np.ndarray) -> SpectralPeaks:
        """
        Pick the prominent peaks of one frame.

        Args:
            frame: Time-domain samples.

        Returns:
            SpectralPeaks sorted by ascending frequency, at most
            ``max_partials`` long. Empty when nothing qualifies.
        """
        spectrum_db = self.magnitude_db(frame)
        return self.pick_peaks(spectrum_db)

    def pick_peaks(self, spectrum_db: np.ndarray) -> SpectralPeaks:
        """Select peaks from an already computed dB spectrum."""
        p = self.params

        shifted = spectrum_db - np.min(spectrum_db)
        height = max(float(np.max(shifted)) - p.dynamic_range_db, 0.0)

        locs, _ = scipy_signal.find_peaks(
            shifted,
            height=height,
            distance=p.min_peak_distance,
        )
        if len(locs) == 0:
            return SpectralPeaks.empty()

        amps = spectrum_db[locs]
        keep = amps > p.threshold_db
        locs = locs[keep]
        amps = amps[keep]
        if len(locs) == 0:
            return SpectralPeaks.empty()

        if len(locs) > p.max_partials:
            loudest = np.argsort(-amps, kind="stable")[: p.max_partials]
            locs = locs[loudest]
            amps = amps[loudest]

        order = np.argsort(locs, kind="stable")
        return SpectralPeaks(
            freqs=self.bin_freqs[locs[order]].astype(float),
            amps=amps[order].astype(float),
        )


def analyze_static_spectrum(
    samples: np.ndarray,
    sample_rate: float,
    window_size: int = 4096,
    params: Optional[PeakPickingParams] = None,
) -> StaticSpectrum:
    """
    Analyze a single spectral snapshot from the middle of a recording.

    A window_size chunk centred on the buffer midpoint is used (clamped to
    the buffer start); buffers shorter than the window are zero padded.

    Args:
        samples: Mono sample buffer.
        sample_rate: Sample rate in Hz.
        window_size: FFT size.
        params: Peak picking parameters.

    Returns:
        StaticSpectrum with the lowest peak as the nominal fundamental.
    """
    y = np.asarray(samples, dtype=np.float64)
    if y.ndim != 1 or len(y) == 0:
        raise InvalidParametersError("samples must be a non-empty mono 1-D buffer")

    start = max(len(y) // 2 - window_size // 2, 0)
    chunk = y[start:start + window_size]

    extractor = SpectralPeakExtractor(sample_rate, window_size=window_size, params=params)
    peaks = extractor.extract(chunk)
    logger.debug(
        "Static snapshot at sample %d: %d peaks", start, len(peaks)
    )

    fundamental = float(peaks.freqs[0]) if len(peaks) else 0.0
    return StaticSpectrum(
        freqs=peaks.freqs,
        amps=peaks.amps,
        fundamental=fundamental,
        note_name=hz_to_note_name(fundamental),
        sample_rate=float(sample_rate),
        window_size=int(window_size),
    )
