"""
Partial tracking module.

Runs the spectral peak extractor over every frame of a recording and packs
the results into two zero-padded frame x partial matrices (frequency and
amplitude) with a shared time axis.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from partialscope.core.frames import FrameSource
from partialscope.core.spectrum import PeakPickingParams, SpectralPeakExtractor
from partialscope.exceptions import InvalidParametersError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class PartialMatrix:
    """
    Time-varying partial content of a recording.

    Row ``i`` holds the peaks of frame ``i`` in ascending frequency order in
    columns ``[0, partials_per_frame[i])``; every cell past that is exactly
    zero in both matrices.
    """

    times: np.ndarray               # (n_frames,) seconds, ascending
    freqs: np.ndarray               # (n_frames, max_partials) Hz
    amps: np.ndarray                # (n_frames, max_partials) dBFS
    partials_per_frame: np.ndarray  # (n_frames,) int
    sample_rate: float
    window_size: int
    hop_size: int

    def __post_init__(self):
        if self.freqs.ndim != 2 or self.freqs.shape != self.amps.shape:
            raise InvalidParametersError(
                f"freqs {self.freqs.shape} and amps {self.amps.shape} must be equal 2-D shapes"
            )
        if len(self.times) != self.freqs.shape[0] or len(self.partials_per_frame) != self.freqs.shape[0]:
            raise InvalidParametersError(
                "times and partials_per_frame must have one entry per matrix row"
            )

    @property
    def num_frames(self) -> int:
        return self.freqs.shape[0]

    @property
    def max_partials(self) -> int:
        return self.freqs.shape[1]

    @property
    def duration(self) -> float:
        """Time between the first and last frame, 0 for fewer than two frames."""
        if self.num_frames < 2:
            return 0.0
        return float(self.times[-1] - self.times[0])

    def partial(self, index: int) -> tuple[np.ndarray, np.ndarray]:
        """Frequency and amplitude trajectories of one partial column."""
        return self.freqs[:, index], self.amps[:, index]

    def frame_peaks(self, index: int) -> tuple[np.ndarray, np.ndarray]:
        """Valid (non-padded) peaks of one frame."""
        n = int(self.partials_per_frame[index])
        return self.freqs[index, :n], self.amps[index, :n]

    def slice_frames(self, start: int, stop: int) -> "PartialMatrix":
        """Copy of the rows in ``[start, stop)``."""
        return PartialMatrix(
            times=self.times[start:stop].copy(),
            freqs=self.freqs[start:stop].copy(),
            amps=self.amps[start:stop].copy(),
            partials_per_frame=self.partials_per_frame[start:stop].copy(),
            sample_rate=self.sample_rate,
            window_size=self.window_size,
            hop_size=self.hop_size,
        )


class PartialMatrixBuilder:
    """
    Builds a PartialMatrix from a mono sample buffer.

    Frames are independent; with ``n_workers > 1`` they are spread over a
    thread pool, each task writing only its own matrix row.
    """

    def __init__(
        self,
        window_size: int = 4096,
        hop_size: Optional[int] = None,
        peak_params: Optional[PeakPickingParams] = None,
        max_frames: Optional[int] = None,
        n_workers: int = 1,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize the builder.

        Args:
            window_size: Frame / FFT length in samples.
            hop_size: Samples between frames (default window_size // 2).
            peak_params: Peak picking parameters (defaults when None).
            max_frames: Optional cap on the number of analysed frames.
            n_workers: Thread count for frame analysis.
            progress_callback: Optional callback(stage, index, total) invoked
                once per analysed frame with stage ``"frames"``.
        """
        if n_workers < 1:
            raise InvalidParametersError(f"n_workers must be >= 1, got {n_workers}")
        self.window_size = window_size
        self.hop_size = hop_size if hop_size is not None else int(window_size) // 2
        self.peak_params = peak_params or PeakPickingParams()
        self.max_frames = max_frames
        self.n_workers = n_workers
        self.progress_callback = progress_callback

    def build(self, samples: np.ndarray, sample_rate: float) -> PartialMatrix:
        """
        Track partials across the whole buffer.

        Args:
            samples: Mono sample buffer.
            sample_rate: Sample rate in Hz.

        Returns:
            PartialMatrix with one row per analysed frame.

        Raises:
            InvalidParametersError: If the frame geometry is invalid.
        """
        source = FrameSource(
            samples,
            sample_rate,
            window_size=self.window_size,
            hop_size=self.hop_size,
            max_frames=self.max_frames,
        )
        extractor = SpectralPeakExtractor(
            sample_rate,
            window_size=source.window_size,
            params=self.peak_params,
        )

        n_frames = len(source)
        max_partials = self.peak_params.max_partials
        freqs = np.zeros((n_frames, max_partials))
        amps = np.zeros((n_frames, max_partials))
        partials_per_frame = np.zeros(n_frames, dtype=int)

        def analyze_frame(index: int) -> int:
            frame = source[index]
            peaks = extractor.extract(frame.samples)
            n = len(peaks)
            freqs[index, :n] = peaks.freqs
            amps[index, :n] = peaks.amps
            partials_per_frame[index] = n
            return index

        if self.n_workers == 1:
            for i in range(n_frames):
                analyze_frame(i)
                self._report(i, n_frames)
        else:
            with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
                for done, _ in enumerate(pool.map(analyze_frame, range(n_frames))):
                    self._report(done, n_frames)

        # One row per (capped) frame; a failing frame raises before this point
        matrix = PartialMatrix(
            times=source.times,
            freqs=freqs,
            amps=amps,
            partials_per_frame=partials_per_frame,
            sample_rate=source.sample_rate,
            window_size=source.window_size,
            hop_size=source.hop_size,
        )
        logger.debug(
            "Tracked %d frames (window=%d, hop=%d), %d peaks total",
            matrix.num_frames,
            matrix.window_size,
            matrix.hop_size,
            int(matrix.partials_per_frame.sum()),
        )
        return matrix

    def _report(self, index: int, total: int) -> None:
        if self.progress_callback:
            self.progress_callback("frames", index, total)
