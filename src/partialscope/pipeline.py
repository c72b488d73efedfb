"""
End-to-end partial analysis pipeline.

Chains the core components for one recording:

    samples ─► [sound-boundary trim] ─► PartialMatrixBuilder
                                              │
                                   [silent-frame trim]
                                              │
                      ┌───────────────────────┴──────────────────────┐
                      ▼                                              ▼
              FundamentalEstimator                          EnvelopeAnalyzer
              (stable region scan)                          (one record per column)

The estimator and the envelope analyzer only read the matrix, so they do
not depend on each other.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from partialscope.core.cleanup import (
    BoundaryParams,
    FrameTrim,
    SoundBoundaries,
    find_sound_boundaries,
    trim_silent_frames,
)
from partialscope.core.envelope import EnvelopeAnalysis, EnvelopeAnalyzer, EnvelopeParams
from partialscope.core.fundamental import (
    FundamentalEstimate,
    FundamentalEstimator,
    FundamentalParams,
)
from partialscope.core.spectrum import PeakPickingParams
from partialscope.core.tracker import PartialMatrix, PartialMatrixBuilder

logger = logging.getLogger(__name__)


@dataclass
class PartialAnalysisResult:
    """Everything computed for one recording."""

    matrix: PartialMatrix
    fundamental: FundamentalEstimate
    envelopes: list[EnvelopeAnalysis] = field(default_factory=list)
    boundaries: Optional[SoundBoundaries] = None  # set when trim_silence is on
    frame_trim: Optional[FrameTrim] = None        # set when trim_frames is on

    @property
    def num_frames(self) -> int:
        return self.matrix.num_frames


class PartialPipeline:
    """
    Runs partial tracking, fundamental estimation and envelope analysis.

    Parameters
    ----------
    window_size:
        Frame / FFT length in samples (default: 4096).
    hop_size:
        Samples between frames (default: window_size // 2).
    peak_params, fundamental_params, envelope_params, boundary_params:
        Per-component parameters; None uses the defaults.
    trim_silence:
        Trim leading/trailing silence from the buffer before framing.
    trim_frames:
        Drop leading/trailing frames without active partials and restart
        the time axis at 0.
    n_workers:
        Threads used for frame extraction and for envelope analysis.
    progress_callback:
        Optional callback(stage, index, total), called per frame
        (stage ``"frames"``) and per partial (stage ``"partials"``).
    """

    def __init__(
        self,
        window_size: int = 4096,
        hop_size: Optional[int] = None,
        peak_params: Optional[PeakPickingParams] = None,
        fundamental_params: Optional[FundamentalParams] = None,
        envelope_params: Optional[EnvelopeParams] = None,
        boundary_params: Optional[BoundaryParams] = None,
        trim_silence: bool = False,
        trim_frames: bool = False,
        n_workers: int = 1,
        progress_callback: Optional[Callable[[str, int, int], None]] = None,
    ):
        self.builder = PartialMatrixBuilder(
            window_size=window_size,
            hop_size=hop_size,
            peak_params=peak_params,
            n_workers=n_workers,
            progress_callback=progress_callback,
        )
        self.estimator = FundamentalEstimator(fundamental_params)
        self.envelope_analyzer = EnvelopeAnalyzer(envelope_params)
        self.boundary_params = boundary_params or BoundaryParams()
        self.trim_silence = trim_silence
        self.trim_frames = trim_frames
        self.n_workers = n_workers
        self.progress_callback = progress_callback

    def analyze(self, samples: np.ndarray, sample_rate: float) -> PartialAnalysisResult:
        """
        Analyze a decoded mono recording.

        Args:
            samples: Mono sample buffer.
            sample_rate: Sample rate in Hz.

        Returns:
            PartialAnalysisResult with the matrix, fundamental and one
            envelope record per partial column.

        Raises:
            InvalidParametersError: Before any frame is processed when the
                frame geometry does not fit the (possibly trimmed) buffer.
        """
        boundaries = None
        if self.trim_silence:
            samples, boundaries = find_sound_boundaries(
                samples, sample_rate, self.boundary_params
            )

        matrix = self.builder.build(samples, sample_rate)

        frame_trim = None
        if self.trim_frames:
            matrix, frame_trim = trim_silent_frames(
                matrix, threshold_db=self.builder.peak_params.threshold_db
            )

        fundamental = self.estimator.estimate(matrix)
        envelopes = self.envelope_analyzer.analyze_matrix(
            matrix,
            n_workers=self.n_workers,
            progress_callback=self.progress_callback,
        )

        logger.info(
            "Analyzed %d frames, %d partials; f0 = %.2f Hz (%s)",
            matrix.num_frames,
            matrix.max_partials,
            fundamental.frequency,
            fundamental.note_name,
        )
        return PartialAnalysisResult(
            matrix=matrix,
            fundamental=fundamental,
            envelopes=envelopes,
            boundaries=boundaries,
            frame_trim=frame_trim,
        )
