"""
Fundamental frequency estimation from a partial matrix.

Scores candidate fundamentals against the peaks found in a stable region
of the recording using a harmonic template. Every collected peak falling
within a tolerance window of a candidate's harmonic adds its linear
amplitude to that candidate's score, so strong harmonics dominate weak
sub-harmonic aliases. Half and third of every observed frequency are also
tried, which recovers fundamentals too quiet to be picked as peaks.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from partialscope.core.notes import hz_to_note_name
from partialscope.core.tracker import PartialMatrix
from partialscope.exceptions import InvalidParametersError

logger = logging.getLogger(__name__)


@dataclass
class FundamentalParams:
    """Harmonic-template search parameters."""

    start_frame_pct: float = 0.1
    end_frame_pct: float = 0.5
    harmonic_tolerance: float = 0.03   # fraction of each expected harmonic
    min_f0: float = 20.0
    max_f0: float = 2000.0
    num_harmonics: Optional[int] = None  # None: number of frames in the stable region

    def __post_init__(self):
        for name in ("start_frame_pct", "end_frame_pct"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidParametersError(f"{name} must lie in [0, 1], got {value}")
        if self.harmonic_tolerance < 0:
            raise InvalidParametersError(
                f"harmonic_tolerance must be non-negative, got {self.harmonic_tolerance}"
            )
        if self.min_f0 <= 0 or self.max_f0 <= self.min_f0:
            raise InvalidParametersError(
                f"need 0 < min_f0 < max_f0, got {self.min_f0} and {self.max_f0}"
            )
        if self.num_harmonics is not None and self.num_harmonics < 1:
            raise InvalidParametersError(
                f"num_harmonics must be positive, got {self.num_harmonics}"
            )


@dataclass
class FundamentalEstimate:
    """Winning fundamental and its harmonic-match score."""

    frequency: float          # Hz, 0 when undetected
    score: float              # cumulative linear amplitude of matched peaks
    num_candidates: int = 0
    start_frame: int = 0      # stable region used, as slice bounds
    stop_frame: int = 0

    @property
    def detected(self) -> bool:
        return self.frequency > 0

    @property
    def note_name(self) -> str:
        return hz_to_note_name(self.frequency)


class FundamentalEstimator:
    """
    Picks the candidate fundamental whose harmonic series best explains
    the observed partials.

    Every harmonic of f0 is also a harmonic of f0 / 2 and f0 / 3, so a true
    fundamental and its sub-multiples explain the same peaks with the same
    score. Candidates are therefore scored in descending frequency order and
    only a score higher by more than TIE_TOLERANCE (relative) replaces the
    current best: ties resolve to the highest candidate frequency.
    """

    TIE_TOLERANCE = 1e-9

    def __init__(self, params: Optional[FundamentalParams] = None):
        self.params = params or FundamentalParams()

    def stable_region(self, n_frames: int) -> tuple[int, int]:
        """
        Frames ``floor(N * start_frame_pct)`` through ``floor(N * end_frame_pct)``,
        both included, returned as a slice ``(start, stop)``.

        Falls back to all frames when the configured percentages give an
        empty or inverted range.
        """
        p = self.params
        first = int(np.floor(n_frames * p.start_frame_pct))
        last = min(int(np.floor(n_frames * p.end_frame_pct)), n_frames - 1)
        if first > last:
            return 0, n_frames
        return first, last + 1

    def collect_peaks(self, matrix: PartialMatrix) -> tuple[np.ndarray, np.ndarray, int, int]:
        """Non-zero (frequency, amplitude) pairs of the stable region, flattened."""
        start, stop = self.stable_region(matrix.num_frames)
        freqs = matrix.freqs[start:stop].ravel()
        amps = matrix.amps[start:stop].ravel()
        present = freqs != 0
        return freqs[present], amps[present], start, stop

    def candidates(self, freqs: np.ndarray) -> np.ndarray:
        """Observed frequencies, their halves and thirds within [min_f0, max_f0], ascending."""
        p = self.params
        pool = np.unique(np.concatenate([freqs, freqs / 2.0, freqs / 3.0]))
        return pool[(pool >= p.min_f0) & (pool <= p.max_f0)]

    def score(
        self,
        candidate: float,
        sorted_freqs: np.ndarray,
        cumulative_weights: np.ndarray,
        num_harmonics: int,
    ) -> float:
        """
        Harmonic-template score of one candidate.

        Args:
            candidate: Candidate fundamental in Hz.
            sorted_freqs: Collected peak frequencies, ascending.
            cumulative_weights: Running sum of linear peak amplitudes in the
                same order, with a leading zero.
            num_harmonics: Number of harmonics to test.

        Returns:
            Sum of linear amplitudes of every peak inside every harmonic window.
        """
        tol = self.params.harmonic_tolerance
        # Harmonics whose window starts above the highest peak cannot match
        reach = sorted_freqs[-1] / (candidate * max(1.0 - tol, 1e-12))
        n_h = int(min(num_harmonics, np.floor(reach) + 1))
        if n_h < 1:
            return 0.0

        expected = candidate * np.arange(1, n_h + 1)
        width = expected * tol
        lo = np.searchsorted(sorted_freqs, expected - width, side="left")
        hi = np.searchsorted(sorted_freqs, expected + width, side="right")
        return float(np.sum(cumulative_weights[hi] - cumulative_weights[lo]))

    def estimate(self, matrix: PartialMatrix) -> FundamentalEstimate:
        """
        Estimate the fundamental of a recording.

        Args:
            matrix: Partial matrix of the recording.

        Returns:
            FundamentalEstimate; frequency 0 when no peaks, no candidates,
            or no candidate with a positive score.
        """
        freqs, amps, start, stop = self.collect_peaks(matrix)
        if len(freqs) == 0:
            logger.debug("No peaks in frames [%d, %d); fundamental undetected", start, stop)
            return FundamentalEstimate(0.0, 0.0, 0, start, stop)

        candidates = self.candidates(freqs)
        if len(candidates) == 0:
            logger.debug("Empty candidate set after range filtering")
            return FundamentalEstimate(0.0, 0.0, 0, start, stop)

        num_harmonics = self.params.num_harmonics or (stop - start)

        order = np.argsort(freqs, kind="stable")
        sorted_freqs = freqs[order]
        weights = 10.0 ** (amps[order] / 20.0)
        cumulative = np.concatenate([[0.0], np.cumsum(weights)])

        best_freq = 0.0
        best_score = 0.0
        for candidate in candidates[::-1]:
            s = self.score(candidate, sorted_freqs, cumulative, num_harmonics)
            if s > best_score * (1.0 + self.TIE_TOLERANCE):
                best_score = s
                best_freq = float(candidate)

        logger.debug(
            "Scored %d candidates over %d harmonics: f0=%.2f Hz (score %.4f)",
            len(candidates),
            num_harmonics,
            best_freq,
            best_score,
        )
        return FundamentalEstimate(
            frequency=best_freq,
            score=best_score,
            num_candidates=len(candidates),
            start_frame=start,
            stop_frame=stop,
        )
