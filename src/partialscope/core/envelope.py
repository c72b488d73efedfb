"""
Amplitude envelope analysis module.

Characterizes the rhythm and dynamics of one partial's amplitude trajectory:
moving-average smoothing, peak picking and inter-peak rhythm statistics,
activity segmentation, rate of change with inflection points, autocorrelation
periodicity, and a coarse envelope-shape label.

All amplitudes are dBFS. Samples at or below the silence floor count as
"not present"; a partial with no sample above it gets a well-defined
``"silent"`` record instead of an error.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np
from scipy import signal as scipy_signal
from scipy.ndimage import uniform_filter1d

from partialscope.core.tracker import PartialMatrix
from partialscope.exceptions import InvalidParametersError

logger = logging.getLogger(__name__)

SILENCE_FLOOR_DB = -60.0


@dataclass
class EnvelopeParams:
    """Envelope analysis parameters."""

    smooth_window: int = 5                # samples
    peak_distance: int = 20               # samples between amplitude peaks
    activity_threshold_db: float = -40.0
    min_segment_duration: float = 0.1     # seconds
    silence_floor_db: float = SILENCE_FLOOR_DB
    derivative_smooth_window: int = 10    # applied when the derivative is longer than this
    derivative_threshold_ratio: float = 0.1
    min_derivative_threshold: float = 5.0  # dB/s
    min_inflection_spacing: float = 0.1   # seconds
    periodicity_threshold_ratio: float = 0.3
    min_period_lags: int = 5
    min_periodicity_samples: int = 10     # periodicity needs strictly more valid samples

    def __post_init__(self):
        for name in ("smooth_window", "peak_distance", "derivative_smooth_window", "min_period_lags"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise InvalidParametersError(f"{name} must be a positive integer, got {value}")
            setattr(self, name, int(value))
        for name in (
            "min_segment_duration",
            "derivative_threshold_ratio",
            "min_derivative_threshold",
            "min_inflection_spacing",
            "periodicity_threshold_ratio",
        ):
            if getattr(self, name) < 0:
                raise InvalidParametersError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.min_periodicity_samples < 2:
            raise InvalidParametersError(
                f"min_periodicity_samples must be >= 2, got {self.min_periodicity_samples}"
            )


@dataclass
class ActivitySegment:
    """Contiguous span where a partial is above the activity threshold."""

    start: float       # seconds
    end: float         # seconds, time of the last active sample
    duration: float
    mean_amplitude: float
    max_amplitude: float


@dataclass
class EnvelopeAnalysis:
    """Rhythmic and dynamic description of one partial."""

    partial_index: int
    envelope_type: str   # "percussive" | "sustained" | "sparse" | "silent"

    # Basic statistics over samples above the silence floor
    mean_amplitude: float
    max_amplitude: float
    min_amplitude: float
    amplitude_range: float

    smoothed: np.ndarray  # same length as the input series

    # Peaks and rhythm
    peak_times: np.ndarray = field(default_factory=lambda: np.array([]))
    peak_amplitudes: np.ndarray = field(default_factory=lambda: np.array([]))
    inter_peak_intervals: np.ndarray = field(default_factory=lambda: np.array([]))
    mean_rhythm: float = 0.0         # mean inter-peak interval
    rhythm_regularity: float = 0.0   # std of inter-peak intervals
    min_interval: float = 0.0
    max_interval: float = 0.0

    segments: list[ActivitySegment] = field(default_factory=list)

    # Dynamics
    rate_of_change: np.ndarray = field(default_factory=lambda: np.array([]))  # dB/s
    inflection_times: np.ndarray = field(default_factory=lambda: np.array([]))
    mean_rate_of_change: float = 0.0

    # Periodicity
    detected_period: float = 0.0          # seconds, 0 when none
    periodicity_confidence: float = 0.0   # [0, 1]

    # Duration statistics
    total_duration: float = 0.0
    mean_segment_duration: float = 0.0
    total_active_time: float = 0.0
    activity_ratio: float = 0.0

    mean_frequency: float = 0.0  # Hz over present frames, 0 without a frequency track

    @property
    def num_peaks(self) -> int:
        return len(self.peak_times)

    @property
    def num_segments(self) -> int:
        return len(self.segments)

    @property
    def num_inflections(self) -> int:
        return len(self.inflection_times)


# ---------------------------------------------------------------------------
# Sub-algorithms (pure functions)
# ---------------------------------------------------------------------------

def smooth_envelope(envelope: np.ndarray, window_size: int = 5) -> np.ndarray:
    """
    Moving average over ``window_size`` samples.

    Inputs shorter than the window are returned unchanged. Edges are
    extended with the nearest value rather than zeros, since a zero in dBFS
    would read as full scale.
    """
    envelope = np.asarray(envelope, dtype=float)
    if window_size <= 1 or len(envelope) < window_size:
        return envelope.copy()
    return uniform_filter1d(envelope, size=window_size, mode="nearest")


def find_amplitude_peaks(
    times: np.ndarray,
    amps: np.ndarray,
    min_peak_height: float = -40.0,
    min_peak_distance: int = 10,
    silence_floor_db: float = SILENCE_FLOOR_DB,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Find peaks in an amplitude trajectory.

    Only samples above the silence floor take part. Heights are compared
    after shifting the valid samples to be non-negative.

    Args:
        times: Time of each sample in seconds.
        amps: Amplitudes in dBFS.
        min_peak_height: Minimum peak amplitude in dBFS.
        min_peak_distance: Minimum separation in (valid) samples.
        silence_floor_db: Samples at or below this are ignored.

    Returns:
        (peak_times, peak_values) in the original dBFS scale.
    """
    times = np.asarray(times, dtype=float)
    amps = np.asarray(amps, dtype=float)
    valid = amps > silence_floor_db
    if np.count_nonzero(valid) < 2:
        return np.array([]), np.array([])

    valid_times = times[valid]
    valid_amps = amps[valid]

    min_amp = np.min(valid_amps)
    shifted = valid_amps - min_amp
    threshold = max(min_peak_height - min_amp, 0.0)

    locs, props = scipy_signal.find_peaks(
        shifted,
        height=threshold,
        distance=max(int(min_peak_distance), 1),
    )
    if len(locs) == 0:
        return np.array([]), np.array([])

    return valid_times[locs], props["peak_heights"] + min_amp


def interval_statistics(peak_times: np.ndarray) -> dict:
    """
    Inter-peak intervals and their mean, std, min and max.

    Fewer than two peaks gives an empty interval array and zero statistics.
    """
    peak_times = np.asarray(peak_times, dtype=float)
    if len(peak_times) < 2:
        return {
            "intervals": np.array([]),
            "mean": 0.0,
            "std": 0.0,
            "min": 0.0,
            "max": 0.0,
        }
    intervals = np.diff(peak_times)
    return {
        "intervals": intervals,
        "mean": float(np.mean(intervals)),
        "std": float(np.std(intervals, ddof=1)) if len(intervals) > 1 else 0.0,
        "min": float(np.min(intervals)),
        "max": float(np.max(intervals)),
    }


def segment_by_activity(
    times: np.ndarray,
    amps: np.ndarray,
    threshold: float = -40.0,
    min_duration: float = 0.1,
) -> list[ActivitySegment]:
    """
    Split an envelope into active regions.

    A sample is active when strictly above ``threshold``. Contiguous runs
    are found from the rising and falling edges of the activity mask; runs
    shorter than ``min_duration`` seconds are discarded.

    Returns:
        Non-overlapping segments in time order.
    """
    times = np.asarray(times, dtype=float)
    amps = np.asarray(amps, dtype=float)
    if len(amps) == 0:
        return []

    active = (amps > threshold).astype(int)
    edges = np.diff(np.concatenate([[0], active, [0]]))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1) - 1

    segments = []
    for s, e in zip(starts, ends):
        duration = float(times[e] - times[s])
        if duration < min_duration:
            continue
        run = amps[s:e + 1]
        segments.append(ActivitySegment(
            start=float(times[s]),
            end=float(times[e]),
            duration=duration,
            mean_amplitude=float(np.mean(run)),
            max_amplitude=float(np.max(run)),
        ))
    return segments


def envelope_dynamics(
    times: np.ndarray,
    amps: np.ndarray,
    smooth_window: int = 10,
    threshold_ratio: float = 0.1,
    min_threshold: float = 5.0,
    min_spacing: float = 0.1,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Rate of change of an envelope and its inflection times.

    The derivative (dB/s) is smoothed when longer than ``smooth_window``.
    Derivative samples whose magnitude does not exceed
    ``max(threshold_ratio * max|rate|, min_threshold)`` get sign 0, and an
    inflection is reported only where two adjacent samples are both
    significant with opposite signs. A slope that passes through the
    masked band on its way to the other sign is not an inflection.
    Inflections no more than ``min_spacing`` seconds after the previously
    kept one are dropped.

    Returns:
        (rate_of_change, inflection_times). rate_of_change has
        ``len(times) - 1`` samples; both are empty for fewer than 2 samples.
    """
    times = np.asarray(times, dtype=float)
    amps = np.asarray(amps, dtype=float)
    if len(times) < 2:
        return np.array([]), np.array([])

    dt = np.diff(times)
    damp = np.diff(amps)
    rate = np.divide(damp, dt, out=np.zeros_like(damp), where=dt > 0)

    if len(rate) > smooth_window:
        rate = smooth_envelope(rate, smooth_window)

    if len(rate) < 2:
        return rate, np.array([])

    threshold = max(float(np.max(np.abs(rate))) * threshold_ratio, min_threshold)
    signs = np.sign(rate)
    signs[np.abs(rate) <= threshold] = 0
    flips = np.flatnonzero(np.abs(np.diff(signs)) >= 2) + 1

    kept = []
    for idx in flips:
        t = times[idx]
        if not kept or t - kept[-1] > min_spacing:
            kept.append(t)
    return rate, np.array(kept, dtype=float)


def amplitude_periodicity(
    amps: np.ndarray,
    sample_rate: float,
    silence_floor_db: float = SILENCE_FLOOR_DB,
    threshold_ratio: float = 0.3,
    min_lag: int = 5,
    min_samples: int = 10,
) -> tuple[float, float]:
    """
    Detect a repeating pattern in an envelope via autocorrelation.

    The valid dBFS samples are autocorrelated as they are, without removing
    their mean, and the result is normalized by their energy (1 at lag 0). Over positive lags (shifted to be non-negative
    when needed) the first peak at least ``min_lag`` lags from zero that
    exceeds ``threshold_ratio`` of the autocorrelation range gives the
    period.

    Args:
        amps: Amplitudes in dBFS.
        sample_rate: Envelope samples per second.
        silence_floor_db: Samples at or below this are ignored.
        threshold_ratio: Peak height relative to the (max - min) range.
        min_lag: Minimum lag, also the minimum peak spacing.
        min_samples: Periodicity needs more valid samples than this;
            ``min_samples`` or fewer returns (0, 0).

    Returns:
        (period_seconds, confidence); (0, 0) when nothing qualifies.
    """
    amps = np.asarray(amps, dtype=float)
    x = amps[amps > silence_floor_db]
    if len(x) <= min_samples or sample_rate <= 0:
        return 0.0, 0.0

    energy = float(np.dot(x, x))
    if energy <= 0:
        return 0.0, 0.0

    acf = scipy_signal.correlate(x, x, mode="full") / energy
    acf_pos = acf[len(x) - 1:]

    min_acf = float(np.min(acf_pos))
    shifted = acf_pos - min_acf if min_acf < 0 else acf_pos
    height = threshold_ratio * float(np.max(shifted) - np.min(shifted))

    locs, _ = scipy_signal.find_peaks(shifted, height=height, distance=min_lag)
    locs = locs[locs >= min_lag]
    if len(locs) == 0:
        return 0.0, 0.0

    lag = int(locs[0])
    confidence = float(np.clip(acf_pos[lag], 0.0, 1.0))
    return lag / sample_rate, confidence


def classify_envelope(segments: list[ActivitySegment], mean_amplitude: float) -> str:
    """
    Coarse envelope shape.

    "percussive" when the first active segment is louder than the partial's
    mean, "sustained" otherwise, "sparse" without segments.
    """
    if not segments:
        return "sparse"
    if segments[0].mean_amplitude > mean_amplitude:
        return "percussive"
    return "sustained"


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class EnvelopeAnalyzer:
    """
    Composes the envelope sub-algorithms into one EnvelopeAnalysis per partial.
    """

    def __init__(self, params: Optional[EnvelopeParams] = None):
        self.params = params or EnvelopeParams()

    def _prepare(
        self,
        amps: np.ndarray,
        freqs: Optional[np.ndarray],
    ) -> np.ndarray:
        """Replace absent samples (NaN, or zero frequency) with the silence floor."""
        floor = self.params.silence_floor_db
        amps = np.asarray(amps, dtype=float).copy()
        absent = ~np.isfinite(amps)
        if freqs is not None:
            absent |= np.asarray(freqs, dtype=float) == 0
        amps[absent] = floor
        return amps

    def _silent(self, partial_index: int, times: np.ndarray, amps: np.ndarray) -> EnvelopeAnalysis:
        floor = self.params.silence_floor_db
        return EnvelopeAnalysis(
            partial_index=partial_index,
            envelope_type="silent",
            mean_amplitude=floor,
            max_amplitude=floor,
            min_amplitude=floor,
            amplitude_range=0.0,
            smoothed=amps.copy(),
            total_duration=float(times[-1] - times[0]) if len(times) > 1 else 0.0,
        )

    def analyze(
        self,
        times: np.ndarray,
        amps: np.ndarray,
        freqs: Optional[np.ndarray] = None,
        partial_index: int = 0,
    ) -> EnvelopeAnalysis:
        """
        Analyze one partial's amplitude trajectory.

        Args:
            times: Frame times in seconds.
            amps: Amplitude per frame in dBFS.
            freqs: Optional frequency per frame; frames where it is zero
                count as absent.
            partial_index: Column index of the partial, for labelling.

        Returns:
            EnvelopeAnalysis for the partial.
        """
        p = self.params
        times = np.asarray(times, dtype=float)
        amps = np.asarray(amps, dtype=float)
        if len(times) != len(amps):
            raise InvalidParametersError(
                f"times ({len(times)}) and amps ({len(amps)}) must have equal length"
            )
        if freqs is not None and len(freqs) != len(amps):
            raise InvalidParametersError(
                f"freqs ({len(freqs)}) and amps ({len(amps)}) must have equal length"
            )
        amps = self._prepare(amps, freqs)

        valid = amps > p.silence_floor_db
        if len(amps) == 0 or not valid.any():
            return self._silent(partial_index, times, amps)

        valid_amps = amps[valid]
        mean_amp = float(np.mean(valid_amps))
        max_amp = float(np.max(valid_amps))
        min_amp = float(np.min(valid_amps))

        smoothed = smooth_envelope(amps, p.smooth_window)

        peak_times, peak_amps = find_amplitude_peaks(
            times,
            smoothed,
            min_peak_height=mean_amp,
            min_peak_distance=p.peak_distance,
            silence_floor_db=p.silence_floor_db,
        )
        rhythm = interval_statistics(peak_times)

        segments = segment_by_activity(
            times,
            amps,
            threshold=p.activity_threshold_db,
            min_duration=p.min_segment_duration,
        )

        valid_times = times[valid]
        if len(valid_times) > 2:
            rate, inflections = envelope_dynamics(
                valid_times,
                smoothed[valid],
                smooth_window=p.derivative_smooth_window,
                threshold_ratio=p.derivative_threshold_ratio,
                min_threshold=p.min_derivative_threshold,
                min_spacing=p.min_inflection_spacing,
            )
        else:
            rate, inflections = np.array([]), np.array([])

        period, confidence = 0.0, 0.0
        if len(times) > 1:
            step = float(np.mean(np.diff(times)))
            if step > 0:
                period, confidence = amplitude_periodicity(
                    amps,
                    1.0 / step,
                    silence_floor_db=p.silence_floor_db,
                    threshold_ratio=p.periodicity_threshold_ratio,
                    min_lag=p.min_period_lags,
                    min_samples=p.min_periodicity_samples,
                )

        total_duration = float(times[-1] - times[0]) if len(times) > 1 else 0.0
        durations = np.array([s.duration for s in segments])
        total_active = float(durations.sum()) if len(durations) else 0.0

        mean_frequency = 0.0
        if freqs is not None:
            present = np.asarray(freqs, dtype=float)[valid]
            present = present[present > 0]
            if len(present):
                mean_frequency = float(np.mean(present))

        return EnvelopeAnalysis(
            partial_index=partial_index,
            envelope_type=classify_envelope(segments, mean_amp),
            mean_amplitude=mean_amp,
            max_amplitude=max_amp,
            min_amplitude=min_amp,
            amplitude_range=max_amp - min_amp,
            smoothed=smoothed,
            peak_times=peak_times,
            peak_amplitudes=peak_amps,
            inter_peak_intervals=rhythm["intervals"],
            mean_rhythm=rhythm["mean"],
            rhythm_regularity=rhythm["std"],
            min_interval=rhythm["min"],
            max_interval=rhythm["max"],
            segments=segments,
            rate_of_change=rate,
            inflection_times=inflections,
            mean_rate_of_change=float(np.mean(np.abs(rate))) if len(rate) else 0.0,
            detected_period=period,
            periodicity_confidence=confidence,
            total_duration=total_duration,
            mean_segment_duration=float(durations.mean()) if len(durations) else 0.0,
            total_active_time=total_active,
            activity_ratio=total_active / total_duration if total_duration > 0 else 0.0,
            mean_frequency=mean_frequency,
        )

    def analyze_matrix(
        self,
        matrix: PartialMatrix,
        n_workers: int = 1,
        progress_callback: Optional[Callable[[str, int, int], None]] = None,
    ) -> list[EnvelopeAnalysis]:
        """
        Analyze every partial column of a matrix.

        Args:
            matrix: Partial matrix (read only).
            n_workers: Thread count; columns are independent.
            progress_callback: Optional callback(stage, index, total) invoked
                once per partial with stage ``"partials"``.

        Returns:
            One EnvelopeAnalysis per column, ordered by column index.
        """
        if n_workers < 1:
            raise InvalidParametersError(f"n_workers must be >= 1, got {n_workers}")

        total = matrix.max_partials

        def analyze_column(index: int) -> EnvelopeAnalysis:
            freqs, amps = matrix.partial(index)
            return self.analyze(matrix.times, amps, freqs=freqs, partial_index=index)

        if n_workers == 1:
            results = []
            for i in range(total):
                results.append(analyze_column(i))
                if progress_callback:
                    progress_callback("partials", i, total)
        else:
            with ThreadPoolExecutor(max_workers=n_workers) as pool:
                results = []
                for i, analysis in enumerate(pool.map(analyze_column, range(total))):
                    results.append(analysis)
                    if progress_callback:
                        progress_callback("partials", i, total)

        n_silent = sum(1 for a in results if a.envelope_type == "silent")
        logger.debug("Analyzed %d partial envelopes (%d silent)", total, n_silent)
        return results
