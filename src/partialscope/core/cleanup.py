"""
Audio and spectral data cleaning utilities.

Trims leading/trailing silence from a sample buffer before tracking, trims
silent frames from a finished partial matrix, and masks the cells of
partial trajectories that hold no real data.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import librosa
import numpy as np

from partialscope.core.tracker import PartialMatrix
from partialscope.exceptions import InvalidParametersError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sound boundaries (sample buffer)
# ---------------------------------------------------------------------------

@dataclass
class BoundaryParams:
    """RMS framing and thresholds for sound-boundary detection."""

    frame_size: int = 2048
    hop_size: int = 1024
    silence_floor_db: float = -120.0  # dB assigned to all-zero frames
    threshold_db: float = -80.0       # relative to the loudest frame

    def __post_init__(self):
        if self.frame_size <= 0 or self.hop_size <= 0:
            raise InvalidParametersError(
                f"frame_size and hop_size must be positive, got {self.frame_size}, {self.hop_size}"
            )
        if self.hop_size > self.frame_size:
            raise InvalidParametersError(
                f"hop_size ({self.hop_size}) must not exceed frame_size ({self.frame_size})"
            )


@dataclass
class SoundBoundaries:
    """Where sound starts and ends in a buffer."""

    start_sample: int          # first kept sample
    end_sample: int            # one past the last kept sample
    sample_rate: float
    original_length: int
    threshold_db: float = 0.0
    peak_db: float = 0.0

    @property
    def start_time(self) -> float:
        return self.start_sample / self.sample_rate

    @property
    def end_time(self) -> float:
        return max(self.end_sample - 1, 0) / self.sample_rate

    @property
    def trimmed_length(self) -> int:
        return self.end_sample - self.start_sample

    @property
    def samples_removed_start(self) -> int:
        return self.start_sample

    @property
    def samples_removed_end(self) -> int:
        return self.original_length - self.end_sample

    @property
    def original_duration(self) -> float:
        return max(self.original_length - 1, 0) / self.sample_rate

    @property
    def trimmed_duration(self) -> float:
        return max(self.trimmed_length - 1, 0) / self.sample_rate


def find_sound_boundaries(
    samples: np.ndarray,
    sample_rate: float,
    params: Optional[BoundaryParams] = None,
) -> tuple[np.ndarray, SoundBoundaries]:
    """
    Trim absolute silence from the start and end of a recording.

    Frame-wise RMS is converted to dB (all-zero frames get
    ``silence_floor_db``). Frames louder than the loudest frame plus
    ``threshold_db`` are sound; everything before the first and after the
    last such frame is removed.

    Args:
        samples: Mono sample buffer.
        sample_rate: Sample rate in Hz.
        params: Framing and threshold parameters.

    Returns:
        (trimmed_samples, SoundBoundaries). Buffers shorter than one RMS
        frame, or without any frame above threshold, come back unchanged.
    """
    p = params or BoundaryParams()
    if sample_rate is None or sample_rate <= 0:
        raise InvalidParametersError(f"sample_rate must be positive, got {sample_rate}")

    y = np.asarray(samples, dtype=np.float64)
    if y.ndim != 1:
        raise InvalidParametersError(f"samples must be a mono 1-D buffer, got shape {y.shape}")
    n = len(y)

    if n < p.frame_size:
        return y, SoundBoundaries(0, n, float(sample_rate), n)

    rms = librosa.feature.rms(
        y=y,
        frame_length=p.frame_size,
        hop_length=p.hop_size,
        center=False,
    )[0]
    rms_db = np.full(len(rms), p.silence_floor_db)
    audible = rms > 0
    rms_db[audible] = 20.0 * np.log10(rms[audible])

    if not audible.any():
        logger.warning("No sound detected; buffer left untouched")
        return y, SoundBoundaries(
            0, n, float(sample_rate), n, p.silence_floor_db, p.silence_floor_db
        )

    peak_db = float(np.max(rms_db))
    threshold = peak_db + p.threshold_db
    active = np.flatnonzero(rms_db > threshold)

    if len(active) == 0:
        logger.warning("No sound detected above threshold (%.1f dB)", threshold)
        return y, SoundBoundaries(0, n, float(sample_rate), n, threshold, peak_db)

    start = int(active[0]) * p.hop_size
    end = min(n, int(active[-1]) * p.hop_size + p.frame_size)
    bounds = SoundBoundaries(start, end, float(sample_rate), n, threshold, peak_db)
    logger.debug(
        "Sound from %.3f s to %.3f s (peak RMS %.1f dB, threshold %.1f dB)",
        bounds.start_time,
        bounds.end_time,
        peak_db,
        threshold,
    )
    return y[start:end], bounds


# ---------------------------------------------------------------------------
# Silent frames (partial matrix)
# ---------------------------------------------------------------------------

@dataclass
class FrameTrim:
    """Frames removed by trim_silent_frames."""

    original_frames: int
    trimmed_frames: int
    first_frame: int = 0          # index of the first kept frame in the original
    frames_removed_start: int = 0
    frames_removed_end: int = 0
    time_offset: float = 0.0      # subtracted from the kept times


def trim_silent_frames(
    matrix: PartialMatrix,
    min_active_partials: int = 1,
    threshold_db: float = -60.0,
) -> tuple[PartialMatrix, FrameTrim]:
    """
    Drop leading and trailing frames without enough active partials.

    A cell is active when non-zero and above ``threshold_db``. The span from
    the first to the last frame with at least ``min_active_partials`` active
    cells is kept and its time axis shifted to start at 0.

    Returns:
        (trimmed_matrix, FrameTrim). With no qualifying frame the matrix is
        empty (zero rows).
    """
    if min_active_partials < 1:
        raise InvalidParametersError(
            f"min_active_partials must be >= 1, got {min_active_partials}"
        )

    active = (matrix.amps != 0) & (matrix.amps > threshold_db)
    valid = np.flatnonzero(active.sum(axis=1) >= min_active_partials)

    if len(valid) == 0:
        logger.warning("No valid frames found above threshold %.1f dB", threshold_db)
        return matrix.slice_frames(0, 0), FrameTrim(matrix.num_frames, 0)

    first, last = int(valid[0]), int(valid[-1])
    trimmed = matrix.slice_frames(first, last + 1)
    offset = float(trimmed.times[0])
    trimmed.times = trimmed.times - offset

    info = FrameTrim(
        original_frames=matrix.num_frames,
        trimmed_frames=trimmed.num_frames,
        first_frame=first,
        frames_removed_start=first,
        frames_removed_end=matrix.num_frames - 1 - last,
        time_offset=offset,
    )
    logger.debug(
        "Trimmed %d leading and %d trailing silent frames",
        info.frames_removed_start,
        info.frames_removed_end,
    )
    return trimmed, info


# ---------------------------------------------------------------------------
# Partial trajectories
# ---------------------------------------------------------------------------

@dataclass
class PartialCoverage:
    """How much of one partial column holds real data."""

    partial_index: int
    num_valid: int
    num_invalid: int
    leading: int = 0    # invalid frames before the first valid one
    trailing: int = 0   # invalid frames after the last valid one
    gaps: int = 0       # invalid frames between the first and last valid one


def clean_partial_trajectories(
    matrix: PartialMatrix,
    threshold_db: float = -60.0,
    replace_with: float = np.nan,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Replace cells without real data in every partial trajectory.

    A cell is valid when its amplitude is non-zero and above
    ``threshold_db``. Invalid cells, interior gaps included, are set to
    ``replace_with`` in copies of both matrices.

    Returns:
        (freqs_clean, amps_clean, validity_mask)
    """
    mask = (matrix.amps != 0) & (matrix.amps > threshold_db)
    freqs = matrix.freqs.astype(float)
    amps = matrix.amps.astype(float)
    freqs[~mask] = replace_with
    amps[~mask] = replace_with
    return freqs, amps, mask


def partial_coverage(mask: np.ndarray) -> list[PartialCoverage]:
    """Valid/invalid frame counts for each column of a validity mask."""
    n_frames = mask.shape[0]
    report = []
    for p in range(mask.shape[1]):
        column = mask[:, p]
        valid_idx = np.flatnonzero(column)
        num_valid = len(valid_idx)
        if num_valid == 0:
            report.append(PartialCoverage(p, 0, n_frames, leading=n_frames))
            continue
        first, last = int(valid_idx[0]), int(valid_idx[-1])
        report.append(PartialCoverage(
            partial_index=p,
            num_valid=num_valid,
            num_invalid=n_frames - num_valid,
            leading=first,
            trailing=n_frames - 1 - last,
            gaps=(last - first + 1) - num_valid,
        ))
    return report
