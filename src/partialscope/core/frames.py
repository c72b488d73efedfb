"""
Frame segmentation module.

Slices a mono sample buffer into overlapping, fixed-length analysis frames.
A trailing frame that would run past the end of the buffer is dropped, never
padded, so every frame holds exactly ``window_size`` real samples.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

import librosa
import numpy as np

from partialscope.exceptions import InvalidParametersError


@dataclass
class Frame:
    """A single analysis window and its position in the buffer."""

    index: int
    start: int          # sample offset of the first sample
    time: float         # start / sample_rate, seconds
    samples: np.ndarray  # (window_size,) view into the source buffer


class FrameSource:
    """
    Produces ``floor((N - W) / H) + 1`` frames of ``W`` samples each.

    Frame ``i`` starts at sample ``i * H`` and is timestamped at
    ``i * H / sample_rate``.
    """

    def __init__(
        self,
        samples: np.ndarray,
        sample_rate: float,
        window_size: int = 4096,
        hop_size: Optional[int] = None,
        max_frames: Optional[int] = None,
    ):
        """
        Initialize and validate the frame geometry.

        Args:
            samples: Mono sample buffer.
            sample_rate: Sample rate in Hz.
            window_size: Frame length in samples.
            hop_size: Samples between frame starts (default window_size // 2).
            max_frames: Optional cap on the number of frames produced.

        Raises:
            InvalidParametersError: On non-positive sizes, hop > window, or a
                window that does not fit strictly inside the buffer.
        """
        if hop_size is None:
            hop_size = int(window_size) // 2

        y = np.asarray(samples, dtype=np.float64)
        if y.ndim != 1:
            raise InvalidParametersError(
                f"samples must be a mono 1-D buffer, got shape {y.shape}"
            )
        if sample_rate is None or sample_rate <= 0:
            raise InvalidParametersError(f"sample_rate must be positive, got {sample_rate}")
        if int(window_size) != window_size or window_size <= 0:
            raise InvalidParametersError(f"window_size must be a positive integer, got {window_size}")
        if int(hop_size) != hop_size or hop_size <= 0:
            raise InvalidParametersError(f"hop_size must be a positive integer, got {hop_size}")
        if hop_size > window_size:
            raise InvalidParametersError(
                f"hop_size ({hop_size}) must not exceed window_size ({window_size})"
            )
        if window_size >= len(y):
            raise InvalidParametersError(
                f"window_size ({window_size}) must be smaller than the buffer ({len(y)} samples)"
            )
        if max_frames is not None and max_frames <= 0:
            raise InvalidParametersError(f"max_frames must be positive, got {max_frames}")

        self.samples = np.ascontiguousarray(y)
        self.sample_rate = float(sample_rate)
        self.window_size = int(window_size)
        self.hop_size = int(hop_size)

        n_frames = (len(y) - self.window_size) // self.hop_size + 1
        if max_frames is not None:
            n_frames = min(n_frames, int(max_frames))
        self.num_frames = n_frames

        # (n_frames, window_size) strided view, no copy
        self._frames = librosa.util.frame(
            self.samples,
            frame_length=self.window_size,
            hop_length=self.hop_size,
            axis=0,
        )[: self.num_frames]

    def __len__(self) -> int:
        return self.num_frames

    def __getitem__(self, index: int) -> Frame:
        if index < 0:
            index += self.num_frames
        if not 0 <= index < self.num_frames:
            raise IndexError(f"frame index {index} out of range")
        start = index * self.hop_size
        return Frame(
            index=index,
            start=start,
            time=start / self.sample_rate,
            samples=self._frames[index],
        )

    def __iter__(self) -> Iterator[Frame]:
        for i in range(self.num_frames):
            yield self[i]

    @property
    def starts(self) -> np.ndarray:
        """Sample offset of every frame."""
        return np.arange(self.num_frames) * self.hop_size

    @property
    def times(self) -> np.ndarray:
        """Frame start times in seconds, ascending."""
        return librosa.frames_to_time(
            np.arange(self.num_frames),
            sr=self.sample_rate,
            hop_length=self.hop_size,
        )
