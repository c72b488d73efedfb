"""Shared synthetic signals for the partial analysis tests."""

import numpy as np
import pytest

from partialscope.core.tracker import PartialMatrix


SR = 44100
SR_LOW = 22050


def sine(freq: float, duration: float, sr: int, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(sr * duration)) / sr
    return amplitude * np.sin(2 * np.pi * freq * t)


@pytest.fixture
def sine_440():
    """2 s, 44.1 kHz, A4 sine."""
    return sine(440.0, 2.0, SR), SR


@pytest.fixture
def harmonic_tone():
    """f0 = 220 Hz with equal-amplitude partials at f0, 2f0, 3f0, 4f0."""
    duration = 1.5
    y = sum(sine(220.0 * h, duration, SR_LOW, amplitude=0.2) for h in range(1, 5))
    return y, SR_LOW


@pytest.fixture
def missing_fundamental_tone():
    """Partials at 2f0, 3f0, 4f0 of f0 = 220 Hz, fundamental absent."""
    duration = 1.5
    y = sum(sine(220.0 * h, duration, SR_LOW, amplitude=0.2) for h in range(2, 5))
    return y, SR_LOW


@pytest.fixture
def silence():
    return np.zeros(SR_LOW), SR_LOW


def make_matrix(rows, max_partials: int = 6, hop_time: float = 0.05) -> PartialMatrix:
    """Build a PartialMatrix from per-frame lists of (freq, amp) pairs."""
    n = len(rows)
    freqs = np.zeros((n, max_partials))
    amps = np.zeros((n, max_partials))
    counts = np.zeros(n, dtype=int)
    for i, peaks in enumerate(rows):
        peaks = sorted(peaks)
        for j, (f, a) in enumerate(peaks):
            freqs[i, j] = f
            amps[i, j] = a
        counts[i] = len(peaks)
    return PartialMatrix(
        times=np.arange(n) * hop_time,
        freqs=freqs,
        amps=amps,
        partials_per_frame=counts,
        sample_rate=SR,
        window_size=4096,
        hop_size=int(hop_time * SR),
    )


@pytest.fixture
def matrix_factory():
    return make_matrix
