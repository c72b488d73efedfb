"""
Musical annotation helpers.

Maps peak frequencies to note names and dBFS amplitudes to MIDI velocities
and dynamic markings, so that per-peak tables can be handed to reporting
code as plain data.
"""

from typing import Any

import librosa
import numpy as np


# Upper velocity bound of each dynamic marking, softest first
DYNAMIC_BANDS = [
    (16, "pppp"),
    (33, "ppp"),
    (49, "pp"),
    (64, "p"),
    (80, "mp"),
    (96, "mf"),
    (112, "f"),
    (120, "ff"),
]


def hz_to_note_name(freq: float) -> str:
    """Closest equal-tempered note (A4 = 440 Hz), e.g. ``"C#5"``; ``"N/A"`` for freq <= 0."""
    if freq is None or not np.isfinite(freq) or freq <= 0:
        return "N/A"
    return str(librosa.hz_to_note(float(freq), unicode=False))


def amplitude_to_velocity(db_amplitude: float) -> int:
    """
    Map a dBFS amplitude to a MIDI velocity in [1, 127].

    -60 dBFS and below map to 1, 0 dBFS and above to 127. In between a
    power-law curve gives quieter levels more resolution.
    """
    if db_amplitude <= -60:
        return 1
    if db_amplitude >= 0:
        return 127
    normalized = (db_amplitude + 60.0) / 60.0
    velocity = int(round(1 + 126 * normalized ** 0.7))
    return max(1, min(127, velocity))


def velocity_to_dynamic(velocity: int) -> str:
    """Dynamic marking (pppp to fff) for a MIDI velocity; ``"----"`` when <= 0."""
    if velocity <= 0:
        return "----"
    for upper, marking in DYNAMIC_BANDS:
        if velocity <= upper:
            return marking
    return "fff"


def harmonic_table(freqs: np.ndarray, amps: np.ndarray) -> list[dict[str, Any]]:
    """
    Describe each spectral peak relative to the lowest one.

    Args:
        freqs: Peak frequencies in Hz, ascending.
        amps: Peak amplitudes in dBFS.

    Returns:
        One dict per peak with frequency, note, midi, ratio, amplitude_db,
        velocity and dynamic. Empty when there are no peaks.
    """
    freqs = np.asarray(freqs, dtype=float)
    amps = np.asarray(amps, dtype=float)
    if len(freqs) == 0:
        return []

    fundamental = freqs[0]
    rows = []
    for freq, amp in zip(freqs, amps):
        velocity = amplitude_to_velocity(amp)
        rows.append({
            "frequency": float(freq),
            "note": hz_to_note_name(freq),
            "midi": int(np.round(librosa.hz_to_midi(freq))) if freq > 0 else None,
            "ratio": float(freq / fundamental) if fundamental > 0 else 0.0,
            "amplitude_db": float(amp),
            "velocity": velocity,
            "dynamic": velocity_to_dynamic(velocity),
        })
    return rows
