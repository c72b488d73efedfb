"""Tests for note names, velocities and dynamic markings."""

import numpy as np
import pytest

from partialscope.core.notes import (
    amplitude_to_velocity,
    harmonic_table,
    hz_to_note_name,
    velocity_to_dynamic,
)


class TestNoteNames:
    @pytest.mark.parametrize(
        "freq, name",
        [(440.0, "A4"), (261.63, "C4"), (277.18, "C#4"), (220.0, "A3"), (445.0, "A4")],
    )
    def test_nearest_note(self, freq, name):
        assert hz_to_note_name(freq) == name

    @pytest.mark.parametrize("freq", [0.0, -10.0, np.nan, np.inf])
    def test_no_note(self, freq):
        assert hz_to_note_name(freq) == "N/A"


class TestVelocity:
    def test_bounds(self):
        assert amplitude_to_velocity(-60.0) == 1
        assert amplitude_to_velocity(-90.0) == 1
        assert amplitude_to_velocity(0.0) == 127
        assert amplitude_to_velocity(3.0) == 127

    def test_curve(self):
        assert amplitude_to_velocity(-30.0) == 79

    def test_monotonic(self):
        velocities = [amplitude_to_velocity(db) for db in np.linspace(-60, 0, 61)]
        assert velocities == sorted(velocities)
        assert all(1 <= v <= 127 for v in velocities)


class TestDynamics:
    @pytest.mark.parametrize(
        "velocity, marking",
        [
            (0, "----"),
            (1, "pppp"),
            (16, "pppp"),
            (17, "ppp"),
            (49, "pp"),
            (64, "p"),
            (79, "mp"),
            (96, "mf"),
            (112, "f"),
            (120, "ff"),
            (121, "fff"),
            (127, "fff"),
        ],
    )
    def test_bands(self, velocity, marking):
        assert velocity_to_dynamic(velocity) == marking


class TestHarmonicTable:
    def test_rows(self):
        rows = harmonic_table(np.array([220.0, 440.0, 660.0]), np.array([-6.0, -30.0, -70.0]))
        assert [r["note"] for r in rows] == ["A3", "A4", "E5"]
        assert [r["ratio"] for r in rows] == pytest.approx([1.0, 2.0, 3.0])
        assert rows[0]["midi"] == 57
        assert rows[1]["velocity"] == 79
        assert rows[1]["dynamic"] == "mp"
        assert rows[2]["velocity"] == 1

    def test_empty(self):
        assert harmonic_table(np.array([]), np.array([])) == []
