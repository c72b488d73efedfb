"""Tests for harmonic-template fundamental estimation."""

import numpy as np
import pytest

from partialscope.core.fundamental import FundamentalEstimator, FundamentalParams
from partialscope.core.tracker import PartialMatrixBuilder
from partialscope.exceptions import InvalidParametersError

from conftest import SR_LOW, make_matrix


HARMONIC_ROW = [(100.0, -10.0), (200.0, -10.0), (300.0, -10.0), (400.0, -10.0)]


# ---------------------------------------------------------------------------
# Synthetic recordings
# ---------------------------------------------------------------------------

class TestRecordings:
    def test_harmonic_tone(self, harmonic_tone):
        y, sr = harmonic_tone
        matrix = PartialMatrixBuilder().build(y, sr)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == pytest.approx(220.0, abs=sr / 4096)
        assert estimate.detected
        assert estimate.note_name == "A3"

    def test_missing_fundamental_recovered(self, missing_fundamental_tone):
        y, sr = missing_fundamental_tone
        matrix = PartialMatrixBuilder().build(y, sr)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == pytest.approx(220.0, abs=sr / 4096)

    def test_pure_sine_is_not_a_subharmonic(self, sine_440):
        y, sr = sine_440
        matrix = PartialMatrixBuilder().build(y, sr)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == pytest.approx(440.0, abs=sr / 4096)

    def test_silence_is_undetected(self, silence):
        y, sr = silence
        matrix = PartialMatrixBuilder(window_size=2048).build(y, sr)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == 0.0
        assert not estimate.detected
        assert estimate.note_name == "N/A"


# ---------------------------------------------------------------------------
# Hand-built matrices
# ---------------------------------------------------------------------------

class TestScoring:
    def test_full_harmonic_series(self):
        matrix = make_matrix([HARMONIC_ROW] * 10)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == pytest.approx(100.0)
        assert estimate.num_candidates > 0

    def test_score_counts_matched_peaks(self):
        matrix = make_matrix([HARMONIC_ROW] * 10)
        estimate = FundamentalEstimator().estimate(matrix)
        # frames 1..5 inclusive, 4 peaks each at -10 dBFS
        assert estimate.score == pytest.approx(20 * 10 ** (-10 / 20))
        assert (estimate.start_frame, estimate.stop_frame) == (1, 6)

    def test_equal_scores_resolve_to_highest_candidate(self):
        matrix = make_matrix([[(300.0, -10.0)]] * 10)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == pytest.approx(300.0)

    def test_stronger_harmonics_dominate(self):
        rows = [[(100.0, -60.0), (250.0, -5.0), (500.0, -5.0), (750.0, -5.0)]] * 10
        estimate = FundamentalEstimator().estimate(make_matrix(rows))
        assert estimate.frequency == pytest.approx(250.0)

    def test_only_stable_region_is_used(self):
        rows = [[(1000.0, -5.0)]] * 2 + [HARMONIC_ROW] * 8
        estimator = FundamentalEstimator(FundamentalParams(start_frame_pct=0.2, end_frame_pct=1.0))
        estimate = estimator.estimate(make_matrix(rows))
        assert estimate.frequency == pytest.approx(100.0)
        assert (estimate.start_frame, estimate.stop_frame) == (2, 10)

    def test_candidates_outside_range_discarded(self):
        matrix = make_matrix([[(10000.0, -10.0)]] * 10)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == 0.0

    def test_all_zero_matrix(self):
        matrix = make_matrix([[]] * 10)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == 0.0
        assert estimate.score == 0.0

    def test_tolerance_window(self):
        rows = [[(100.0, -10.0), (206.0, -10.0)]] * 10
        loose = FundamentalEstimator(FundamentalParams(harmonic_tolerance=0.05, max_f0=150.0))
        tight = FundamentalEstimator(FundamentalParams(harmonic_tolerance=0.01, max_f0=150.0))
        matrix = make_matrix(rows)
        assert loose.estimate(matrix).score > tight.estimate(matrix).score

    def test_explicit_harmonic_count(self):
        estimator = FundamentalEstimator(FundamentalParams(num_harmonics=2))
        estimate = estimator.estimate(make_matrix([HARMONIC_ROW] * 10))
        # 100 Hz only reaches 200 Hz now; 200 Hz explains 200 and 400 Hz
        assert estimate.frequency == pytest.approx(200.0)


class TestStableRegion:
    def test_percentages(self):
        assert FundamentalEstimator().stable_region(100) == (10, 51)

    def test_end_frame_is_included(self):
        matrix = make_matrix([[]] * 5 + [[(300.0, -10.0)]] + [[]] * 4)
        estimate = FundamentalEstimator().estimate(matrix)
        assert estimate.frequency == pytest.approx(300.0)

    def test_end_frame_clamped_to_last_frame(self):
        estimator = FundamentalEstimator(FundamentalParams(end_frame_pct=1.0))
        assert estimator.stable_region(10) == (1, 10)

    def test_inverted_region_falls_back_to_all_frames(self):
        estimator = FundamentalEstimator(FundamentalParams(start_frame_pct=0.6, end_frame_pct=0.2))
        assert estimator.stable_region(10) == (0, 10)

    def test_empty_region_falls_back_to_all_frames(self):
        assert FundamentalEstimator().stable_region(1) == (0, 1)

    def test_single_frame_matrix(self):
        estimate = FundamentalEstimator().estimate(make_matrix([[(300.0, -10.0)]]))
        assert estimate.frequency == pytest.approx(300.0)
        assert (estimate.start_frame, estimate.stop_frame) == (0, 1)

    def test_candidates_are_filtered_and_sorted(self):
        estimator = FundamentalEstimator(FundamentalParams(min_f0=50.0, max_f0=500.0))
        cands = estimator.candidates(np.array([120.0, 900.0]))
        np.testing.assert_allclose(cands, [60.0, 120.0, 300.0, 450.0])


class TestFundamentalParams:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"start_frame_pct": -0.1},
            {"end_frame_pct": 1.5},
            {"harmonic_tolerance": -0.01},
            {"min_f0": 0.0},
            {"min_f0": 500.0, "max_f0": 400.0},
            {"num_harmonics": 0},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidParametersError):
            FundamentalParams(**kwargs)
