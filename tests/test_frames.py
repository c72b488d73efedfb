"""Tests for frame segmentation."""

import numpy as np
import pytest

from partialscope.core.frames import FrameSource
from partialscope.exceptions import InvalidParametersError


class TestFrameCount:
    def test_frame_count_formula(self):
        y = np.zeros(88200)
        source = FrameSource(y, 44100, window_size=4096, hop_size=2048)
        assert len(source) == (88200 - 4096) // 2048 + 1 == 42

    def test_last_frame_fits_inside_buffer(self):
        y = np.arange(10000, dtype=float)
        source = FrameSource(y, 1000, window_size=1024, hop_size=300)
        last = source[-1]
        assert last.start + source.window_size <= len(y)
        # one more hop would overrun
        assert last.start + source.hop_size + source.window_size > len(y)

    def test_every_frame_is_full_length(self):
        y = np.random.default_rng(0).normal(size=5000)
        source = FrameSource(y, 8000, window_size=512, hop_size=256)
        assert all(len(frame.samples) == 512 for frame in source)

    def test_default_hop_is_half_window(self):
        source = FrameSource(np.zeros(10000), 1000, window_size=1000)
        assert source.hop_size == 500

    def test_max_frames_caps_count_and_time_axis(self):
        source = FrameSource(np.zeros(88200), 44100, window_size=4096, hop_size=2048, max_frames=10)
        assert len(source) == 10
        assert len(source.times) == 10


class TestFrameContent:
    def test_frame_start_and_samples(self):
        y = np.arange(2000, dtype=float)
        source = FrameSource(y, 100, window_size=400, hop_size=150)
        frame = source[3]
        assert frame.start == 450
        np.testing.assert_array_equal(frame.samples, y[450:850])
        assert source.starts[3] == 450

    def test_timestamps(self):
        source = FrameSource(np.zeros(88200), 44100, window_size=4096, hop_size=2048)
        np.testing.assert_allclose(source.times, np.arange(42) * 2048 / 44100)
        assert source[5].time == pytest.approx(5 * 2048 / 44100)

    def test_times_ascending(self):
        source = FrameSource(np.zeros(5000), 1000, window_size=256, hop_size=64)
        assert np.all(np.diff(source.times) > 0)

    def test_index_out_of_range(self):
        source = FrameSource(np.zeros(1000), 1000, window_size=100, hop_size=100)
        with pytest.raises(IndexError):
            source[len(source)]


class TestFrameValidation:
    def test_hop_larger_than_window(self):
        with pytest.raises(InvalidParametersError):
            FrameSource(np.zeros(10000), 1000, window_size=512, hop_size=1024)

    def test_window_not_smaller_than_buffer(self):
        with pytest.raises(InvalidParametersError):
            FrameSource(np.zeros(1024), 1000, window_size=1024, hop_size=512)

    @pytest.mark.parametrize("window, hop", [(0, 1), (-4, 2), (512, 0), (512, -1)])
    def test_non_positive_sizes(self, window, hop):
        with pytest.raises(InvalidParametersError):
            FrameSource(np.zeros(10000), 1000, window_size=window, hop_size=hop)

    def test_non_positive_sample_rate(self):
        with pytest.raises(InvalidParametersError):
            FrameSource(np.zeros(10000), 0, window_size=512, hop_size=256)

    def test_stereo_buffer_rejected(self):
        with pytest.raises(InvalidParametersError):
            FrameSource(np.zeros((10000, 2)), 1000, window_size=512, hop_size=256)

    def test_invalid_parameters_is_value_error(self):
        with pytest.raises(ValueError):
            FrameSource(np.zeros(100), 1000, window_size=512, hop_size=256)
