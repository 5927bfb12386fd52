"""Tests for epiline grouping and candidate retrieval."""

import numpy as np
import pytest

from epimatch.features.grid import build_image_grids
from epimatch.geometry.epilines import BoundingBox
from epimatch.guided.candidates import find_features_near_epipolar_line, sample_segment
from epimatch.guided.grouping import group_epipolar_lines, line_deviation


def horizontal(y):
    return np.array([0.0, 1.0, -y])


class TestGrouping:
    """Test grouping of near-identical epipolar lines."""

    @pytest.fixture
    def box(self):
        return BoundingBox(0.0, 0.0, 100.0, 100.0)

    def test_line_deviation(self, box):
        """Test the largest separation of two lines over the box."""
        assert line_deviation(horizontal(10.0), horizontal(12.5), box) == pytest.approx(2.5)
        # Opposite orientation of the same line.
        assert line_deviation(horizontal(10.0), -horizontal(10.0), box) == pytest.approx(0.0)

    def test_tilted_lines_deviate_at_corners(self, box):
        """Test that a small tilt is measured at the far side of the box."""
        tilted = np.array([-0.02, 1.0, -10.0])
        tilted /= np.hypot(tilted[0], tilted[1])
        assert line_deviation(horizontal(10.0), tilted, box) == pytest.approx(2.0, abs=0.05)

    def test_groups_close_lines(self, box):
        """Test that lines within tolerance share a group."""
        lines = np.array([horizontal(10.0), horizontal(10.5), horizontal(30.0), horizontal(9.8)])
        groups = group_epipolar_lines([3, 5, 8, 9], lines, box, tolerance=1.0)

        assert [g.features for g in groups] == [[3, 5, 9], [8]]
        np.testing.assert_allclose(groups[0].line, horizontal(10.0))

    def test_identical_lines_share_a_group(self, box):
        """Test that coinciding lines always end up in the same group."""
        lines = np.array([horizontal(10.0), horizontal(10.9), horizontal(11.8), horizontal(11.8)])
        groups = group_epipolar_lines([0, 1, 2, 3], lines, box, tolerance=1.0)

        owner = {f: i for i, g in enumerate(groups) for f in g.features}
        assert owner[2] == owner[3]

    def test_flipped_orientation(self, box):
        """Test that a line and its negation are grouped."""
        lines = np.array([horizontal(40.0), -horizontal(40.0)])
        groups = group_epipolar_lines([0, 1], lines, box, tolerance=0.5)
        assert len(groups) == 1

    def test_skips_epipole(self, box):
        """Test that a feature without a line is dropped."""
        lines = np.array([[0.0, 0.0, 0.0], horizontal(5.0)])
        groups = group_epipolar_lines([0, 1], lines, box, tolerance=1.0)
        assert [g.features for g in groups] == [[1]]

    def test_empty(self, box):
        """Test that no features give no groups."""
        assert group_epipolar_lines([], np.zeros((0, 3)), box, tolerance=1.0) == []


class TestCandidates:
    """Test candidate retrieval along a clipped segment."""

    @pytest.fixture
    def grid_setup(self):
        points = np.array(
            [
                [1.0, 10.5],
                [20.0, 9.0],
                [39.0, 11.9],
                [20.0, 18.0],
                [30.0, 2.0],
                [15.0, 10.0],
            ]
        )
        box = BoundingBox.from_points(points)
        grids = build_image_grids(points, range(len(points)), 4.0, box.top_left)
        return points, box, grids

    def test_sample_segment(self):
        """Test that samples include both ends and are at most one step apart."""
        samples = sample_segment(np.array([0.0, 0.0]), np.array([10.0, 0.0]), 4.0)
        np.testing.assert_allclose(samples[0], [0.0, 0.0])
        np.testing.assert_allclose(samples[-1], [10.0, 0.0])
        assert np.all(np.diff(samples[:, 0]) <= 4.0)

    def test_zero_length_segment(self):
        """Test a segment whose endpoints coincide."""
        samples = sample_segment(np.array([3.0, 3.0]), np.array([3.0, 3.0]), 4.0)
        assert len(samples) == 2

    def test_features_near_line(self, grid_setup):
        """Test that only features in the band around the line are returned."""
        _, box, grids = grid_setup
        endpoints = [np.array([box.x_min, 10.0]), np.array([box.x_max, 10.0])]

        candidates = find_features_near_epipolar_line(endpoints, grids, 4.0, set(range(6)))
        assert candidates == [0, 1, 2, 5]

    def test_restricted_to_unmatched(self, grid_setup):
        """Test that consumed features are not candidates."""
        _, box, grids = grid_setup
        endpoints = [np.array([box.x_min, 10.0]), np.array([box.x_max, 10.0])]

        candidates = find_features_near_epipolar_line(endpoints, grids, 4.0, {0, 2, 3, 4})
        assert candidates == [0, 2]

    def test_no_endpoints(self, grid_setup):
        """Test that a group without a segment has no candidates."""
        _, _, grids = grid_setup
        assert find_features_near_epipolar_line([], grids, 4.0, set(range(6))) == []
