"""
Tests for anchor point calculation.
"""

import numpy as np
import pytest

from face2pose.anchors import AnchorPointCalculator
from face2pose.config import AnchorConfig
from face2pose.coordinates import euler_to_rotation_matrix
from face2pose.face import FaceGeometryExtractor


@pytest.fixture
def geometry(make_frame):
    return FaceGeometryExtractor().extract(make_frame())


class TestMountPoints:
    """Test anchor positions."""

    def test_center_mount(self, geometry):
        """Centre mount is 5 mm above the eye-line midpoint."""
        anchors = AnchorPointCalculator().anchors(geometry)

        assert np.allclose(anchors.center_mount, [0.0, 0.005, -0.6])

    def test_left_right_mounts(self, geometry):
        """Mounts sit at ±0.4 eye distances along the eye vector."""
        anchors = AnchorPointCalculator().anchors(geometry)
        offset = 0.4 * 0.063

        assert np.allclose(anchors.left_mount, [-offset, 0.005, -0.6])
        assert np.allclose(anchors.right_mount, [offset, 0.005, -0.6])

    def test_arm_starts(self, geometry):
        """Arm starts sit at ±0.6 eye distances along the eye vector."""
        anchors = AnchorPointCalculator().anchors(geometry)
        offset = 0.6 * 0.063

        assert np.allclose(anchors.left_arm_start, [-offset, 0.005, -0.6])
        assert np.allclose(anchors.right_arm_start, [offset, 0.005, -0.6])

    def test_follow_head_roll(self, make_frame):
        """Mounts follow the eye line when the head tilts."""
        geometry = FaceGeometryExtractor().extract(
            make_frame(rotation=euler_to_rotation_matrix([0, 0, 0.3]))
        )
        anchors = AnchorPointCalculator().anchors(geometry)

        across = anchors.right_mount - anchors.left_mount
        assert np.isclose(np.arctan2(across[1], across[0]), 0.3)
        assert np.isclose(np.linalg.norm(across), 0.8 * 0.063)


class TestSizes:
    """Test derived sizes."""

    def test_default_proportions(self, geometry):
        """Sizes are proportional to eye distance and temple width."""
        anchors = AnchorPointCalculator().anchors(geometry)

        assert np.isclose(anchors.mount_width, 0.35 * 0.063)
        assert np.isclose(anchors.mount_height, 0.8 * 0.35 * 0.063)
        assert np.isclose(anchors.bridge_width, 0.15 * 0.063)
        assert np.isclose(anchors.arm_length, 1.2 * geometry.temple_width)

    def test_configurable(self, geometry):
        """Proportions come from configuration."""
        config = AnchorConfig(mount_up_offset=0.0, mount_width_ratio=0.5, arm_length_ratio=2.0)
        anchors = AnchorPointCalculator(config).anchors(geometry)

        assert np.allclose(anchors.center_mount, geometry.eye_midpoint)
        assert np.isclose(anchors.mount_width, 0.5 * 0.063)
        assert np.isclose(anchors.arm_length, 2.0 * geometry.temple_width)
