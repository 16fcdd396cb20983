"""
Tests for head pose estimation and per-frame tracking quality.
"""

import numpy as np
import pytest

from face2pose.config import Calibration
from face2pose.coordinates import euler_to_rotation_matrix
from face2pose.face import FaceGeometryExtractor
from face2pose.pose import HeadPoseEstimator, assess_tracking_quality, face_transform_matrices
from face2pose.types import HeadPose

# Pitch of the synthetic face's nose line (bridge -> tip)
FRONTAL_NOSE_PITCH = np.arctan2(0.045, 0.02)


@pytest.fixture
def estimate(make_frame):
    """Factory: HeadPose for the synthetic face."""
    extractor = FaceGeometryExtractor()
    estimator = HeadPoseEstimator()

    def _estimate(offset=(0.0, 0.0, 0.0), rotation=None):
        return estimator.estimate(extractor.extract(make_frame(offset, rotation)))
    return _estimate


class TestPosition:
    """Test head position."""

    def test_centroid_with_depth(self, estimate):
        """Centroid of eyes and nose bridge, Z from the depth estimate."""
        pose = estimate()

        assert np.allclose(pose.position, [0.0, 0.005 / 3.0, -0.6])

    def test_follows_translation(self, estimate):
        """Moving the face moves the pose."""
        pose = estimate(offset=(0.1, 0.05, 0.0))

        assert np.allclose(pose.position[:2], [0.1, 0.05 + 0.005 / 3.0])


class TestRotation:
    """Test head rotation (pitch, yaw, roll)."""

    def test_frontal(self, estimate):
        """Level frontal face: no roll or yaw, pitch is the nose inclination."""
        pose = estimate()

        assert np.allclose(pose.rotation, [FRONTAL_NOSE_PITCH, 0.0, 0.0])

    def test_neutral_nose_pitch(self, make_frame):
        """Calibrated neutral inclination is subtracted from pitch."""
        calibration = Calibration(neutral_nose_pitch=FRONTAL_NOSE_PITCH)
        geometry = FaceGeometryExtractor(calibration).extract(make_frame())

        pose = HeadPoseEstimator(calibration).estimate(geometry)

        assert np.isclose(pose.rotation[0], 0.0)

    def test_roll(self, estimate):
        """Tilting the head in the image plane is roll."""
        pose = estimate(rotation=euler_to_rotation_matrix([0, 0, 0.2]))

        assert np.isclose(pose.rotation[2], 0.2)

    def test_yaw(self, estimate):
        """Turning the head about the vertical axis is yaw."""
        pose = estimate(rotation=euler_to_rotation_matrix([0, 0.3, 0]))

        assert np.isclose(pose.rotation[1], 0.3)
        assert np.isclose(pose.rotation[2], 0.0, atol=1e-9)

    def test_yaw_sign(self, estimate):
        """Opposite turns give opposite yaw."""
        left = estimate(rotation=euler_to_rotation_matrix([0, 0.25, 0]))
        right = estimate(rotation=euler_to_rotation_matrix([0, -0.25, 0]))

        assert np.isclose(left.rotation[1], -right.rotation[1])

    def test_quaternion_in_sync(self, estimate):
        """Quaternion describes the same rotation as the Euler angles."""
        from face2pose.coordinates import quaternion_to_rotation_matrix

        pose = estimate(rotation=euler_to_rotation_matrix([0.1, 0.2, 0.1]))

        assert np.allclose(
            quaternion_to_rotation_matrix(pose.quaternion),
            euler_to_rotation_matrix(pose.rotation)
        )


class TestScale:
    """Test head scale."""

    def test_average_face_is_unit_scale(self, estimate):
        """Eye distance equal to calibration gives scale 1.0 (±0.01)."""
        pose = estimate()

        assert abs(pose.scale - 1.0) <= 0.01

    def test_larger_prior_shrinks_scale(self, make_frame):
        """Scale is relative to the calibration face."""
        calibration = Calibration(average_eye_distance=0.126, average_face_width=0.28)
        geometry = FaceGeometryExtractor(calibration).extract(make_frame(calibration=calibration))

        pose = HeadPoseEstimator(calibration).estimate(geometry)

        assert np.isclose(pose.scale, 0.5)

    def test_distance_invariant(self, estimate):
        """Scale does not change with distance from the camera."""
        near = estimate(offset=(0, 0, 0.2))
        far = estimate(offset=(0, 0, -0.4))

        assert np.isclose(near.scale, far.scale)


class TestHeadPose:
    """Test HeadPose value type."""

    def test_immutable(self):
        """Attributes cannot be reassigned."""
        pose = HeadPose(np.zeros(3), np.zeros(3))
        with pytest.raises(AttributeError):
            pose.scale = 2.0

    def test_arrays_read_only(self):
        """Arrays cannot be modified in place."""
        pose = HeadPose(np.zeros(3), np.zeros(3))
        with pytest.raises(ValueError):
            pose.rotation[0] = 1.0

    def test_non_positive_scale(self):
        """Scale must be positive."""
        with pytest.raises(ValueError, match="positive"):
            HeadPose(np.zeros(3), np.zeros(3), scale=0.0)

    def test_with_rotation(self):
        """with_rotation returns a new pose with a synced quaternion."""
        pose = HeadPose(np.ones(3), np.zeros(3), scale=1.2)
        turned = pose.with_rotation(np.array([0.0, 0.5, 0.0]))

        assert np.allclose(turned.position, pose.position)
        assert turned.scale == 1.2
        assert np.allclose(turned.quaternion, [np.cos(0.25), 0, np.sin(0.25), 0])
        assert np.allclose(pose.quaternion, [1, 0, 0, 0])


class TestTrackingQuality:
    """Test assess_tracking_quality."""

    def test_first_frame(self, make_frame):
        """Without a previous pose, stability is 1.0."""
        geometry = FaceGeometryExtractor().extract(make_frame())
        pose = HeadPoseEstimator().estimate(geometry)

        quality = assess_tracking_quality(pose, geometry, 0.95, Calibration())

        assert quality.stability == 1.0
        assert quality.accuracy == 1.0
        assert quality.tracking_loss_risk == 0.0
        assert quality.confidence == 0.95

    def test_small_motion(self, make_frame):
        """Stability drops by 10 per meter of motion."""
        geometry = FaceGeometryExtractor().extract(make_frame())
        pose = HeadPoseEstimator().estimate(geometry)
        previous = HeadPose(pose.position - np.array([0.01, 0, 0]), pose.rotation, pose.scale)

        quality = assess_tracking_quality(pose, geometry, 1.0, Calibration(), previous)

        assert np.isclose(quality.stability, 0.9)

    def test_large_jump(self, make_frame):
        """Large jumps floor stability at 0 and raise the loss risk."""
        geometry = FaceGeometryExtractor().extract(make_frame())
        pose = HeadPoseEstimator().estimate(geometry)
        previous = HeadPose(pose.position + 0.5, pose.rotation, pose.scale)

        quality = assess_tracking_quality(pose, geometry, 1.0, Calibration(), previous)

        assert quality.stability == 0.0
        assert quality.tracking_loss_risk == 1.0

    def test_low_confidence_risk(self, make_frame):
        """Low confidence raises the loss risk."""
        geometry = FaceGeometryExtractor().extract(make_frame())
        pose = HeadPoseEstimator().estimate(geometry)

        quality = assess_tracking_quality(pose, geometry, 0.6, Calibration())

        assert np.isclose(quality.tracking_loss_risk, 0.4)

    def test_implausible_proportions(self, make_frame):
        """Measurements far from the calibration face lower accuracy."""
        geometry = FaceGeometryExtractor().extract(make_frame())
        pose = HeadPoseEstimator().estimate(geometry)
        tiny_prior = Calibration(average_eye_distance=0.02, average_face_width=0.05)

        quality = assess_tracking_quality(pose, geometry, 1.0, tiny_prior)

        assert quality.accuracy == 0.25


class TestTransformMatrices:
    """Test face-to-world matrices."""

    def test_inverse_pair(self):
        """World-to-face undoes face-to-world."""
        pose = HeadPose(np.array([0.1, 0.0, -0.6]), np.array([0.2, -0.1, 0.05]), scale=1.1)

        face_to_world, world_to_face = face_transform_matrices(pose)

        assert np.allclose(world_to_face @ face_to_world, np.eye(4))

    def test_origin_maps_to_position(self):
        """The face origin is the pose position."""
        pose = HeadPose(np.array([0.1, 0.2, -0.6]), np.array([0.3, 0.0, 0.0]))

        face_to_world, _ = face_transform_matrices(pose)

        assert np.allclose(face_to_world @ [0, 0, 0, 1], [0.1, 0.2, -0.6, 1])
