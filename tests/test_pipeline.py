"""
Tests for the FaceTracker pipeline.
"""

import numpy as np
import pytest

from face2pose.config import Config
from face2pose.errors import ConfigurationInvalid, InsufficientLandmarks
from face2pose.pipeline import POSE_HISTORY_SIZE, FaceTracker
from face2pose.types import LandmarkFrame, TrackingStatus


class TestProcess:
    """Test per-frame processing."""

    def test_first_frame(self, make_frame):
        """A good frame produces geometry, pose, anchors and a state."""
        tracker = FaceTracker()

        result = tracker.process(make_frame(timestamp=0.0))

        assert np.isclose(result.geometry.eye_distance, 0.063)
        assert np.allclose(result.anchors.center_mount, [0.0, 0.005, -0.6])
        assert result.state is not None
        assert np.allclose(result.state.position, result.anchors.center_mount)
        assert tracker.engine.status == TrackingStatus.TRACKING

    def test_timestamp_from_frame(self, make_frame):
        """Frame timestamps are used when none is passed."""
        tracker = FaceTracker()

        result = tracker.process(make_frame(timestamp=12.5))

        assert result.state.timestamp == 12.5

    def test_explicit_timestamp_wins(self, make_frame):
        """An explicit timestamp overrides the frame's."""
        tracker = FaceTracker()

        result = tracker.process(make_frame(timestamp=12.5), timestamp=3.0)

        assert result.state.timestamp == 3.0

    def test_low_confidence_before_tracking(self, make_frame):
        """Nothing is published until a usable frame arrives."""
        tracker = FaceTracker()

        result = tracker.process(make_frame(confidence=0.2, timestamp=0.0))

        assert result.state is None
        assert tracker.engine.status == TrackingStatus.UNINITIALIZED

    def test_quality_compares_with_last_pose(self, make_frame):
        """Frame stability compares with the previous frame's pose."""
        tracker = FaceTracker()

        first = tracker.process(make_frame(timestamp=0.0))
        second = tracker.process(make_frame(timestamp=1 / 30))

        assert first.quality.stability == 1.0
        assert np.isclose(second.quality.stability, 1.0)

    def test_steady_face_stays_put(self, make_frame):
        """A motionless face keeps a motionless state."""
        tracker = FaceTracker()

        for i in range(20):
            result = tracker.process(make_frame(timestamp=i / 30))

        assert np.allclose(result.state.position, [0.0, 0.005, -0.6], atol=1e-6)
        assert result.state.is_stable


class TestPoseHistory:
    """Test the bounded pose history."""

    def test_bounded(self, make_frame):
        """Only the most recent poses are kept."""
        tracker = FaceTracker()

        for i in range(POSE_HISTORY_SIZE + 5):
            tracker.process(make_frame(timestamp=i / 30))

        assert len(tracker.pose_history) == POSE_HISTORY_SIZE
        assert tracker.last_pose is tracker.pose_history[-1]

    def test_insufficient_landmarks(self, make_frame):
        """Short frames raise and leave the tracker untouched."""
        tracker = FaceTracker()
        tracker.process(make_frame(timestamp=0.0))
        state = tracker.engine.current_state

        with pytest.raises(InsufficientLandmarks):
            tracker.process(LandmarkFrame(np.full((100, 3), 0.5), timestamp=1 / 30))

        assert len(tracker.pose_history) == 1
        assert tracker.engine.current_state is state


class TestCalibration:
    """Test runtime calibration changes."""

    def test_update_resolution(self, make_frame):
        """New resolution applies to later frames."""
        tracker = FaceTracker()
        tracker.process(make_frame(timestamp=0.0))

        tracker.update_calibration(image_size=(640, 480))

        assert tracker.config.calibration.image_size == (640, 480)
        assert tracker.extractor.calibration.image_size == (640, 480)
        assert tracker.engine.status == TrackingStatus.TRACKING

    def test_unknown_option(self):
        """Unknown calibration options are rejected."""
        with pytest.raises(ConfigurationInvalid, match="Unknown calibration option"):
            FaceTracker().update_calibration(eye_distance=0.06)

    def test_invalid_value(self):
        """Out-of-range values are rejected and nothing changes."""
        tracker = FaceTracker()

        with pytest.raises(ConfigurationInvalid):
            tracker.update_calibration(min_depth=-1.0)

        assert tracker.config.calibration.min_depth == 0.3


class TestLifecycle:
    """Test construction and reset."""

    def test_config_drives_components(self):
        """Algorithm comes from configuration."""
        tracker = FaceTracker(Config().with_positioning(algorithm="kalman"))
        assert tracker.engine.algorithm == "kalman"
        assert "kalman" in repr(tracker)

    def test_from_config_file(self, tmp_path):
        """Trackers can be built from YAML."""
        path = tmp_path / "face2pose.yaml"
        path.write_text("positioning:\n  algorithm: basic\n")

        tracker = FaceTracker.from_config_file(str(path))

        assert tracker.engine.algorithm == "basic"

    def test_reset(self, make_frame):
        """reset() forgets poses and engine state."""
        tracker = FaceTracker()
        for i in range(3):
            tracker.process(make_frame(timestamp=i / 30))

        tracker.reset()

        assert len(tracker.pose_history) == 0
        assert tracker.last_pose is None
        assert tracker.engine.current_state is None
        assert tracker.engine.status == TrackingStatus.UNINITIALIZED
