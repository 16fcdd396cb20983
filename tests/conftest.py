"""
Shared fixtures: synthetic MediaPipe frames of a known metric face.

The face is built in world coordinates (camera at the origin looking down
-Z), projected through the calibration camera and encoded the way the
detector reports it, so relative_z extraction reconstructs the points.
"""

import numpy as np
import pytest

from face2pose.anchors import AnchorPointCalculator
from face2pose.config import Calibration
from face2pose.face import MEDIAPIPE_INDICES, FaceGeometryExtractor
from face2pose.pose import HeadPoseEstimator
from face2pose.types import LandmarkFrame

N_LANDMARKS = 478

# Average face 0.6 m in front of the camera, looking straight at it.
# Eye distance 0.063, face width 0.14, face height 0.18 (calibration values).
FRONTAL_FACE = {
    "left_eye": (-0.0315, 0.0, -0.6),
    "right_eye": (0.0315, 0.0, -0.6),
    "nose_bridge": (0.0, 0.005, -0.59),
    "nose_tip": (0.0, -0.04, -0.57),
    "left_temple": (-0.07, 0.01, -0.62),
    "right_temple": (0.07, 0.01, -0.62),
    "face_top": (0.0, 0.09, -0.6),
    "face_bottom": (0.0, -0.09, -0.6),
}

# Rotations are applied about the eye midpoint
FACE_CENTER = np.array([0.0, 0.0, -0.6])


def face_points(offset=(0.0, 0.0, 0.0), rotation=None):
    """World positions of the synthetic face's landmarks."""
    offset = np.asarray(offset, dtype=np.float64)
    points = {}
    for name, point in FRONTAL_FACE.items():
        p = np.asarray(point, dtype=np.float64)
        if rotation is not None:
            p = FACE_CENTER + rotation @ (p - FACE_CENTER)
        points[name] = p + offset
    return points


def encode_landmarks(points, calibration=None):
    """Encode world points as normalized MediaPipe landmarks (478, 3)."""
    calibration = calibration if calibration is not None else Calibration()
    camera = calibration.build_camera()

    def encode(point):
        x, y, distance = camera.project(point)
        return x, y, (distance - calibration.base_depth) / calibration.depth_range

    landmarks = np.tile(encode(points["nose_bridge"]), (N_LANDMARKS, 1))
    for name, point in points.items():
        landmarks[getattr(MEDIAPIPE_INDICES, name)] = encode(point)
    return landmarks


@pytest.fixture
def make_landmarks():
    """Factory: landmark array for the synthetic face, optionally moved/rotated."""
    def _make(offset=(0.0, 0.0, 0.0), rotation=None, calibration=None):
        return encode_landmarks(face_points(offset, rotation), calibration)
    return _make


@pytest.fixture
def make_frame(make_landmarks):
    """Factory: LandmarkFrame for the synthetic face."""
    def _make(offset=(0.0, 0.0, 0.0), rotation=None, confidence=1.0,
              timestamp=None, calibration=None):
        return LandmarkFrame(
            make_landmarks(offset, rotation, calibration),
            confidence=confidence,
            timestamp=timestamp,
        )
    return _make


@pytest.fixture
def observe(make_frame):
    """Factory: (pose, geometry, anchors) of the synthetic face, default config."""
    extractor = FaceGeometryExtractor()
    estimator = HeadPoseEstimator()
    calculator = AnchorPointCalculator()

    def _observe(offset=(0.0, 0.0, 0.0), rotation=None):
        geometry = extractor.extract(make_frame(offset, rotation))
        return estimator.estimate(geometry), geometry, calculator.anchors(geometry)
    return _observe
